from sqlalchemy import text


def check_db(engine) -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True
