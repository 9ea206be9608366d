from __future__ import annotations

import pytest

from jobdigest.db.engine import init_schema, make_engine
from jobdigest.db.session import make_session_factory


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'jobdigest_test.db'}")
    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)
