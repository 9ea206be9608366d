"""create pipeline tables

Revision ID: 7c1e0a9d4f21
Revises:
Create Date: 2026-10-15 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "7c1e0a9d4f21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "job_postings",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("is_remote", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("description", sa.UnicodeText(), nullable=False),
        sa.Column("requirements_json", sa.UnicodeText(), nullable=False),
        sa.Column("apply_url", sa.String(length=2048), nullable=False, server_default=""),
        sa.Column("salary", sa.String(length=255), nullable=True),
        sa.Column("posted_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=False, server_default="unknown"),
        sa.Column("relevance_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("email_message_id", sa.String(length=255), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_job_postings_email_message_id", "job_postings", ["email_message_id"])
    op.create_index("ix_job_postings_created_score", "job_postings", ["created_at", "relevance_score"])
    op.create_index("ix_job_postings_title_company", "job_postings", ["title", "company"])

    op.create_table(
        "processed_emails",
        sa.Column("message_id", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("subject", sa.String(length=998), nullable=False, server_default=""),
        sa.Column("sender", sa.String(length=320), nullable=False, server_default=""),
        sa.Column("jobs_extracted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_processed_emails_processed_at", "processed_emails", ["processed_at"])

    op.create_table(
        "resume_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("skills_json", sa.UnicodeText(), nullable=False),
        sa.Column("experience_json", sa.UnicodeText(), nullable=False),
        sa.Column("preferred_roles_json", sa.UnicodeText(), nullable=False),
        sa.Column("seniority", sa.String(length=32), nullable=False, server_default="unknown"),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_resume_profiles_analyzed_at", "resume_profiles", ["analyzed_at"])

    op.create_table(
        "pipeline_runs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("trigger", sa.String(length=16), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("payload_json", sa.UnicodeText(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("backoff_kind", sa.String(length=16), nullable=False, server_default="exponential"),
        sa.Column("base_delay_sec", sa.Float(), nullable=False, server_default="2"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("progress_message", sa.String(length=512), nullable=True),
        sa.Column("error", sa.UnicodeText(), nullable=True),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_pipeline_runs_kind_status", "pipeline_runs", ["kind", "status"])
    op.create_index("ix_pipeline_runs_status_available", "pipeline_runs", ["status", "available_at"])
    op.create_index(
        "uq_pipeline_runs_in_flight",
        "pipeline_runs",
        ["kind"],
        unique=True,
        sqlite_where=sa.text("status IN ('queued', 'active')"),
        postgresql_where=sa.text("status IN ('queued', 'active')"),
    )


def downgrade() -> None:
    op.drop_index("uq_pipeline_runs_in_flight", table_name="pipeline_runs")
    op.drop_index("ix_pipeline_runs_status_available", table_name="pipeline_runs")
    op.drop_index("ix_pipeline_runs_kind_status", table_name="pipeline_runs")
    op.drop_table("pipeline_runs")
    op.drop_index("ix_resume_profiles_analyzed_at", table_name="resume_profiles")
    op.drop_table("resume_profiles")
    op.drop_index("ix_processed_emails_processed_at", table_name="processed_emails")
    op.drop_table("processed_emails")
    op.drop_index("ix_job_postings_title_company", table_name="job_postings")
    op.drop_index("ix_job_postings_created_score", table_name="job_postings")
    op.drop_index("ix_job_postings_email_message_id", table_name="job_postings")
    op.drop_table("job_postings")
