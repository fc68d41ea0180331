"""initial job digest schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    existing = set(sa.inspect(conn).get_table_names())

    if "jobs" not in existing:
        op.create_table(
            "jobs",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("company", sa.String(), nullable=False),
            sa.Column("location", sa.String(), nullable=True),
            sa.Column("is_remote", sa.Boolean(), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("requirements", sa.JSON(), nullable=True),
            sa.Column("apply_url", sa.String(), nullable=True),
            sa.Column("salary", sa.String(), nullable=True),
            sa.Column("posted_date", sa.DateTime(), nullable=True),
            sa.Column("source", sa.String(), nullable=True),
            sa.Column("relevance_score", sa.Float(), nullable=True),
            sa.Column("origin_message_id", sa.String(), nullable=True),
            sa.Column("normalized_title", sa.String(), nullable=True),
            sa.Column("normalized_company", sa.String(), nullable=True),
            sa.Column("normalized_url", sa.String(), nullable=True),
            sa.Column("processed", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_jobs_origin_message_id", "jobs", ["origin_message_id"])
        op.create_index("ix_jobs_normalized_url", "jobs", ["normalized_url"])
        op.create_index("ix_jobs_processed", "jobs", ["processed"])
        op.create_index("ix_jobs_created_at", "jobs", ["created_at"])
        op.create_index("ix_jobs_title_company", "jobs", ["normalized_title", "normalized_company"])

    if "processed_emails" not in existing:
        op.create_table(
            "processed_emails",
            sa.Column("message_id", sa.String(), nullable=False),
            sa.Column("jobs_extracted", sa.Integer(), nullable=True),
            sa.Column("archived", sa.Boolean(), nullable=True),
            sa.Column("category", sa.String(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("message_id"),
        )
        op.create_index("ix_processed_emails_processed_at", "processed_emails", ["processed_at"])

    if "resume_analyses" not in existing:
        op.create_table(
            "resume_analyses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("skills", sa.JSON(), nullable=True),
            sa.Column("experience", sa.JSON(), nullable=True),
            sa.Column("preferred_roles", sa.JSON(), nullable=True),
            sa.Column("seniority", sa.String(), nullable=True),
            sa.Column("analyzed_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_resume_analyses_id", "resume_analyses", ["id"])
        op.create_index("ix_resume_analyses_analyzed_at", "resume_analyses", ["analyzed_at"])


def downgrade() -> None:
    op.drop_table("resume_analyses")
    op.drop_table("processed_emails")
    op.drop_table("jobs")
