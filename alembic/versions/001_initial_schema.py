"""Initial schema: projects, competitors, runs and evidence sources

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONDocument = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "project_runs" in existing_tables:
        return

    # Create projects table
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("market", sa.Text),
        sa.Column("input_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("criteria", JSONDocument, nullable=False),
        sa.Column("deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create competitors table
    op.create_table(
        "competitors",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("project_id", sa.Uuid, sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("url", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_competitors_project_id", "competitors", ["project_id"])

    # Create project_runs table
    op.create_table(
        "project_runs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("project_id", sa.Uuid, sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("input_version", sa.Integer, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="queued"),
        sa.Column("idempotency_key", sa.Text, nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("finished_at", sa.DateTime(timezone=True)),
        sa.Column("error_code", sa.Text),
        sa.Column("error_message", sa.Text),
        sa.Column("error_detail", sa.Text),
        sa.Column("metrics", JSONDocument, nullable=False),
        sa.Column("output", JSONDocument),
        sa.Column("metrics_version", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("idx_project_runs_project_id", "project_runs", ["project_id"])
    op.create_index("idx_project_runs_status", "project_runs", ["status"])

    # Create evidence_sources table
    op.create_table(
        "evidence_sources",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.Uuid, sa.ForeignKey("project_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.Uuid, sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("competitor_id", sa.Uuid, sa.ForeignKey("competitors.id", ondelete="CASCADE"), nullable=False),
        sa.Column("criterion_id", sa.Text, nullable=False),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("domain", sa.Text),
        sa.Column("source_type", sa.Text, nullable=False, server_default="other"),
        sa.Column("title", sa.Text),
        sa.Column("published_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("run_id", "competitor_id", "criterion_id", "url"),
    )
    op.create_index("idx_evidence_sources_run_id", "evidence_sources", ["run_id"])
    op.create_index("idx_evidence_sources_project_id", "evidence_sources", ["project_id"])


def downgrade() -> None:
    op.drop_table("evidence_sources")
    op.drop_table("project_runs")
    op.drop_table("competitors")
    op.drop_table("projects")
