"""Visits collection table."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_visits"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())

    if "visits" not in tables:
        op.create_table(
            "visits",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("owner_uid", sa.String(), nullable=True),
            sa.Column("visit_date", sa.String(), nullable=False),
            sa.Column("patient_name", sa.Text(), nullable=False),
            sa.Column("procedure_name", sa.Text(), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("percent", sa.Float(), nullable=False),
            sa.Column("doctor_income", sa.Float(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=False, server_default=""),
            sa.Column("created_at", sa.String(), nullable=False),
            sa.Column("updated_at", sa.String(), nullable=False),
        )
    op.execute("CREATE INDEX IF NOT EXISTS idx_visits_owner_date ON visits(owner_uid, visit_date)")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_visits_owner_date")
    op.drop_table("visits")
