"""Per-owner settings table."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_user_settings"
down_revision = "0001_visits"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if "user_settings" in set(inspector.get_table_names()):
        return
    op.create_table(
        "user_settings",
        sa.Column("owner_uid", sa.String(), primary_key=True),
        sa.Column("percent_presets", sa.Text(), nullable=False),
        sa.Column("export_format", sa.String(), nullable=False, server_default="csv"),
        sa.Column("updated_at", sa.String(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("user_settings")
