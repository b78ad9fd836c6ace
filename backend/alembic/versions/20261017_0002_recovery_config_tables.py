"""Create recovery settings and campaign tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261017_0002"
down_revision = "20261017_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "recovery_settings",
        sa.Column("settings_key", sa.String(length=64), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("settings_key"),
    )

    op.create_table(
        "recovery_campaigns",
        sa.Column("campaign_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("campaign_id"),
    )
    op.create_index("ix_recovery_campaigns_status", "recovery_campaigns", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_recovery_campaigns_status", table_name="recovery_campaigns")
    op.drop_table("recovery_campaigns")
    op.drop_table("recovery_settings")
