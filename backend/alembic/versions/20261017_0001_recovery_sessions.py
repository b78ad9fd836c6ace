"""Create the recovery session table."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "recovery_sessions",
        sa.Column("checkout_token", sa.String(length=255), nullable=False),
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("shop_domain", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("amount_subtotal", sa.Float(), nullable=True),
        sa.Column("country_code", sa.String(length=8), nullable=True),
        sa.Column("customer_segment", sa.String(length=16), nullable=True),
        sa.Column("state", sa.String(length=32), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recovered_order_id", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("checkout_token"),
        sa.UniqueConstraint("id"),
    )
    op.create_index("ix_recovery_sessions_state", "recovery_sessions", ["state"], unique=False)
    op.create_index("ix_recovery_sessions_failed_at", "recovery_sessions", ["failed_at"], unique=False)
    op.create_index("ix_recovery_sessions_next_attempt_at", "recovery_sessions", ["next_attempt_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_recovery_sessions_next_attempt_at", table_name="recovery_sessions")
    op.drop_index("ix_recovery_sessions_failed_at", table_name="recovery_sessions")
    op.drop_index("ix_recovery_sessions_state", table_name="recovery_sessions")
    op.drop_table("recovery_sessions")
