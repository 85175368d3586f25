"""ledger init

Revision ID: 0001_ledger_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_ledger_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("address", sa.String(42), primary_key=True),
            sa.Column("pending_credits", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("calculated_credits", sa.BigInteger(), nullable=False, server_default="0"),
        )

    if "engagements" not in existing_tables:
        op.create_table(
            "engagements",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_address", sa.String(42), sa.ForeignKey("users.address"), nullable=False),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("credits", sa.BigInteger(), nullable=False),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at_ms", sa.BigInteger(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("tx_hash", sa.String(66), nullable=True),
            sa.Column("settled_at_ms", sa.BigInteger(), nullable=True),
        )
    idxs = existing_indexes("engagements")
    if "ix_engagements_user_address" not in idxs:
        op.create_index("ix_engagements_user_address", "engagements", ["user_address"])
    if "ix_engagements_action" not in idxs:
        op.create_index("ix_engagements_action", "engagements", ["action"])
    if "ix_engagements_status" not in idxs:
        op.create_index("ix_engagements_status", "engagements", ["status"])
    if "ix_engagements_user_status" not in idxs:
        op.create_index("ix_engagements_user_status", "engagements", ["user_address", "status"])

    if "credit_calculations" not in existing_tables:
        op.create_table(
            "credit_calculations",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_address", sa.String(42), sa.ForeignKey("users.address"), nullable=False),
            sa.Column("reason", sa.String(), nullable=False),
            sa.Column("parameter", sa.String(78), nullable=False),
            sa.Column("credits", sa.BigInteger(), nullable=False),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at_ms", sa.BigInteger(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("tx_hash", sa.String(66), nullable=True),
            sa.Column("settled_at_ms", sa.BigInteger(), nullable=True),
        )
    idxs = existing_indexes("credit_calculations")
    if "ix_credit_calculations_user_address" not in idxs:
        op.create_index("ix_credit_calculations_user_address", "credit_calculations", ["user_address"])
    if "ix_credit_calculations_reason" not in idxs:
        op.create_index("ix_credit_calculations_reason", "credit_calculations", ["reason"])
    if "ix_credit_calculations_status" not in idxs:
        op.create_index("ix_credit_calculations_status", "credit_calculations", ["status"])


def downgrade() -> None:
    op.drop_table("credit_calculations")
    op.drop_table("engagements")
    op.drop_table("users")
