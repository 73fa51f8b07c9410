"""Initial trade journal schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "trades",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("trade_key", sa.String(64), unique=True, nullable=False),
        sa.Column("position_id", sa.String(64), nullable=False),
        sa.Column("account_id", sa.String(128), nullable=False),
        sa.Column("instrument_id", sa.String(32), nullable=False),
        sa.Column("side", sa.String(8), nullable=False),

        # Timing
        sa.Column("entry_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("exit_time", sa.DateTime(timezone=True), nullable=False),

        # Economics (immutable after insert)
        sa.Column("entry_price", sa.Numeric(24, 8), nullable=False),
        sa.Column("exit_price", sa.Numeric(24, 8), nullable=False),
        sa.Column("qty", sa.Integer, nullable=False),
        sa.Column("pnl", sa.Numeric(24, 8), nullable=False),
        sa.Column("commission", sa.Numeric(24, 8), nullable=False, server_default="0"),

        # Annotations
        sa.Column("is_mistake", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("playbook_ids", JSONB, nullable=False, server_default="[]"),
        sa.Column("grade", sa.String(4), nullable=True),
        sa.Column("emotion", sa.String(16), nullable=True),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("tags", JSONB, nullable=False, server_default="[]"),
        sa.Column("prop_firm_account_id", sa.String(64), nullable=True),

        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_trades_account_exit", "trades", ["account_id", "exit_time"])
    op.create_index("ix_trades_position_id", "trades", ["position_id"])
    op.create_index("ix_trades_prop_firm_account_id", "trades", ["prop_firm_account_id"])

    op.create_table(
        "sync_states",
        sa.Column("account_id", sa.String(128), primary_key=True),
        sa.Column("cursor_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cursor_fill_keys", JSONB, nullable=False, server_default="[]"),
        sa.Column("open_positions", JSONB, nullable=False, server_default="[]"),
        sa.Column("last_sync_status", sa.String(16), nullable=False, server_default="never"),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
    )

    op.create_table(
        "broker_accounts",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("broker_account_id", sa.BigInteger, nullable=False),
        sa.Column("environment", sa.String(8), nullable=False, server_default="demo"),
        sa.Column("name", sa.String(128), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("prop_firm_account_id", sa.String(64), nullable=True),
    )

    op.create_table(
        "mistakes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "trade_id", sa.String(36),
            sa.ForeignKey("trades.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("mistake_type", sa.String(64), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("severity", sa.Integer, nullable=False, server_default="2"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_mistakes_trade_id", "mistakes", ["trade_id"])

    op.create_table(
        "preferences",
        sa.Column("key", sa.String(128), primary_key=True),
        sa.Column("value", sa.Text, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("preferences")
    op.drop_index("ix_mistakes_trade_id", table_name="mistakes")
    op.drop_table("mistakes")
    op.drop_table("broker_accounts")
    op.drop_table("sync_states")
    op.drop_index("ix_trades_prop_firm_account_id", table_name="trades")
    op.drop_index("ix_trades_position_id", table_name="trades")
    op.drop_index("ix_trades_account_exit", table_name="trades")
    op.drop_table("trades")
