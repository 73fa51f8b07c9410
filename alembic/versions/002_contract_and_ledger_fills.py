"""Key trades by traded contract; keep CSV ledger fill history.

Revision ID: 002_contract_ledger
Revises: 001_initial
Create Date: 2026-10-19 12:00:00.000000
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "002_contract_ledger"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("trades", sa.Column("contract", sa.String(32), nullable=True))
    # Rows written before contracts were tracked only know their root symbol
    op.execute("UPDATE trades SET contract = instrument_id WHERE contract IS NULL")
    op.alter_column("trades", "contract", nullable=False)

    op.add_column(
        "sync_states",
        sa.Column("ledger_fills", JSONB, nullable=False, server_default="[]"),
    )


def downgrade() -> None:
    op.drop_column("sync_states", "ledger_fills")
    op.drop_column("trades", "contract")
