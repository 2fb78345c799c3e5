"""Create the reconciliation ledger schema.

Revision ID: ledger_schema_001
Revises:
Create Date: 2025-01-15

Databases created by DatabaseManager.initialize_database() already have these
tables; the existence checks make this revision safe to run against them.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "ledger_schema_001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(conn, table_name: str) -> bool:
    return sa.inspect(conn).has_table(table_name)


def upgrade() -> None:
    conn = op.get_bind()

    if not _table_exists(conn, "strategies"):
        op.create_table(
            "strategies",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=False),
            sa.Column("strategy_type", sa.String(32), nullable=False),
            sa.Column("symbol", sa.String, nullable=False),
            sa.Column("leg_count", sa.Integer, nullable=False, server_default="1"),
            sa.Column("direction", sa.String(16)),
            sa.Column("status", sa.String(16), nullable=False, server_default="open"),
            sa.Column("opened_at", sa.String),
            sa.Column("expiration_date", sa.String),
            sa.Column("closed_at", sa.String),
            sa.Column("total_opening_cost", sa.Float, nullable=False, server_default="0"),
            sa.Column("total_closing_proceeds", sa.Float, nullable=False, server_default="0"),
            sa.Column("realized_pl", sa.Float, nullable=False, server_default="0"),
            sa.Column("unrealized_pl", sa.Float, nullable=False, server_default="0"),
            sa.Column("legs", sa.JSON, nullable=False),
            sa.Column("original_strategy_id", sa.String(36)),
            sa.Column("adjusted_from_strategy_id", sa.String(36)),
            sa.Column("is_adjustment", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.String, server_default=sa.func.now()),
            sa.Index("idx_strategies_user_status", "user_id", "status"),
        )

    if not _table_exists(conn, "positions"):
        op.create_table(
            "positions",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=False),
            sa.Column("asset_type", sa.String(16), nullable=False),
            sa.Column("symbol", sa.String, nullable=False),
            sa.Column("option_type", sa.String(8)),
            sa.Column("strike_price", sa.Float),
            sa.Column("expiration_date", sa.String),
            sa.Column("contract_month", sa.String(8)),
            sa.Column("multiplier", sa.Float, nullable=False, server_default="1"),
            sa.Column("side", sa.String(8), nullable=False),
            sa.Column("opening_quantity", sa.Float, nullable=False),
            sa.Column("current_quantity", sa.Float, nullable=False),
            sa.Column("average_opening_price", sa.Float, nullable=False, server_default="0"),
            sa.Column("total_cost_basis", sa.Float, nullable=False, server_default="0"),
            sa.Column("total_closing_amount", sa.Float, nullable=False, server_default="0"),
            sa.Column("realized_pl", sa.Float, nullable=False, server_default="0"),
            sa.Column("unrealized_pl", sa.Float, nullable=False, server_default="0"),
            sa.Column("status", sa.String(16), nullable=False, server_default="open"),
            sa.Column("opening_transaction_ids", sa.JSON, nullable=False),
            sa.Column("closing_transaction_ids", sa.JSON, nullable=False),
            sa.Column("closed_quantities", sa.JSON, nullable=False),
            sa.Column("opened_at", sa.String, nullable=False),
            sa.Column("closed_at", sa.String),
            sa.Column("strategy_id", sa.String(36), sa.ForeignKey("strategies.id", ondelete="SET NULL")),
            sa.Column("created_at", sa.String),
            sa.Index("idx_positions_user_status", "user_id", "status"),
            sa.Index("idx_positions_open_lookup", "user_id", "symbol", "side", "status", "opened_at"),
            sa.Index("idx_positions_strategy", "strategy_id"),
        )

    if not _table_exists(conn, "transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=False),
            sa.Column("asset_type", sa.String(16), nullable=False),
            sa.Column("transaction_code", sa.String(16)),
            sa.Column("symbol", sa.String),
            sa.Column("instrument", sa.String),
            sa.Column("description", sa.Text),
            sa.Column("option_type", sa.String(8)),
            sa.Column("strike_price", sa.Float),
            sa.Column("expiration_date", sa.String),
            sa.Column("contract_month", sa.String(8)),
            sa.Column("multiplier", sa.Float),
            sa.Column("quantity", sa.Float, nullable=False, server_default="0"),
            sa.Column("price", sa.Float),
            sa.Column("amount", sa.Float, nullable=False, server_default="0"),
            sa.Column("fees", sa.Float, nullable=False, server_default="0"),
            sa.Column("is_opening", sa.Boolean),
            sa.Column("is_long", sa.Boolean),
            sa.Column("activity_date", sa.String, nullable=False),
            sa.Column("process_date", sa.String),
            sa.Column("settle_date", sa.String),
            sa.Column("import_id", sa.String(36)),
            sa.Column("batch_id", sa.String(36)),
            sa.Column("position_id", sa.String(36), sa.ForeignKey("positions.id", ondelete="SET NULL")),
            sa.Column("created_at", sa.String, server_default=sa.func.now()),
            sa.Index("idx_transactions_user_unmatched", "user_id", "position_id"),
            sa.Index("idx_transactions_user_date", "user_id", "activity_date"),
            sa.Index("idx_transactions_import", "import_id"),
        )

    if not _table_exists(conn, "cash_ledger_entries"):
        op.create_table(
            "cash_ledger_entries",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=False),
            sa.Column("transaction_code", sa.String(32), nullable=False),
            sa.Column("amount", sa.Float, nullable=False),
            sa.Column("description", sa.Text),
            sa.Column("symbol", sa.String),
            sa.Column("transaction_id", sa.String(36)),
            sa.Column("linked_transaction_ids", sa.JSON, nullable=False),
            sa.Column("activity_date", sa.String, nullable=False),
            sa.Column("process_date", sa.String),
            sa.Column("settle_date", sa.String),
            sa.Column("tags", sa.JSON, nullable=False),
            sa.Column("created_at", sa.String, server_default=sa.func.now()),
            sa.Index("idx_cash_entries_user_date", "user_id", "activity_date"),
            sa.Index("idx_cash_entries_transaction", "transaction_id"),
        )

    if not _table_exists(conn, "cash_balances"):
        op.create_table(
            "cash_balances",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=False),
            sa.Column("balance_date", sa.String, nullable=False),
            sa.Column("total_cash", sa.Float, nullable=False, server_default="0"),
            sa.Column("available_cash", sa.Float, nullable=False, server_default="0"),
            sa.Column("pending_deposits", sa.Float, nullable=False, server_default="0"),
            sa.Column("pending_withdrawals", sa.Float, nullable=False, server_default="0"),
            sa.Column("margin_used", sa.Float, nullable=False, server_default="0"),
            sa.Column("created_at", sa.String, server_default=sa.func.now()),
            sa.UniqueConstraint("user_id", "balance_date", name="uq_cash_balance_user_date"),
        )

    if not _table_exists(conn, "futures_contract_specs"):
        op.create_table(
            "futures_contract_specs",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_id", sa.String(36)),
            sa.Column("symbol", sa.String(8), nullable=False),
            sa.Column("name", sa.String),
            sa.Column("exchange", sa.String(16)),
            sa.Column("multiplier", sa.Float, nullable=False),
            sa.Column("tick_size", sa.Float, nullable=False),
            sa.Column("tick_value", sa.Float, nullable=False),
            sa.Column("initial_margin", sa.Float),
            sa.Column("maintenance_margin", sa.Float),
            sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.UniqueConstraint("user_id", "symbol", name="uq_contract_spec_user_symbol"),
        )

    if not _table_exists(conn, "journal_entries"):
        op.create_table(
            "journal_entries",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=False),
            sa.Column("title", sa.String),
            sa.Column("transaction_ids", sa.JSON, nullable=False),
            sa.Column("position_ids", sa.JSON, nullable=False),
            sa.Column("strategy_id", sa.String(36)),
            sa.Column("created_at", sa.String, server_default=sa.func.now()),
        )


def downgrade() -> None:
    op.drop_table("journal_entries")
    op.drop_table("futures_contract_specs")
    op.drop_table("cash_balances")
    op.drop_table("cash_ledger_entries")
    op.drop_table("transactions")
    op.drop_table("positions")
    op.drop_table("strategies")
