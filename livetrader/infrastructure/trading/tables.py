"""
SQLAlchemy Core table definitions for the live trading store.

Monetary and quantity columns are stored as exact decimal text so that
SQLite and PostgreSQL round-trip the same values. Timestamps are
written as UTC.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
)
from sqlalchemy.engine import Engine
from sqlalchemy.types import TypeDecorator

metadata = MetaData()


class DecimalText(TypeDecorator):
    """Exact ``Decimal`` stored as a string column."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to timezone-aware UTC (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


signals = Table(
    "signals",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(64), nullable=False),
    Column("symbol", String(20), nullable=False),
    Column("direction", String(4), nullable=False),
    Column("price", DecimalText, nullable=False),
    Column("confidence", DecimalText, nullable=False),
    Column("timeframe", String(10), nullable=False),
    Column("stop_loss", DecimalText),
    Column("take_profit", DecimalText),
    Column("status", String(10), nullable=False, default="ACTIVE"),
    Column("expires_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("idx_signals_status_symbol", "status", "symbol"),
    Index("idx_signals_account", "account_id"),
)

trades = Table(
    "trades",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(64), nullable=False),
    Column("signal_id", String(36)),
    Column("idempotency_key", String(80), unique=True),
    Column("symbol", String(20), nullable=False),
    Column("side", String(4), nullable=False),
    Column("kind", String(6), nullable=False, default="MARKET"),
    Column("quantity", DecimalText, nullable=False),
    Column("entry_price", DecimalText, nullable=False),
    Column("exit_price", DecimalText),
    Column("stop_loss", DecimalText),
    Column("take_profit", DecimalText),
    Column("fees", DecimalText, nullable=False, default="0"),
    Column("realized_pnl", DecimalText),
    Column("pnl_percentage", DecimalText),
    Column("venue_order_id", String(64)),
    Column("filled", Boolean, nullable=False, default=False),
    Column("status", String(10), nullable=False, default="OPEN"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("closed_at", DateTime(timezone=True)),
    Index("idx_trades_account_status", "account_id", "status"),
    Index("idx_trades_signal", "signal_id"),
)

portfolios = Table(
    "portfolios",
    metadata,
    Column("account_id", String(64), primary_key=True),
    Column("total_balance", DecimalText, nullable=False),
    Column("available_balance", DecimalText, nullable=False),
    Column("locked_balance", DecimalText, nullable=False),
    Column("total_pnl", DecimalText, nullable=False),
    Column("daily_pnl", DecimalText, nullable=False),
    Column("pnl_date", Date),
    Column("active_positions", Integer, nullable=False, default=0),
    Column("total_trades", Integer, nullable=False, default=0),
    Column("winning_trades", Integer, nullable=False, default=0),
    Column("win_rate", DecimalText, nullable=False),
    Column("peak_balance", DecimalText, nullable=False),
    Column("max_drawdown", DecimalText, nullable=False),
    Column("sharpe_ratio", DecimalText, nullable=False),
    Column("updated_at", DateTime(timezone=True)),
)


def ensure_tables(engine: Engine) -> None:
    """Create the live trading tables if they do not exist yet."""
    metadata.create_all(engine, checkfirst=True)
