"""Relational layout for stored snapshots.

Tables:
  market_metrics        one row per block (PK block_number)
  assets                registry of every symbol ever stored (PK asset_id)
  token_metrics         one row per (block_number, asset_id)

Decimal columns are NUMERIC(38,18) on PostgreSQL and exact decimal text on
SQLite (which has no fixed-point type). Unbounded caps are stored as NULL.
"""
from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    func,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator, TypeEngine

_SLUG_RE = re.compile(r"[^a-z0-9]")


def asset_slug(symbol: str) -> str:
    """Deterministic storage name for a symbol, e.g. ``USDbC`` → ``usdbc``."""
    return _SLUG_RE.sub("_", symbol.lower())


class ExactDecimal(TypeDecorator):
    """Fixed-point decimal that round-trips exactly on every supported backend."""

    impl = Numeric(38, 18)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> TypeEngine[Any]:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(80))
        return dialect.type_descriptor(Numeric(38, 18, asdecimal=True))

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(Decimal(value))
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return None
        return value if isinstance(value, Decimal) else Decimal(str(value))


metadata = MetaData()

market_metrics = Table(
    "market_metrics",
    metadata,
    Column("block_number", BigInteger, primary_key=True, autoincrement=False),
    Column("timestamp", BigInteger, nullable=False),
    Column("network", String(50), nullable=False),
    Column("chain_id", Integer, nullable=False),
    Column("total_market_size", ExactDecimal, nullable=False),
    Column("total_borrows", ExactDecimal, nullable=False),
    Column("total_available", ExactDecimal, nullable=False),
    Column("average_utilization", ExactDecimal, nullable=False),
    Column("token_count", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)

assets = Table(
    "assets",
    metadata,
    Column("asset_id", Integer, primary_key=True, autoincrement=True),
    Column("symbol", String(64), nullable=False, unique=True),
    Column("slug", String(80), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)

token_metrics = Table(
    "token_metrics",
    metadata,
    Column(
        "block_number",
        BigInteger,
        ForeignKey("market_metrics.block_number", ondelete="CASCADE"),
        primary_key=True,
        autoincrement=False,
    ),
    Column(
        "asset_id",
        Integer,
        ForeignKey("assets.asset_id"),
        primary_key=True,
        autoincrement=False,
    ),
    Column("position", Integer, nullable=False),
    Column("timestamp", BigInteger, nullable=False),
    Column("token_name", String(100), nullable=False),
    Column("price_usd", ExactDecimal, nullable=False),
    Column("total_supplied", ExactDecimal, nullable=False),
    Column("total_supplied_usd", ExactDecimal, nullable=False),
    Column("total_borrowed", ExactDecimal, nullable=False),
    Column("total_borrowed_usd", ExactDecimal, nullable=False),
    Column("liquidity", ExactDecimal, nullable=False),
    Column("liquidity_usd", ExactDecimal, nullable=False),
    Column("utilization_rate", ExactDecimal, nullable=False),
    Column("reserves", ExactDecimal, nullable=False),
    Column("reserve_factor", ExactDecimal, nullable=False),
    Column("liquidation_threshold", ExactDecimal, nullable=False),
    Column("borrow_enabled", Boolean, nullable=False),
    Column("supply_cap", ExactDecimal, nullable=True),
    Column("borrow_cap", ExactDecimal, nullable=True),
    Column("supply_apy", ExactDecimal, nullable=False),
    Column("variable_borrow_apy", ExactDecimal, nullable=False),
    Column("stable_borrow_apy", ExactDecimal, nullable=False),
    Index("ix_token_metrics_asset_block", "asset_id", "block_number"),
)
