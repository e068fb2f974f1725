"""Snapshot persistence: idempotent, all-or-nothing writes keyed by block.

Each ``put`` runs in a single transaction:
  1. upsert the market_metrics row (ON CONFLICT (block_number) DO UPDATE)
  2. register any symbol not yet in the asset registry
  3. delete token rows of this block whose asset is no longer present
  4. upsert one token_metrics row per asset

A failure at any step rolls the whole block back.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from ..config import DatabaseConfig
from ..errors import NotFound, StorageUnavailable
from ..models import UNBOUNDED, Cap, MarketAggregate, Snapshot, TokenMetric
from .schema import asset_slug, assets, market_metrics, metadata, token_metrics

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _cap_to_db(cap: Cap) -> Any:
    return None if cap is UNBOUNDED else cap


def _cap_from_db(value: Any) -> Cap:
    return UNBOUNDED if value is None else value


def _aggregate_row(agg: MarketAggregate) -> dict[str, Any]:
    return {
        "block_number": agg.block_number,
        "timestamp": agg.timestamp,
        "network": agg.network,
        "chain_id": agg.chain_id,
        "total_market_size": agg.total_market_size_usd,
        "total_borrows": agg.total_borrows_usd,
        "total_available": agg.total_available_usd,
        "average_utilization": agg.average_utilization,
        "token_count": agg.token_count,
    }


def _aggregate_from_row(row: Any) -> MarketAggregate:
    return MarketAggregate(
        block_number=row["block_number"],
        timestamp=row["timestamp"],
        network=row["network"],
        chain_id=row["chain_id"],
        total_market_size_usd=row["total_market_size"],
        total_borrows_usd=row["total_borrows"],
        total_available_usd=row["total_available"],
        average_utilization=row["average_utilization"],
        token_count=row["token_count"],
    )


def _token_row(
    token: TokenMetric, block_number: int, timestamp: int, asset_id: int, position: int
) -> dict[str, Any]:
    return {
        "block_number": block_number,
        "asset_id": asset_id,
        "position": position,
        "timestamp": timestamp,
        "token_name": token.display_name,
        "price_usd": token.price_usd,
        "total_supplied": token.total_supplied,
        "total_supplied_usd": token.total_supplied_usd,
        "total_borrowed": token.total_borrowed,
        "total_borrowed_usd": token.total_borrowed_usd,
        "liquidity": token.liquidity,
        "liquidity_usd": token.liquidity_usd,
        "utilization_rate": token.utilization_rate,
        "reserves": token.reserves,
        "reserve_factor": token.reserve_factor,
        "liquidation_threshold": token.liquidation_threshold,
        "borrow_enabled": token.borrow_enabled,
        "supply_cap": _cap_to_db(token.supply_cap),
        "borrow_cap": _cap_to_db(token.borrow_cap),
        "supply_apy": token.supply_apy,
        "variable_borrow_apy": token.variable_borrow_apy,
        "stable_borrow_apy": token.stable_borrow_apy,
    }


def _token_from_row(row: Any) -> TokenMetric:
    return TokenMetric(
        symbol=row["symbol"],
        display_name=row["token_name"],
        price_usd=row["price_usd"],
        total_supplied=row["total_supplied"],
        total_borrowed=row["total_borrowed"],
        total_supplied_usd=row["total_supplied_usd"],
        total_borrowed_usd=row["total_borrowed_usd"],
        liquidity=row["liquidity"],
        liquidity_usd=row["liquidity_usd"],
        utilization_rate=row["utilization_rate"],
        reserves=row["reserves"],
        reserve_factor=row["reserve_factor"],
        liquidation_threshold=row["liquidation_threshold"],
        borrow_enabled=bool(row["borrow_enabled"]),
        supply_cap=_cap_from_db(row["supply_cap"]),
        borrow_cap=_cap_from_db(row["borrow_cap"]),
        supply_apy=row["supply_apy"],
        variable_borrow_apy=row["variable_borrow_apy"],
        stable_borrow_apy=row["stable_borrow_apy"],
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SnapshotStore:
    """Durable owner of snapshots, one logical record per block number.

    The store owns its engine: open it with :meth:`from_config` (or pass an
    engine) and release it with :meth:`close` or ``async with``.
    """

    def __init__(self, engine: AsyncEngine, known_assets: Iterable[str] = ()) -> None:
        self._engine = engine
        self._known_assets = tuple(known_assets)
        self._asset_ids: dict[str, int] | None = None

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> SnapshotStore:
        url = make_url(config.url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(config.url, echo=config.echo)
        return cls(engine, known_assets=config.known_assets)

    async def __aenter__(self) -> SnapshotStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._engine.dispose()
        logger.debug("Database engine disposed")

    # ------------------------------------------------------------------
    # Dialect helpers
    # ------------------------------------------------------------------

    def _insert(self, table: Any) -> Any:
        if self._engine.dialect.name == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)

    async def _read_connection(self, conn: AsyncConnection) -> AsyncConnection:
        # One consistent view across the aggregate and token queries
        if self._engine.dialect.name == "postgresql":
            await conn.execution_options(isolation_level="REPEATABLE READ")
        return conn

    # ------------------------------------------------------------------
    # Asset registry
    # ------------------------------------------------------------------

    async def _load_registry(self, conn: AsyncConnection) -> dict[str, int]:
        if self._asset_ids is None:
            result = await conn.execute(select(assets.c.symbol, assets.c.asset_id))
            self._asset_ids = {symbol: asset_id for symbol, asset_id in result}
            logger.debug("Loaded %d assets into the registry", len(self._asset_ids))
        return self._asset_ids

    async def _register(self, conn: AsyncConnection, symbols: Iterable[str]) -> dict[str, int]:
        """Return ids for ``symbols``, inserting unseen ones.

        The returned mapping only covers new registrations; the cache is
        extended by the caller once the transaction has committed.
        """
        registry = await self._load_registry(conn)
        new_ids: dict[str, int] = {}
        for symbol in symbols:
            if symbol in registry or symbol in new_ids:
                continue
            await conn.execute(
                self._insert(assets)
                .values(symbol=symbol, slug=asset_slug(symbol))
                .on_conflict_do_nothing(index_elements=["symbol"])
            )
            asset_id = (
                await conn.execute(
                    select(assets.c.asset_id).where(assets.c.symbol == symbol)
                )
            ).scalar_one()
            new_ids[symbol] = asset_id
            logger.info("Registered asset %s (%s) as id %d", symbol, asset_slug(symbol), asset_id)
        return new_ids

    def _remember(self, new_ids: dict[str, int]) -> None:
        """Extend the cached registry with ids from a committed transaction."""
        self._asset_ids = {**(self._asset_ids or {}), **new_ids}

    def known_symbols(self) -> tuple[str, ...]:
        """Symbols currently in the in-memory registry."""
        return tuple(self._asset_ids or ())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        """Create tables if missing and pre-register the configured assets."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
                new_ids = await self._register(conn, self._known_assets)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Database initialization failed: %s", e)
            raise StorageUnavailable(f"Schema initialization failed: {e}") from e

        self._remember(new_ids)
        logger.info(
            "Database schema ready (%d assets registered)", len(self.known_symbols())
        )

    async def put(self, snapshot: Snapshot) -> Snapshot:
        """Store ``snapshot``, replacing whatever was stored for its block."""
        agg = snapshot.aggregate
        try:
            async with self._engine.begin() as conn:
                row = _aggregate_row(agg)
                stmt = self._insert(market_metrics).values(**row)
                await conn.execute(
                    stmt.on_conflict_do_update(
                        index_elements=["block_number"],
                        set_={k: stmt.excluded[k] for k in row if k != "block_number"},
                    )
                )

                new_ids = await self._register(conn, snapshot.symbols)
                asset_ids = {**(self._asset_ids or {}), **new_ids}
                present = [asset_ids[s] for s in snapshot.symbols]

                await conn.execute(
                    delete(token_metrics).where(
                        token_metrics.c.block_number == agg.block_number,
                        token_metrics.c.asset_id.not_in(present),
                    )
                )

                for position, token in enumerate(snapshot.tokens):
                    token_row = _token_row(
                        token,
                        agg.block_number,
                        agg.timestamp,
                        asset_ids[token.symbol],
                        position,
                    )
                    stmt = self._insert(token_metrics).values(**token_row)
                    await conn.execute(
                        stmt.on_conflict_do_update(
                            index_elements=["block_number", "asset_id"],
                            set_={
                                k: stmt.excluded[k]
                                for k in token_row
                                if k not in ("block_number", "asset_id")
                            },
                        )
                    )
                    logger.debug(
                        "Stored metrics for %s in block %d", token.symbol, agg.block_number
                    )
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to store metrics for block %d: %s", agg.block_number, e)
            raise StorageUnavailable(
                f"Failed to store snapshot for block {agg.block_number}: {e}"
            ) from e

        self._remember(new_ids)
        logger.info(
            "Stored snapshot for block %d (%d tokens)", agg.block_number, agg.token_count
        )
        return snapshot

    async def get_recent(self, limit: int = 5) -> tuple[MarketAggregate, ...]:
        """Newest-first market aggregates, at most ``limit`` of them."""
        if limit < 0:
            raise ValueError(f"limit must not be negative: {limit}")
        if limit == 0:
            return ()
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    select(market_metrics)
                    .order_by(market_metrics.c.block_number.desc())
                    .limit(limit)
                )
                return tuple(_aggregate_from_row(r) for r in result.mappings())
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(f"Failed to read recent metrics: {e}") from e

    async def get_snapshot_at_block(self, block_number: int) -> Snapshot:
        """Rebuild the stored snapshot for ``block_number``; NotFound if absent."""
        try:
            async with self._engine.connect() as conn:
                conn = await self._read_connection(conn)
                agg_row = (
                    await conn.execute(
                        select(market_metrics).where(
                            market_metrics.c.block_number == block_number
                        )
                    )
                ).mappings().first()
                if agg_row is None:
                    raise NotFound(block_number)

                token_rows = (
                    await conn.execute(
                        select(token_metrics, assets.c.symbol)
                        .join(assets, assets.c.asset_id == token_metrics.c.asset_id)
                        .where(token_metrics.c.block_number == block_number)
                        .order_by(token_metrics.c.position)
                    )
                ).mappings().all()
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(
                f"Failed to read snapshot for block {block_number}: {e}"
            ) from e

        return Snapshot(
            aggregate=_aggregate_from_row(agg_row),
            tokens=tuple(_token_from_row(r) for r in token_rows),
        )

    async def latest_block_number(self) -> int | None:
        """Highest stored block, or None when nothing has been stored."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(select(func.max(market_metrics.c.block_number)))
                return result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(f"Failed to read latest block: {e}") from e
