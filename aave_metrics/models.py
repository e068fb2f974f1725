"""Data models: all frozen (immutable)."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Union


class Unbounded(enum.Enum):
    """Marker for a supply/borrow cap that has no ceiling."""

    UNBOUNDED = "unbounded"

    def __repr__(self) -> str:
        return "UNBOUNDED"


UNBOUNDED = Unbounded.UNBOUNDED

Cap = Union[Decimal, Unbounded]
BlockId = Union[int, Literal["latest"]]


# ---------------------------------------------------------------------------
# Raw reader output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawReserve:
    """One reserve as humanized by the reader (token units, fractions)."""

    underlying_asset: str
    name: str
    symbol: str
    decimals: int
    price_in_market_reference: int
    total_liquidity: Decimal
    total_debt: Decimal
    reserves: Decimal
    reserve_factor: Decimal
    liquidation_threshold: Decimal
    borrowing_enabled: bool
    supply_cap: Decimal | None
    borrow_cap: Decimal | None
    supply_apy: Decimal
    variable_borrow_apy: Decimal
    stable_borrow_apy: Decimal


@dataclass(frozen=True)
class RawReward:
    """A single reward stream attached to a reserve's aToken or debt token."""

    symbol: str
    token_address: str
    emission_per_second: int
    emission_end_timestamp: int
    price_feed: int
    token_decimals: int
    price_feed_decimals: int


@dataclass(frozen=True)
class RawIncentive:
    """Incentive streams for one underlying asset."""

    underlying_asset: str
    supply_rewards: tuple[RawReward, ...] = ()
    variable_debt_rewards: tuple[RawReward, ...] = ()
    stable_debt_rewards: tuple[RawReward, ...] = ()


@dataclass(frozen=True)
class RawMarketData:
    """Everything the reader pulled for a single block."""

    network: str
    chain_id: int
    block_number: int
    timestamp: int
    market_reference_currency_unit: int
    market_reference_price_usd: int
    reserves: tuple[RawReserve, ...] = ()
    incentives: tuple[RawIncentive, ...] = ()


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenMetric:
    """One asset's normalized state at one block."""

    symbol: str
    display_name: str
    price_usd: Decimal
    total_supplied: Decimal
    total_borrowed: Decimal
    total_supplied_usd: Decimal
    total_borrowed_usd: Decimal
    liquidity: Decimal
    liquidity_usd: Decimal
    utilization_rate: Decimal
    reserves: Decimal
    reserve_factor: Decimal
    liquidation_threshold: Decimal
    borrow_enabled: bool
    supply_cap: Cap
    borrow_cap: Cap
    supply_apy: Decimal
    variable_borrow_apy: Decimal
    stable_borrow_apy: Decimal


@dataclass(frozen=True)
class MarketAggregate:
    """Market-wide totals for one block."""

    block_number: int
    timestamp: int
    network: str
    chain_id: int
    total_market_size_usd: Decimal
    total_borrows_usd: Decimal
    total_available_usd: Decimal
    average_utilization: Decimal
    token_count: int

    @property
    def date(self) -> str:
        """ISO-8601 UTC rendering of the block timestamp, millisecond precision."""
        dt = datetime.fromtimestamp(self.timestamp, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


@dataclass(frozen=True)
class Snapshot:
    """A market aggregate plus the ordered per-asset metrics it summarizes."""

    aggregate: MarketAggregate
    tokens: tuple[TokenMetric, ...] = ()

    def __post_init__(self) -> None:
        symbols = [t.symbol for t in self.tokens]
        if len(set(symbols)) != len(symbols):
            raise ValueError(
                f"Duplicate asset symbols in snapshot for block {self.block_number}"
            )

    @property
    def block_number(self) -> int:
        return self.aggregate.block_number

    def token(self, symbol: str) -> TokenMetric | None:
        for t in self.tokens:
            if t.symbol == symbol:
                return t
        return None

    @property
    def symbols(self) -> tuple[str, ...]:
        return tuple(t.symbol for t in self.tokens)
