"""Raw reserve records → canonical metrics snapshot. Pure, no I/O."""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_EVEN, Decimal, localcontext

from ..models import (
    UNBOUNDED,
    Cap,
    MarketAggregate,
    RawMarketData,
    RawReserve,
    Snapshot,
    TokenMetric,
)

logger = logging.getLogger(__name__)

# Metrics are stored as NUMERIC(38,18); quantizing here keeps round trips exact
SCALE = Decimal("1e-18")
PRECISION = 60
HUNDRED = Decimal(100)
ZERO = Decimal(0)


def quantize(value: Decimal) -> Decimal:
    """Round to 18 fractional digits (banker's rounding)."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return value.quantize(SCALE, rounding=ROUND_HALF_EVEN)


def utilization(borrowed: Decimal, supplied: Decimal) -> Decimal:
    """``borrowed / supplied * 100``, or 0 when nothing is supplied."""
    if supplied <= 0:
        return ZERO
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return borrowed / supplied * HUNDRED


def normalize_cap(value: Decimal | None) -> Cap:
    """Map the protocol's "no cap" markers (0, missing, non-finite) to UNBOUNDED."""
    if value is None or not value.is_finite() or value == 0:
        return UNBOUNDED
    return quantize(value)


class MetricsTransformer:
    """Convert :class:`RawMarketData` into a :class:`Snapshot`.

    Args:
        usd_price_decimals: Fixed-point decimals of the reference currency's
            USD price (Chainlink feeds use 8).
    """

    def __init__(self, usd_price_decimals: int = 8) -> None:
        self._usd_price_decimals = usd_price_decimals

    def price_usd(self, reserve: RawReserve, raw: RawMarketData) -> Decimal:
        """Reference-currency price → USD.

        price_usd = price_in_ref * ref_price_usd / (ref_unit * 10^usd_decimals)
        """
        with localcontext() as ctx:
            ctx.prec = PRECISION
            scale = Decimal(raw.market_reference_currency_unit) * (
                Decimal(10) ** self._usd_price_decimals
            )
            if scale == 0:
                return ZERO
            return (
                Decimal(reserve.price_in_market_reference)
                * Decimal(raw.market_reference_price_usd)
                / scale
            )

    def token_metric(self, reserve: RawReserve, raw: RawMarketData) -> TokenMetric:
        price = quantize(self.price_usd(reserve, raw))
        supplied = quantize(reserve.total_liquidity)
        borrowed = quantize(reserve.total_debt)

        with localcontext() as ctx:
            ctx.prec = PRECISION
            liquidity = supplied - borrowed
            return TokenMetric(
                symbol=reserve.symbol,
                display_name=reserve.name,
                price_usd=price,
                total_supplied=supplied,
                total_borrowed=borrowed,
                total_supplied_usd=quantize(supplied * price),
                total_borrowed_usd=quantize(borrowed * price),
                liquidity=liquidity,
                liquidity_usd=quantize(liquidity * price),
                utilization_rate=quantize(utilization(borrowed, supplied)),
                reserves=quantize(reserve.reserves),
                reserve_factor=quantize(reserve.reserve_factor * HUNDRED),
                liquidation_threshold=quantize(reserve.liquidation_threshold * HUNDRED),
                borrow_enabled=reserve.borrowing_enabled,
                supply_cap=normalize_cap(reserve.supply_cap),
                borrow_cap=normalize_cap(reserve.borrow_cap),
                supply_apy=quantize(reserve.supply_apy * HUNDRED),
                variable_borrow_apy=quantize(reserve.variable_borrow_apy * HUNDRED),
                stable_borrow_apy=quantize(reserve.stable_borrow_apy * HUNDRED),
            )

    @staticmethod
    def aggregate(
        raw: RawMarketData, tokens: tuple[TokenMetric, ...]
    ) -> MarketAggregate:
        with localcontext() as ctx:
            ctx.prec = PRECISION
            market_size = sum((t.total_supplied_usd for t in tokens), ZERO)
            borrows = sum((t.total_borrowed_usd for t in tokens), ZERO)
            return MarketAggregate(
                block_number=raw.block_number,
                timestamp=raw.timestamp,
                network=raw.network,
                chain_id=raw.chain_id,
                total_market_size_usd=market_size,
                total_borrows_usd=borrows,
                total_available_usd=market_size - borrows,
                average_utilization=quantize(utilization(borrows, market_size)),
                token_count=len(tokens),
            )

    def transform(self, raw: RawMarketData) -> Snapshot:
        """Build the snapshot for one block; deterministic for equal input."""
        tokens = tuple(self.token_metric(r, raw) for r in raw.reserves)
        snapshot = Snapshot(aggregate=self.aggregate(raw, tokens), tokens=tokens)

        agg = snapshot.aggregate
        logger.info(
            "Block %d: market size $%s, borrows $%s, avg utilization %.2f%%, "
            "%d tokens, %d incentive records",
            agg.block_number,
            f"{agg.total_market_size_usd:,.2f}",
            f"{agg.total_borrows_usd:,.2f}",
            agg.average_utilization,
            agg.token_count,
            len(raw.incentives),
        )
        return snapshot
