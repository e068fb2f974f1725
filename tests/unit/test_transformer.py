"""Unit tests for the metrics transformer: pure math, no I/O."""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Callable

import pytest

from aave_metrics.models import UNBOUNDED, RawMarketData, RawReserve
from aave_metrics.services.transformer import (
    MetricsTransformer,
    normalize_cap,
    quantize,
    utilization,
)


@pytest.fixture()
def transformer() -> MetricsTransformer:
    return MetricsTransformer(usd_price_decimals=8)


class TestHelpers:
    def test_utilization(self) -> None:
        assert utilization(Decimal(400), Decimal(1000)) == Decimal(40)

    def test_utilization_zero_supply(self) -> None:
        assert utilization(Decimal(5), Decimal(0)) == 0

    def test_quantize_18_places(self) -> None:
        assert quantize(Decimal(1) / Decimal(3)) == Decimal("0.333333333333333333")
        assert quantize(Decimal("2.5")).as_tuple().exponent == -18

    @pytest.mark.parametrize(
        "value", [None, Decimal(0), Decimal("Infinity"), Decimal("NaN")]
    )
    def test_cap_sentinels_are_unbounded(self, value: Decimal | None) -> None:
        assert normalize_cap(value) is UNBOUNDED

    def test_finite_cap_kept(self) -> None:
        assert normalize_cap(Decimal("2500")) == Decimal("2500")


class TestTokenMetric:
    def test_example_scenario(
        self, transformer: MetricsTransformer, sample_raw_market: RawMarketData
    ) -> None:
        """1000 supplied, 400 borrowed at $2 → $2000 / $800 / 40%."""
        t = transformer.transform(sample_raw_market).token("WETH")
        assert t.price_usd == Decimal("2")
        assert t.total_supplied_usd == Decimal("2000")
        assert t.total_borrowed_usd == Decimal("800")
        assert t.utilization_rate == Decimal("40")
        assert t.liquidity == Decimal("600")
        assert t.liquidity_usd == Decimal("1200")

    def test_percent_fields(
        self, transformer: MetricsTransformer, sample_raw_market: RawMarketData
    ) -> None:
        t = transformer.transform(sample_raw_market).token("WETH")
        assert t.reserve_factor == Decimal("10")
        assert t.liquidation_threshold == Decimal("83")
        assert t.supply_apy == Decimal("2.5")
        assert t.variable_borrow_apy == Decimal("4")

    def test_caps(
        self, transformer: MetricsTransformer, sample_raw_market: RawMarketData
    ) -> None:
        t = transformer.transform(sample_raw_market).token("WETH")
        assert t.supply_cap == Decimal("5000")
        assert t.borrow_cap is UNBOUNDED

    def test_zero_supply_has_zero_utilization(
        self, transformer: MetricsTransformer, sample_raw_market: RawMarketData
    ) -> None:
        t = transformer.transform(sample_raw_market).token("USDC")
        assert t.total_supplied == 0
        assert t.utilization_rate == 0

    def test_price_uses_reference_currency(
        self,
        transformer: MetricsTransformer,
        sample_raw_market: RawMarketData,
        reserve_factory: Callable[..., RawReserve],
    ) -> None:
        # ETH-denominated market: 0.5 ETH at $3000/ETH
        raw = replace(
            sample_raw_market,
            market_reference_currency_unit=10**18,
            market_reference_price_usd=3000 * 10**8,
            reserves=(reserve_factory("LINK", price_in_market_reference=5 * 10**17),),
        )
        assert transformer.transform(raw).token("LINK").price_usd == Decimal("1500")

    def test_zero_reference_unit_gives_zero_price(
        self, transformer: MetricsTransformer, sample_raw_market: RawMarketData
    ) -> None:
        raw = replace(sample_raw_market, market_reference_currency_unit=0)
        assert transformer.transform(raw).token("WETH").price_usd == 0


class TestAggregate:
    def test_totals(
        self, transformer: MetricsTransformer, sample_raw_market: RawMarketData
    ) -> None:
        agg = transformer.transform(sample_raw_market).aggregate
        assert agg.block_number == 100
        assert agg.total_market_size_usd == Decimal("2000")
        assert agg.total_borrows_usd == Decimal("800")
        assert agg.total_available_usd == Decimal("1200")
        assert agg.average_utilization == Decimal("40")
        assert agg.token_count == 2

    def test_empty_market(
        self, transformer: MetricsTransformer, sample_raw_market: RawMarketData
    ) -> None:
        agg = transformer.transform(replace(sample_raw_market, reserves=())).aggregate
        assert agg.total_market_size_usd == 0
        assert agg.average_utilization == 0
        assert agg.token_count == 0

    def test_token_order_follows_reserves(
        self, transformer: MetricsTransformer, sample_raw_market: RawMarketData
    ) -> None:
        assert transformer.transform(sample_raw_market).symbols == ("WETH", "USDC")


class TestDeterminism:
    def test_same_input_same_snapshot(
        self, transformer: MetricsTransformer, sample_raw_market: RawMarketData
    ) -> None:
        first = transformer.transform(sample_raw_market)
        second = MetricsTransformer().transform(sample_raw_market)
        assert first == second
        assert repr(first) == repr(second)
