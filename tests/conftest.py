"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable

import pytest

from aave_metrics.config import (
    AppConfig,
    ChainConfig,
    DatabaseConfig,
    NetworkConfig,
    OutputConfig,
    PollerConfig,
    ProtocolConfig,
    RetryConfig,
)
from aave_metrics.models import (
    UNBOUNDED,
    MarketAggregate,
    RawIncentive,
    RawMarketData,
    RawReserve,
    Snapshot,
    TokenMetric,
)

BLOCK_TIMESTAMP = 1_735_689_600  # 2025-01-01T00:00:00Z


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_network() -> NetworkConfig:
    return NetworkConfig(name="Base", chain_id=8453)


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_protocol_config() -> ProtocolConfig:
    return ProtocolConfig()


@pytest.fixture()
def sample_poller_config() -> PollerConfig:
    return PollerConfig(
        interval_seconds=0.01,
        settle_delay_seconds=0,
        retry=RetryConfig(max_attempts=1, backoff_seconds=0),
    )


@pytest.fixture()
def sample_app_config(
    tmp_path: Path,
    sample_network: NetworkConfig,
    sample_chain_config: ChainConfig,
    sample_protocol_config: ProtocolConfig,
    sample_poller_config: PollerConfig,
) -> AppConfig:
    return AppConfig(
        network=sample_network,
        chain=sample_chain_config,
        protocol=sample_protocol_config,
        database=DatabaseConfig(
            url=f"sqlite+aiosqlite:///{tmp_path / 'metrics.db'}",
            known_assets=("WETH", "USDC"),
        ),
        poller=sample_poller_config,
        output=OutputConfig(data_dir=str(tmp_path / "data"), write_files=True),
    )


# ---------------------------------------------------------------------------
# Raw market data fixtures
# ---------------------------------------------------------------------------


def _reserve(symbol: str, **overrides: Any) -> RawReserve:
    fields: dict[str, Any] = dict(
        underlying_asset="0x" + symbol.encode().hex().ljust(40, "0")[:40],
        name=f"{symbol} Token",
        symbol=symbol,
        decimals=18,
        price_in_market_reference=200_000_000,  # $2.00 with an 8-decimal USD reference
        total_liquidity=Decimal("1000"),
        total_debt=Decimal("400"),
        reserves=Decimal("1.5"),
        reserve_factor=Decimal("0.1"),
        liquidation_threshold=Decimal("0.83"),
        borrowing_enabled=True,
        supply_cap=Decimal("5000"),
        borrow_cap=Decimal("0"),
        supply_apy=Decimal("0.025"),
        variable_borrow_apy=Decimal("0.04"),
        stable_borrow_apy=Decimal("0"),
    )
    fields.update(overrides)
    return RawReserve(**fields)


@pytest.fixture()
def reserve_factory() -> Callable[..., RawReserve]:
    return _reserve


@pytest.fixture()
def sample_raw_market() -> RawMarketData:
    return RawMarketData(
        network="Base",
        chain_id=8453,
        block_number=100,
        timestamp=BLOCK_TIMESTAMP,
        market_reference_currency_unit=100_000_000,
        market_reference_price_usd=100_000_000,
        reserves=(
            _reserve("WETH"),
            _reserve(
                "USDC",
                decimals=6,
                price_in_market_reference=100_000_000,
                total_liquidity=Decimal("0"),
                total_debt=Decimal("0"),
            ),
        ),
        incentives=(RawIncentive(underlying_asset="0x01"),),
    )


# ---------------------------------------------------------------------------
# Snapshot fixtures
# ---------------------------------------------------------------------------


def _token(symbol: str, **overrides: Any) -> TokenMetric:
    fields: dict[str, Any] = dict(
        symbol=symbol,
        display_name=f"{symbol} Token",
        price_usd=Decimal("2.000000000000000000"),
        total_supplied=Decimal("1000.000000000000000000"),
        total_borrowed=Decimal("400.000000000000000000"),
        total_supplied_usd=Decimal("2000.000000000000000000"),
        total_borrowed_usd=Decimal("800.000000000000000000"),
        liquidity=Decimal("600.000000000000000000"),
        liquidity_usd=Decimal("1200.000000000000000000"),
        utilization_rate=Decimal("40.000000000000000000"),
        reserves=Decimal("1.500000000000000000"),
        reserve_factor=Decimal("10.000000000000000000"),
        liquidation_threshold=Decimal("83.000000000000000000"),
        borrow_enabled=True,
        supply_cap=Decimal("5000.000000000000000000"),
        borrow_cap=UNBOUNDED,
        supply_apy=Decimal("2.500000000000000000"),
        variable_borrow_apy=Decimal("4.000000000000000000"),
        stable_borrow_apy=Decimal("0E-18"),
    )
    fields.update(overrides)
    return TokenMetric(**fields)


@pytest.fixture()
def token_factory() -> Callable[..., TokenMetric]:
    return _token


def _snapshot(block_number: int, tokens: tuple[TokenMetric, ...]) -> Snapshot:
    size = sum((t.total_supplied_usd for t in tokens), Decimal(0))
    borrows = sum((t.total_borrowed_usd for t in tokens), Decimal(0))
    utilization = borrows / size * 100 if size else Decimal(0)
    return Snapshot(
        aggregate=MarketAggregate(
            block_number=block_number,
            timestamp=BLOCK_TIMESTAMP + (block_number - 100) * 2,
            network="Base",
            chain_id=8453,
            total_market_size_usd=size,
            total_borrows_usd=borrows,
            total_available_usd=size - borrows,
            average_utilization=utilization.quantize(Decimal("1e-18")),
            token_count=len(tokens),
        ),
        tokens=tokens,
    )


@pytest.fixture()
def snapshot_factory() -> Callable[[int, tuple[TokenMetric, ...]], Snapshot]:
    return _snapshot


@pytest.fixture()
def sample_snapshot() -> Snapshot:
    return _snapshot(100, (_token("WETH"), _token("USDC", display_name="USD Coin")))


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    network:
      name: Base
      chain_id: 8453
    chain:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    protocol:
      usd_price_decimals: 8
    database:
      url: "sqlite+aiosqlite:///metrics.db"
      known_assets: [WETH, USDC]
    poller:
      interval_seconds: 3
      settle_delay_seconds: 0.5
      gap_fill: true
      max_gap_fill_blocks: 10
      retry:
        max_attempts: 3
        backoff_seconds: 0.25
    output:
      data_dir: out
      write_files: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
