"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_KNOWN_ASSETS: tuple[str, ...] = (
    "WETH",
    "USDC",
    "USDbC",
    "wstETH",
    "cbETH",
    "cbBTC",
    "GHO",
    "weETH",
    "ezETH",
    "wrsETH",
    "LBTC",
    "EURC",
)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NetworkConfig:
    name: str = "Base"
    chain_id: int = 8453


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class ProtocolConfig:
    # Aave V3 deployment on Base
    addresses_provider: str = "0xe20fCBdBfFC4Dd138cE8b2E6FBb6CB49777ad64D"
    ui_pool_data_provider: str = "0x2d8A3C5677189723C4cB8873CfC9C8976FDF38Ac"
    ui_incentive_data_provider: str = "0x9842E5B7b7C6cEDfB1952a388e050582Ff95645b"
    usd_price_decimals: int = 8


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite+aiosqlite:///data/aave_metrics.db"
    echo: bool = False
    known_assets: tuple[str, ...] = DEFAULT_KNOWN_ASSETS


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 1
    backoff_seconds: float = 0.5
    backoff_multiplier: float = 2.0


@dataclass(frozen=True)
class PollerConfig:
    interval_seconds: float = 2.0
    settle_delay_seconds: float = 1.0
    resume_from_storage: bool = False
    safety_margin_blocks: int = 0
    gap_fill: bool = False
    max_gap_fill_blocks: int = 50
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass(frozen=True)
class OutputConfig:
    data_dir: str = "data"
    write_files: bool = True


@dataclass(frozen=True)
class AppConfig:
    network: NetworkConfig = field(default_factory=NetworkConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    poller: PollerConfig = field(default_factory=PollerConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_network(raw: dict[str, Any]) -> NetworkConfig:
    return NetworkConfig(
        name=str(raw.get("name", NetworkConfig.name)),
        chain_id=int(raw.get("chain_id", NetworkConfig.chain_id)),
    )


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    # Interpolated endpoints that resolved to "" are dropped
    endpoints = tuple(e for e in raw.get("rpc_endpoints", []) if e)
    return ChainConfig(
        rpc_endpoints=endpoints,
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
    )


def _build_protocol(raw: dict[str, Any]) -> ProtocolConfig:
    return ProtocolConfig(
        addresses_provider=raw.get(
            "addresses_provider", ProtocolConfig.addresses_provider
        ),
        ui_pool_data_provider=raw.get(
            "ui_pool_data_provider", ProtocolConfig.ui_pool_data_provider
        ),
        ui_incentive_data_provider=raw.get(
            "ui_incentive_data_provider", ProtocolConfig.ui_incentive_data_provider
        ),
        usd_price_decimals=int(raw.get("usd_price_decimals", 8)),
    )


def _build_database(raw: dict[str, Any]) -> DatabaseConfig:
    known = raw.get("known_assets")
    return DatabaseConfig(
        url=raw.get("url", DatabaseConfig.url),
        echo=bool(raw.get("echo", False)),
        known_assets=tuple(known) if known is not None else DEFAULT_KNOWN_ASSETS,
    )


def _build_retry(raw: dict[str, Any]) -> RetryConfig:
    return RetryConfig(
        max_attempts=int(raw.get("max_attempts", 1)),
        backoff_seconds=float(raw.get("backoff_seconds", 0.5)),
        backoff_multiplier=float(raw.get("backoff_multiplier", 2.0)),
    )


def _build_poller(raw: dict[str, Any]) -> PollerConfig:
    return PollerConfig(
        interval_seconds=float(raw.get("interval_seconds", 2.0)),
        settle_delay_seconds=float(raw.get("settle_delay_seconds", 1.0)),
        resume_from_storage=bool(raw.get("resume_from_storage", False)),
        safety_margin_blocks=int(raw.get("safety_margin_blocks", 0)),
        gap_fill=bool(raw.get("gap_fill", False)),
        max_gap_fill_blocks=int(raw.get("max_gap_fill_blocks", 50)),
        retry=_build_retry(raw.get("retry") or {}),
    )


def _build_output(raw: dict[str, Any]) -> OutputConfig:
    return OutputConfig(
        data_dir=str(raw.get("data_dir", "data")),
        write_files=bool(raw.get("write_files", True)),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        network=_build_network(raw.get("network") or {}),
        chain=_build_chain(raw.get("chain") or {}),
        protocol=_build_protocol(raw.get("protocol") or {}),
        database=_build_database(raw.get("database") or {}),
        poller=_build_poller(raw.get("poller") or {}),
        output=_build_output(raw.get("output") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")
    if not cfg.database.url:
        raise ValueError("Database URL must not be empty")

    poller = cfg.poller
    if poller.interval_seconds <= 0:
        raise ValueError("poller.interval_seconds must be positive")
    if poller.settle_delay_seconds < 0:
        raise ValueError("poller.settle_delay_seconds must not be negative")
    if poller.safety_margin_blocks < 0:
        raise ValueError("poller.safety_margin_blocks must not be negative")
    if poller.max_gap_fill_blocks < 1:
        raise ValueError("poller.max_gap_fill_blocks must be at least 1")
    if poller.retry.max_attempts < 1:
        raise ValueError("poller.retry.max_attempts must be at least 1")
    if poller.retry.backoff_multiplier < 1:
        raise ValueError("poller.retry.backoff_multiplier must be at least 1")
