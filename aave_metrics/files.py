"""JSON snapshot and comparison files under the configured data directory."""
from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path
from typing import Any

import simplejson as json

from .config import NetworkConfig, OutputConfig
from .models import UNBOUNDED, Cap, MarketAggregate, Snapshot, TokenMetric
from .services.diff import AssetKind, ComparisonReport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Snapshot <-> dict
# ---------------------------------------------------------------------------


def _cap(value: Cap) -> Decimal | None:
    return None if value is UNBOUNDED else value


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _cap_from(value: Any) -> Cap:
    return UNBOUNDED if value is None else _dec(value)


def token_to_dict(token: TokenMetric) -> dict[str, Any]:
    return {
        "token": token.display_name,
        "symbol": token.symbol,
        "priceInUSD": token.price_usd,
        "liquidity": token.liquidity,
        "liquidityUSD": token.liquidity_usd,
        "totalSupplied": token.total_supplied,
        "totalSuppliedUSD": token.total_supplied_usd,
        "totalBorrowed": token.total_borrowed,
        "totalBorrowedUSD": token.total_borrowed_usd,
        "utilizationRate": token.utilization_rate,
        "reserves": token.reserves,
        "reserveFactor": token.reserve_factor,
        "liquidationThreshold": token.liquidation_threshold,
        "borrowEnabled": token.borrow_enabled,
        "supplyCap": _cap(token.supply_cap),
        "borrowCap": _cap(token.borrow_cap),
        "supplyAPY": token.supply_apy,
        "variableBorrowAPY": token.variable_borrow_apy,
        "stableBorrowAPY": token.stable_borrow_apy,
    }


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    agg = snapshot.aggregate
    return {
        "network": agg.network,
        "chainId": agg.chain_id,
        "blockNumber": agg.block_number,
        "timestamp": agg.timestamp,
        "date": agg.date,
        "totalMarketSize": agg.total_market_size_usd,
        "totalAvailable": agg.total_available_usd,
        "totalBorrows": agg.total_borrows_usd,
        "averageUtilization": agg.average_utilization,
        "tokenCount": agg.token_count,
        "tokenMetrics": [token_to_dict(t) for t in snapshot.tokens],
    }


def token_from_dict(raw: dict[str, Any]) -> TokenMetric:
    return TokenMetric(
        symbol=raw["symbol"],
        display_name=raw["token"],
        price_usd=_dec(raw["priceInUSD"]),
        total_supplied=_dec(raw["totalSupplied"]),
        total_borrowed=_dec(raw["totalBorrowed"]),
        total_supplied_usd=_dec(raw["totalSuppliedUSD"]),
        total_borrowed_usd=_dec(raw["totalBorrowedUSD"]),
        liquidity=_dec(raw["liquidity"]),
        liquidity_usd=_dec(raw["liquidityUSD"]),
        utilization_rate=_dec(raw["utilizationRate"]),
        reserves=_dec(raw["reserves"]),
        reserve_factor=_dec(raw["reserveFactor"]),
        liquidation_threshold=_dec(raw["liquidationThreshold"]),
        borrow_enabled=bool(raw["borrowEnabled"]),
        supply_cap=_cap_from(raw.get("supplyCap")),
        borrow_cap=_cap_from(raw.get("borrowCap")),
        supply_apy=_dec(raw["supplyAPY"]),
        variable_borrow_apy=_dec(raw["variableBorrowAPY"]),
        stable_borrow_apy=_dec(raw["stableBorrowAPY"]),
    )


def snapshot_from_dict(raw: dict[str, Any]) -> Snapshot:
    tokens = tuple(token_from_dict(t) for t in raw.get("tokenMetrics", []))
    aggregate = MarketAggregate(
        block_number=int(raw["blockNumber"]),
        timestamp=int(raw["timestamp"]),
        network=raw["network"],
        chain_id=int(raw["chainId"]),
        total_market_size_usd=_dec(raw["totalMarketSize"]),
        total_borrows_usd=_dec(raw["totalBorrows"]),
        total_available_usd=_dec(raw["totalAvailable"]),
        average_utilization=_dec(raw["averageUtilization"]),
        token_count=int(raw.get("tokenCount", len(tokens))),
    )
    return Snapshot(aggregate=aggregate, tokens=tokens)


def comparison_to_dict(report: ComparisonReport) -> dict[str, Any]:
    start = report.start.aggregate
    token_changes: list[dict[str, Any]] = []
    for asset in report.assets:
        entry: dict[str, Any] = {"symbol": asset.symbol, "status": asset.kind.value}
        if asset.kind is AssetKind.COMMON:
            c = asset.change
            entry.update(
                {
                    "priceChange": c.price_change,
                    "liquidityChange": c.liquidity_change,
                    "liquidityUSDChange": c.liquidity_usd_change,
                    "totalSuppliedUSDChange": c.total_supplied_usd_change,
                    "totalBorrowedUSDChange": c.total_borrowed_usd_change,
                    "utilizationChange": c.utilization_points,
                    "supplyAPYChange": c.supply_apy_points,
                    "variableBorrowAPYChange": c.variable_borrow_apy_points,
                    "stableBorrowAPYChange": c.stable_borrow_apy_points,
                    "fieldChanges": [
                        {
                            "field": f.field,
                            "before": _json_value(f.before),
                            "after": _json_value(f.after),
                        }
                        for f in c.field_changes
                    ],
                }
            )
        else:
            entry["metrics"] = token_to_dict(asset.metric)
        token_changes.append(entry)

    return {
        "network": start.network,
        "chainId": start.chain_id,
        "startBlock": snapshot_to_dict(report.start),
        "endBlock": snapshot_to_dict(report.end),
        "timeDifferenceSeconds": report.time_difference_seconds,
        "marketChanges": {
            "totalMarketSizeChange": report.total_market_size_change,
            "totalBorrowsChange": report.total_borrows_change,
        },
        "tokenChanges": token_changes,
    }


def _json_value(value: Any) -> Any:
    if value is UNBOUNDED:
        return None
    return value


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


class SnapshotFileWriter:
    """Write snapshot and comparison JSON files the way the dashboards read them."""

    def __init__(self, output: OutputConfig, network: NetworkConfig) -> None:
        self._data_dir = Path(output.data_dir)
        self._blocks_dir = self._data_dir / "blocks"
        self._prefix = network.name.lower()

    @property
    def latest_path(self) -> Path:
        return self._data_dir / f"{self._prefix}-aave-metrics-latest.json"

    @staticmethod
    def _write(path: Path, payload: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Decimals are written as exact number literals, not doubles
        text = json.dumps(payload, indent=2, use_decimal=True)
        path.write_text(text, encoding="utf-8")

    def write_snapshot(self, snapshot: Snapshot, explicit_block: bool = False) -> Path:
        """Write the timestamped file and refresh the latest pointer.

        With ``explicit_block`` the per-block files under ``blocks/`` are
        written too.
        """
        payload = snapshot_to_dict(snapshot)
        stamp = snapshot.aggregate.date.replace(":", "-").replace(".", "-")
        path = self._data_dir / f"{self._prefix}-aave-metrics-{stamp}.json"

        self._write(path, payload)
        self._write(self.latest_path, payload)
        logger.info("Metrics saved to %s", path)

        if explicit_block:
            self._write(
                self._blocks_dir / f"{self._prefix}-block-{snapshot.block_number}.json",
                payload,
            )
            self._write(self._blocks_dir / f"{self._prefix}-latest-block.json", payload)
        return path

    def write_comparison(self, report: ComparisonReport) -> Path:
        path = self._data_dir / (
            f"{self._prefix}-comparison-"
            f"{report.start.block_number}-{report.end.block_number}.json"
        )
        self._write(path, comparison_to_dict(report))
        logger.info("Comparison data saved to %s", path)
        return path

    def read_snapshot(self, path: str | Path) -> Snapshot:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f, use_decimal=True)
        return snapshot_from_dict(raw)

    def read_latest(self) -> Snapshot:
        """Parse the latest pointer file; FileNotFoundError if none was written."""
        return self.read_snapshot(self.latest_path)
