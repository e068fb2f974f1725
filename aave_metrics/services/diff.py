"""Snapshot comparison: structured deltas between two blocks."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Any

from ..models import UNBOUNDED, MarketAggregate, Snapshot, TokenMetric

logger = logging.getLogger(__name__)

PRECISION = 60
ZERO = Decimal(0)
HUNDRED = Decimal(100)

# Fields compared for equality only; reported individually when they differ
DISCRETE_FIELDS = (
    "reserve_factor",
    "liquidation_threshold",
    "borrow_enabled",
    "supply_cap",
    "borrow_cap",
)


def percent_change(start: Decimal, end: Decimal) -> Decimal:
    """Relative change in percent.

    0 when both sides are 0, 100 when starting from 0, otherwise
    ``(end - start) / |start| * 100``.
    """
    if start == 0:
        return ZERO if end == 0 else HUNDRED
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return (end - start) / abs(start) * HUNDRED


def point_change(start: Decimal, end: Decimal) -> Decimal:
    """Absolute delta, for values already expressed in percent."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return end - start


class AssetKind(enum.Enum):
    COMMON = "common"
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class FieldChange:
    field: str
    before: Any
    after: Any


@dataclass(frozen=True)
class TokenChange:
    """Deltas for an asset present in both snapshots."""

    before: TokenMetric
    after: TokenMetric
    price_change: Decimal
    liquidity_change: Decimal
    liquidity_usd_change: Decimal
    total_supplied_usd_change: Decimal
    total_borrowed_usd_change: Decimal
    utilization_points: Decimal
    supply_apy_points: Decimal
    variable_borrow_apy_points: Decimal
    stable_borrow_apy_points: Decimal
    field_changes: tuple[FieldChange, ...] = ()


@dataclass(frozen=True)
class AssetDiff:
    """One entry per symbol in the union of both snapshots.

    ``change`` is set for COMMON entries; ``metric`` holds the end-side
    metric for ADDED and the start-side metric for REMOVED.
    """

    symbol: str
    kind: AssetKind
    change: TokenChange | None = None
    metric: TokenMetric | None = None


@dataclass(frozen=True)
class ComparisonReport:
    start: Snapshot
    end: Snapshot
    time_difference_seconds: int
    total_market_size_change: Decimal
    total_borrows_change: Decimal
    assets: tuple[AssetDiff, ...] = ()

    def of_kind(self, kind: AssetKind) -> tuple[AssetDiff, ...]:
        return tuple(a for a in self.assets if a.kind is kind)

    @property
    def added(self) -> tuple[str, ...]:
        return tuple(a.symbol for a in self.of_kind(AssetKind.ADDED))

    @property
    def removed(self) -> tuple[str, ...]:
        return tuple(a.symbol for a in self.of_kind(AssetKind.REMOVED))


class DiffEngine:
    """Compare two snapshots without touching either of them."""

    @staticmethod
    def compare_token(before: TokenMetric, after: TokenMetric) -> TokenChange:
        field_changes = tuple(
            FieldChange(name, getattr(before, name), getattr(after, name))
            for name in DISCRETE_FIELDS
            if getattr(before, name) != getattr(after, name)
        )
        return TokenChange(
            before=before,
            after=after,
            price_change=percent_change(before.price_usd, after.price_usd),
            liquidity_change=percent_change(before.liquidity, after.liquidity),
            liquidity_usd_change=percent_change(
                before.liquidity_usd, after.liquidity_usd
            ),
            total_supplied_usd_change=percent_change(
                before.total_supplied_usd, after.total_supplied_usd
            ),
            total_borrowed_usd_change=percent_change(
                before.total_borrowed_usd, after.total_borrowed_usd
            ),
            utilization_points=point_change(
                before.utilization_rate, after.utilization_rate
            ),
            supply_apy_points=point_change(before.supply_apy, after.supply_apy),
            variable_borrow_apy_points=point_change(
                before.variable_borrow_apy, after.variable_borrow_apy
            ),
            stable_borrow_apy_points=point_change(
                before.stable_borrow_apy, after.stable_borrow_apy
            ),
            field_changes=field_changes,
        )

    def compare(self, a: Snapshot, b: Snapshot) -> ComparisonReport:
        """Diff ``a`` (start) against ``b`` (end).

        Symbols are visited in ``a``'s order, followed by symbols only
        ``b`` has, in ``b``'s order.
        """
        end_by_symbol = {t.symbol: t for t in b.tokens}
        start_symbols = set(a.symbols)

        assets: list[AssetDiff] = []
        for token in a.tokens:
            after = end_by_symbol.get(token.symbol)
            if after is None:
                assets.append(AssetDiff(token.symbol, AssetKind.REMOVED, metric=token))
            else:
                assets.append(
                    AssetDiff(
                        token.symbol,
                        AssetKind.COMMON,
                        change=self.compare_token(token, after),
                    )
                )
        for token in b.tokens:
            if token.symbol not in start_symbols:
                assets.append(AssetDiff(token.symbol, AssetKind.ADDED, metric=token))

        report = ComparisonReport(
            start=a,
            end=b,
            time_difference_seconds=b.aggregate.timestamp - a.aggregate.timestamp,
            total_market_size_change=percent_change(
                a.aggregate.total_market_size_usd, b.aggregate.total_market_size_usd
            ),
            total_borrows_change=percent_change(
                a.aggregate.total_borrows_usd, b.aggregate.total_borrows_usd
            ),
            assets=tuple(assets),
        )
        logger.debug(
            "Compared blocks %d and %d: %d assets, %d added, %d removed",
            a.block_number,
            b.block_number,
            len(assets),
            len(report.added),
            len(report.removed),
        )
        return report


# ---------------------------------------------------------------------------
# Console rendering
# ---------------------------------------------------------------------------


def format_usd(value: Decimal) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_percentage(value: Decimal) -> str:
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.2f}%"


def format_percentage_points(value: Decimal) -> str:
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.2f} percentage points"


def format_cap(value: Any) -> str:
    if value is UNBOUNDED:
        return "Unlimited"
    text = f"{value:,f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_time_difference(seconds: int) -> str:
    """``"2 days 3 hours 5 minutes"``, omitting zero components."""
    days, rest = divmod(max(seconds, 0), 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    parts = []
    if days:
        parts.append(f"{days} days")
    if hours:
        parts.append(f"{hours} hours")
    if minutes:
        parts.append(f"{minutes} minutes")
    return " ".join(parts) if parts else "0 minutes"


def _format_field(change: FieldChange) -> str:
    label = change.field.replace("_", " ").title()
    if change.field in ("supply_cap", "borrow_cap"):
        return f"  {label}: {format_cap(change.before)} → {format_cap(change.after)}"
    if change.field == "borrow_enabled":
        return f"  {label}: {change.before} → {change.after}"
    return f"  {label}: {change.before:.2f}% → {change.after:.2f}%"


def _market_line(label: str, start: Decimal, end: Decimal, change: Decimal) -> str:
    return f"{label}: {format_usd(start)} → {format_usd(end)} ({format_percentage(change)})"


def format_report(report: ComparisonReport) -> str:
    """Render a comparison as the multi-line console summary."""
    start: MarketAggregate = report.start.aggregate
    end: MarketAggregate = report.end.aggregate

    lines = [
        f"===== {start.network.upper()} AAVE METRICS COMPARISON =====",
        f"From block {start.block_number} ({start.date})",
        f"To block {end.block_number} ({end.date})",
        f"Time difference: {format_time_difference(report.time_difference_seconds)}",
        "",
        "--- MARKET OVERVIEW ---",
        _market_line(
            "Total Market Size",
            start.total_market_size_usd,
            end.total_market_size_usd,
            report.total_market_size_change,
        ),
        _market_line(
            "Total Borrows",
            start.total_borrows_usd,
            end.total_borrows_usd,
            report.total_borrows_change,
        ),
        "",
        "--- TOKEN METRICS CHANGES ---",
    ]

    for asset in report.assets:
        lines.append("")
        if asset.kind is AssetKind.REMOVED:
            lines.append(f"{asset.metric.display_name} ({asset.symbol}): REMOVED from market")
            continue
        if asset.kind is AssetKind.ADDED:
            m = asset.metric
            lines.extend(
                [
                    f"{m.display_name} ({asset.symbol}): ADDED to market",
                    f"  Price: {format_usd(m.price_usd)}",
                    f"  Liquidity: {format_usd(m.liquidity_usd)}",
                    f"  Utilization: {m.utilization_rate:.2f}%",
                ]
            )
            continue

        c = asset.change
        before, after = c.before, c.after
        lines.extend(
            [
                f"{before.display_name} ({asset.symbol}):",
                f"  Price: {format_usd(before.price_usd)} → {format_usd(after.price_usd)} "
                f"({format_percentage(c.price_change)})",
                f"  Liquidity: {format_usd(before.liquidity_usd)} → "
                f"{format_usd(after.liquidity_usd)} ({format_percentage(c.liquidity_usd_change)})",
                f"  Utilization: {before.utilization_rate:.2f}% → {after.utilization_rate:.2f}% "
                f"({format_percentage_points(c.utilization_points)})",
            ]
        )
        lines.extend(_format_field(f) for f in c.field_changes)
        lines.extend(
            [
                f"  Supply APY: {before.supply_apy:.2f}% → {after.supply_apy:.2f}% "
                f"({format_percentage_points(c.supply_apy_points)})",
                f"  Variable Borrow APY: {before.variable_borrow_apy:.2f}% → "
                f"{after.variable_borrow_apy:.2f}% "
                f"({format_percentage_points(c.variable_borrow_apy_points)})",
            ]
        )

    return "\n".join(lines)
