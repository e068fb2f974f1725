"""Command-line interface for the Aave market metrics indexer."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from .chains.evm import EvmClient
from .config import AppConfig, load_config
from .files import SnapshotFileWriter
from .logging_setup import configure_logging
from .models import BlockId, Snapshot, TokenMetric
from .protocols.aave_v3 import AaveV3Reader
from .services import DiffEngine, MetricsTransformer, Poller, format_report
from .services.diff import format_usd
from .storage import SnapshotStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="aave-metrics",
        description="Block-synchronized Aave V3 market metrics indexer",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--continuous",
        action="store_true",
        help="Run the block poller (same as the 'monitor' command)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init", help="Create database tables and register known assets")

    store_parser = sub.add_parser("store", help="Index the latest block and store it")
    store_parser.add_argument(
        "--from-file",
        action="store_true",
        help="Store the latest snapshot file instead of reading the chain",
    )

    recent_parser = sub.add_parser("recent", help="Show recently stored market totals")
    recent_parser.add_argument(
        "limit", nargs="?", type=int, default=5, help="Number of blocks (default: 5)"
    )

    block_parser = sub.add_parser("block", help="Index a specific block")
    block_parser.add_argument("block_number", type=int)
    block_parser.add_argument(
        "--store", action="store_true", help="Also store the snapshot in the database"
    )

    compare_parser = sub.add_parser("compare", help="Compare two blocks")
    compare_parser.add_argument("start_block", type=int)
    compare_parser.add_argument("end_block", type=int)
    compare_parser.add_argument(
        "--from-db",
        action="store_true",
        help="Compare stored snapshots instead of reading the chain",
    )

    sub.add_parser("monitor", help="Continuously index every new block")

    return parser


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _build_reader(config: AppConfig) -> AaveV3Reader:
    return AaveV3Reader(EvmClient(config.chain), config.protocol, config.network)


def _build_transformer(config: AppConfig) -> MetricsTransformer:
    return MetricsTransformer(usd_price_decimals=config.protocol.usd_price_decimals)


def _build_writer(config: AppConfig) -> SnapshotFileWriter | None:
    if not config.output.write_files:
        return None
    return SnapshotFileWriter(config.output, config.network)


def _print_tokens(tokens: tuple[TokenMetric, ...]) -> None:
    for t in tokens:
        print(
            f"  {t.symbol:<8} price {format_usd(t.price_usd):>14}  "
            f"supplied {format_usd(t.total_supplied_usd):>18}  "
            f"borrowed {format_usd(t.total_borrowed_usd):>18}  "
            f"util {t.utilization_rate:6.2f}%  "
            f"supply APY {t.supply_apy:5.2f}%  "
            f"borrow APY {t.variable_borrow_apy:5.2f}%"
        )


def _print_snapshot(snapshot: Snapshot) -> None:
    agg = snapshot.aggregate
    print(f"\n===== {agg.network.upper()} AAVE METRICS @ BLOCK {agg.block_number} =====")
    print(f"Date: {agg.date}")
    print(f"Total Market Size: {format_usd(agg.total_market_size_usd)}")
    print(f"Total Available: {format_usd(agg.total_available_usd)}")
    print(f"Total Borrows: {format_usd(agg.total_borrows_usd)}")
    print(f"Average Utilization: {agg.average_utilization:.2f}%")
    _print_tokens(snapshot.tokens)


async def _index(
    config: AppConfig, block_id: BlockId, explicit_block: bool
) -> Snapshot:
    raw = await _build_reader(config).fetch(block_id)
    snapshot = _build_transformer(config).transform(raw)
    writer = _build_writer(config)
    if writer is not None:
        writer.write_snapshot(snapshot, explicit_block=explicit_block)
    return snapshot


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _cmd_init(config: AppConfig, args: argparse.Namespace) -> None:
    async with SnapshotStore.from_config(config.database) as store:
        await store.ensure_schema()
    print("Database initialized")


async def _cmd_store(config: AppConfig, args: argparse.Namespace) -> None:
    if args.from_file:
        snapshot = SnapshotFileWriter(config.output, config.network).read_latest()
    else:
        snapshot = await _index(config, "latest", explicit_block=False)
        _print_snapshot(snapshot)

    async with SnapshotStore.from_config(config.database) as store:
        await store.ensure_schema()
        await store.put(snapshot)
    print(f"Metrics for block {snapshot.block_number} stored in database")


async def _cmd_recent(config: AppConfig, args: argparse.Namespace) -> None:
    async with SnapshotStore.from_config(config.database) as store:
        aggregates = await store.get_recent(args.limit)
        latest = (
            await store.get_snapshot_at_block(aggregates[0].block_number)
            if aggregates
            else None
        )

    if latest is None:
        print("No metrics stored yet")
        return
    print(f"{'Block':>12}  {'Date':<24}  {'Market Size':>20}  {'Borrows':>20}  {'Util':>7}")
    for agg in aggregates:
        print(
            f"{agg.block_number:>12}  {agg.date:<24}  "
            f"{format_usd(agg.total_market_size_usd):>20}  "
            f"{format_usd(agg.total_borrows_usd):>20}  "
            f"{agg.average_utilization:>6.2f}%"
        )

    print(f"\nToken metrics for latest block {latest.block_number}:")
    _print_tokens(latest.tokens)


async def _cmd_block(config: AppConfig, args: argparse.Namespace) -> None:
    snapshot = await _index(config, args.block_number, explicit_block=True)
    _print_snapshot(snapshot)
    if args.store:
        async with SnapshotStore.from_config(config.database) as store:
            await store.ensure_schema()
            await store.put(snapshot)
        print(f"Metrics for block {snapshot.block_number} stored in database")


async def _cmd_compare(config: AppConfig, args: argparse.Namespace) -> None:
    if args.from_db:
        async with SnapshotStore.from_config(config.database) as store:
            start = await store.get_snapshot_at_block(args.start_block)
            end = await store.get_snapshot_at_block(args.end_block)
    else:
        reader = _build_reader(config)
        transformer = _build_transformer(config)
        start = transformer.transform(await reader.fetch(args.start_block))
        end = transformer.transform(await reader.fetch(args.end_block))

    report = DiffEngine().compare(start, end)
    print(format_report(report))

    writer = _build_writer(config)
    if writer is not None:
        path = writer.write_comparison(report)
        print(f"\nComparison data saved to {path}")


async def _cmd_monitor(config: AppConfig, args: argparse.Namespace) -> None:
    async with SnapshotStore.from_config(config.database) as store:
        await store.ensure_schema()
        poller = Poller(
            _build_reader(config),
            _build_transformer(config),
            store,
            config.poller,
            sink=_build_writer(config),
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # add_signal_handler is unavailable on Windows event loops
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, poller.stop)

        await poller.run()


_COMMANDS = {
    "init": _cmd_init,
    "store": _cmd_store,
    "recent": _cmd_recent,
    "block": _cmd_block,
    "compare": _cmd_compare,
    "monitor": _cmd_monitor,
}


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    await _COMMANDS[args.command](config, args)


_VALUE_OPTIONS = ("--config", "--log-level")


def expand_block_shorthand(argv: list[str]) -> list[str]:
    """Map ``<block>`` to ``block <block>`` and ``<start> <end>`` to ``compare``."""
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in _VALUE_OPTIONS:
            i += 2
            continue
        if arg.startswith("-"):
            i += 1
            continue
        if not arg.isdigit():
            return argv
        numbers = 1
        while i + numbers < len(argv) and argv[i + numbers].isdigit():
            numbers += 1
        command = {1: "block", 2: "compare"}.get(numbers)
        if command is None:
            return argv
        return [*argv[:i], command, *argv[i:]]
    return argv


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]
    args = parser.parse_args(expand_block_shorthand(argv))

    if args.continuous:
        args.command = "monitor"
    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except Exception as e:
        logger.error("%s failed: %s", args.command, e)
        sys.exit(1)
