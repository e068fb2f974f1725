"""Block poller: detects new chain heads and ingests each one exactly once."""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass

from ..config import PollerConfig
from ..errors import MetricsError
from ..interfaces.market_reader import MarketReader
from ..interfaces.snapshot_sink import SnapshotSink
from ..models import Snapshot
from ..storage import SnapshotStore
from .transformer import MetricsTransformer

logger = logging.getLogger(__name__)


class PollerState(enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    INGESTING = "ingesting"
    STOPPED = "stopped"


@dataclass
class BlockCursor:
    """Highest block whose snapshot has been durably stored by this poller."""

    last_processed_block: int | None = None

    def advance(self, block_number: int) -> None:
        if (
            self.last_processed_block is not None
            and block_number < self.last_processed_block
        ):
            raise ValueError(
                f"Cursor cannot move backwards: {block_number} < "
                f"{self.last_processed_block}"
            )
        self.last_processed_block = block_number


@dataclass
class PollerStats:
    ticks: int = 0
    ingested: int = 0
    failures: int = 0
    last_error: str | None = None
    last_ingested_block: int | None = None


class Poller:
    """Run reader → transformer → store for every new head, one tick at a time.

    A tick never overlaps another; ``stop()`` is honoured between ticks and
    during the wait, never in the middle of an ingestion.
    """

    def __init__(
        self,
        reader: MarketReader,
        transformer: MetricsTransformer,
        store: SnapshotStore,
        config: PollerConfig,
        sink: SnapshotSink | None = None,
    ) -> None:
        self._reader = reader
        self._transformer = transformer
        self._store = store
        self._config = config
        self._sink = sink
        self._stop = asyncio.Event()

        self.state = PollerState.IDLE
        self.cursor = BlockCursor()
        self.stats = PollerStats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Initialize the cursor; the starting block itself is not ingested."""
        head = await self._reader.latest_block_number()
        start = head

        if self._config.resume_from_storage:
            floor = max(head - self._config.safety_margin_blocks, 0)
            stored = await self._store.latest_block_number()
            start = floor if stored is None else min(max(stored, floor), head)
            logger.info(
                "Resuming from block %d (stored: %s, chain head: %d)",
                start,
                stored,
                head,
            )

        self.cursor.advance(start)
        logger.info("Starting from block %d", start)
        return start

    def stop(self) -> None:
        logger.info("Stop requested")
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> None:
        """Poll until :meth:`stop` is called."""
        if self.cursor.last_processed_block is None:
            await self.start()

        interval = self._config.interval_seconds
        logger.info("Polling every %.1f seconds", interval)
        loop = asyncio.get_running_loop()

        try:
            while not self._stop.is_set():
                started = loop.time()
                await self.tick()

                remaining = max(interval - (loop.time() - started), 0)
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.state = PollerState.STOPPED
            logger.info(
                "Poller stopped after %d ticks (%d blocks ingested, %d failures)",
                self.stats.ticks,
                self.stats.ingested,
                self.stats.failures,
            )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def _targets(self, last: int, head: int) -> list[int]:
        if not self._config.gap_fill:
            if head - last > 1:
                logger.debug("Skipping %d intermediate blocks", head - last - 1)
            return [head]

        first = max(last + 1, head - self._config.max_gap_fill_blocks + 1)
        if first > last + 1:
            logger.warning(
                "Gap of %d blocks exceeds max_gap_fill_blocks, skipping %d",
                head - last,
                first - last - 1,
            )
        return list(range(first, head + 1))

    def _record_failure(self, error: BaseException) -> None:
        self.stats.failures += 1
        self.stats.last_error = f"{type(error).__name__}: {error}"

    async def tick(self) -> list[int]:
        """Run one poll; return the block numbers ingested by it."""
        self.stats.ticks += 1
        self.state = PollerState.POLLING
        ingested: list[int] = []

        try:
            head = await self._reader.latest_block_number()
            last = self.cursor.last_processed_block
            if last is None:
                raise RuntimeError("Poller has not been started")
            if head <= last:
                return ingested

            logger.info("New block detected: %d", head)
            if self._config.settle_delay_seconds > 0:
                await asyncio.sleep(self._config.settle_delay_seconds)

            self.state = PollerState.INGESTING
            for block_number in self._targets(last, head):
                snapshot = await self._ingest_with_retry(block_number)
                self.cursor.advance(block_number)
                self.stats.ingested += 1
                self.stats.last_ingested_block = block_number
                ingested.append(block_number)
                self._emit(snapshot)
        except Exception as e:
            self._record_failure(e)
            logger.error("Error processing block: %s", e)
        finally:
            self.state = PollerState.IDLE

        return ingested

    async def _ingest(self, block_number: int) -> Snapshot:
        raw = await self._reader.fetch(block_number)
        snapshot = self._transformer.transform(raw)
        await self._store.put(snapshot)
        return snapshot

    async def _ingest_with_retry(self, block_number: int) -> Snapshot:
        retry = self._config.retry
        delay = retry.backoff_seconds
        attempt = 1
        while True:
            try:
                return await self._ingest(block_number)
            except MetricsError as e:
                if attempt >= retry.max_attempts:
                    raise
                logger.warning(
                    "Block %d attempt %d/%d failed: %s, retrying in %.2fs",
                    block_number,
                    attempt,
                    retry.max_attempts,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
                delay *= retry.backoff_multiplier
                attempt += 1

    def _emit(self, snapshot: Snapshot) -> None:
        if self._sink is None:
            return
        try:
            self._sink.write_snapshot(snapshot, explicit_block=True)
        except OSError as e:
            self._record_failure(e)
            logger.error(
                "Failed to write snapshot file for block %d: %s",
                snapshot.block_number,
                e,
            )
