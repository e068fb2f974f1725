"""Snapshot sink protocol: side outputs fed after a snapshot is stored."""
from typing import Protocol

from ..models import Snapshot


class SnapshotSink(Protocol):
    """Abstract interface for consumers of freshly stored snapshots."""

    def write_snapshot(self, snapshot: Snapshot, explicit_block: bool = False) -> None: ...
