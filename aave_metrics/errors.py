"""Exception hierarchy shared by the reader, the store and the poller."""
from __future__ import annotations


class MetricsError(Exception):
    """Base class for every failure raised by this package."""


class ChainUnavailable(MetricsError):
    """Transport or JSON-RPC failure while talking to the chain."""


class BlockNotFound(MetricsError):
    """The requested block does not exist (yet) on the chain."""

    def __init__(self, block_id: int | str) -> None:
        super().__init__(f"Block {block_id} not found")
        self.block_id = block_id


class StorageUnavailable(MetricsError):
    """A persistence transaction failed and was rolled back."""


class NotFound(MetricsError):
    """No snapshot is stored for the requested block."""

    def __init__(self, block_number: int) -> None:
        super().__init__(f"No snapshot stored for block {block_number}")
        self.block_number = block_number
