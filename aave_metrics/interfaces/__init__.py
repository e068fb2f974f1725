"""Protocol interfaces for the market metrics pipeline."""
from .chain import ChainClient
from .market_reader import MarketReader
from .snapshot_sink import SnapshotSink

__all__ = ["ChainClient", "MarketReader", "SnapshotSink"]
