"""Service modules"""
from .diff import ComparisonReport, DiffEngine, format_report, percent_change
from .poller import BlockCursor, Poller, PollerState, PollerStats
from .transformer import MetricsTransformer

__all__ = [
    "BlockCursor",
    "ComparisonReport",
    "DiffEngine",
    "MetricsTransformer",
    "Poller",
    "PollerState",
    "PollerStats",
    "format_report",
    "percent_change",
]
