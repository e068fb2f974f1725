from .store import SnapshotStore

__all__ = ["SnapshotStore"]
