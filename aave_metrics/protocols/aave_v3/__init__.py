"""Aave V3 market reader."""
from .adapter import AaveV3Reader

__all__ = ["AaveV3Reader"]
