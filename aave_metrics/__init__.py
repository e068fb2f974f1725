"""Block-synchronized Aave V3 market metrics indexer."""

__version__ = "0.1.0"
