"""Stockflow v1 API endpoints"""

from . import counts, documents, models, onhand, transfers

__all__ = ["counts", "documents", "models", "onhand", "transfers"]
