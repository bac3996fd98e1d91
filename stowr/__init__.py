"""Compressed file storage with deduplication, delta compression and indexing."""

__version__ = "0.3.0"

__all__ = [
    "codec",
    "config",
    "dedup",
    "delta",
    "demo",
    "index",
    "patterns",
    "service",
    "storage",
]