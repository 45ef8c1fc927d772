"""
Click fact storage for analytics data.

This module implements the Strategy Pattern for pluggable analytics storage.
Separates transactional data (link DB) from analytical data (fact store).
"""

from .strategies import ClickStorageStrategy, SQLiteClickStorage, InMemoryClickStorage, DIMENSIONS
from .factory import ClickStorageFactory, ClickStorageBackend

__all__ = [
    "ClickStorageStrategy",
    "SQLiteClickStorage",
    "InMemoryClickStorage",
    "DIMENSIONS",
    "ClickStorageFactory",
    "ClickStorageBackend",
]
