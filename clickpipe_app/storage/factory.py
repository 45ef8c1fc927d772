"""
Factory for creating click fact storage instances.
"""

from enum import Enum

from loguru import logger

from clickpipe_app.config import Settings
from .strategies import ClickStorageStrategy, SQLiteClickStorage, InMemoryClickStorage


class ClickStorageBackend(Enum):
    """Available click storage backends"""
    SQLITE = "sqlite"
    MEMORY = "memory"


class ClickStorageFactory:
    """Creates the analytics store named in settings"""

    @staticmethod
    def create(config: Settings, backend: ClickStorageBackend = None) -> ClickStorageStrategy:
        """
        Create a click storage instance.

        Args:
            config: Application settings
            backend: Type of storage backend (defaults to config.click_storage_backend)
        """
        if backend is None:
            backend = ClickStorageBackend(config.click_storage_backend)

        if backend == ClickStorageBackend.SQLITE:
            storage = SQLiteClickStorage(db_path=config.click_storage_sqlite_path)
            logger.info(f"SQLite click storage initialized ({config.click_storage_sqlite_path})")
            return storage

        if backend == ClickStorageBackend.MEMORY:
            logger.info("In-memory click storage initialized")
            return InMemoryClickStorage()

        raise ValueError(f"Unknown storage backend: {backend}")
