"""
Periodic garbage collection of expired links.
"""

import asyncio
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.orm import Session

from clickpipe_app.cache.strategies import CacheStrategy
from clickpipe_app.config import Settings
from .link_service import LinkService


class ExpiredLinkPurger:
    """
    Background task that calls LinkService.purge_expired every
    link_purge_interval seconds, each run on its own session.

    An interval of 0 disables it.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: Settings,
        cache: Optional[CacheStrategy] = None,
    ):
        self.session_factory = session_factory
        self.config = config
        self.cache = cache
        self.interval = config.link_purge_interval
        self.purged = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        db = self.session_factory()
        try:
            removed = await LinkService(db, self.config, cache=self.cache).purge_expired()
        finally:
            db.close()
        self.purged += removed
        return removed

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Expired link purge failed: {e}")

    def start(self):
        if self.interval <= 0:
            logger.info("Expired link purge disabled")
            return
        self._task = asyncio.create_task(self._run(), name="expired-link-purger")
        logger.info(f"Expired link purge every {self.interval}s")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
