"""
Click fact storage strategies using Strategy Pattern.

Allows switching between different analytics stores:
- SQLite: Development and single-node deployments
- In-memory: Tests and demos

Facts are append-only. Every write is an independent insert, so
concurrent workers need no in-process lock around the store.
Write failures raise; retrying is the consumer's job.
"""

import asyncio
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from clickpipe_app.queue.models import ClickFact, UNKNOWN


DIMENSIONS = ("device", "os", "browser", "country", "region", "city")


def _check_fields(fields: Sequence[str]):
    for field in fields:
        if field not in DIMENSIONS:
            raise ValueError(f"Unknown dimension: {field}")


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ClickStorageStrategy(ABC):
    """
    Abstract base class for click fact storage.

    Time bounds are half-open: since <= timestamp < until. Either bound
    may be None.
    """

    @abstractmethod
    async def store_fact(self, fact: ClickFact):
        """Persist a single fact. Raises on failure."""
        pass

    @abstractmethod
    async def store_facts(self, facts: List[ClickFact]):
        """Persist several facts in one write. Raises on failure."""
        pass

    @abstractmethod
    async def count_facts(
        self,
        link_key: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> int:
        """Count facts, optionally scoped to one link and a time range"""
        pass

    @abstractmethod
    async def group_facts(
        self,
        link_key: str,
        fields: Sequence[str],
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Dict]:
        """
        Count facts grouped by one or more dimensions.

        Returns:
            Rows like {"city": "Berlin", "country": "Germany", "count": 3},
            largest count first
        """
        pass

    @abstractmethod
    async def fact_timestamps(
        self,
        link_key: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[datetime]:
        """UTC timestamps of matching facts (used for day bucketing)"""
        pass


class SQLiteClickStorage(ClickStorageStrategy):
    """
    SQLite implementation for click fact storage.

    Pros:
    - Zero configuration (no external services)
    - Durable across restarts

    Cons:
    - Not optimized for analytics queries
    - Single writer at a time (SQLite serializes inserts for us)

    sqlite3 is blocking, so every call runs in a worker thread with its
    own connection; the consumer can then bound it with a timeout.
    """

    def __init__(self, db_path: str = "analytics.db"):
        self.db_path = db_path
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=5)

    def _init_database(self):
        """Create click_facts table if it doesn't exist"""
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS click_facts (
                    id TEXT PRIMARY KEY,
                    link_key TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    referer TEXT,
                    device TEXT NOT NULL,
                    os TEXT NOT NULL,
                    browser TEXT NOT NULL,
                    country TEXT NOT NULL,
                    region TEXT NOT NULL,
                    city TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_click_facts_key_ts ON click_facts (link_key, timestamp)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_click_facts_ts ON click_facts (timestamp)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _format_ts(value: datetime) -> str:
        return _to_utc(value).isoformat(timespec="microseconds")

    @staticmethod
    def _where(link_key: Optional[str], since: Optional[datetime], until: Optional[datetime]):
        clauses, params = [], []
        if link_key is not None:
            clauses.append("link_key = ?")
            params.append(link_key)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(SQLiteClickStorage._format_ts(since))
        if until is not None:
            clauses.append("timestamp < ?")
            params.append(SQLiteClickStorage._format_ts(until))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _insert(self, facts: List[ClickFact]):
        rows = [
            (
                fact.id,
                fact.link_key,
                self._format_ts(fact.timestamp),
                fact.referer,
                fact.device,
                fact.os,
                fact.browser,
                fact.country,
                fact.region,
                fact.city,
            )
            for fact in facts
        ]
        conn = self._connect()
        try:
            conn.executemany("""
                INSERT INTO click_facts (
                    id, link_key, timestamp, referer,
                    device, os, browser, country, region, city
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, rows)
            conn.commit()
        finally:
            conn.close()

    def _fetch(self, query: str, params: list) -> list:
        conn = self._connect()
        try:
            return conn.execute(query, params).fetchall()
        finally:
            conn.close()

    async def store_fact(self, fact: ClickFact):
        await self.store_facts([fact])

    async def store_facts(self, facts: List[ClickFact]):
        if facts:
            await asyncio.to_thread(self._insert, facts)

    async def count_facts(self, link_key=None, since=None, until=None) -> int:
        where, params = self._where(link_key, since, until)
        rows = await asyncio.to_thread(self._fetch, f"SELECT COUNT(*) FROM click_facts {where}", params)
        return rows[0][0]

    async def group_facts(self, link_key, fields, since=None, until=None) -> List[Dict]:
        _check_fields(fields)
        columns = ", ".join(fields)
        where, params = self._where(link_key, since, until)
        rows = await asyncio.to_thread(
            self._fetch,
            f"""
                SELECT {columns}, COUNT(*) AS count
                FROM click_facts
                {where}
                GROUP BY {columns}
                ORDER BY count DESC, {columns}
            """,
            params,
        )
        return [
            {**{field: row[i] or UNKNOWN for i, field in enumerate(fields)}, "count": row[-1]}
            for row in rows
        ]

    async def fact_timestamps(self, link_key, since=None, until=None) -> List[datetime]:
        where, params = self._where(link_key, since, until)
        rows = await asyncio.to_thread(
            self._fetch, f"SELECT timestamp FROM click_facts {where} ORDER BY timestamp", params
        )
        return [datetime.fromisoformat(row[0]) for row in rows]


class InMemoryClickStorage(ClickStorageStrategy):
    """
    In-memory fact store.

    Same semantics as the SQLite store, minus durability.
    Used in tests and local demos.
    """

    def __init__(self):
        self._facts: List[ClickFact] = []
        self._lock = threading.Lock()

    def _select(self, link_key, since, until) -> List[ClickFact]:
        since = _to_utc(since) if since else None
        until = _to_utc(until) if until else None
        with self._lock:
            facts = list(self._facts)
        return [
            fact for fact in facts
            if (link_key is None or fact.link_key == link_key)
            and (since is None or _to_utc(fact.timestamp) >= since)
            and (until is None or _to_utc(fact.timestamp) < until)
        ]

    async def store_fact(self, fact: ClickFact):
        await self.store_facts([fact])

    async def store_facts(self, facts: List[ClickFact]):
        with self._lock:
            self._facts.extend(facts)

    async def count_facts(self, link_key=None, since=None, until=None) -> int:
        return len(self._select(link_key, since, until))

    async def group_facts(self, link_key, fields, since=None, until=None) -> List[Dict]:
        _check_fields(fields)
        counts = Counter(
            tuple(getattr(fact, field) or UNKNOWN for field in fields)
            for fact in self._select(link_key, since, until)
        )
        ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [{**dict(zip(fields, values)), "count": count} for values, count in ordered]

    async def fact_timestamps(self, link_key, since=None, until=None) -> List[datetime]:
        return sorted(_to_utc(fact.timestamp) for fact in self._select(link_key, since, until))
