"""
Read-side analytics over persisted click facts.

Nothing is pre-aggregated: every query recomputes its buckets from the
facts in the window, so late or duplicated events are always reflected
and results do not depend on arrival order.
"""

from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from clickpipe_app.config import Settings
from clickpipe_app.storage.strategies import ClickStorageStrategy, DIMENSIONS


class AnalyticsAggregator:
    """
    Day and dimension buckets for one link.

    Windows are whole calendar days in the configured analytics timezone:
    a window of N days covers today and the N-1 days before it.
    """

    def __init__(self, storage: ClickStorageStrategy, config: Settings):
        self.storage = storage
        self.tz = ZoneInfo(config.analytics_timezone)

    def window(self, days: int, now: Optional[datetime] = None) -> Tuple[date, datetime, datetime]:
        """
        Returns:
            (first_day, since, until) with since/until as UTC datetimes,
            since inclusive and until exclusive
        """
        if days < 1:
            raise ValueError("days must be at least 1")
        now = now or datetime.now(timezone.utc)
        today = now.astimezone(self.tz).date()
        first_day = today - timedelta(days=days - 1)
        since = datetime.combine(first_day, time.min, tzinfo=self.tz)
        until = datetime.combine(today + timedelta(days=1), time.min, tzinfo=self.tz)
        return first_day, since.astimezone(timezone.utc), until.astimezone(timezone.utc)

    async def total_visits(
        self,
        link_key: Optional[str] = None,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """All-time fact count (or within a day window); all links when link_key is None"""
        if days is None:
            return await self.storage.count_facts(link_key)
        _first_day, since, until = self.window(days, now)
        return await self.storage.count_facts(link_key, since, until)

    async def clicks_over_time(
        self,
        link_key: str,
        days: int,
        now: Optional[datetime] = None,
    ) -> List[Dict]:
        """
        One {"date", "count"} entry per day in the window, oldest first,
        zero-filled for days without clicks.
        """
        first_day, since, until = self.window(days, now)
        timestamps = await self.storage.fact_timestamps(link_key, since, until)

        per_day = Counter(ts.astimezone(self.tz).date() for ts in timestamps)
        return [
            {"date": day, "count": per_day.get(day, 0)}
            for day in (first_day + timedelta(days=offset) for offset in range(days))
        ]

    async def grouped_by_field(
        self,
        link_key: str,
        field: str,
        days: int,
        include: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict]:
        """
        Click counts per value of `field`, largest first.

        `include` adds secondary dimensions to every row, e.g. grouping
        cities with include=["country"] yields
        {"city": "Paris", "country": "France", "count": 4}.
        "unknown" is reported like any other value.
        """
        if field not in DIMENSIONS:
            raise ValueError(f"Unknown field '{field}', expected one of {', '.join(DIMENSIONS)}")
        extra = [name for name in (include or []) if name != field]
        for name in extra:
            if name not in DIMENSIONS:
                raise ValueError(f"Unknown include field '{name}'")

        _first_day, since, until = self.window(days, now)
        return await self.storage.group_facts(link_key, [field, *extra], since, until)
