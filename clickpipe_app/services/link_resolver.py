"""
Key resolution for redirects.
"""

from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clickpipe_app.cache.strategies import CacheStrategy
from clickpipe_app.config import Settings
from clickpipe_app.errors import NotFound, Unauthorized
from clickpipe_app.models.link import Link
from clickpipe_app.queue.models import ClickEvent
from clickpipe_app.queue.producer import ClickEventProducer
from clickpipe_app.schemas.link import ClientDetails, ResolvedLink
from .passwords import verify_password


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_utm_params(url: str, utm: Dict[str, Optional[str]]) -> str:
    """Append the UTM parameters that have a value; existing query params are kept"""
    params = [(name, value) for name, value in utm.items() if value]
    if not params:
        return url
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True) + params
    return urlunsplit(parts._replace(query=urlencode(query)))


class LinkSnapshot(BaseModel):
    """What the resolver needs from a link; this is what gets cached"""
    key: str
    destination_url: str
    expires_at: Optional[datetime] = None
    password_hash: Optional[str] = None
    utm: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_link(cls, link: Link) -> "LinkSnapshot":
        return cls(
            key=link.key,
            destination_url=link.destination_url,
            expires_at=as_utc(link.expires_at),
            password_hash=link.password_hash,
            utm=link.utm,
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) <= now


class LinkResolver:
    """
    Resolves keys using the Cache-Aside pattern and records the click.

    Flow:
    1. Load the link snapshot (cache first, then the link DB)
    2. Gate on expiry and password
    3. Hand a click event to the producer (never blocks, never raises)
    4. Return the destination with UTM parameters appended
    """

    def __init__(
        self,
        db: Session,
        config: Settings,
        producer: Optional[ClickEventProducer] = None,
        cache: Optional[CacheStrategy] = None,
    ):
        self.db = db
        self.config = config
        self.producer = producer
        self.cache = cache

    @staticmethod
    def cache_key(key: str) -> str:
        return f"link:{key}"

    async def _load_snapshot(self, key: str) -> Optional[LinkSnapshot]:
        cache_key = self.cache_key(key)

        if self.cache:
            cached = await self.cache.get(cache_key)
            if cached:
                try:
                    return LinkSnapshot.model_validate_json(cached)
                except ValueError:
                    logger.warning(f"Discarding unreadable cache entry for {key}")
                    await self.cache.delete(cache_key)

        link = self.db.query(Link).filter(Link.key == key).first()
        if link is None:
            return None

        snapshot = LinkSnapshot.from_link(link)
        if self.cache:
            await self.cache.set(cache_key, snapshot.model_dump_json(), ttl=self.config.cache_ttl)
        return snapshot

    async def resolve(
        self,
        key: str,
        password: Optional[str] = None,
        client: Optional[ClientDetails] = None,
        now: Optional[datetime] = None,
    ) -> ResolvedLink:
        """
        Raises:
            NotFound: no such key, or the link has expired (indistinguishable)
            Unauthorized: link is password protected and the password is wrong
        """
        now = as_utc(now) or datetime.now(timezone.utc)

        snapshot = await self._load_snapshot(key)
        if snapshot is None or snapshot.is_expired(now):
            raise NotFound("Shortened url is wrong or expired")

        if snapshot.password_hash and not verify_password(snapshot.password_hash, password):
            raise Unauthorized("Incorrect password for this url!")

        self._record_click(snapshot.key, client, now)

        return ResolvedLink(
            url=add_utm_params(snapshot.destination_url, snapshot.utm),
            key=snapshot.key,
        )

    def _record_click(self, key: str, client: Optional[ClientDetails], now: datetime):
        if self.producer is None:
            return
        client = client or ClientDetails()
        try:
            self.producer.publish(ClickEvent(
                link_key=key,
                timestamp=now,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                referer=client.referer,
            ))
        except Exception as e:
            logger.error(f"Error while publishing click for {key}: {e}")
