from datetime import datetime, timedelta, timezone
from typing import List, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clickpipe_app.cache.strategies import CacheStrategy
from clickpipe_app.config import Settings
from clickpipe_app.errors import KeyConflict, NotFound, Unauthorized
from clickpipe_app.models.link import Link, UTM_FIELDS
from clickpipe_app.schemas.link import CallerIdentity, CreateLinkRequest
from .key_allocator import KeyAllocator
from .link_resolver import LinkResolver, as_utc
from .passwords import hash_password


class LinkService:
    """
    Link creation and removal around the KeyAllocator.

    Insert-time uniqueness violations surface as KeyConflict, which
    covers the race between the allocator's pre-check and the insert.
    """

    def __init__(self, db: Session, config: Settings, cache: Optional[CacheStrategy] = None):
        self.db = db
        self.config = config
        self.cache = cache
        self.allocator = KeyAllocator(db, config)

    def find_link_by_key(self, key: str) -> Optional[Link]:
        return self.db.query(Link).filter(Link.key == key).first()

    def insert_link(self, link: Link) -> Link:
        self.db.add(link)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise KeyConflict(f"Key '{link.key}' already exists") from e
        self.db.refresh(link)
        return link

    def create_link(self, request: CreateLinkRequest, caller: Optional[CallerIdentity] = None) -> Link:
        """
        Create a link for the caller.

        Temporary links may be anonymous; they never carry a password and
        expire after temporary_link_ttl_hours. Anything else requires a
        verified caller.
        """
        caller = caller or CallerIdentity()

        if request.temporary:
            password = None
            expires_at = datetime.now(timezone.utc) + timedelta(hours=self.config.temporary_link_ttl_hours)
        else:
            if not caller.verified:
                raise Unauthorized("You must be verified to create a shortened url")
            password = request.password
            expires_at = as_utc(request.expires_at)

        key = self.allocator.allocate(request.key)

        link = Link(
            key=key,
            destination_url=request.url,
            expires_at=expires_at,
            password_hash=hash_password(password) if password else None,
            owner_id=caller.owner_id,
            description=request.description,
            **{field: getattr(request, field) for field in UTM_FIELDS},
        )
        link = self.insert_link(link)

        logger.info(f"Link {link.key} created by {caller.owner_id or 'anonymous'} for {link.destination_url}")
        return link

    def bulk_create(self, requests: List[CreateLinkRequest], caller: Optional[CallerIdentity] = None) -> List[Link]:
        caller = caller or CallerIdentity()
        if not caller.verified:
            raise Unauthorized("You must be verified to create a shortened url")
        logger.info(f"User {caller.owner_id} is bulk-creating {len(requests)} links")
        return [self.create_link(request, caller) for request in requests]

    async def delete_link(self, key: str, caller: CallerIdentity) -> None:
        """Owner deletion. Click facts for the key are kept."""
        link = self.find_link_by_key(key)
        if link is None or link.owner_id is None or link.owner_id != caller.owner_id:
            raise NotFound("Link not found")

        self.db.delete(link)
        self.db.commit()
        if self.cache:
            await self.cache.delete(LinkResolver.cache_key(key))
        logger.info(f"Link {key} deleted by {caller.owner_id}")

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Garbage-collect links past expires_at; returns how many were removed"""
        now = now or datetime.now(timezone.utc)
        expired = self.db.query(Link).filter(Link.expires_at.isnot(None), Link.expires_at <= now).all()
        keys = [link.key for link in expired]
        for link in expired:
            self.db.delete(link)
        self.db.commit()

        if self.cache:
            for key in keys:
                await self.cache.delete(LinkResolver.cache_key(key))
        if keys:
            logger.info(f"Purged {len(keys)} expired link(s)")
        return len(keys)
