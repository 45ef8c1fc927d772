"""
FastAPI dependencies for dependency injection.

This module provides singleton instances of the cache, ingestion channel,
producer, consumer and click storage, built from settings on first use.
Services are created per request around a database session.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from clickpipe_app.cache.factory import CacheFactory
from clickpipe_app.cache.strategies import CacheStrategy
from clickpipe_app.click_processor.worker import ClickEventConsumer
from clickpipe_app.config import settings
from clickpipe_app.database.connection import get_db
from clickpipe_app.queue.factory import QueueFactory
from clickpipe_app.queue.producer import ClickEventProducer
from clickpipe_app.queue.strategies import QueueStrategy
from clickpipe_app.schemas.link import CallerIdentity, ClientDetails
from clickpipe_app.services.analytics_aggregator import AnalyticsAggregator
from clickpipe_app.services.link_resolver import LinkResolver
from clickpipe_app.services.link_service import LinkService
from clickpipe_app.storage.factory import ClickStorageFactory
from clickpipe_app.storage.strategies import ClickStorageStrategy

PROXY_IP_HEADERS = (
    "CF-Connecting-IP",
    "True-Client-IP",
    "X-Forwarded-For",
    "X-Real-IP",
)


@lru_cache()
def get_cache() -> CacheStrategy:
    return CacheFactory.create(settings)


@lru_cache()
def get_queue() -> QueueStrategy:
    return QueueFactory.create(settings)


@lru_cache()
def get_producer() -> ClickEventProducer:
    return ClickEventProducer(get_queue())


@lru_cache()
def get_click_storage() -> ClickStorageStrategy:
    return ClickStorageFactory.create(settings)


@lru_cache()
def get_consumer() -> ClickEventConsumer:
    return ClickEventConsumer(queue=get_queue(), storage=get_click_storage(), config=settings)


def reset_singletons():
    """Forget every cached instance (for testing)"""
    for factory in (get_cache, get_queue, get_producer, get_click_storage, get_consumer):
        factory.cache_clear()


def get_caller(
    x_owner_id: Optional[str] = Header(None),
    x_verified: bool = Header(False),
) -> CallerIdentity:
    """
    Identity from the auth collaborator in front of this service.
    It is trusted as-is; authentication happens upstream.
    """
    return CallerIdentity(owner_id=x_owner_id, verified=x_verified)


def get_client_details(request: Request) -> ClientDetails:
    ip_address = None
    for header in PROXY_IP_HEADERS:
        value = request.headers.get(header)
        if value and value.split(",")[0].strip():
            ip_address = value.split(",")[0].strip()
            break
    if ip_address is None and request.client:
        ip_address = request.client.host

    return ClientDetails(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
    )


def get_link_service(
    db: Session = Depends(get_db),
    cache: CacheStrategy = Depends(get_cache),
) -> LinkService:
    return LinkService(db=db, config=settings, cache=cache)


def get_link_resolver(
    db: Session = Depends(get_db),
    cache: CacheStrategy = Depends(get_cache),
    producer: ClickEventProducer = Depends(get_producer),
) -> LinkResolver:
    return LinkResolver(db=db, config=settings, producer=producer, cache=cache)


def get_aggregator(
    storage: ClickStorageStrategy = Depends(get_click_storage),
) -> AnalyticsAggregator:
    return AnalyticsAggregator(storage=storage, config=settings)
