"""
Data models for queue messages and persisted click facts.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


UNKNOWN = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClickEvent(BaseModel):
    """
    Raw click event published on the channel when a key resolves.

    Carries only what the request handler already has; enrichment
    happens in the consumer, off the redirect path.
    """

    link_key: str = Field(..., description="The key that was resolved")
    timestamp: datetime = Field(default_factory=utcnow, description="Resolution time (server clock, UTC)")

    # Request metadata
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="User agent string")
    referer: Optional[str] = Field(None, description="HTTP referer")

    # Set by queue backends that need acknowledgment (Redis Streams)
    _message_id: Optional[str] = PrivateAttr(default=None)

    @property
    def message_id(self) -> Optional[str]:
        return self._message_id

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "link_key": "abc1",
                "timestamp": "2025-10-29T10:30:00Z",
                "ip_address": "81.2.69.142",
                "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0",
                "referer": "https://twitter.com",
            }
        }
    )


class ClickFact(BaseModel):
    """
    Enriched, immutable click record as persisted in the analytics store.

    The id is assigned at enrichment time, so a redelivered event becomes
    a second fact rather than overwriting the first.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    link_key: str
    timestamp: datetime
    referer: Optional[str] = None

    device: str = UNKNOWN
    os: str = UNKNOWN
    browser: str = UNKNOWN

    country: str = UNKNOWN
    region: str = UNKNOWN
    city: str = UNKNOWN

    model_config = ConfigDict(frozen=True)
