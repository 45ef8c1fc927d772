from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, field_validator


_http_url = TypeAdapter(HttpUrl)


class CallerIdentity(BaseModel):
    """Opaque identity handed over by the auth collaborator"""
    owner_id: Optional[str] = None
    verified: bool = False


class ClientDetails(BaseModel):
    """Request metadata captured for click tracking"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None


class CreateLinkRequest(BaseModel):
    url: str = Field(..., description="Destination URL (scheme required)")
    key: Optional[str] = Field(None, min_length=4, max_length=20)
    description: Optional[str] = None
    expires_at: Optional[datetime] = None
    password: Optional[str] = None

    # UTM parameters
    utm_ref: Optional[str] = Field(None, max_length=100)
    utm_source: Optional[str] = Field(None, max_length=100)
    utm_medium: Optional[str] = Field(None, max_length=100)
    utm_campaign: Optional[str] = Field(None, max_length=100)
    utm_term: Optional[str] = Field(None, max_length=100)
    utm_content: Optional[str] = Field(None, max_length=100)

    temporary: bool = False

    @field_validator("url")
    @classmethod
    def url_must_be_http(cls, value: str) -> str:
        # Validate, but keep the caller's spelling (HttpUrl would add a trailing slash)
        _http_url.validate_python(value)
        return value


class KeyResponse(BaseModel):
    key: str


class KeysResponse(BaseModel):
    keys: List[str]


class ResolvedLink(BaseModel):
    url: str
    key: str
