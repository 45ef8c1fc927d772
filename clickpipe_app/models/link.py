from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from clickpipe_app.database.connection import Base


UTM_FIELDS = (
    "utm_ref",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
)


class Link(Base):
    """
    Link model for transactional data.

    Click facts are NOT stored here; they live in the analytics store
    and reference a link weakly by key, so they outlive the link.

    The unique constraint on ``key`` is the authoritative uniqueness
    check; the allocator's availability lookup is only a pre-check.
    """
    __tablename__ = "links"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    key = Column(String(20), unique=True, nullable=False, index=True)
    destination_url = Column(String, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    password_hash = Column(String, nullable=True)
    owner_id = Column(String, nullable=True, index=True)  # None for anonymous/temporary links
    description = Column(String, nullable=True)

    utm_ref = Column(String(100), nullable=True)
    utm_source = Column(String(100), nullable=True)
    utm_medium = Column(String(100), nullable=True)
    utm_campaign = Column(String(100), nullable=True)
    utm_term = Column(String(100), nullable=True)
    utm_content = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def utm(self) -> dict:
        """UTM parameters that are actually set"""
        values = {field: getattr(self, field) for field in UTM_FIELDS}
        return {field: value for field, value in values.items() if value}
