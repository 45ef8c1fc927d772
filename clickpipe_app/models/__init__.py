"""
Database models for clickpipe.

Note: Click facts are stored in a separate analytics store (see
clickpipe_app.storage), not in SQLAlchemy models. This separates
transactional data from analytical data.
"""

from .link import Link, UTM_FIELDS

__all__ = ["Link", "UTM_FIELDS"]
