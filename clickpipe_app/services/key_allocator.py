"""
Short key allocation.

The availability check here is only a pre-check. Two requests can both
see a key as free; the unique constraint on links.key decides, and the
loser gets KeyConflict from LinkService at insert time.
"""

import re
import secrets
import string

from sqlalchemy.orm import Session

from clickpipe_app.config import Settings
from clickpipe_app.errors import AllocationExhausted, InvalidKeyFormat, KeyConflict
from clickpipe_app.models.link import Link

KEY_PATTERN = re.compile(r"[A-Za-z0-9-]{4,20}")
KEY_ALPHABET = string.ascii_letters + string.digits
# Path segments already taken by fixed routes, which would shadow a link's key
RESERVED_KEYS = frozenset({"random", "health", "docs", "redoc"})


def is_reserved_key(key: str) -> bool:
    return key in RESERVED_KEYS


def is_valid_key(key: str) -> bool:
    return bool(key) and KEY_PATTERN.fullmatch(key) is not None and not is_reserved_key(key)


class KeyAllocator:
    """
    Random generation with collision checking.

    Random keys are drawn from 62 symbols; at the default length of 6
    that is ~5.6e10 keys, so a collision is rare and AllocationExhausted
    means the store is unexpectedly saturated.
    """

    def __init__(self, db: Session, config: Settings):
        self.db = db
        self.length = config.key_length
        self.max_attempts = config.key_max_attempts

    def is_available(self, key: str) -> bool:
        """True if no link currently uses this key"""
        return self.db.query(Link.id).filter(Link.key == key).first() is None

    def allocate(self, requested_key: str = None) -> str:
        """
        Return a key that was unused at check time.

        Raises:
            InvalidKeyFormat: requested key is malformed or reserved
            KeyConflict: requested key is taken
            AllocationExhausted: every random candidate collided
        """
        if requested_key is not None:
            if is_reserved_key(requested_key):
                raise InvalidKeyFormat(f"Key '{requested_key}' is reserved")
            if not is_valid_key(requested_key):
                raise InvalidKeyFormat(
                    f"Key '{requested_key}' must be 4-20 characters of letters, digits or '-'"
                )
            if not self.is_available(requested_key):
                raise KeyConflict(f"Key '{requested_key}' already exists")
            return requested_key

        for _ in range(self.max_attempts):
            candidate = self._generate_random_key()
            if not is_reserved_key(candidate) and self.is_available(candidate):
                return candidate

        raise AllocationExhausted(
            f"Could not generate unique key after {self.max_attempts} attempts"
        )

    def _generate_random_key(self) -> str:
        return ''.join(secrets.choice(KEY_ALPHABET) for _ in range(self.length))
