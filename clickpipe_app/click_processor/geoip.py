"""
GeoIP lookups backed by a local MaxMind City database.

The reader is loaded lazily on first use. A missing or corrupt database
is logged once and every lookup then resolves to "unknown".
"""

import threading
from typing import NamedTuple, Optional

import geoip2.database
import geoip2.errors
import maxminddb
from loguru import logger

from clickpipe_app.queue.models import UNKNOWN


class GeoLocation(NamedTuple):
    country: str = UNKNOWN
    region: str = UNKNOWN
    city: str = UNKNOWN


UNKNOWN_LOCATION = GeoLocation()


class GeoIPService:
    """Lazily-initialized City database reader"""

    def __init__(self, city_db_path: str):
        self._city_db_path = city_db_path
        self._reader: Optional[geoip2.database.Reader] = None
        self._loaded = False
        self._lock = threading.Lock()

    def _get_reader(self) -> Optional[geoip2.database.Reader]:
        if not self._loaded:
            with self._lock:
                if not self._loaded:
                    try:
                        self._reader = geoip2.database.Reader(self._city_db_path)
                    except (OSError, maxminddb.InvalidDatabaseError) as e:
                        logger.warning(f"GeoIP city database unavailable ({self._city_db_path}): {e}")
                        self._reader = None
                    self._loaded = True
        return self._reader

    def lookup(self, ip_address: Optional[str]) -> GeoLocation:
        if not ip_address:
            return UNKNOWN_LOCATION
        reader = self._get_reader()
        if reader is None:
            return UNKNOWN_LOCATION
        try:
            response = reader.city(ip_address)
        except (
            geoip2.errors.AddressNotFoundError,
            ValueError,
            maxminddb.InvalidDatabaseError,
        ):
            return UNKNOWN_LOCATION
        return GeoLocation(
            country=response.country.name or UNKNOWN,
            region=response.subdivisions.most_specific.name or UNKNOWN,
            city=response.city.name or UNKNOWN,
        )

    def close(self):
        if self._reader is not None:
            self._reader.close()
