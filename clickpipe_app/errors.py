"""
Typed failures raised by the clickpipe core.

Allocation and resolution errors propagate to the caller; the API layer
maps them to HTTP responses. Ingestion errors never leave the pipeline.
"""


class ClickpipeError(Exception):
    """Base class for all clickpipe errors"""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


# Key allocation domain

class InvalidKeyFormat(ClickpipeError):
    status_code = 422


class KeyConflict(ClickpipeError):
    status_code = 409


class AllocationExhausted(ClickpipeError):
    """Every random candidate collided; the keyspace is saturated."""
    status_code = 503


# Resolution domain

class NotFound(ClickpipeError):
    status_code = 404


class Unauthorized(ClickpipeError):
    status_code = 401


# Ingestion domain

class IngestionDropped(ClickpipeError):
    """A click event was abandoned (backpressure or retry exhaustion)."""


class ChannelUnavailable(ClickpipeError):
    """The ingestion channel could not be opened at startup."""
    status_code = 503
