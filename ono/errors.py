# ono/errors.py
"""
Exception hierarchy for the node.

Signature problems never escape verification (it returns False instead);
the classes here cover everything that callers are expected to handle.
"""

from typing import Optional


class OnoError(Exception):
    """Base class for all node errors."""


class ConfigError(OnoError):
    """Invalid or missing configuration."""


class SignatureError(OnoError):
    """A request could not be signed, or a signature header is malformed."""


class FederationError(OnoError):
    """A remote node could not be reached or returned an error."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class DiscoveryError(FederationError):
    """Webfinger lookup failed."""


class ActorLoadError(FederationError):
    """An actor document could not be fetched."""


class ActivityFetchError(FederationError):
    """A remote activity could not be fetched."""


class StorageError(OnoError):
    """Problem reading or writing persisted activities."""


class NotIndexedError(StorageError):
    """The activity id has no index entry, so it has no known location."""

    def __init__(self, activity_id: str):
        super().__init__(f"Activity is not indexed: {activity_id}")
        self.activity_id = activity_id


class UnreachableError(StorageError):
    """The activity id is indexed as a failed fetch."""

    def __init__(self, activity_id: str):
        super().__init__(f"Activity was unreachable: {activity_id}")
        self.activity_id = activity_id
