# ono - Single-user ActivityPub node
#
# One local account federating with the rest of the fediverse. Activities
# are stored as content-addressed JSON files with an in-memory index, and
# the home feed is rebuilt from that index on demand.
#
# Core concepts:
# - Account: The local identity and its signing keys
# - Store: Activity files, the index over them, and a JSON read cache
# - FederationClient: Discovery, signed fetches and queued delivery
# - InboxDispatcher: Verifies and applies inbound activities
# - Feed: Timeline and thread construction

from .activitypub import Account, AccountStore, Actor
from .algorithm import Feed, FeedEntry, FeedPage
from .cache import CacheEntry, JsonCache
from .config import NodeConfig
from .errors import (
    ActivityFetchError,
    ActorLoadError,
    ConfigError,
    DiscoveryError,
    FederationError,
    NotIndexedError,
    OnoError,
    SignatureError,
    StorageError,
    UnreachableError,
)
from .federation import FederationClient, OutboxPage
from .inbox import InboxDispatcher
from .node import Node
from .notes import Notes
from .queue import DeliveryQueue
from .social import DirectMessages, NotificationLog, SocialGraph
from .storage import IndexEntry, Store

__all__ = [
    # Identity
    "Account",
    "AccountStore",
    "Actor",
    # Storage
    "Store",
    "IndexEntry",
    "JsonCache",
    "CacheEntry",
    # Federation
    "FederationClient",
    "OutboxPage",
    "DeliveryQueue",
    "InboxDispatcher",
    # Posts and people
    "Notes",
    "SocialGraph",
    "NotificationLog",
    "DirectMessages",
    # Feed
    "Feed",
    "FeedEntry",
    "FeedPage",
    # Runtime
    "Node",
    "NodeConfig",
    # Errors
    "OnoError",
    "ConfigError",
    "SignatureError",
    "FederationError",
    "DiscoveryError",
    "ActorLoadError",
    "ActivityFetchError",
    "StorageError",
    "NotIndexedError",
    "UnreachableError",
]

__version__ = "0.1.0"
