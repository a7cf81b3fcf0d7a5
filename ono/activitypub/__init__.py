# ono/activitypub/__init__.py
"""
ActivityPub building blocks.

Core concepts:
- Actor: A federated identity, local or remote
- Account: The local actor together with its private key
- Activity: A JSON-LD envelope (Follow, Like, Announce, Create, ...)
- Signature: HTTP signature proving which actor sent a request
"""

from .actor import Account, AccountStore, Actor, normalize_handle, split_handle
from .activity import PUBLIC, build_note
from .signatures import sign_request, verify_digest, verify_request

__all__ = [
    "Account",
    "AccountStore",
    "Actor",
    "normalize_handle",
    "split_handle",
    "PUBLIC",
    "build_note",
    "sign_request",
    "verify_request",
    "verify_digest",
]
