# ono/social.py
"""
Local social state: who follows us, who we follow, what we liked.

Structure:
    data_dir/
        followers.json       # [actorId, ...] in the order they followed
        following.json       # [actorId, ...]
        blocks.json          # [actorId or domain, ...]
        likes.json           # [{id, activityId}]  our outbound Likes
        boosts.json          # [{id, activityId}]  our outbound Announces
        notifications.json   # [{time, notification}]
        dm/
            inbox.json       # {actorId: {latest, lastRead}}
            <user@domain>.json

All files are read and written through the Store's JSON cache.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from .activitypub.actor import normalize_handle
from .storage import Store

logger = logging.getLogger(__name__)


def _now_millis() -> int:
    return int(time.time() * 1000)


def _domain(actor_or_object_id: str) -> str:
    return urlparse(actor_or_object_id).hostname or ""


class SocialGraph:
    """
    Follower, following and block lists plus our own likes and boosts.

    Lists are set-like (no duplicates) but keep insertion order.

    Args:
        store: Store providing the JSON cache
        blocked_domains: Domains blocked by configuration
    """

    def __init__(self, store: Store, blocked_domains: Iterable[str] = ()):
        self.store = store
        self.data_dir = store.data_dir
        self.blocked_domains = set(blocked_domains)

    def _path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def _read_list(self, name: str) -> List[Any]:
        return self.store.read_json(self._path(name), [])

    def _write_list(self, name: str, items: List[Any]):
        self.store.write_json(self._path(name), items)

    def _add(self, name: str, item: str) -> bool:
        items = self._read_list(name)
        if item in items:
            return False
        items.append(item)
        self._write_list(name, items)
        return True

    def _remove(self, name: str, item: str) -> bool:
        items = self._read_list(name)
        if item not in items:
            return False
        self._write_list(name, [i for i in items if i != item])
        return True

    # -- followers --------------------------------------------------------

    def get_followers(self) -> List[str]:
        return self._read_list("followers")

    def is_follower(self, actor_id: str) -> bool:
        return actor_id in self.get_followers()

    def add_follower(self, actor_id: str) -> bool:
        """Returns True if actor_id was not already a follower."""
        added = self._add("followers", actor_id)
        if added:
            logger.info(f"New follower {actor_id}")
        return added

    def remove_follower(self, actor_id: str) -> bool:
        removed = self._remove("followers", actor_id)
        if removed:
            logger.info(f"Lost follower {actor_id}")
        return removed

    # -- following --------------------------------------------------------

    def get_following(self) -> List[str]:
        return self._read_list("following")

    def is_following(self, actor_id: Optional[str]) -> bool:
        return actor_id is not None and actor_id in self.get_following()

    def follow(self, actor_id: str) -> bool:
        """Record a confirmed follow."""
        return self._add("following", actor_id)

    def unfollow(self, actor_id: str) -> bool:
        return self._remove("following", actor_id)

    # -- blocks -----------------------------------------------------------

    def get_blocks(self) -> List[str]:
        return self._read_list("blocks")

    def block(self, actor_or_domain: str) -> bool:
        return self._add("blocks", actor_or_domain)

    def unblock(self, actor_or_domain: str) -> bool:
        return self._remove("blocks", actor_or_domain)

    def is_blocked(self, actor_or_object_id: str) -> bool:
        """True if the id, or the domain it lives on, is blocked."""
        domain = _domain(actor_or_object_id)
        if domain and domain in self.blocked_domains:
            return True
        blocks = self.get_blocks()
        return actor_or_object_id in blocks or (bool(domain) and domain in blocks)

    # -- our own likes and boosts -----------------------------------------

    def _record(self, name: str, activity_id: str, outbound_id: str):
        items = [i for i in self._read_list(name) if i.get("activityId") != activity_id]
        items.append({"id": outbound_id, "activityId": activity_id})
        self._write_list(name, items)

    def _forget(self, name: str, activity_id: str) -> Optional[str]:
        items = self._read_list(name)
        match = next((i for i in items if i.get("activityId") == activity_id), None)
        if match is None:
            return None
        self._write_list(name, [i for i in items if i != match])
        return match.get("id")

    def record_my_like(self, activity_id: str, like_id: str):
        self._record("likes", activity_id, like_id)

    def forget_my_like(self, activity_id: str) -> Optional[str]:
        """Drop our like of activity_id; returns the Like id to undo."""
        return self._forget("likes", activity_id)

    def record_my_boost(self, activity_id: str, announce_id: str):
        self._record("boosts", activity_id, announce_id)

    def forget_my_boost(self, activity_id: str) -> Optional[str]:
        return self._forget("boosts", activity_id)

    def liked_ids(self) -> set:
        return {i.get("activityId") for i in self._read_list("likes")}

    def boosted_ids(self) -> set:
        return {i.get("activityId") for i in self._read_list("boosts")}

    def is_liked(self, activity_id: str) -> bool:
        return activity_id in self.liked_ids()

    def is_boosted(self, activity_id: str) -> bool:
        return activity_id in self.boosted_ids()


class NotificationLog:
    """Append-only log of things that happened to us."""

    def __init__(self, store: Store):
        self.store = store
        self.path = store.data_dir / "notifications.json"

    def add(self, notification: Dict[str, Any]):
        notifications = self.store.read_json(self.path, [])
        notifications.append({
            "time": _now_millis(),
            "notification": notification,
        })
        self.store.write_json(self.path, notifications)

    def all(self) -> List[Dict[str, Any]]:
        """Notifications, newest first."""
        return list(reversed(self.store.read_json(self.path, [])))

    def since(self, since_millis: int) -> List[Dict[str, Any]]:
        return [n for n in self.all() if n.get("time", 0) > since_millis]

    def remove_for_object(self, object_id: str, types: Iterable[str] = ("Reply", "Mention")) -> int:
        """Drop notifications of the given types that point at object_id."""
        types = set(types)
        notifications = self.store.read_json(self.path, [])
        kept = [
            n for n in notifications
            if not (
                n.get("notification", {}).get("type") in types
                and n.get("notification", {}).get("object") == object_id
            )
        ]
        removed = len(notifications) - len(kept)
        if removed:
            self.store.write_json(self.path, kept)
        return removed

    def __len__(self) -> int:
        return len(self.store.read_json(self.path, []))


class DirectMessages:
    """
    Direct messages, one file per correspondent plus an unread index.
    """

    def __init__(self, store: Store):
        self.store = store
        self.dm_dir = store.data_dir / "dm"
        self.dm_dir.mkdir(parents=True, exist_ok=True)
        self.index_path = self.dm_dir / "inbox.json"

    def _thread_path(self, actor_id: str) -> Path:
        return self.dm_dir / f"{normalize_handle(actor_id)}.json"

    def get_index(self) -> Dict[str, Dict[str, int]]:
        return self.store.read_json(self.index_path, {})

    def get_thread(self, actor_id: str) -> List[Dict[str, Any]]:
        return self.store.read_json(self._thread_path(actor_id), [])

    def accept(self, message: Dict[str, Any], actor_id: str, incoming: bool = True) -> bool:
        """
        Store a direct message exchanged with actor_id.

        Returns False if a message with the same id is already stored.
        """
        thread = self.get_thread(actor_id)
        if any(m.get("id") == message.get("id") for m in thread):
            return False
        thread.append(message)
        self.store.write_json(self._thread_path(actor_id), thread)

        index = self.get_index()
        record = index.setdefault(actor_id, {"latest": 0, "lastRead": 0})
        record["latest"] = _now_millis()
        if not incoming:
            record["lastRead"] = record["latest"]
        self.store.write_json(self.index_path, index)
        logger.debug(f"Stored direct message {message.get('id')} with {actor_id}")
        return True

    def mark_read(self, actor_id: str):
        index = self.get_index()
        if actor_id in index:
            index[actor_id]["lastRead"] = _now_millis()
            self.store.write_json(self.index_path, index)

    def unread_count(self) -> int:
        return sum(
            1 for record in self.get_index().values()
            if not record.get("lastRead") or record["lastRead"] < record.get("latest", 0)
        )
