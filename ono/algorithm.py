# ono/algorithm.py
"""
The feed.

Builds the home timeline out of the Store's index:

- our own notes are always shown
- other people's activities are shown only if we follow their author, and
  only if they are not replies, or reply to one of our posts, or reply to
  a post by someone else we follow

Boosts (Announce) are resolved to the boosted post and its author, with
the booster kept alongside.

Usage:
    feed = Feed(account, store, social, notes, federation)
    page = await feed.build_feed(limit=20)
    more = await feed.build_feed(limit=20, offset=page.next)
    thread = await feed.unroll_thread(note_id)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .activitypub import activity as ap
from .activitypub.actor import Account, Actor
from .errors import FederationError, StorageError
from .federation import FederationClient
from .notes import Notes, author_of
from .social import SocialGraph
from .storage import TYPE_ACTIVITY, TYPE_FAIL, TYPE_NOTE, IndexEntry, Store, parse_published

logger = logging.getLogger(__name__)


@dataclass
class FeedEntry:
    """A post ready for display, with its author and our own reactions."""
    note: Dict[str, Any]
    actor: Optional[Actor]
    boost: Optional[Dict[str, Any]] = None
    booster: Optional[Actor] = None
    is_liked: bool = False
    is_boosted: bool = False
    stats: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "note": self.note,
            "actor": self.actor.document if self.actor else None,
            "boost": self.boost,
            "booster": self.booster.document if self.booster else None,
            "isLiked": self.is_liked,
            "isBoosted": self.is_boosted,
            "stats": self.stats,
        }


@dataclass
class FeedPage:
    entries: List[FeedEntry] = field(default_factory=list)
    next: int = 0


def sort_by_date(entries: List[IndexEntry]) -> List[IndexEntry]:
    """Displayable entries (not failed, with a timestamp), newest first."""
    return sorted(
        (e for e in entries if e.type != TYPE_FAIL and e.published is not None),
        key=lambda e: e.published,
        reverse=True,
    )


class Feed:
    """
    Args:
        account: The local account
        store: Activity storage and index
        social: Follow graph and own likes/boosts
        notes: Activity loading and reply classification
        federation: Used to resolve post authors
    """

    def __init__(
        self,
        account: Account,
        store: Store,
        social: SocialGraph,
        notes: Notes,
        federation: FederationClient,
    ):
        self.account = account
        self.store = store
        self.social = social
        self.notes = notes
        self.federation = federation

    async def is_visible(self, entry: IndexEntry) -> bool:
        if entry.type == TYPE_NOTE:
            return True
        if entry.type != TYPE_ACTIVITY or not self.social.is_following(entry.actor):
            return False
        if not entry.inReplyTo:
            return True
        # replies only when they continue a conversation we are part of
        return self.notes.is_reply_to_my_post(entry) or await self.notes.is_reply_to_following(entry)

    async def get_full_post_details(self, activity: Union[Dict[str, Any], str]) -> Optional[FeedEntry]:
        """
        Load a post with its author. Returns None if anything can't be loaded.

        An Announce is replaced by the boosted post; the Announce itself
        and its actor become boost and booster.
        """
        try:
            note = await self.notes.get_activity(activity) if isinstance(activity, str) else activity
            actor = await self.federation.fetch_user(self.account, author_of(note))
        except (StorageError, FederationError, ValueError, TypeError) as e:
            logger.warning(f"Could not load post in feed: {e}")
            return None

        boost = booster = None
        if note.get("type") == "Announce":
            boost, booster = note, actor
            try:
                note = await self.notes.get_activity(ap.object_id(boost.get("object")))
                actor = await self.federation.fetch_user(self.account, author_of(note))
            except (StorageError, FederationError, ValueError, TypeError) as e:
                logger.warning(f"Could not fetch boosted post {boost.get('object')}: {e}")
                return None

        return FeedEntry(
            note=note,
            actor=actor,
            boost=boost,
            booster=booster,
            is_liked=self.social.is_liked(note["id"]),
            is_boosted=self.social.is_boosted(note["id"]),
        )

    async def build_feed(self, limit: int = 20, offset: int = 0) -> FeedPage:
        """
        One page of the home timeline.

        Returns:
            FeedPage whose next is the offset to pass for the following page
        """
        logger.debug("Generating activity stream...")
        ordered = sort_by_date(self.store.entries())

        entries: List[FeedEntry] = []
        position = offset
        while position < len(ordered) and len(entries) < limit:
            entry = ordered[position]
            position += 1
            if not await self.is_visible(entry):
                continue
            post = await self.get_full_post_details(entry.id)
            if post is not None:
                entries.append(post)

        return FeedPage(entries=entries, next=position)

    async def activity_since(self, since: int, exclude_self: bool = False) -> List[FeedEntry]:
        """Visible posts published after since (epoch millis), newest first."""
        result = []
        for entry in sort_by_date(self.store.entries()):
            if entry.published <= since:
                break
            if exclude_self and entry.actor == self.account.id:
                continue
            if not await self.is_visible(entry):
                continue
            post = await self.get_full_post_details(entry.id)
            if post is not None:
                result.append(post)
        return result

    def _stats(self, note_id: str) -> Dict[str, int]:
        likes = self.store.get_likes(note_id)
        return {
            "likes": len(likes["likes"]),
            "boosts": len(likes["boosts"]),
            "replies": self.store.reply_count(note_id),
        }

    async def _unroll(self, note_id: str, results: List[FeedEntry], seen: set, ascend: bool, descend: bool):
        if note_id in seen:
            return
        seen.add(note_id)
        try:
            post = await self.notes.get_activity(note_id)
            actor = await self.federation.fetch_user(self.account, author_of(post))
        except (StorageError, FederationError, ValueError, TypeError) as e:
            logger.info(f"Thread stops at {note_id}: {e}")
            return

        results.append(FeedEntry(
            note=post,
            actor=actor,
            is_liked=self.social.is_liked(note_id),
            is_boosted=self.social.is_boosted(note_id),
            stats=self._stats(note_id) if self.notes.is_my_post(note_id) else None,
        ))

        parent = ap.object_id(post.get("inReplyTo"))
        if ascend and parent:
            await self._unroll(parent, results, seen, ascend=True, descend=False)

        if descend:
            for reply in self.store.replies_to(note_id):
                await self._unroll(reply.id, results, seen, ascend=False, descend=True)

    async def unroll_thread(self, note_id: str) -> List[FeedEntry]:
        """
        The whole conversation around a post, oldest first.

        Walks up the inReplyTo chain to the root and down through every
        indexed reply. A post that can't be loaded ends that branch.
        """
        results: List[FeedEntry] = []
        await self._unroll(note_id, results, set(), ascend=True, descend=True)
        results.sort(key=lambda e: parse_published(e.note.get("published")) or 0)
        return results
