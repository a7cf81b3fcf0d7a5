# ono/notes.py
"""
Activity-level operations on top of the Store.

Notes covers both sides of a post's life:
- remote activities: fetch on demand, persist, delete, like/boost records
- local notes: create, edit and delete, with delivery to followers
- our own likes and boosts of other people's posts
"""

import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

from .activitypub import activity as ap
from .activitypub.actor import Account, Actor
from .errors import ActivityFetchError, FederationError, StorageError
from .federation import FederationClient
from .social import NotificationLog, SocialGraph
from .storage import TYPE_FAIL, TYPE_NOTE, IndexEntry, Store

logger = logging.getLogger(__name__)

Post = Union[Dict[str, Any], IndexEntry]


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _in_reply_to(post: Post) -> Optional[str]:
    if isinstance(post, IndexEntry):
        return post.inReplyTo
    return ap.object_id(post.get("inReplyTo"))


def author_of(post: Dict[str, Any]) -> Optional[str]:
    """Author id of a post (attributedTo), falling back to actor."""
    return ap.object_id(post.get("attributedTo") or post.get("actor"))


class Notes:
    """
    Args:
        account: The local account
        store: Activity storage and index
        social: Follow graph and own likes/boosts
        notifications: Notification log
        federation: Client used for fetching and delivery
    """

    def __init__(
        self,
        account: Account,
        store: Store,
        social: SocialGraph,
        notifications: NotificationLog,
        federation: FederationClient,
    ):
        self.account = account
        self.store = store
        self.social = social
        self.notifications = notifications
        self.federation = federation

    # -- classification ---------------------------------------------------

    def is_my_post(self, post: Union[Post, str]) -> bool:
        post_id = post if isinstance(post, str) else (
            post.id if isinstance(post, IndexEntry) else post.get("id", "")
        )
        return bool(post_id) and self.store.is_local(post_id)

    def is_reply_to_my_post(self, post: Post) -> bool:
        parent = _in_reply_to(post)
        return bool(parent) and self.is_my_post(parent)

    async def is_reply_to_following(self, post: Post) -> bool:
        """True if post replies to something written by someone we follow."""
        parent = _in_reply_to(post)
        if not parent:
            return False
        try:
            parent_post = await self.get_activity(parent)
        except (StorageError, FederationError) as e:
            logger.debug(f"Could not load parent {parent}: {e}")
            return False
        return self.social.is_following(author_of(parent_post))

    def is_mention(self, obj: Dict[str, Any]) -> bool:
        return any(
            isinstance(tag, dict) and tag.get("type") == "Mention" and tag.get("href") == self.account.id
            for tag in as_list(obj.get("tag"))
        )

    def is_direct(self, obj: Dict[str, Any]) -> bool:
        """Marked as a direct message, or addressed to us and nobody else."""
        if obj.get("directMessage") is True:
            return True
        recipients = set(as_list(obj.get("to")) + as_list(obj.get("cc")))
        return recipients == {self.account.id}

    # -- likes and boosts --------------------------------------------------

    def get_likes_for_note(self, activity_id: str) -> Dict[str, List[str]]:
        return self.store.get_likes(activity_id)

    def reply_count(self, activity_id: str) -> int:
        return self.store.reply_count(activity_id)

    def _update_likes(self, request: Dict[str, Any], key: str, add: bool) -> bool:
        actor = ap.object_id(request["actor"])
        note_id = ap.object_id(request["object"])
        record = self.store.get_likes(note_id)
        present = actor in record[key]
        if add == present:
            return False
        if add:
            record[key].append(actor)
        else:
            record[key] = [a for a in record[key] if a != actor]
        self.store.write_likes(note_id, record)
        return True

    def record_like(self, request: Dict[str, Any]) -> bool:
        """Add the Like's actor to the target's likers. False if already there."""
        logger.debug(f"Incoming like for {ap.object_id(request['object'])}")
        added = self._update_likes(request, "likes", add=True)
        if added:
            self.notifications.add(request)
        return added

    def record_boost(self, request: Dict[str, Any]) -> bool:
        logger.debug(f"Incoming boost for {ap.object_id(request['object'])}")
        added = self._update_likes(request, "boosts", add=True)
        if added:
            self.notifications.add(request)
        return added

    def record_undo_like(self, request: Dict[str, Any]) -> bool:
        """request is the inner Like of an Undo."""
        logger.debug(f"Incoming unlike for {ap.object_id(request['object'])}")
        return self._update_likes(request, "likes", add=False)

    def record_undo_boost(self, request: Dict[str, Any]) -> bool:
        logger.debug(f"Incoming unboost for {ap.object_id(request['object'])}")
        return self._update_likes(request, "boosts", add=False)

    # -- remote activities ------------------------------------------------

    def create_activity(self, note: Dict[str, Any]) -> bool:
        """Persist an activity. Returns True if it was not indexed before."""
        is_new = not self.store.is_indexed(note["id"]) or self.store.from_index(note["id"]).type == TYPE_FAIL
        self.store.persist(note)
        return is_new

    def update_activity(self, note: Dict[str, Any]):
        """Persist a changed activity, replacing its index entry."""
        self.store.persist(note, reindex=True)

    def delete_activity(self, activity_id: str) -> bool:
        """Forget an activity as if it never was, with its reply/mention notifications."""
        if not self.store.delete(activity_id):
            return False
        self.notifications.remove_for_object(activity_id)
        logger.info(f"Deleted {activity_id}")
        return True

    async def get_activity(self, activity_id: str) -> Dict[str, Any]:
        """
        Load an activity from storage, fetching it if it is unknown.

        Raises:
            UnreachableError: a previous fetch of this id failed
            ActivityFetchError: the id is blocked or the fetch failed
        """
        if not isinstance(activity_id, str) or not activity_id:
            raise ActivityFetchError(f"Not an activity id: {activity_id!r}")
        if self.social.is_blocked(activity_id):
            raise ActivityFetchError(f"Content is from blocked domain: {activity_id}", url=activity_id)
        if self.store.is_indexed(activity_id):
            return self.store.read(activity_id)
        return await self.fetch_activity(activity_id)

    async def fetch_activity(self, activity_id: str) -> Dict[str, Any]:
        """Fetch a remote activity and persist it. Failures are indexed."""
        logger.debug(f"Fetch {activity_id}")
        try:
            activity = await self.federation.fetch_object(self.account, activity_id)
            if not isinstance(activity, dict) or not activity.get("id"):
                raise ActivityFetchError(f"not an activity: {activity_id}", url=activity_id)
        except FederationError as e:
            logger.warning(f"Failed to fetch {activity_id}: {e}")
            self.store.add_failure(activity_id, e.status or str(e))
            raise
        self.create_activity(activity)
        return activity

    # -- our likes and boosts ---------------------------------------------

    async def _author(self, post: Dict[str, Any]) -> Actor:
        author = author_of(post)
        if not author:
            raise ValueError(f"No author on {post.get('id')}")
        return await self.federation.fetch_user(self.account, author)

    async def like(self, post_id: str) -> Dict[str, Any]:
        """Like a post and remember the Like so it can be undone."""
        post = await self.get_activity(post_id)
        author = await self._author(post)
        message = self.federation.send_like(self.account, post, author)
        self.social.record_my_like(post_id, message["id"])
        return message

    async def unlike(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Retract our Like of a post. None if we never liked it."""
        like_id = self.social.forget_my_like(post_id)
        if like_id is None:
            return None
        post = await self.get_activity(post_id)
        author = await self._author(post)
        return self.federation.send_undo_like(self.account, post, author, like_id)

    async def boost(self, post_id: str) -> Dict[str, Any]:
        """Announce a post to our followers and its author."""
        post = await self.get_activity(post_id)
        author = await self._author(post)
        message = self.federation.send_boost(self.account, author, post)
        self.social.record_my_boost(post_id, message["id"])
        return message

    async def unboost(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Retract our boost of a post. None if we never boosted it."""
        announce_id = self.social.forget_my_boost(post_id)
        if announce_id is None:
            return None
        post = await self.get_activity(post_id)
        author = await self._author(post)
        return self.federation.send_undo_boost(self.account, author, post, announce_id)

    # -- local notes ------------------------------------------------------

    def get_note(self, note_id: str) -> Dict[str, Any]:
        """Read a local note (NotIndexedError if unknown)."""
        return self.store.read(note_id)

    async def create_note(
        self,
        content: str,
        summary: Optional[str] = None,
        in_reply_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Publish a new note.

        It is stored, then a Create is queued to our followers and, for a
        reply, to the author of the post being replied to.
        """
        reply_author = None
        if in_reply_to:
            try:
                parent = await self.get_activity(in_reply_to)
                reply_author = author_of(parent)
            except (StorageError, FederationError) as e:
                logger.warning(f"Replying to a post that could not be loaded: {e}")

        note = ap.build_note(self.account, content, summary, in_reply_to, reply_author)
        self.store.persist(note)

        recipients = [self.account.followers]
        if reply_author and reply_author != self.account.id:
            recipients.append(reply_author)
        self.federation.send_to_recipients(self.account, recipients, ap.build_create(self.account, note))
        logger.info(f"Created note {note['id']}")
        return note

    def update_note(self, note_id: str, content: str, summary: Optional[str] = None) -> Dict[str, Any]:
        """Edit a local note and send an Update to followers."""
        note = self.get_note(note_id)
        note["content"] = content
        note["summary"] = summary
        note["sensitive"] = summary is not None
        note["updated"] = ap.now_iso()
        self.store.persist(note, reindex=True)
        self.federation.send_to_recipients(
            self.account,
            [self.account.followers, *as_list(note.get("cc"))],
            ap.build_update(self.account, note),
        )
        return note

    def delete_note(self, note_id: str) -> bool:
        """Delete a local note and tell followers."""
        if not self.is_my_post(note_id):
            raise ValueError(f"Not a local note: {note_id}")
        note = self.get_note(note_id)
        extra = [r for r in as_list(note.get("cc")) if r != self.account.followers]
        self.delete_activity(note_id)
        self.federation.send_delete(self.account, note_id, extra)
        return True

    def outbox_page(self, offset: int = 0, limit: int = 10) -> Dict[str, Any]:
        """Local notes, newest first, for serving the outbox."""
        mine = sorted(
            (e for e in self.store.entries() if e.type == TYPE_NOTE and e.published is not None),
            key=lambda e: e.published,
            reverse=True,
        )
        posts = [self.store.read(e.id) for e in mine[offset:offset + limit]]
        return {"total": len(mine), "posts": posts}

    def domain_of(self, activity_id: str) -> str:
        return urlparse(activity_id).hostname or ""
