# ono/inbox.py
"""
Inbound activity dispatch.

handle() is what an HTTP inbox route calls with the parsed JSON body, the
request headers and the path the request arrived on. It returns the HTTP
status to answer with:

    400  body is not an activity
    403  sender is blocked, unknown, or the signature does not verify
    200  everything else, including activities we could not process

Verified activities are routed through a table keyed by
(activity type, object type). A key with object type None matches any
object.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from .activitypub import activity as ap
from .activitypub.actor import Account, Actor
from .activitypub.signatures import verify_digest, verify_request
from .errors import FederationError, StorageError
from .federation import FederationClient
from .notes import Notes, author_of
from .social import DirectMessages, NotificationLog, SocialGraph
from .storage import TYPE_ACTIVITY, TYPE_FAIL

logger = logging.getLogger(__name__)

INBOX_PATH = "/api/inbox"

Handler = Callable[[Dict[str, Any], Actor], Awaitable[None]]


class InboxDispatcher:
    """
    Verifies and applies inbound activities.

    Args:
        account: The local account
        federation: Used to resolve senders and to reply (Accept)
        notes: Activity persistence and like/boost records
        social: Follow graph and block list
        notifications: Notification log
        dms: Direct message store
    """

    def __init__(
        self,
        account: Account,
        federation: FederationClient,
        notes: Notes,
        social: SocialGraph,
        notifications: NotificationLog,
        dms: DirectMessages,
    ):
        self.account = account
        self.federation = federation
        self.notes = notes
        self.store = notes.store
        self.social = social
        self.notifications = notifications
        self.dms = dms
        self.handlers: Dict[Tuple[str, Optional[str]], Handler] = {
            ("Follow", None): self.on_follow,
            ("Undo", "Follow"): self.on_undo_follow,
            ("Undo", "Like"): self.on_undo_like,
            ("Undo", "Announce"): self.on_undo_announce,
            ("Accept", "Follow"): self.on_accept_follow,
            ("Like", None): self.on_like,
            ("Announce", None): self.on_announce,
            ("Create", None): self.on_create,
            ("Update", None): self.on_update,
            ("Delete", None): self.on_delete,
        }

    def handler_for(self, message: Dict[str, Any]) -> Optional[Handler]:
        activity_type = message.get("type")
        obj_type = ap.object_type(message.get("object"))
        return self.handlers.get((activity_type, obj_type)) or self.handlers.get((activity_type, None))

    async def resolve_actor(self, actor_id: str) -> Optional[Actor]:
        try:
            return await self.federation.fetch_user(self.account, actor_id)
        except (FederationError, ValueError) as e:
            logger.info(f"Could not resolve sender {actor_id}: {e}")
            return None

    async def handle(
        self,
        message: Any,
        headers: Mapping[str, str],
        path: str = INBOX_PATH,
        body: Optional[bytes] = None,
    ) -> int:
        """
        Verify and apply one inbound activity.

        Args:
            message: Parsed JSON body
            headers: Request headers
            path: Path the request was delivered to
            body: Raw request body, to check the Digest header against

        Returns:
            HTTP status code for the response
        """
        if not isinstance(message, dict) or not message.get("type") or not message.get("actor"):
            logger.info("Rejecting malformed inbox request")
            return 400

        actor_id = ap.object_id(message["actor"])
        if not isinstance(actor_id, str) or self.social.is_blocked(actor_id):
            logger.info(f"Rejecting {message.get('type')} from blocked actor {actor_id}")
            return 403

        if body is not None and not verify_digest(headers, body):
            logger.info(f"Digest mismatch on {message.get('type')} from {actor_id}")
            return 403

        actor = await self.resolve_actor(actor_id)
        if not verify_request(actor, headers, path):
            logger.info(f"Signature failed for {message.get('type')} from {actor_id}")
            return 403

        await self.dispatch(message, actor)
        return 200

    async def dispatch(self, message: Dict[str, Any], actor: Actor):
        """Apply a verified activity. Errors are logged, never raised."""
        handler = self.handler_for(message)
        if handler is None:
            logger.info(f"Ignoring {message.get('type')} ({ap.object_type(message.get('object'))})")
            return
        try:
            await handler(message, actor)
        except StorageError as e:
            logger.warning(f"Could not apply {message.get('type')} {message.get('id')}: {e}")
        except Exception:
            logger.exception(f"Failed to process {message.get('type')} {message.get('id')}")

    # -- follows ----------------------------------------------------------

    async def on_follow(self, message: Dict[str, Any], actor: Actor):
        logger.debug(f"Incoming follow request from {actor.id}")
        if self.social.add_follower(actor.id):
            self.notifications.add(message)
        self.federation.send_accept(self.account, actor, message)

    async def on_undo_follow(self, message: Dict[str, Any], actor: Actor):
        logger.debug(f"Incoming unfollow from {actor.id}")
        self.social.remove_follower(actor.id)

    async def on_accept_follow(self, message: Dict[str, Any], actor: Actor):
        follow = message["object"]
        if ap.object_id(follow.get("actor")) != self.account.id or ap.object_id(follow.get("object")) != actor.id:
            logger.warning(f"Ignoring Accept from {actor.id} for a follow we did not send")
            return
        logger.debug(f"Follow accepted by {actor.id}")
        self.social.follow(actor.id)

    # -- ownership --------------------------------------------------------

    def may_publish(self, object_id: Any, actor: Actor) -> bool:
        """Whether actor may introduce an object with this id: never ours, same host as the sender."""
        if not isinstance(object_id, str) or not object_id:
            return False
        if self.notes.is_my_post(object_id):
            return False
        return self.notes.domain_of(object_id) == self.notes.domain_of(actor.id)

    # -- likes and boosts -------------------------------------------------

    def _inner(self, message: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
        """The retracted activity of an Undo, attributed to the sender."""
        inner = message["object"]
        return {"actor": actor.id, "object": inner["object"]}

    async def on_like(self, message: Dict[str, Any], actor: Actor):
        self.notes.record_like(message)

    async def on_undo_like(self, message: Dict[str, Any], actor: Actor):
        self.notes.record_undo_like(self._inner(message, actor))

    async def on_announce(self, message: Dict[str, Any], actor: Actor):
        target = ap.object_id(message.get("object"))
        if not target:
            return
        if not self.may_publish(message.get("id"), actor):
            logger.warning(f"Refusing boost {message.get('id')} from {actor.id}")
            return
        if self.notes.is_my_post(target):
            self.notes.record_boost(message)
            return
        if self.store.is_indexed(message["id"]):
            logger.debug(f"Already have boost {message['id']}")
            return
        try:
            await self.notes.get_activity(target)
        except (FederationError, StorageError) as e:
            logger.info(f"Ignoring boost of unreachable post {target}: {e}")
            return
        self.notes.create_activity(message)

    async def on_undo_announce(self, message: Dict[str, Any], actor: Actor):
        inner = message["object"]
        target = ap.object_id(inner.get("object"))
        if target and self.notes.is_my_post(target):
            self.notes.record_undo_boost(self._inner(message, actor))
            return
        boost_id = inner.get("id")
        entry = self.store.from_index(boost_id) if isinstance(boost_id, str) else None
        if entry is None or entry.type != TYPE_ACTIVITY or entry.actor != actor.id:
            logger.warning(f"{actor.id} tried to undo {boost_id}, which is not their boost")
            return
        if self.store.read(boost_id).get("type") != "Announce":
            logger.warning(f"{actor.id} tried to undo {boost_id}, which is not a boost")
            return
        self.notes.delete_activity(boost_id)

    # -- posts ------------------------------------------------------------

    async def on_create(self, message: Dict[str, Any], actor: Actor):
        note = message.get("object")
        if not isinstance(note, dict) or not note.get("id"):
            logger.info(f"Ignoring Create without an embedded object from {actor.id}")
            return
        if not self.may_publish(note["id"], actor) or author_of(note) != actor.id:
            logger.warning(f"Refusing {note['id']} by {author_of(note)} from {actor.id}")
            return

        if self.notes.is_direct(note):
            self.dms.accept(note, actor.id)
            return

        if self.store.is_indexed(note["id"]) and self.store.from_index(note["id"]).type != TYPE_FAIL:
            logger.debug(f"Already have {note['id']}")
            return

        if self.notes.is_reply_to_my_post(note):
            self.notes.create_activity(note)
            self.notifications.add({"type": "Reply", "actor": actor.id, "object": note["id"]})
        elif self.notes.is_mention(note):
            self.notes.create_activity(note)
            self.notifications.add({"type": "Mention", "actor": actor.id, "object": note["id"]})
        else:
            self.notes.create_activity(note)

    async def on_update(self, message: Dict[str, Any], actor: Actor):
        note = message.get("object")
        if not isinstance(note, dict) or not note.get("id"):
            return
        entry = self.store.from_index(note["id"])
        owner = entry.actor if entry is not None and entry.type != TYPE_FAIL else author_of(note)
        if not self.may_publish(note["id"], actor) or owner != actor.id or author_of(note) != actor.id:
            logger.warning(f"{actor.id} tried to update {note['id']} by {owner}")
            return
        self.notes.update_activity(note)

    async def on_delete(self, message: Dict[str, Any], actor: Actor):
        target = ap.object_id(message.get("object"))
        if not target or not self.store.is_indexed(target):
            return
        entry = self.store.from_index(target)
        if entry.actor and self.notes.domain_of(entry.actor) != self.notes.domain_of(actor.id):
            logger.warning(f"{actor.id} tried to delete {target} by {entry.actor}")
            return
        self.notes.delete_activity(target)
