# ono/federation.py
"""
Talking to other servers.

FederationClient resolves remote actors, fetches remote objects and
outboxes, and queues signed deliveries. It holds no identity of its own:
every operation that signs takes the local Account as an argument.

Usage:
    async with httpx.AsyncClient() as http:
        client = FederationClient(http, queue, store, followers=social.get_followers)
        actor = await client.fetch_user(account, "bob@remote.example")
        client.send_follow(account, actor)
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import httpx

from .activitypub import activity as ap
from .activitypub.actor import Account, Actor, normalize_handle, split_handle
from .activitypub.signatures import sign_request
from .errors import ActivityFetchError, ActorLoadError, DiscoveryError, FederationError
from .queue import DeliveryQueue
from .storage import Store, hash_id

logger = logging.getLogger(__name__)

ACTIVITY_ACCEPT = 'application/activity+json, application/ld+json; profile="https://www.w3.org/ns/activitystreams"'
WEBFINGER_ACCEPT = "application/jrd+json, application/json, application/ld+json"
ACTOR_TTL = 60 * 60

Recipient = Union[Actor, str]


@dataclass
class OutboxPage:
    """First page of a remote outbox."""
    outbox: Optional[Dict[str, Any]] = None
    page: Optional[Dict[str, Any]] = None
    items: List[Any] = field(default_factory=list)


class FederationClient:
    """
    Client for remote ActivityPub servers.

    Args:
        http: Shared async HTTP client
        queue: Delivery queue for outbound activities
        store: Store whose JSON cache backs the actor cache
        followers: Returns the current follower ids (read at send time)
        fetch_timeout: Timeout for signed GETs
        delivery_timeout: Timeout for inbox POSTs
        actor_ttl: Seconds before a cached actor is refetched
        user_agent: User-Agent header for every request
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        queue: DeliveryQueue,
        store: Store,
        followers: Callable[[], Iterable[str]] = lambda: [],
        fetch_timeout: float = 5.0,
        delivery_timeout: float = 10.0,
        actor_ttl: float = ACTOR_TTL,
        user_agent: str = "ono/0.1",
    ):
        self.http = http
        self.queue = queue
        self.store = store
        self.followers = followers
        self.fetch_timeout = fetch_timeout
        self.delivery_timeout = delivery_timeout
        self.actor_ttl = actor_ttl
        self.user_agent = user_agent
        self.users_dir = store.data_dir / "users"
        self.users_dir.mkdir(parents=True, exist_ok=True)

    # -- discovery and fetching -------------------------------------------

    async def discover(self, handle: str) -> Dict[str, Any]:
        """
        Webfinger lookup for a user@domain handle (or an actor URI).

        Raises:
            DiscoveryError: with the queried url and status on failure
        """
        username, domain = split_handle(handle)
        url = f"https://{domain}/.well-known/webfinger?resource=acct:{username}@{domain}"
        logger.debug(f"Fetch webfinger {url}")
        try:
            response = await self.http.get(
                url,
                headers={"Accept": WEBFINGER_ACCEPT, "User-Agent": self.user_agent},
                timeout=self.fetch_timeout,
            )
        except httpx.HTTPError as e:
            raise DiscoveryError(f"could not get webfinger {url}: {e}", url=url)
        if not response.is_success:
            raise DiscoveryError(
                f"could not get webfinger {url}: {response.status_code}",
                url=url,
                status=response.status_code,
            )
        return response.json()

    async def fetch(self, account: Account, url: str) -> httpx.Response:
        """Signed GET of an ActivityPub resource."""
        logger.debug(f"Fetch {url}")
        signed = sign_request("get", url, account.private_key, account.key_id)
        headers = signed.as_dict()
        headers["Accept"] = ACTIVITY_ACCEPT
        headers["User-Agent"] = self.user_agent
        return await self.http.get(url, headers=headers, timeout=self.fetch_timeout)

    async def fetch_actor(self, account: Account, actor_uri: str) -> Actor:
        """
        Fetch and parse an actor document.

        Raises:
            ActorLoadError: on network failure or a non-success response
        """
        try:
            response = await self.fetch(account, actor_uri)
        except httpx.HTTPError as e:
            raise ActorLoadError(f"failed to load actor {actor_uri}: {e}", url=actor_uri)
        if not response.is_success:
            raise ActorLoadError(
                f"failed to load actor {actor_uri}: {response.status_code}",
                url=actor_uri,
                status=response.status_code,
            )
        try:
            return Actor.from_activitypub(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise ActorLoadError(f"invalid actor document at {actor_uri}: {e}", url=actor_uri)

    def _user_file(self, handle_or_id: str) -> Path:
        """Handles are stored as user@domain.json, actor URIs by the hash of the URI."""
        if handle_or_id.startswith("https://"):
            return self.users_dir / f"{hash_id(handle_or_id)}.json"
        return self.users_dir / f"{normalize_handle(handle_or_id)}.json"

    def cached_user(self, handle_or_id: str) -> Optional[Dict[str, Any]]:
        """The on-disk actor record, however old."""
        record = self.store.read_json(self._user_file(handle_or_id), None)
        if record and record.get("actor"):
            return record
        return None

    async def fetch_user(self, account: Account, handle_or_id: str) -> Actor:
        """
        Resolve a handle or actor URI to an Actor, through the actor cache.

        Cached records younger than actor_ttl are used as is. When a refresh
        fails and a stale record exists, the stale record is returned.

        Raises:
            FederationError: if the actor cannot be resolved at all
            ValueError: if handle_or_id is not a handle or URI
        """
        if not isinstance(handle_or_id, str) or not handle_or_id:
            raise ValueError(f"Not an actor reference: {handle_or_id!r}")
        if handle_or_id == account.id or handle_or_id == account.handle:
            return account.to_actor()

        cached = self.cached_user(handle_or_id)
        if cached and time.time() - cached.get("lastFetched", 0) / 1000 < self.actor_ttl:
            return Actor.from_activitypub(cached["actor"])

        try:
            webfinger = cached.get("webfinger") if cached else None
            if handle_or_id.startswith("https://"):
                actor_uri = handle_or_id
            else:
                webfinger = await self.discover(handle_or_id)
                actor_uri = next(
                    (link.get("href") for link in webfinger.get("links", []) if link.get("rel") == "self"),
                    None,
                )
                if not actor_uri:
                    raise DiscoveryError(f"no self link in webfinger for {handle_or_id}")
            actor = await self.fetch_actor(account, actor_uri)
        except FederationError:
            if cached:
                logger.warning(f"Using stale actor record for {handle_or_id}")
                return Actor.from_activitypub(cached["actor"])
            raise

        record = {
            "webfinger": webfinger,
            "actor": actor.document,
            "lastFetched": int(time.time() * 1000),
        }
        for key in {handle_or_id, actor.id}:
            self.store.write_json(self._user_file(key), record)
        return actor

    async def fetch_object(self, account: Account, object_id: str) -> Dict[str, Any]:
        """
        Signed fetch of a remote object.

        Raises:
            ActivityFetchError: on network failure or a non-success response
        """
        try:
            response = await self.fetch(account, object_id)
        except httpx.HTTPError as e:
            raise ActivityFetchError(f"could not get {object_id}: {e}", url=object_id)
        if not response.is_success:
            raise ActivityFetchError(
                f"could not get {object_id}: {response.status_code}",
                url=object_id,
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ActivityFetchError(f"invalid JSON at {object_id}: {e}", url=object_id)

    async def fetch_outbox(self, account: Account, actor: Actor) -> OutboxPage:
        """
        Fetch the first page of an actor's outbox.

        Never raises; failures are logged and give an empty page.
        """
        if not actor.outbox:
            return OutboxPage()
        try:
            outbox = await self.fetch_object(account, actor.outbox)
            first = outbox.get("first")
            page = None
            if isinstance(first, str):
                try:
                    page = await self.fetch_object(account, first)
                except ActivityFetchError as e:
                    logger.warning(f"Failed to load outbox first page: {e}")
            elif isinstance(first, dict):
                page = first
            items = (page or {}).get("orderedItems") or (page or {}).get("items") or []
            return OutboxPage(outbox=outbox, page=page, items=items)
        except (FederationError, httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning(f"Failed to load outbox {actor.outbox}: {e}")
            return OutboxPage()

    # -- delivery ---------------------------------------------------------

    async def deliver(self, account: Account, recipient: Recipient, message: Dict[str, Any]) -> httpx.Response:
        """
        POST a signed activity to a recipient's inbox, right now.

        Called by the delivery queue; the signature and Date header are
        computed here so they are fresh when the request leaves.

        Raises:
            FederationError: if the inbox answers with a non-success status
        """
        if isinstance(recipient, str):
            recipient = await self.fetch_user(account, recipient)
        inbox = recipient.inbox
        if not inbox.startswith("http"):
            raise FederationError(f"Invalid inbox url for {recipient.id}: {inbox!r}")

        body = json.dumps(message).encode("utf-8")
        signed = sign_request("post", inbox, account.private_key, account.key_id, body=body)
        headers = signed.as_dict()
        headers["Content-Type"] = "application/activity+json"
        headers["User-Agent"] = self.user_agent

        logger.debug(f"Outbound {message.get('type')} to {inbox}")
        response = await self.http.post(inbox, content=body, headers=headers, timeout=self.delivery_timeout)
        if not response.is_success:
            raise FederationError(
                f"delivery of {message.get('type')} to {inbox} failed: {response.status_code}",
                url=inbox,
                status=response.status_code,
            )
        return response

    def send(self, account: Account, recipient: Recipient, message: Dict[str, Any]) -> None:
        """Queue delivery of message to a single recipient."""
        self.queue.enqueue(lambda: self.deliver(account, recipient, message))

    def send_to_followers(self, account: Account, message: Dict[str, Any]) -> None:
        """Queue delivery to whoever follows the account when the task runs."""
        async def fan_out():
            followers = list(self.followers())
            logger.debug(f"Fanning out {message.get('type')} to {len(followers)} followers")
            for follower in followers:
                self.send(account, follower, message)
        self.queue.enqueue(fan_out)

    def send_to_recipients(
        self,
        account: Account,
        recipients: Iterable[Recipient],
        message: Dict[str, Any],
    ) -> None:
        """Queue delivery, expanding the followers reference if present."""
        seen = set()
        for recipient in recipients:
            recipient_id = recipient.id if isinstance(recipient, Actor) else recipient
            if recipient_id in seen or recipient_id == ap.PUBLIC:
                continue
            seen.add(recipient_id)
            if recipient_id == account.followers:
                self.send_to_followers(account, message)
            else:
                self.send(account, recipient, message)

    # -- outbound activities ----------------------------------------------

    def send_like(self, account: Account, post: Dict[str, Any], recipient: Recipient) -> Dict[str, Any]:
        """Like a post; returns the Like so it can be undone later."""
        message = ap.build_like(account, post)
        self.send(account, recipient, message)
        return message

    def send_undo_like(
        self,
        account: Account,
        post: Dict[str, Any],
        recipient: Recipient,
        original_activity_id: str,
    ) -> Dict[str, Any]:
        message = ap.build_undo_like(account, post, original_activity_id)
        self.send(account, recipient, message)
        return message

    def send_follow(self, account: Account, recipient: Actor) -> Dict[str, Any]:
        message = ap.build_follow(account, recipient.id)
        self.send(account, recipient, message)
        return message

    def send_undo_follow(self, account: Account, recipient: Actor, original_activity_id: str) -> Dict[str, Any]:
        message = ap.build_undo_follow(account, recipient.id, original_activity_id)
        self.send(account, recipient, message)
        return message

    def send_accept(self, account: Account, recipient: Recipient, follow_request: Dict[str, Any]) -> Dict[str, Any]:
        message = ap.build_accept(account, follow_request)
        self.send(account, recipient, message)
        return message

    def send_update(self, account: Account, recipient: Recipient, obj: Dict[str, Any]) -> Dict[str, Any]:
        message = ap.build_update(account, obj)
        self.send(account, recipient, message)
        return message

    def send_create(self, account: Account, recipient: Recipient, obj: Dict[str, Any]) -> Dict[str, Any]:
        message = ap.build_create(account, obj)
        self.send(account, recipient, message)
        return message

    def send_delete(self, account: Account, obj_id: str, recipients: Iterable[Recipient] = ()) -> Dict[str, Any]:
        """Tell followers (and any extra recipients) that an object is gone."""
        message = ap.build_delete(account, obj_id)
        self.send_to_recipients(account, [account.followers, *recipients], message)
        return message

    def send_boost(self, account: Account, primary_recipient: Actor, post: Dict[str, Any]) -> Dict[str, Any]:
        """Announce a post to our followers and to the post's author."""
        message = ap.build_announce(account, post, primary_recipient.id)
        self.send_to_recipients(account, [account.followers, primary_recipient], message)
        return message

    def send_undo_boost(
        self,
        account: Account,
        primary_recipient: Actor,
        post: Dict[str, Any],
        original_activity_id: str,
    ) -> Dict[str, Any]:
        message = ap.build_undo_announce(account, post, primary_recipient.id, original_activity_id)
        self.send_to_recipients(account, [account.followers, primary_recipient], message)
        return message
