# ono/node.py
"""
A running node: one account and everything that serves it.

Node wires the components together and owns their lifecycle. It is the
object an HTTP layer holds on to.

Usage:
    config = NodeConfig.from_file("ono.yaml")
    async with Node(config) as node:
        page = await node.build_feed()
        status = await node.inbox.handle(message, headers, path)
"""

import logging
from typing import List, Optional

import httpx

from .activitypub.actor import Account, AccountStore
from .algorithm import Feed, FeedEntry, FeedPage
from .cache import JsonCache
from .config import NodeConfig
from .federation import FederationClient
from .inbox import InboxDispatcher
from .notes import Notes
from .queue import DeliveryQueue
from .social import DirectMessages, NotificationLog, SocialGraph
from .storage import Store

logger = logging.getLogger(__name__)


class Node:
    """
    Args:
        config: Node settings
        http: HTTP client to use instead of creating one (closed by the caller)
        account: Account to use instead of loading/creating data_dir/account.json
    """

    def __init__(
        self,
        config: NodeConfig,
        http: Optional[httpx.AsyncClient] = None,
        account: Optional[Account] = None,
    ):
        self.config = config
        self.account = account or AccountStore(config.data_dir).ensure(config.username, config.domain)

        self.cache = JsonCache(max_age=config.cache_max_age, min_age=config.cache_min_age)
        self.store = Store(config.data_dir, local_prefix=self.account.post_prefix, cache=self.cache)
        self.social = SocialGraph(self.store, blocked_domains=config.blocked_domains)
        self.notifications = NotificationLog(self.store)
        self.dms = DirectMessages(self.store)

        self.queue = DeliveryQueue(concurrency=config.queue_concurrency, interval=config.queue_interval)
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(follow_redirects=True)
        self.federation = FederationClient(
            self.http,
            self.queue,
            self.store,
            followers=self.social.get_followers,
            fetch_timeout=config.fetch_timeout,
            delivery_timeout=config.delivery_timeout,
            actor_ttl=config.actor_ttl,
            user_agent=config.user_agent,
        )

        self.notes = Notes(self.account, self.store, self.social, self.notifications, self.federation)
        self.inbox = InboxDispatcher(
            self.account, self.federation, self.notes, self.social, self.notifications, self.dms,
        )
        self.feed = Feed(self.account, self.store, self.social, self.notes, self.federation)

    async def start(self):
        """Load the index from disk and start background work."""
        count = self.store.build_index()
        logger.info(f"Node {self.account.handle} started with {count} indexed activities")
        self.queue.start()
        self.cache.start_sweeper()

    async def close(self, drain: bool = True):
        """
        Stop background work.

        Args:
            drain: Wait for queued deliveries first
        """
        if drain:
            await self.queue.join()
        await self.queue.close()
        await self.cache.stop_sweeper()
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "Node":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close(drain=exc_type is None)

    async def build_feed(self, limit: int = 20, offset: int = 0) -> FeedPage:
        return await self.feed.build_feed(limit=limit, offset=offset)

    async def unroll_thread(self, note_id: str) -> List[FeedEntry]:
        return await self.feed.unroll_thread(note_id)
