# ono/queue.py
"""
Outbound delivery queue.

Sending to a remote inbox can take seconds, so activities are queued and
delivered in the background. The queue:

- runs at most `concurrency` tasks at once
- waits at least `interval` seconds between dequeues
- logs failures and moves on (no retries, nothing persisted)

Tasks are zero-argument callables returning an awaitable. They are called
when dequeued, not when enqueued, so anything time-sensitive (the Date
header, the signature) is computed right before the request leaves.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[Any]]


@dataclass
class QueueStats:
    """Counters for delivered and failed tasks."""
    enqueued: int = 0
    completed: int = 0
    failed: int = 0


class DeliveryQueue:
    """
    Bounded-concurrency fire-and-forget task queue.

    Usage:
        queue = DeliveryQueue()
        queue.start()
        queue.enqueue(lambda: client.post(...))
        await queue.join()
        await queue.close()
    """

    def __init__(self, concurrency: int = 4, interval: float = 0.25):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.interval = interval
        self.stats = QueueStats()
        self._queue: Optional[asyncio.Queue] = None
        self._slots: Optional[asyncio.Semaphore] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()

    @property
    def started(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    def start(self):
        """Start dispatching on the running event loop. Anything left from a previous run is dropped."""
        if self.started:
            return
        self._queue = asyncio.Queue()
        self._slots = asyncio.Semaphore(self.concurrency)
        self._dispatcher = asyncio.create_task(self._dispatch())
        logger.debug("Delivery queue started")

    def enqueue(self, task: Task) -> None:
        """Queue a task. Returns immediately."""
        if not self.started:
            self.start()
        self._queue.put_nowait(task)
        self.stats.enqueued += 1
        logger.debug(f"Queued delivery ({self._queue.qsize()} waiting)")

    def __len__(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def in_flight(self) -> int:
        return len(self._running)

    async def _dispatch(self):
        while True:
            task = await self._queue.get()
            await self._slots.acquire()
            running = asyncio.create_task(self._run(task))
            self._running.add(running)
            running.add_done_callback(self._running.discard)
            if self.interval:
                await asyncio.sleep(self.interval)

    async def _run(self, task: Task):
        try:
            result = await task()
            self.stats.completed += 1
            url = getattr(result, "url", None)
            if url is not None:
                logger.debug(f"Send status {getattr(result, 'status_code', '?')} for {url}")
        except Exception:
            self.stats.failed += 1
            logger.exception("Delivery task failed")
        finally:
            self._slots.release()
            self._queue.task_done()

    async def join(self):
        """Wait until every queued task has run."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self):
        """Stop dispatching. Tasks still waiting are dropped."""
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
        dropped = len(self)
        if dropped:
            logger.warning(f"Delivery queue closed with {dropped} undelivered tasks")
        logger.debug("Delivery queue stopped")
