# tests/test_queue.py
"""Tests for the delivery queue."""

import asyncio

import pytest

from ono.queue import DeliveryQueue


def run(coro):
    return asyncio.run(coro)


class TestDeliveryQueue:
    """Tests for DeliveryQueue."""

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            DeliveryQueue(concurrency=0)

    def test_runs_all_tasks(self):
        done = []

        async def scenario():
            queue = DeliveryQueue(interval=0)
            for n in range(10):
                async def task(n=n):
                    done.append(n)
                queue.enqueue(task)
            await queue.join()
            await queue.close()
            return queue

        queue = run(scenario())
        assert sorted(done) == list(range(10))
        assert queue.stats.enqueued == 10
        assert queue.stats.completed == 10

    def test_enqueue_does_not_run_task(self):
        calls = []

        async def scenario():
            queue = DeliveryQueue(interval=0)

            async def task():
                calls.append(1)

            queue.enqueue(task)
            assert calls == []
            assert len(queue) == 1
            await queue.join()
            await queue.close()

        run(scenario())
        assert calls == [1]

    def test_concurrency_bound(self):
        active = 0
        peak = 0

        async def scenario():
            nonlocal active, peak
            queue = DeliveryQueue(concurrency=2, interval=0)

            async def task():
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

            for _ in range(8):
                queue.enqueue(task)
            await queue.join()
            await queue.close()

        run(scenario())
        assert peak == 2

    def test_minimum_interval_between_dequeues(self):
        started = []

        async def scenario():
            loop = asyncio.get_running_loop()
            queue = DeliveryQueue(concurrency=4, interval=0.05)

            async def task():
                started.append(loop.time())

            for _ in range(3):
                queue.enqueue(task)
            await queue.join()
            await queue.close()

        run(scenario())
        gaps = [b - a for a, b in zip(started, started[1:])]
        assert len(gaps) == 2
        assert all(gap >= 0.04 for gap in gaps)

    def test_failures_are_counted_not_raised(self):
        async def scenario():
            queue = DeliveryQueue(interval=0)

            async def boom():
                raise ConnectionError("remote down")

            async def fine():
                return "ok"

            queue.enqueue(boom)
            queue.enqueue(fine)
            await queue.join()
            await queue.close()
            return queue

        queue = run(scenario())
        assert queue.stats.failed == 1
        assert queue.stats.completed == 1

    def test_close_drops_waiting_tasks(self):
        calls = []

        async def scenario():
            queue = DeliveryQueue(concurrency=1, interval=10)

            async def task():
                calls.append(1)

            for _ in range(3):
                queue.enqueue(task)
            await asyncio.sleep(0.01)
            await queue.close()
            return queue

        queue = run(scenario())
        assert calls == [1]
        assert len(queue) == 2
