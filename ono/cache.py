# ono/cache.py
"""
Time-bounded read cache for JSON documents on disk.

Every JSON file the node touches (activities, follower lists, likes,
notifications, cached actors) is read through here. Entries are keyed by
path and carry two clocks:

- write_time: when the contents were loaded or written. Past max_age the
  entry is stale and the next read goes back to disk.
- last_access: when the entry was last read. Past min_age the periodic
  sweep evicts it, which keeps memory bounded to the working set.
"""

import asyncio
import copy
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

MAX_AGE = 5 * 60
MIN_AGE = 30


@dataclass
class CacheEntry:
    """A cached JSON document."""
    path: Path
    contents: Any
    write_time: float
    last_access: float


@dataclass
class CacheStats:
    """Statistics about cache usage."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    hit_rate: float = 0.0

    def record_hit(self):
        self.hits += 1
        self._update_rate()

    def record_miss(self):
        self.misses += 1
        self._update_rate()

    def _update_rate(self):
        total = self.hits + self.misses
        self.hit_rate = self.hits / total if total > 0 else 0.0


def write_atomic(path: Path, data: Any) -> None:
    """Write JSON to a temp file in the same directory, then rename over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class JsonCache:
    """
    Path-keyed JSON cache.

    Reads return deep copies so callers can mutate what they get back
    without touching the cached contents.

    Args:
        max_age: Seconds before an entry is reloaded from disk
        min_age: Seconds of idleness before the sweep evicts an entry
        clock: Time source (seconds), replaceable in tests
    """

    def __init__(
        self,
        max_age: float = MAX_AGE,
        min_age: float = MIN_AGE,
        clock: Callable[[], float] = time.time,
    ):
        self.max_age = max_age
        self.min_age = min_age
        self.clock = clock
        self.stats = CacheStats()
        self._entries: Dict[str, CacheEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def read(self, path: Path | str, default: Any = None) -> Any:
        """
        Read a JSON document.

        Returns a copy of default when the file does not exist.
        Raises json.JSONDecodeError if the file is not valid JSON.
        """
        path = Path(path)
        key = str(path)
        now = self.clock()

        entry = self._entries.get(key)
        if entry is not None and now - entry.write_time <= self.max_age:
            entry.last_access = now
            self.stats.record_hit()
            return copy.deepcopy(entry.contents)

        self.stats.record_miss()
        if path.exists():
            with open(path) as f:
                contents = json.load(f)
        else:
            contents = copy.deepcopy(default)

        self._entries[key] = CacheEntry(
            path=path,
            contents=contents,
            write_time=now,
            last_access=now,
        )
        return copy.deepcopy(contents)

    def write(self, path: Path | str, data: Any) -> None:
        """Write a JSON document to disk and refresh its cache entry."""
        path = Path(path)
        write_atomic(path, data)
        now = self.clock()
        self._entries[str(path)] = CacheEntry(
            path=path,
            contents=copy.deepcopy(data),
            write_time=now,
            last_access=now,
        )

    def delete(self, path: Path | str) -> bool:
        """Delete a JSON document and drop it from the cache."""
        path = Path(path)
        self._entries.pop(str(path), None)
        if path.exists():
            path.unlink()
            return True
        return False

    def sweep(self) -> int:
        """
        Evict entries idle for longer than min_age.

        Returns:
            Number of entries evicted
        """
        now = self.clock()
        idle = [
            key for key, entry in self._entries.items()
            if now - entry.last_access > self.min_age
        ]
        for key in idle:
            del self._entries[key]
        self.stats.evictions += len(idle)
        if idle:
            logger.debug(f"Cache sweep evicted {len(idle)} entries")
        return len(idle)

    def clear(self):
        self._entries.clear()

    async def run_sweeper(self, interval: Optional[float] = None):
        """Sweep forever, every interval seconds (default: min_age)."""
        interval = self.min_age if interval is None else interval
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def start_sweeper(self, interval: Optional[float] = None) -> asyncio.Task:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self.run_sweeper(interval))
        return self._sweeper

    async def stop_sweeper(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: Path | str) -> bool:
        return str(Path(path)) in self._entries
