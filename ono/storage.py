# ono/storage.py
"""
Activity storage and the in-memory index.

Activities are stored one JSON file per activity:

    data_dir/
        posts/              # activities authored by the local account
            2024/
                03-17/
                    <sha256(id)>.json
                    <sha256(id)>.likes.json
        activitystream/     # everything received from elsewhere
            2024/
                03-17/
                    <sha256(id)>.json

The index holds one IndexEntry per known activity and is the only way to
get from an activity id to its file: the dated folder comes from the
entry's publish time, so a path cannot be computed for an id that is not
indexed.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .cache import JsonCache
from .errors import NotIndexedError, UnreachableError

logger = logging.getLogger(__name__)

TYPE_ACTIVITY = "activity"  # someone else's
TYPE_NOTE = "note"          # ours
TYPE_FAIL = "fail"          # could not be fetched

LIKES_SUFFIX = ".likes.json"


def parse_published(value: Any) -> Optional[int]:
    """Convert an ISO 8601 timestamp to epoch millis. None if unusable."""
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def hash_id(activity_id: str) -> str:
    """Stable filename stem for an activity id."""
    return hashlib.sha256(activity_id.encode()).hexdigest()


def date_folder(published: Optional[int]) -> str:
    """YYYY/MM-DD for an epoch-millis timestamp (UTC). Undated goes to 0000/00-00."""
    if published is None:
        return "0000/00-00"
    dt = datetime.fromtimestamp(published / 1000, tz=timezone.utc)
    return dt.strftime("%Y/%m-%d")


@dataclass
class IndexEntry:
    """Lightweight projection of a stored activity."""
    type: str
    id: str
    actor: Optional[str]
    published: Optional[int]
    inReplyTo: Optional[str] = None
    status: Any = None  # failure reason, for TYPE_FAIL entries

    @classmethod
    def from_activity(cls, activity: Dict[str, Any], entry_type: str) -> "IndexEntry":
        in_reply_to = activity.get("inReplyTo")
        if isinstance(in_reply_to, dict):
            in_reply_to = in_reply_to.get("id")
        actor = activity.get("attributedTo") or activity.get("actor")  # boosts have no attributedTo
        if isinstance(actor, dict):
            actor = actor.get("id")
        return cls(
            type=entry_type,
            id=activity["id"],
            actor=actor,
            published=parse_published(activity.get("published")),
            inReplyTo=in_reply_to,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "actor": self.actor,
            "published": self.published,
            "inReplyTo": self.inReplyTo,
        }


class Store:
    """
    Owns the index, the JSON cache and the two storage roots.

    Call build_index() once at startup to load what is already on disk.

    Args:
        data_dir: Root data directory
        local_prefix: Id prefix of activities authored locally
            (e.g. "https://social.example.com/m/")
        cache: JSON cache to read through (a fresh one if omitted)
    """

    def __init__(self, data_dir: Path | str, local_prefix: str, cache: JsonCache = None):
        self.data_dir = Path(data_dir)
        self.local_prefix = local_prefix
        self.cache = cache or JsonCache()
        self.posts_dir = self.data_dir / "posts"
        self.activities_dir = self.data_dir / "activitystream"
        self.posts_dir.mkdir(parents=True, exist_ok=True)
        self.activities_dir.mkdir(parents=True, exist_ok=True)
        self._index: Dict[str, IndexEntry] = {}

    # -- generic JSON documents -------------------------------------------

    def read_json(self, path: Path | str, default: Any = None) -> Any:
        return self.cache.read(path, default)

    def write_json(self, path: Path | str, data: Any) -> None:
        self.cache.write(path, data)

    def delete_json(self, path: Path | str) -> bool:
        return self.cache.delete(path)

    # -- index ------------------------------------------------------------

    def is_local(self, activity_id: str) -> bool:
        return activity_id.startswith(self.local_prefix)

    def is_indexed(self, activity_id: str) -> bool:
        return activity_id in self._index

    def from_index(self, activity_id: str) -> Optional[IndexEntry]:
        return self._index.get(activity_id)

    def entries(self) -> List[IndexEntry]:
        """All index entries, in insertion order."""
        return list(self._index.values())

    def add_to_index(self, activity: Dict[str, Any], replace: bool = False) -> IndexEntry:
        """Add an entry for activity unless one exists (or replace=True)."""
        existing = self._index.get(activity["id"])
        if existing is not None and existing.type != TYPE_FAIL and not replace:
            return existing
        entry_type = TYPE_NOTE if self.is_local(activity["id"]) else TYPE_ACTIVITY
        entry = IndexEntry.from_activity(activity, entry_type)
        self._index[entry.id] = entry
        return entry

    def add_failure(self, activity_id: str, status: Any = None) -> IndexEntry:
        """Remember that activity_id could not be fetched."""
        entry = IndexEntry(
            type=TYPE_FAIL,
            id=activity_id,
            actor=None,
            published=None,
            status=status,
        )
        self._index[activity_id] = entry
        return entry

    def remove_from_index(self, activity_id: str) -> bool:
        """Remove the index entry only. Returns False if there was none."""
        return self._index.pop(activity_id, None) is not None

    def replies_to(self, activity_id: str) -> List[IndexEntry]:
        return [e for e in self._index.values() if e.inReplyTo == activity_id]

    def reply_count(self, activity_id: str) -> int:
        return len(self.replies_to(activity_id))

    # -- paths ------------------------------------------------------------

    def _root_for(self, activity_id: str, is_local: Optional[bool]) -> Path:
        if is_local is None:
            is_local = self.is_local(activity_id)
        return self.posts_dir if is_local else self.activities_dir

    def compute_path(self, activity: Dict[str, Any], is_local: Optional[bool] = None) -> Path:
        """File location for an activity document. Creates the dated folder."""
        folder = self._root_for(activity["id"], is_local) / date_folder(
            parse_published(activity.get("published"))
        )
        folder.mkdir(parents=True, exist_ok=True)
        return folder / f"{hash_id(activity['id'])}.json"

    def _indexed_entry(self, activity_id: str) -> IndexEntry:
        entry = self._index.get(activity_id)
        if entry is None:
            raise NotIndexedError(activity_id)
        if entry.type == TYPE_FAIL:
            raise UnreachableError(activity_id)
        return entry

    def path_for(self, activity_id: str) -> Path:
        """File location for an indexed activity id."""
        entry = self._indexed_entry(activity_id)
        folder = self._root_for(activity_id, entry.type == TYPE_NOTE) / date_folder(entry.published)
        return folder / f"{hash_id(activity_id)}.json"

    def likes_path(self, activity_id: str) -> Path:
        return self.path_for(activity_id).with_suffix(LIKES_SUFFIX)

    # -- activities -------------------------------------------------------

    def persist(self, activity: Dict[str, Any], reindex: bool = False) -> Path:
        """
        Write an activity to disk and make sure it is indexed.

        Args:
            activity: Activity document (must have an id)
            reindex: Replace an existing index entry with fresh metadata

        Returns:
            Path the activity was written to
        """
        activity_id = activity["id"]
        existing = self._index.get(activity_id)
        known = existing is not None and existing.type != TYPE_FAIL
        if known and not reindex:
            # The entry decides the location; rewriting never moves a file
            path = self.path_for(activity_id)
            self.write_json(path, activity)
            return path

        old_path = self.path_for(activity_id) if known else None

        path = self.compute_path(activity)
        self.write_json(path, activity)
        self.add_to_index(activity, replace=reindex)

        # An update may move the file to a different date folder
        if old_path is not None and old_path != path:
            self.delete_json(old_path)
            old_likes = old_path.with_suffix(LIKES_SUFFIX)
            if old_likes.exists():
                self.write_json(path.with_suffix(LIKES_SUFFIX), self.read_json(old_likes))
                self.delete_json(old_likes)

        logger.debug(f"Persisted {activity_id} -> {path}")
        return path

    def read(self, activity_id: str) -> Dict[str, Any]:
        """
        Read an indexed activity.

        Raises:
            NotIndexedError: id is not in the index
            UnreachableError: id is indexed as a failed fetch
        """
        return self.read_json(self.path_for(activity_id), {})

    def delete(self, activity_id: str) -> bool:
        """Delete an activity's file, likes record and index entry."""
        if not self.is_indexed(activity_id):
            return False
        entry = self._index[activity_id]
        if entry.type != TYPE_FAIL:
            path = self.path_for(activity_id)
            self.delete_json(path)
            self.delete_json(path.with_suffix(LIKES_SUFFIX))
        self.remove_from_index(activity_id)
        return True

    # -- likes/boosts -----------------------------------------------------

    def get_likes(self, activity_id: str) -> Dict[str, List[str]]:
        record = self.read_json(self.likes_path(activity_id), {"likes": [], "boosts": []})
        record.setdefault("likes", [])
        record.setdefault("boosts", [])
        return record

    def write_likes(self, activity_id: str, record: Dict[str, List[str]]) -> None:
        self.write_json(self.likes_path(activity_id), record)

    # -- startup ----------------------------------------------------------

    def _scan(self, root: Path) -> Iterator[Path]:
        for path in sorted(root.rglob("*.json")):
            if path.name.endswith(LIKES_SUFFIX):
                continue
            yield path

    def build_index(self) -> int:
        """
        Rebuild the index from both storage roots.

        Unparseable files are logged and skipped.

        Returns:
            Number of entries loaded
        """
        self._index.clear()
        loaded = 0
        for root, entry_type in ((self.activities_dir, TYPE_ACTIVITY), (self.posts_dir, TYPE_NOTE)):
            for path in self._scan(root):
                try:
                    activity = self.read_json(path)
                    entry = IndexEntry.from_activity(activity, entry_type)
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.warning(f"Failed to parse {path}: {e}")
                    continue
                self._index[entry.id] = entry
                loaded += 1
        logger.info(f"Index built: {loaded} activities")
        return loaded

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, activity_id: str) -> bool:
        return activity_id in self._index
