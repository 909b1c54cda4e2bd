import hashlib
import json
import logging
from datetime import timedelta
from typing import Any, Dict, Mapping

from ..common.config import DEFAULT_CACHE_TTLS
from ..database.base import DatabaseBackend
from ..lib.utils import from_iso, to_iso, utcnow
from ..schemas.execution import TaskCacheEntry
from ..schemas.task import Task

logger = logging.getLogger(__name__)

# Config keys that only affect delivery, not what a task computes.
NOTIFICATION_FIELDS = frozenset({"notifications", "notification_channels", "notify"})


def cache_key(task_type: str, config: Mapping[str, Any] | None) -> str:
    """Canonical signature for ``(type, config)``.

    Notification settings are stripped so tasks that watch the same thing
    but alert differently share one entry.
    """
    sanitized = {
        k: v for k, v in (config or {}).items() if k not in NOTIFICATION_FIELDS
    }
    payload = json.dumps(
        {"type": task_type, "config": sanitized},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def is_cacheable_result(result: Mapping[str, Any] | None) -> bool:
    """Alerting or erroring results are never cached."""
    if not result:
        return False
    if result.get("alert"):
        return False
    if result.get("error"):
        return False
    return True


class ResultCache:
    """Two-tier TTL cache for read-mostly task results.

    The in-process map is a best-effort accelerant; the store-backed tier is
    authoritative and is consulted on every local miss. Only the types in
    ``ttls`` are cached.

    Args:
        db: Store holding the ``task_cache`` collection
        ttls: Seconds to live per cacheable task type
    """

    def __init__(self, db: DatabaseBackend, ttls: Mapping[str, int] | None = None):
        self._db = db
        self._ttls: Dict[str, int] = dict(DEFAULT_CACHE_TTLS if ttls is None else ttls)
        self._local: Dict[str, TaskCacheEntry] = {}

    @property
    def size(self) -> int:
        return len(self._local)

    def is_cacheable(self, task: Task) -> bool:
        return task["type"] in self._ttls

    def ttl_for(self, task_type: str) -> int | None:
        return self._ttls.get(task_type)

    async def get(self, task: Task) -> Dict[str, Any] | None:
        """Look up a cached result for ``task``.

        Order: in-process map, then store (promoting the entry locally),
        then miss.
        """
        if not self.is_cacheable(task):
            return None

        key = cache_key(task["type"], task["config"])
        now = utcnow()

        entry = self._local.get(key)
        if entry is not None:
            if from_iso(entry["expires_at"]) > now:  # type: ignore
                entry["hit_count"] += 1
                entry["last_accessed"] = to_iso(now)  # type: ignore
                logger.debug(f"Cache hit (memory) for {task['type']} {key[:12]}")
                return entry["result"]
            del self._local[key]

        entry = await self._db.touch_cache_entry(key, to_iso(now))  # type: ignore
        if entry is None:
            return None

        self._local[key] = entry
        logger.debug(f"Cache hit (store) for {task['type']} {key[:12]}")
        return entry["result"]

    async def set(self, task: Task, result: Dict[str, Any]) -> bool:
        """Store ``result`` for ``task`` when the type and result allow it.

        Returns:
            True if the result was written
        """
        ttl = self.ttl_for(task["type"])
        if ttl is None or not is_cacheable_result(result):
            return False

        now = utcnow()
        entry = TaskCacheEntry(
            cache_key=cache_key(task["type"], task["config"]),
            task_id=task["id"],
            result=result,
            created_at=to_iso(now),  # type: ignore
            expires_at=to_iso(now + timedelta(seconds=ttl)),  # type: ignore
            hit_count=0,
            last_accessed=to_iso(now),  # type: ignore
        )
        await self._db.upsert_cache_entry(entry)
        self._local[entry["cache_key"]] = entry
        return True

    async def purge_expired(self) -> int:
        """Drop expired entries from both tiers.

        Returns:
            Number of store rows removed
        """
        now = utcnow()
        for key in [
            k for k, e in self._local.items() if from_iso(e["expires_at"]) <= now  # type: ignore
        ]:
            del self._local[key]
        return await self._db.delete_expired_cache(to_iso(now))  # type: ignore

    def clear(self) -> None:
        """Empty the in-process tier. Store entries are kept."""
        self._local.clear()
