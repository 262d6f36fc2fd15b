"""Process-local keyed cache for raw fetch results and aggregated views."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

_UNSAFE_KEY_CHARS = re.compile(r"[^a-z0-9]")

# Keys whose derived data can change after a leave operation.
LEAVE_INVALIDATION_PREFIXES: Tuple[str, ...] = (
    "profile",
    "contact:current",
    "education:user",
    "profile:composed",
    "participation",
    "milestones",
    "teams",
    "enhanced",
)

REFRESH_SCOPES: Dict[str, Tuple[str, ...]] = {
    "profile": ("profile", "contact:current", "profile:composed", "education:user", "enhanced"),
    "teams": ("teams", "enhanced"),
    "program": ("participation", "milestones", "enhanced"),
    "submissions": ("submissions",),
    "all": ("",),
}


def _normalize_scope(value: Any) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", str(value).lower())


def cache_key(kind: str, *scope: Any) -> str:
    """Build ``kind[:scope...]`` with each scope part lowercased and reduced to ``[a-z0-9_]``."""
    parts = [kind]
    parts.extend(_normalize_scope(part) for part in scope if part is not None and part != "")
    return ":".join(parts)


def _copy(value: Any) -> Any:
    if hasattr(value, "model_copy"):
        return value.model_copy(deep=True)
    if isinstance(value, list):
        return [_copy(item) for item in value]
    return value


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float
    cached_at: datetime

    def is_fresh(self, now: float) -> bool:
        return self.expires_at > now


class ViewCache:
    """Whole-key cache with TTL expiry, prefix invalidation and stale reads on fetch failure."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = RLock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.is_fresh(self._clock()):
                return None
            return _copy(entry.value)

    def set(self, key: str, value: Any, ttl: float = DEFAULT_TTL_SECONDS) -> None:
        with self._lock:
            self._entries[key] = _CacheEntry(
                value=_copy(value),
                expires_at=self._clock() + ttl,
                cached_at=datetime.now(timezone.utc),
            )

    def contains(self, key: str) -> bool:
        return self.get(key) is not None

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: float = DEFAULT_TTL_SECONDS,
    ) -> Any:
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock()):
            logger.debug("Cache hit for key: %s", key)
            return _copy(entry.value)

        logger.debug("Cache miss for key: %s, fetching from source", key)
        try:
            value = await fetch()
        except Exception as exc:
            if entry is not None:
                logger.warning("Returning stale data for %s due to error: %s", key, exc)
                return _copy(entry.value)
            raise
        self.set(key, value, ttl)
        return _copy(value)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> List[str]:
        """Drop ``prefix`` itself and every ``prefix:...`` key. An empty prefix clears everything."""
        with self._lock:
            cleared = [
                key
                for key in list(self._entries)
                if not prefix or key == prefix or key.startswith(prefix + ":")
            ]
            for key in cleared:
                del self._entries[key]
        if cleared:
            logger.debug("Cleared %d cache entries under %r", len(cleared), prefix)
        return cleared

    def invalidate_many(self, prefixes: Iterable[str]) -> List[str]:
        cleared: List[str] = []
        for prefix in prefixes:
            cleared.extend(self.invalidate_prefix(prefix))
        return cleared

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        by_kind: Dict[str, int] = {}
        valid = 0
        with self._lock:
            entries = list(self._entries.items())
        for key, entry in entries:
            kind = key.split(":", 1)[0]
            by_kind[kind] = by_kind.get(kind, 0) + 1
            if entry.is_fresh(now):
                valid += 1
        return {
            "total_entries": len(entries),
            "valid_entries": valid,
            "expired_entries": len(entries) - valid,
            "entries_by_kind": by_kind,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


view_cache = ViewCache()

__all__ = [
    "DEFAULT_TTL_SECONDS",
    "LEAVE_INVALIDATION_PREFIXES",
    "REFRESH_SCOPES",
    "ViewCache",
    "cache_key",
    "view_cache",
]
