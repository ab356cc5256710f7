"""Per-user key/value cache with a freshness window."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from pickforme.config import settings
from pickforme.log import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Entry:
    value: Any
    stored_at: datetime


class PreferenceCache:
    """
    Stores values per ``(user_id, key)`` pair.

    Entries older than ``ttl_hours`` read as misses and are evicted on that
    read. The clock is injectable so expiry can be tested without waiting.
    """

    def __init__(
        self,
        ttl_hours: Optional[float] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        hours = settings.preference_ttl_hours if ttl_hours is None else ttl_hours
        self.ttl = timedelta(hours=hours)
        self._clock = clock
        self._entries: Dict[Tuple[str, str], _Entry] = {}

    @staticmethod
    def namespaced(user_id: str, key: str) -> str:
        """Display name for one entry, used in logs."""
        return f"{user_id}:{key}"

    def get(self, user_id: str, key: str, default: Any = None) -> Any:
        entry = self._entries.get((user_id, key))
        if entry is None:
            return default
        if self._clock() - entry.stored_at > self.ttl:
            del self._entries[(user_id, key)]
            logger.debug("Evicted stale cache entry %s", self.namespaced(user_id, key))
            return default
        return entry.value

    def set(self, user_id: str, key: str, value: Any) -> None:
        self._entries[(user_id, key)] = _Entry(value=value, stored_at=self._clock())

    def invalidate(self, user_id: str, key: Optional[str] = None) -> int:
        """Drop one key, or every key for ``user_id`` when ``key`` is omitted."""
        if key is not None:
            return 1 if self._entries.pop((user_id, key), None) is not None else 0
        doomed = [name for name in self._entries if name[0] == user_id]
        for name in doomed:
            del self._entries[name]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)
