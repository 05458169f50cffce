"""Three-tier TTL cache for the aggregation layer.

Tiers:
- ``default`` (30s): finished query payloads (real-time, daily, monthly)
- ``session`` (60s): the scanned record list; also invalidated when the
  projects directory's mtime advances
- ``block`` (300s): session blocks built from that record list

Each entry moves cold → warm → stale (TTL expired or files changed) → cold.
Hit/miss counters are shared by all tiers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from usage_monitor.token_tracker.models import Clock, utc_now

logger = logging.getLogger(__name__)

TIERS = ("default", "session", "block")


@dataclass
class CacheEntry:
    data: Any
    timestamp: datetime
    ttl: float  # seconds
    duration: float = 0.0  # seconds spent computing data

    def is_fresh(self, now: datetime) -> bool:
        return (now - self.timestamp).total_seconds() < self.ttl


class TTLCache:
    """A dict of CacheEntry objects sharing one TTL."""

    def __init__(self, name: str, ttl_seconds: float) -> None:
        self.name = name
        self.ttl = ttl_seconds
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str, now: datetime) -> CacheEntry | None:
        """Return a fresh entry or None; stale entries are evicted."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(now):
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, data: Any, now: datetime, duration: float = 0.0) -> CacheEntry:
        entry = CacheEntry(data=data, timestamp=now, ttl=self.ttl, duration=duration)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def last_updated(self) -> datetime | None:
        if not self._entries:
            return None
        return max(e.timestamp for e in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


class TieredCache:
    """Owns the three tiers, the last-seen projects mtime and hit/miss stats."""

    def __init__(
        self,
        default_ttl: float = 30,
        session_ttl: float = 60,
        block_ttl: float = 300,
        clock: Clock = utc_now,
    ) -> None:
        self.default = TTLCache("default", default_ttl)
        self.session = TTLCache("session", session_ttl)
        self.block = TTLCache("block", block_ttl)
        self.projects_mtime: float | None = None
        self.hits = 0
        self.misses = 0
        self._clock = clock
        self.stats_since = clock()

    def tier(self, name: str) -> TTLCache:
        if name == "session":
            return self.session
        if name == "block":
            return self.block
        return self.default

    # -- File-change detection -------------------------------------------------

    def observe_projects_mtime(self, projects_dir: Path) -> None:
        """Remember the directory's current mtime (None if it doesn't exist)."""
        try:
            self.projects_mtime = projects_dir.stat().st_mtime if projects_dir.is_dir() else None
        except OSError as e:
            logger.warning("Could not stat %s: %s", projects_dir, e)
            self.projects_mtime = None

    def has_projects_dir_changed(self, projects_dir: Path) -> bool:
        """True if the mtime advanced since last observed; updates the record."""
        try:
            if not projects_dir.is_dir():
                return False
            current = projects_dir.stat().st_mtime
        except OSError as e:
            logger.warning("Could not stat %s, assuming it changed: %s", projects_dir, e)
            return True

        if self.projects_mtime is None or current > self.projects_mtime:
            self.projects_mtime = current
            return True
        return False

    def invalidate_sessions(self) -> None:
        """Drop scanned records and the blocks built from them."""
        self.session.clear()
        self.block.clear()

    # -- Clearing --------------------------------------------------------------

    def clear(self) -> None:
        for name in TIERS:
            self.tier(name).clear()
        self.projects_mtime = None

    def clear_tier(self, name: str) -> None:
        if name == "file":
            self.projects_mtime = None
        else:
            self.tier(name).clear()

    # -- Stats -----------------------------------------------------------------

    def record_hit(self) -> None:
        self.hits += 1

    def record_miss(self) -> None:
        self.misses += 1

    def stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        return {
            "hit_rate": round(self.hits / total * 100) if total else 0,
            "total_requests": total,
            "hits": self.hits,
            "misses": self.misses,
            "uptime": round((self._clock() - self.stats_since).total_seconds()),
            "cache_size": {
                "default": len(self.default),
                "session": len(self.session),
                "block": len(self.block),
                "file_watch": 0 if self.projects_mtime is None else 1,
            },
        }
