"""Tests for the tiered TTL cache."""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

from usage_monitor.token_tracker.cache import TieredCache, TTLCache


class TestTTLCache:
    def test_fresh_then_stale(self, clock):
        cache = TTLCache("default", 30)
        cache.set("k", {"v": 1}, clock())

        assert cache.get("k", clock() + timedelta(seconds=29)).data == {"v": 1}
        assert cache.get("k", clock() + timedelta(seconds=30)) is None
        assert "k" not in cache

    def test_missing_key(self, clock):
        assert TTLCache("default", 30).get("nope", clock()) is None

    def test_last_updated(self, clock):
        cache = TTLCache("default", 30)
        assert cache.last_updated is None
        cache.set("a", 1, clock())
        cache.set("b", 2, clock() + timedelta(seconds=5))
        assert cache.last_updated == clock() + timedelta(seconds=5)
        assert len(cache) == 2

    def test_invalidate_and_clear(self, clock):
        cache = TTLCache("default", 30)
        cache.set("a", 1, clock())
        cache.set("b", 2, clock())
        cache.invalidate("a")
        assert "a" not in cache and "b" in cache
        cache.clear()
        assert len(cache) == 0


class TestTieredCache:
    def test_tiers_have_their_own_ttl(self, clock):
        cache = TieredCache(default_ttl=30, session_ttl=60, block_ttl=300, clock=clock)
        assert cache.tier("default").ttl == 30
        assert cache.tier("session").ttl == 60
        assert cache.tier("block").ttl == 300
        assert cache.tier("bogus") is cache.default

    def test_invalidate_sessions_drops_blocks_too(self, clock):
        cache = TieredCache(clock=clock)
        cache.default.set("realtime", 1, clock())
        cache.session.set("sessions", [], clock())
        cache.block.set("blocks", [], clock())

        cache.invalidate_sessions()

        assert len(cache.session) == 0
        assert len(cache.block) == 0
        assert len(cache.default) == 1

    def test_clear_tier(self, clock, tmp_path: Path):
        cache = TieredCache(clock=clock)
        cache.block.set("blocks", [], clock())
        cache.observe_projects_mtime(tmp_path)

        cache.clear_tier("block")
        assert len(cache.block) == 0
        assert cache.projects_mtime is not None

        cache.clear_tier("file")
        assert cache.projects_mtime is None

    def test_stats(self, clock):
        cache = TieredCache(clock=clock)
        cache.record_hit()
        cache.record_hit()
        cache.record_hit()
        cache.record_miss()
        clock.advance(seconds=90)

        stats = cache.stats()

        assert stats["hit_rate"] == 75
        assert stats["total_requests"] == 4
        assert stats["uptime"] == 90
        assert stats["cache_size"] == {"default": 0, "session": 0, "block": 0, "file_watch": 0}

    def test_stats_without_requests(self, clock):
        assert TieredCache(clock=clock).stats()["hit_rate"] == 0


class TestProjectsMtime:
    def test_unchanged_after_observe(self, clock, tmp_path: Path):
        cache = TieredCache(clock=clock)
        cache.observe_projects_mtime(tmp_path)
        assert cache.has_projects_dir_changed(tmp_path) is False

    def test_advanced_mtime_is_a_change(self, clock, tmp_path: Path):
        cache = TieredCache(clock=clock)
        cache.observe_projects_mtime(tmp_path)
        mtime = tmp_path.stat().st_mtime
        os.utime(tmp_path, (mtime + 10, mtime + 10))

        assert cache.has_projects_dir_changed(tmp_path) is True
        # The new mtime is remembered
        assert cache.has_projects_dir_changed(tmp_path) is False

    def test_never_observed_counts_as_change(self, clock, tmp_path: Path):
        assert TieredCache(clock=clock).has_projects_dir_changed(tmp_path) is True

    def test_missing_dir_is_not_a_change(self, clock, tmp_path: Path):
        cache = TieredCache(clock=clock)
        cache.observe_projects_mtime(tmp_path / "missing")
        assert cache.projects_mtime is None
        assert cache.has_projects_dir_changed(tmp_path / "missing") is False
