"""Data aggregator: runs scan → blocks → statistics behind a tiered cache.

Three public query shapes: real-time (the active billing window),
daily and monthly reports. Each is cached under a key built from the method
name and its parameters. The scanned record list and the blocks built from
it are cached separately (session / block tiers) so different queries share
one scan.

None of the public methods raise for data problems: a failure inside the
pipeline is logged and turned into a zero-valued payload carrying the error.
"""

from __future__ import annotations

import calendar
import json
import logging
import math
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence

from usage_monitor.config import settings
from usage_monitor.token_tracker.blocks import (
    create_session_blocks,
    current_window,
    find_active_block,
    mark_active_blocks,
)
from usage_monitor.token_tracker.cache import TieredCache
from usage_monitor.token_tracker.calculator import TokenCalculator, get_plan_limits
from usage_monitor.token_tracker.models import (
    Clock,
    PlanDetection,
    PlanLimits,
    SessionBlock,
    UsageRecord,
    UsageWarning,
    utc_now,
)
from usage_monitor.token_tracker.scanner import SessionScanner

logger = logging.getLogger(__name__)


def _zero_usage() -> dict[str, Any]:
    return {
        "total_tokens": 0,
        "total_input_tokens": 0,
        "total_output_tokens": 0,
        "total_cache_tokens": 0,
        "total_cost": 0.0,
        "total_messages": 0,
    }


def _subtract_months(moment: datetime, months: int) -> datetime:
    """Calendar-aware month subtraction, clamping the day (Mar 31 → Feb 28)."""
    index = moment.year * 12 + (moment.month - 1) - months
    year, month0 = divmod(index, 12)
    day = min(moment.day, calendar.monthrange(year, month0 + 1)[1])
    return moment.replace(year=year, month=month0 + 1, day=day)


class DataAggregator:
    """Cached access to real-time, daily and monthly usage data."""

    def __init__(
        self,
        claude_config_dir: Path | str | None = None,
        *,
        scanner: SessionScanner | None = None,
        calculator: TokenCalculator | None = None,
        cache: TieredCache | None = None,
        window_hours: int | None = None,
        burn_rate_window_minutes: int | None = None,
        alternative_dirs: Sequence[Path | str] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._clock = clock
        self.window_hours = window_hours or settings.session_window_hours
        self.burn_rate_window_minutes = (
            burn_rate_window_minutes or settings.burn_rate_window_minutes
        )
        self.scanner = scanner or SessionScanner(
            claude_config_dir or settings.claude_config_dir,
            alternative_dirs=alternative_dirs,
            clock=clock,
        )
        self.calculator = calculator or TokenCalculator(self.window_hours)
        self.cache = cache or TieredCache(
            default_ttl=settings.cache_ttl_seconds,
            session_ttl=settings.session_cache_ttl_seconds,
            block_ttl=settings.block_cache_ttl_seconds,
            clock=clock,
        )
        self.custom_limits: PlanLimits | None = None

    # -- Cache plumbing --------------------------------------------------------

    @staticmethod
    def get_cache_key(method: str, params: dict[str, Any] | None = None) -> str:
        return f"{method}_{json.dumps(params or {}, sort_keys=True)}"

    async def _get_smart_cached(
        self,
        cache_key: str,
        compute: Callable[[], Awaitable[Any]],
        cache_type: str = "default",
    ) -> Any:
        """Serve ``cache_key`` from its tier, or compute and store it.

        Session-tier hits additionally check the projects directory's mtime;
        if it advanced, the session and block tiers are dropped and the
        lookup counts as a miss.
        """
        tier = self.cache.tier(cache_type)
        entry = tier.get(cache_key, self._clock())

        if entry is not None:
            if cache_type == "session" and self.cache.has_projects_dir_changed(
                self.scanner.projects_dir
            ):
                logger.debug("Session logs changed, dropping session and block caches")
                self.cache.invalidate_sessions()
            else:
                self.cache.record_hit()
                logger.debug("Cache hit: %s (%s)", cache_key, cache_type)
                return entry.data

        self.cache.record_miss()
        logger.debug("Cache miss: %s (%s)", cache_key, cache_type)

        if cache_type == "session":
            self.cache.observe_projects_mtime(self.scanner.projects_dir)

        t0 = time.perf_counter()
        data = await compute()
        duration = time.perf_counter() - t0
        logger.debug("Computed %s in %.1fms", cache_key, duration * 1000)

        tier.set(cache_key, data, self._clock(), duration)
        return data

    async def _load_records(self) -> list[UsageRecord]:
        return await self._get_smart_cached("sessions", self._scan, "session")

    async def _scan(self) -> list[UsageRecord]:
        records = self.scanner.get_all_project_sessions()
        # Blocks are derived from the record list, so a fresh scan drops them
        self.cache.block.clear()
        return records

    async def _load_blocks(self, records: list[UsageRecord]) -> list[SessionBlock]:
        key = self.get_cache_key("blocks", {"window_hours": self.window_hours})

        async def build() -> list[SessionBlock]:
            return create_session_blocks(records, self.window_hours, self._clock())

        return await self._get_smart_cached(key, build, "block")

    # -- Real-time -------------------------------------------------------------

    async def get_real_time_data(self) -> dict[str, Any]:
        return await self._get_smart_cached(
            self.get_cache_key("realtime"), self._compute_real_time_data
        )

    async def _compute_real_time_data(self) -> dict[str, Any]:
        try:
            records = await self._load_records()
            logger.info("Loaded %d usage records", len(records))
            if not records:
                return self.get_empty_state_data()

            now = self._clock()
            blocks = await self._load_blocks(records)
            mark_active_blocks(blocks, now)
            active = find_active_block(blocks, now)

            current_usage = active.totals() if active else _zero_usage()
            plan = self.calculator.detect_subscription_plan(records)
            model_distribution = (
                self.calculator.distribution_from_model_usage(active.model_usage)
                if active
                else {}
            )
            burn_rate = self.calculator.calculate_burn_rate(
                records, self.burn_rate_window_minutes, now
            )
            limits = self.get_plan_limits(plan.plan, plan.detected_limit)
            time_remaining = self.calculator.predict_session_time_remaining(
                current_usage["total_tokens"], limits.tokens, burn_rate
            )
            warnings = self.calculator.generate_usage_warnings(
                current_usage, limits, burn_rate, time_remaining
            )

            if active:
                window_start, window_end = active.start_time, active.end_time
            else:
                window_start, window_end = current_window(now, self.window_hours)
            time_to_reset = (window_end - now).total_seconds()

            return {
                "current_usage": current_usage,
                "limits": limits.to_dict(),
                "plan_detection": plan.to_dict(),
                "model_distribution": model_distribution,
                "burn_rate": {
                    "tokens_per_minute": burn_rate,
                    "tokens_per_hour": burn_rate * 60,
                    "estimated_time_remaining": time_remaining,
                },
                "warnings": [w.to_dict() for w in warnings],
                "active_sessions": len(active.sessions) if active else 0,
                "last_updated": now,
                "session_window": {
                    "start": window_start,
                    "end": window_end,
                    "time_to_reset": time_to_reset,
                    "reset_time": now + timedelta(seconds=time_to_reset),
                },
                "debug": {
                    "total_sessions_found": len(records),
                    "active_sessions_in_window": len(active.sessions) if active else 0,
                    "oldest_session": records[-1].timestamp,
                    "newest_session": records[0].timestamp,
                    "active_block_info": (
                        {
                            "id": active.id,
                            "start_time": active.start_time,
                            "end_time": active.end_time,
                            "total_tokens": active.total_tokens,
                        }
                        if active
                        else None
                    ),
                    "is_empty": False,
                },
            }
        except Exception as e:
            logger.exception("Failed to compute real-time usage data")
            return self.get_empty_state_data(str(e))

    def get_empty_state_data(self, error_message: str | None = None) -> dict[str, Any]:
        """Zero-valued real-time payload, optionally annotated with an error."""
        now = self._clock()
        window_start, window_end = current_window(now, self.window_hours)
        warnings = []
        if error_message:
            warnings.append(
                UsageWarning(
                    type="warning",
                    category="system",
                    message=f"Failed to load usage data: {error_message}",
                    severity="medium",
                ).to_dict()
            )

        debug: dict[str, Any] = {
            "total_sessions_found": 0,
            "active_sessions_in_window": 0,
            "oldest_session": None,
            "newest_session": None,
            "active_block_info": None,
            "is_empty": True,
        }
        if error_message:
            debug["error"] = error_message

        return {
            "current_usage": _zero_usage(),
            "limits": self.get_plan_limits("unknown").to_dict(),
            "plan_detection": PlanDetection(plan="unknown", confidence=0.0, detected_limit=0).to_dict(),
            "model_distribution": {},
            "burn_rate": {
                "tokens_per_minute": 0.0,
                "tokens_per_hour": 0.0,
                "estimated_time_remaining": math.inf,
            },
            "warnings": warnings,
            "active_sessions": 0,
            "last_updated": now,
            "session_window": {
                "start": window_start,
                "end": window_end,
                "time_to_reset": (window_end - now).total_seconds(),
                "reset_time": window_end,
            },
            "debug": debug,
        }

    # -- Reports ---------------------------------------------------------------

    async def get_daily_data(self, days: int | None = None) -> dict[str, Any]:
        days = settings.default_daily_days if days is None else days
        return await self._get_smart_cached(
            self.get_cache_key("daily", {"days": days}),
            lambda: self._compute_daily_data(days),
        )

    async def _compute_daily_data(self, days: int) -> dict[str, Any]:
        now = self._clock()
        cutoff = now - timedelta(days=days)
        try:
            records = await self._load_records()
            recent = self.scanner.filter_by_time_range(records, cutoff, now)
            report = self.calculator.generate_daily_report(self.scanner.group_by_date(recent))
            return {
                "report": report,
                "total_days": len(report),
                "date_range": {"start": cutoff, "end": now},
                "summary": self.calculator.generate_daily_summary(report),
            }
        except Exception as e:
            logger.exception("Failed to compute daily usage data")
            return {
                "report": [],
                "total_days": 0,
                "date_range": {"start": cutoff, "end": now},
                "summary": self.calculator.generate_daily_summary([]),
                "error": str(e),
            }

    async def get_monthly_data(self, months: int | None = None) -> dict[str, Any]:
        months = settings.default_monthly_months if months is None else months
        return await self._get_smart_cached(
            self.get_cache_key("monthly", {"months": months}),
            lambda: self._compute_monthly_data(months),
        )

    async def _compute_monthly_data(self, months: int) -> dict[str, Any]:
        now = self._clock()
        cutoff = _subtract_months(now, months)
        try:
            records = await self._load_records()
            recent = self.scanner.filter_by_time_range(records, cutoff, now)
            report = self.calculator.generate_monthly_report(self.scanner.group_by_month(recent))
            return {
                "report": report,
                "total_months": len(report),
                "date_range": {"start": cutoff, "end": now},
                "summary": self.calculator.generate_monthly_summary(report),
            }
        except Exception as e:
            logger.exception("Failed to compute monthly usage data")
            return {
                "report": [],
                "total_months": 0,
                "date_range": {"start": cutoff, "end": now},
                "summary": self.calculator.generate_monthly_summary([]),
                "error": str(e),
            }

    # -- Plans & limits --------------------------------------------------------

    def get_plan_limits(self, plan: str, detected_limit: int | None = None) -> PlanLimits:
        if self.custom_limits is not None:
            return self.custom_limits
        return get_plan_limits(plan, detected_limit)

    async def get_plan_detection(self) -> dict[str, Any]:
        records = await self._load_records()
        plan = self.calculator.detect_subscription_plan(records)
        return {
            "plan_detection": plan.to_dict(),
            "limits": self.get_plan_limits(plan.plan, plan.detected_limit).to_dict(),
            "session_analysis": {
                "total_sessions": len(records),
                "date_range": (
                    {"start": records[-1].timestamp, "end": records[0].timestamp}
                    if records
                    else None
                ),
            },
        }

    def set_custom_limits(
        self,
        tokens: int,
        cost: float | None = None,
        messages: int | None = None,
    ) -> PlanLimits:
        """Override the detected plan's limits for real-time warnings."""
        if not tokens or tokens <= 0:
            raise ValueError("Token limit must be greater than 0")
        if cost is not None and cost <= 0:
            raise ValueError("Cost limit must be greater than 0")
        if messages is not None and messages <= 0:
            raise ValueError("Message limit must be greater than 0")

        self.custom_limits = PlanLimits(
            tokens=int(tokens),
            cost=float(cost) if cost is not None else 50.0,
            messages=int(messages) if messages is not None else 500,
            description="Custom limits",
        )
        self.cache.default.clear()
        logger.info("Custom limits applied: %s", self.custom_limits)
        return self.custom_limits

    def clear_custom_limits(self) -> None:
        self.custom_limits = None
        self.cache.default.clear()

    # -- Cache management / status --------------------------------------------

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("All caches cleared")

    def clear_cache_type(self, cache_type: str) -> None:
        self.cache.clear_tier(cache_type)
        logger.info("Cleared %s cache", cache_type)

    def get_cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    def get_system_status(self) -> dict[str, Any]:
        return {
            "cache_size": len(self.cache.default),
            "cache_timeout": self.cache.default.ttl,
            "claude_config_dir": str(self.scanner.config_dir),
            "last_cache_update": self.cache.default.last_updated,
            "cache_stats": self.get_cache_stats(),
            "custom_limits": self.custom_limits.to_dict() if self.custom_limits else None,
            "performance": {
                "session_cache_timeout": self.cache.session.ttl,
                "block_cache_timeout": self.cache.block.ttl,
                "file_watch_enabled": True,
            },
        }

    async def get_debug_info(self) -> dict[str, Any]:
        info = self.scanner.describe()
        records = await self._load_records()
        info["session_count"] = len(records)
        if records:
            newest = records[0]
            info["sample_session"] = {
                "timestamp": newest.timestamp,
                "model": newest.model,
                "usage": newest.usage,
                "project_name": newest.project_name,
            }
        return info
