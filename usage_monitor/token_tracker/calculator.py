"""Token statistics: percentiles, burn rate, plan detection and reports.

Everything here is a pure computation over already-parsed records: no file
access, no mutation of the inputs, and "now" is always passed in so results
are reproducible in tests.

Plan detection is a heuristic. The thresholds and confidence values are
fixed per tier, not statistically derived; override them through
``TokenCalculator(plan_tiers=...)`` if your limits differ.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from usage_monitor.token_tracker.models import (
    ModelUsage,
    PlanDetection,
    PlanLimits,
    SessionStats,
    UsageRecord,
    UsageWarning,
    utc_now,
)


@dataclass(frozen=True)
class PlanTier:
    """Classify as ``name`` when the busiest window used at most ``max_usage``."""

    name: str
    max_usage: int
    confidence: float
    detected_limit: int


DEFAULT_PLAN_TIERS: tuple[PlanTier, ...] = (
    PlanTier("pro", max_usage=20_000, confidence=0.8, detected_limit=19_000),
    PlanTier("max5", max_usage=90_000, confidence=0.85, detected_limit=88_000),
    PlanTier("max20", max_usage=225_000, confidence=0.9, detected_limit=220_000),
)

PLAN_LIMITS: dict[str, PlanLimits] = {
    "pro": PlanLimits(tokens=19_000, cost=18.0, messages=250, description="Claude Pro"),
    "max5": PlanLimits(tokens=88_000, cost=35.0, messages=1000, description="Claude Max5"),
    "max20": PlanLimits(tokens=220_000, cost=140.0, messages=2000, description="Claude Max20"),
    "unknown": PlanLimits(
        tokens=88_000, cost=35.0, messages=1000, description="Unknown plan (Max5 limits)"
    ),
}


def get_plan_limits(plan: str, detected_limit: int | None = None) -> PlanLimits:
    if plan == "custom":
        return PlanLimits(
            tokens=detected_limit or 88_000,
            cost=35.0,
            messages=1000,
            description="Custom plan (P90 of window usage)",
        )
    return PLAN_LIMITS.get(plan, PLAN_LIMITS["unknown"])


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _percent_change(current: float, previous: float) -> float:
    return (current - previous) / previous * 100 if previous > 0 else 0.0


class TokenCalculator:
    """Statistics over usage records and session blocks."""

    def __init__(
        self,
        session_window_hours: int = 5,
        *,
        plan_tiers: Sequence[PlanTier] = DEFAULT_PLAN_TIERS,
        custom_confidence: float = 0.95,
        custom_limit_buffer: float = 1.1,
    ) -> None:
        self.session_window_hours = session_window_hours
        self.plan_tiers = tuple(sorted(plan_tiers, key=lambda t: t.max_usage))
        self.custom_confidence = custom_confidence
        self.custom_limit_buffer = custom_limit_buffer

    # -- Percentiles -----------------------------------------------------------

    @staticmethod
    def percentile(values: Sequence[float], p: float) -> float:
        """Nearest-rank percentile (no interpolation); 0 for no values."""
        if not values:
            return 0
        ordered = sorted(values)
        index = math.ceil(len(ordered) * p) - 1
        return ordered[max(0, index)]

    def calculate_p90(self, values: Sequence[float]) -> float:
        return self.percentile(values, 0.9)

    def calculate_p95(self, values: Sequence[float]) -> float:
        return self.percentile(values, 0.95)

    # -- Aggregates ------------------------------------------------------------

    def calculate_session_stats(self, records: Sequence[UsageRecord]) -> SessionStats:
        stats = SessionStats()
        for r in records:
            stats.total_tokens += r.usage.total_tokens
            stats.total_input_tokens += r.usage.input_tokens
            stats.total_output_tokens += r.usage.output_tokens
            stats.total_cache_tokens += r.usage.cache_tokens
            stats.total_cost += r.cost
            stats.total_messages += r.message_count

            family = r.model_family.value
            if family not in stats.model_usage:
                stats.model_usage[family] = ModelUsage()
            mu = stats.model_usage[family]
            mu.tokens += r.usage.total_tokens
            mu.cost += r.cost
            mu.messages += r.message_count

        stats.session_count = len(records)
        if records:
            stats.average_tokens_per_session = stats.total_tokens / stats.session_count
            stats.average_cost_per_session = stats.total_cost / stats.session_count
        return stats

    def calculate_model_distribution(
        self, records: Sequence[UsageRecord]
    ) -> dict[str, dict[str, Any]]:
        """Share of tokens per model family across ``records``."""
        stats = self.calculate_session_stats(records)
        total = stats.total_tokens
        return {
            family: {
                "percentage": mu.tokens / total * 100 if total > 0 else 0.0,
                "tokens": mu.tokens,
                "cost": mu.cost,
                "messages": mu.messages,
            }
            for family, mu in stats.model_usage.items()
        }

    @staticmethod
    def distribution_from_model_usage(
        model_usage: Mapping[str, ModelUsage],
    ) -> dict[str, dict[str, Any]]:
        """Like calculate_model_distribution, from a block's running totals."""
        total = sum(mu.tokens for mu in model_usage.values())
        if total == 0:
            return {}
        return {
            family: {
                "tokens": mu.tokens,
                "cost": mu.cost,
                "messages": mu.messages,
                "percentage": round(mu.tokens / total * 100, 1),
            }
            for family, mu in model_usage.items()
        }

    # -- Burn rate -------------------------------------------------------------

    def calculate_burn_rate(
        self,
        records: Sequence[UsageRecord],
        window_minutes: int = 60,
        now: datetime | None = None,
    ) -> float:
        """Tokens per minute over the trailing ``window_minutes``."""
        if len(records) < 2 or window_minutes <= 0:
            return 0.0
        now = now or utc_now()
        window_start = now.timestamp() - window_minutes * 60
        recent = [r for r in records if r.timestamp.timestamp() >= window_start]
        if not recent:
            return 0.0
        return sum(r.usage.total_tokens for r in recent) / window_minutes

    @staticmethod
    def predict_session_time_remaining(
        current_tokens: float,
        token_limit: float,
        burn_rate_per_minute: float,
    ) -> float:
        """Minutes until ``token_limit`` at the current rate; ``inf`` if idle."""
        if burn_rate_per_minute <= 0:
            return math.inf
        return max(0.0, token_limit - current_tokens) / burn_rate_per_minute

    # -- Plan detection --------------------------------------------------------

    def window_usages(self, records: Sequence[UsageRecord]) -> list[int]:
        """Total tokens per epoch-aligned session window."""
        window_seconds = self.session_window_hours * 3600
        windows: dict[int, int] = defaultdict(int)
        for r in records:
            windows[int(r.timestamp.timestamp() // window_seconds)] += r.usage.total_tokens
        return list(windows.values())

    def detect_subscription_plan(self, records: Sequence[UsageRecord]) -> PlanDetection:
        usages = self.window_usages(records)
        if not usages:
            return PlanDetection(plan="unknown", confidence=0.0, detected_limit=0)

        max_usage = max(usages)
        for tier in self.plan_tiers:
            if max_usage <= tier.max_usage:
                return PlanDetection(
                    plan=tier.name,
                    confidence=tier.confidence,
                    detected_limit=tier.detected_limit,
                )

        return PlanDetection(
            plan="custom",
            confidence=self.custom_confidence,
            detected_limit=math.ceil(self.calculate_p90(usages) * self.custom_limit_buffer),
        )

    # -- Warnings --------------------------------------------------------------

    @staticmethod
    def generate_usage_warnings(
        current_usage: Mapping[str, Any],
        limits: PlanLimits,
        burn_rate: float,
        time_remaining: float,
    ) -> list[UsageWarning]:
        warnings: list[UsageWarning] = []
        token_pct = current_usage.get("total_tokens", 0) / limits.tokens * 100 if limits.tokens else 0
        cost_pct = current_usage.get("total_cost", 0) / limits.cost * 100 if limits.cost else 0

        for category, label, pct in (
            ("tokens", "Token usage", token_pct),
            ("cost", "Cost", cost_pct),
        ):
            if pct >= 90:
                warnings.append(
                    UsageWarning("danger", category, f"{label} at {pct:.1f}% of limit", "high")
                )
            elif pct >= 75:
                warnings.append(
                    UsageWarning("warning", category, f"{label} at {pct:.1f}% of limit", "medium")
                )

        if burn_rate > 0 and time_remaining < 60:
            message = f"Limit reached in about {round(time_remaining)} minutes at the current rate"
            if time_remaining < 30:
                warnings.append(UsageWarning("danger", "burn_rate", message, "high"))
            else:
                warnings.append(UsageWarning("warning", "burn_rate", message, "medium"))

        return warnings

    # -- Reports ---------------------------------------------------------------

    @staticmethod
    def get_model_usage_breakdown(records: Sequence[UsageRecord]) -> dict[str, dict[str, Any]]:
        """Usage per raw model identifier."""
        breakdown: dict[str, dict[str, Any]] = {}
        for r in records:
            entry = breakdown.setdefault(r.model, {"sessions": 0, "total_tokens": 0, "total_cost": 0.0})
            entry["sessions"] += 1
            entry["total_tokens"] += r.usage.total_tokens
            entry["total_cost"] += r.cost
        return breakdown

    @staticmethod
    def get_daily_breakdown_for_month(records: Sequence[UsageRecord]) -> list[dict[str, Any]]:
        days: dict[int, dict[str, Any]] = {}
        for r in records:
            day = r.timestamp.day
            entry = days.setdefault(day, {"day": day, "tokens": 0, "cost": 0.0, "sessions": 0})
            entry["tokens"] += r.usage.total_tokens
            entry["cost"] += r.cost
            entry["sessions"] += 1
        return [days[d] for d in sorted(days)]

    def generate_daily_report(
        self, records_by_date: Mapping[str, Sequence[UsageRecord]]
    ) -> list[dict[str, Any]]:
        """One entry per ``YYYY-MM-DD`` key, newest first."""
        report = [
            {
                "date": day,
                "stats": self.calculate_session_stats(records).to_dict(),
                "model_usage": self.get_model_usage_breakdown(records),
                "session_count": len(records),
            }
            for day, records in records_by_date.items()
        ]
        report.sort(key=lambda d: d["date"], reverse=True)
        return report

    def generate_monthly_report(
        self, records_by_month: Mapping[str, Sequence[UsageRecord]]
    ) -> list[dict[str, Any]]:
        """One entry per ``YYYY-MM`` key, newest first."""
        report = [
            {
                "month": month,
                "stats": self.calculate_session_stats(records).to_dict(),
                "daily_breakdown": self.get_daily_breakdown_for_month(records),
                "session_count": len(records),
            }
            for month, records in records_by_month.items()
        ]
        report.sort(key=lambda m: m["month"], reverse=True)
        return report

    @staticmethod
    def _peak(report: Sequence[dict[str, Any]]) -> dict[str, Any] | None:
        peak: dict[str, Any] | None = None
        for entry in report:
            if entry["stats"]["total_tokens"] > (peak["stats"]["total_tokens"] if peak else 0):
                peak = entry
        return peak

    def generate_daily_summary(self, daily_report: Sequence[dict[str, Any]]) -> dict[str, Any]:
        """Totals, averages, peak day and a 7-day-over-7-day trend.

        ``daily_report`` must be newest first, as generate_daily_report returns it.
        """
        if not daily_report:
            return {
                "average_tokens_per_day": 0.0,
                "average_cost_per_day": 0.0,
                "total_tokens": 0,
                "total_cost": 0.0,
                "peak_day": None,
                "trends": {"tokens_change": 0.0, "cost_change": 0.0},
            }

        total_tokens = sum(d["stats"]["total_tokens"] for d in daily_report)
        total_cost = sum(d["stats"]["total_cost"] for d in daily_report)

        recent = daily_report[:7]
        previous = daily_report[7:14] or recent
        tokens_change = _percent_change(
            _mean([d["stats"]["total_tokens"] for d in recent]),
            _mean([d["stats"]["total_tokens"] for d in previous]),
        )
        cost_change = _percent_change(
            _mean([d["stats"]["total_cost"] for d in recent]),
            _mean([d["stats"]["total_cost"] for d in previous]),
        )

        return {
            "average_tokens_per_day": total_tokens / len(daily_report),
            "average_cost_per_day": total_cost / len(daily_report),
            "total_tokens": total_tokens,
            "total_cost": total_cost,
            "peak_day": self._peak(daily_report),
            "trends": {"tokens_change": tokens_change, "cost_change": cost_change},
        }

    def generate_monthly_summary(self, monthly_report: Sequence[dict[str, Any]]) -> dict[str, Any]:
        """Totals, averages, peak month and month-over-month growth (newest first)."""
        if not monthly_report:
            return {
                "average_tokens_per_month": 0.0,
                "average_cost_per_month": 0.0,
                "total_tokens": 0,
                "total_cost": 0.0,
                "peak_month": None,
                "growth": {"tokens_growth": 0.0, "cost_growth": 0.0},
            }

        total_tokens = sum(m["stats"]["total_tokens"] for m in monthly_report)
        total_cost = sum(m["stats"]["total_cost"] for m in monthly_report)

        growth = {"tokens_growth": 0.0, "cost_growth": 0.0}
        if len(monthly_report) >= 2:
            current, previous = monthly_report[0]["stats"], monthly_report[1]["stats"]
            growth["tokens_growth"] = _percent_change(
                current["total_tokens"], previous["total_tokens"]
            )
            growth["cost_growth"] = _percent_change(current["total_cost"], previous["total_cost"])

        return {
            "average_tokens_per_month": total_tokens / len(monthly_report),
            "average_cost_per_month": total_cost / len(monthly_report),
            "total_tokens": total_tokens,
            "total_cost": total_cost,
            "peak_month": self._peak(monthly_report),
            "growth": growth,
        }
