"""Core data models for the usage-monitor pipeline.

Records are produced by the session parser, grouped into blocks by the
window builder and summarised by the calculator. Everything here lives in
memory only; nothing is written back to the ~/.claude directory.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# -- Records -------------------------------------------------------------------


class ModelFamily(str, Enum):
    SONNET = "Sonnet"
    OPUS = "Opus"
    HAIKU = "Haiku"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class TokenUsage:
    """Normalised token counts for one assistant response."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class UsageRecord:
    """A single assistant response with usage, as read from a session log."""

    timestamp: datetime
    session_id: str
    model: str
    model_family: ModelFamily
    usage: TokenUsage
    cost: float
    message_count: int = 1
    project_name: str = "unknown"
    uuid: str | None = None
    parent_uuid: str | None = None
    source_file: str | None = None


# -- Blocks --------------------------------------------------------------------


@dataclass
class ModelUsage:
    """Running totals for one model family."""

    tokens: int = 0
    cost: float = 0.0
    messages: int = 0


@dataclass
class SessionBlock:
    """One fixed-width UTC billing window and the records that fall in it."""

    id: str
    start_time: datetime
    end_time: datetime
    sessions: list[UsageRecord] = field(default_factory=list)
    total_tokens: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_tokens: int = 0
    total_cost: float = 0.0
    total_messages: int = 0
    model_usage: dict[str, ModelUsage] = field(default_factory=dict)
    is_active: bool = False
    actual_end_time: datetime | None = None

    def add(self, record: UsageRecord) -> None:
        self.sessions.append(record)
        self.total_tokens += record.usage.total_tokens
        self.total_input_tokens += record.usage.input_tokens
        self.total_output_tokens += record.usage.output_tokens
        self.total_cache_tokens += record.usage.cache_tokens
        self.total_cost += record.cost
        self.total_messages += record.message_count

        family = record.model_family.value
        if family not in self.model_usage:
            self.model_usage[family] = ModelUsage()
        mu = self.model_usage[family]
        mu.tokens += record.usage.total_tokens
        mu.cost += record.cost
        mu.messages += record.message_count

    def finalize(self) -> None:
        if self.sessions:
            self.actual_end_time = self.sessions[-1].timestamp

    def totals(self) -> dict[str, Any]:
        return {
            "total_tokens": self.total_tokens,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_cache_tokens": self.total_cache_tokens,
            "total_cost": self.total_cost,
            "total_messages": self.total_messages,
        }


# -- Derived results -----------------------------------------------------------


@dataclass
class SessionStats:
    """Aggregate statistics over a list of usage records."""

    total_tokens: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_tokens: int = 0
    total_cost: float = 0.0
    total_messages: int = 0
    session_count: int = 0
    average_tokens_per_session: float = 0.0
    average_cost_per_session: float = 0.0
    model_usage: dict[str, ModelUsage] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PlanDetection:
    plan: str  # "pro" | "max5" | "max20" | "custom" | "unknown"
    confidence: float
    detected_limit: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PlanLimits:
    tokens: int
    cost: float
    messages: int
    description: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UsageWarning:
    type: str  # "warning" | "danger"
    category: str  # "tokens" | "cost" | "burn_rate" | "system"
    message: str
    severity: str  # "medium" | "high"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# -- Serialization helpers -----------------------------------------------------


def to_jsonable(value: Any) -> Any:
    """Convert pipeline output into something ``json.dumps`` accepts.

    Datetimes become ISO strings, dataclasses become dicts, enums their
    values, and non-finite floats (the ``inf`` time-remaining sentinel)
    become ``None``.
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, dict):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
