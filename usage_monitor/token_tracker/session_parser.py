"""Parse Claude Code session JSONL files into normalised usage records.

The CLI appends one JSON object per line and may be killed mid-write, so a
file can end in a truncated line and occasionally carry a stray trailing
comma. Each line is lightly repaired, parsed and classified; only assistant
responses with a numeric ``message.usage.input_tokens`` become records.
Nothing in here raises: unreadable files produce an empty list.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Union

from usage_monitor.token_tracker.models import Clock, TokenUsage, UsageRecord, utc_now
from usage_monitor.token_tracker.pricing import DEFAULT_MODEL, calculate_cost, get_model_family
from usage_monitor.token_tracker.sanitizer import fix_json_line, looks_like_partial_record

logger = logging.getLogger(__name__)


# -- Parse results -------------------------------------------------------------


@dataclass(frozen=True)
class ValidRecord:
    record: UsageRecord


@dataclass(frozen=True)
class IncompleteRecord:
    """Recognisable entry that carries no usage (user turn, tool-only reply...)."""

    reason: str


@dataclass(frozen=True)
class SummaryLine:
    pass


@dataclass(frozen=True)
class Unrecognized:
    pass


@dataclass(frozen=True)
class MalformedLine:
    error: str
    partial: bool = False  # line still looked like a session entry


ParseResult = Union[ValidRecord, IncompleteRecord, SummaryLine, Unrecognized, MalformedLine]


@dataclass
class ParseStats:
    """Per-file line counters, used only for logging."""

    total_lines: int = 0
    valid: int = 0
    summary: int = 0
    incomplete: int = 0
    parse_errors: int = 0
    recoverable: int = 0

    @property
    def valid_rate(self) -> int:
        if not self.total_lines:
            return 0
        return round(self.valid / self.total_lines * 100)


# -- Normalisation -------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _token_count(value: Any) -> int:
    """Coerce a raw token field to a non-negative int (0 when absent/bogus)."""
    if not _is_number(value) or not math.isfinite(value) or value <= 0:
        return 0
    return int(value)


def parse_timestamp(value: Any, clock: Clock = utc_now) -> datetime:
    """Parse an ISO-8601 string or epoch-millisecond number into aware UTC.

    Missing or unparseable values fall back to the ingestion time.
    """
    ts: datetime
    if isinstance(value, str) and value:
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return clock()
    elif _is_number(value) and math.isfinite(value):
        try:
            ts = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return clock()
    else:
        return clock()

    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    try:
        return ts.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # Offset pushes the instant outside the representable range
        return clock()


def normalize_entry(entry: dict[str, Any], clock: Clock = utc_now) -> UsageRecord:
    """Build a UsageRecord from an assistant entry that carries usage."""
    timestamp = parse_timestamp(entry.get("timestamp"), clock)
    message = entry["message"]
    usage = message["usage"]
    model = message.get("model") or DEFAULT_MODEL
    if not isinstance(model, str):
        model = str(model)

    input_tokens = _token_count(usage.get("input_tokens"))
    output_tokens = _token_count(usage.get("output_tokens"))
    cache_tokens = _token_count(usage.get("cache_creation_input_tokens")) or _token_count(
        usage.get("cache_tokens")
    )

    return UsageRecord(
        timestamp=timestamp,
        session_id=entry.get("sessionId") or f"session_{int(timestamp.timestamp() * 1000)}",
        model=model,
        model_family=get_model_family(model),
        usage=TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_tokens=cache_tokens,
            total_tokens=input_tokens + output_tokens,
        ),
        cost=calculate_cost(input_tokens, output_tokens, cache_tokens, model),
        message_count=1,
        project_name=entry.get("projectName") or "unknown",
        uuid=entry.get("uuid"),
        parent_uuid=entry.get("parentUuid"),
    )


# -- Classification ------------------------------------------------------------


def is_valid_usage_entry(entry: dict[str, Any]) -> bool:
    message = entry.get("message")
    if entry.get("type") != "assistant" or not isinstance(message, dict):
        return False
    usage = message.get("usage")
    return isinstance(usage, dict) and _is_number(usage.get("input_tokens"))


def incomplete_reason(entry: dict[str, Any]) -> str | None:
    """Why a recognisable entry carries no usage, or None if it isn't one."""
    message = entry.get("message")
    entry_type = entry.get("type")
    if entry_type == "user" and message:
        return "user message"
    if entry_type == "assistant" and not (isinstance(message, dict) and message.get("usage")):
        return "assistant without usage"
    if entry.get("parentUuid") and entry.get("sessionId") and not message:
        return "entry without message"
    return None


def classify_entry(entry: Any, clock: Clock = utc_now) -> ParseResult:
    if not isinstance(entry, dict):
        return Unrecognized()
    if entry.get("type") == "summary":
        return SummaryLine()
    if is_valid_usage_entry(entry):
        return ValidRecord(normalize_entry(entry, clock))
    reason = incomplete_reason(entry)
    if reason:
        return IncompleteRecord(reason)
    return Unrecognized()


def parse_line(line: str, clock: Clock = utc_now) -> ParseResult:
    """Repair, decode and classify one JSONL line."""
    line = fix_json_line(line.strip())
    try:
        entry = json.loads(line)
    except (json.JSONDecodeError, ValueError, RecursionError) as e:
        return MalformedLine(error=str(e), partial=looks_like_partial_record(line))
    return classify_entry(entry, clock)


def parse_lines(
    lines: Iterable[str],
    clock: Clock = utc_now,
) -> tuple[list[UsageRecord], ParseStats]:
    records: list[UsageRecord] = []
    stats = ParseStats()

    for line_no, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        stats.total_lines += 1
        result = parse_line(line, clock)

        if isinstance(result, ValidRecord):
            stats.valid += 1
            records.append(result.record)
        elif isinstance(result, SummaryLine):
            stats.summary += 1
        elif isinstance(result, IncompleteRecord):
            stats.incomplete += 1
            if stats.incomplete == 1:
                logger.debug("Line %d is incomplete (%s)", line_no, result.reason)
        elif isinstance(result, MalformedLine):
            stats.parse_errors += 1
            if result.partial:
                stats.recoverable += 1
                if stats.parse_errors <= 3:
                    logger.debug("Line %d looks like a truncated session entry", line_no)

    return records, stats


def parse_jsonl_file_with_stats(
    file_path: Path | str,
    clock: Clock = utc_now,
) -> tuple[list[UsageRecord], ParseStats]:
    path = Path(file_path)
    try:
        # Undecodable bytes (a multi-byte char cut by a killed writer) only
        # spoil their own line
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
    except OSError as e:
        logger.error("Could not read %s: %s", path, e)
        return [], ParseStats()

    records, stats = parse_lines(content.split("\n"), clock)

    if stats.valid_rate > 50:
        logger.info(
            "Parsed %s: %d/%d lines valid (%d%%, %d summary, %d incomplete, %d unparseable)",
            path.name,
            stats.valid,
            stats.total_lines,
            stats.valid_rate,
            stats.summary,
            stats.incomplete,
            stats.parse_errors,
        )
    else:
        logger.info("Parsed %s: %d usage records", path.name, stats.valid)

    return records, stats


def parse_jsonl_file(file_path: Path | str, clock: Clock = utc_now) -> list[UsageRecord]:
    """Parse one session log into records, in file order. Never raises."""
    records, _ = parse_jsonl_file_with_stats(file_path, clock)
    return records
