"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from usage_monitor.token_tracker.models import TokenUsage, UsageRecord
from usage_monitor.token_tracker.pricing import calculate_cost, get_model_family


class FakeClock:
    """Settable clock passed wherever the pipeline asks for "now"."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def utc():
    """Shorthand for building aware UTC datetimes."""

    def _utc(*args: int) -> datetime:
        return datetime(*args, tzinfo=timezone.utc)

    return _utc


@pytest.fixture
def claude_dir(tmp_path: Path) -> Path:
    """A fake ~/.claude with an empty projects directory."""
    (tmp_path / ".claude" / "projects").mkdir(parents=True)
    return tmp_path / ".claude"


@pytest.fixture
def assistant_entry():
    """Factory for raw assistant log entries that carry usage."""

    def _entry(
        timestamp: str,
        input_tokens: int = 100,
        output_tokens: int = 50,
        model: str = "claude-3-5-sonnet-20241022",
        session_id: str = "s1",
        **usage_extra: Any,
    ) -> dict[str, Any]:
        return {
            "type": "assistant",
            "timestamp": timestamp,
            "sessionId": session_id,
            "uuid": f"uuid-{timestamp}",
            "message": {
                "role": "assistant",
                "model": model,
                "usage": {
                    "input_tokens": input_tokens,
                    "output_tokens": output_tokens,
                    **usage_extra,
                },
            },
        }

    return _entry


@pytest.fixture
def write_jsonl():
    """Write entries one per line; strings are written verbatim."""

    def _write(path: Path, entries: list[Any]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_record():
    """Factory for UsageRecords with the cost derived from the model."""

    def _make(
        timestamp: datetime,
        input_tokens: int = 100,
        output_tokens: int = 50,
        cache_tokens: int = 0,
        model: str = "claude-3-5-sonnet-20241022",
        session_id: str = "s1",
        project_name: str = "proj",
    ) -> UsageRecord:
        return UsageRecord(
            timestamp=timestamp,
            session_id=session_id,
            model=model,
            model_family=get_model_family(model),
            usage=TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cache_tokens=cache_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            cost=calculate_cost(input_tokens, output_tokens, cache_tokens, model),
            project_name=project_name,
        )

    return _make
