"""Tests for the session parser: JSONL lines in, usage records out."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from usage_monitor.token_tracker.models import ModelFamily
from usage_monitor.token_tracker.session_parser import (
    IncompleteRecord,
    MalformedLine,
    SummaryLine,
    Unrecognized,
    ValidRecord,
    classify_entry,
    parse_jsonl_file,
    parse_jsonl_file_with_stats,
    parse_line,
    parse_lines,
    parse_timestamp,
)

FALLBACK = datetime(2030, 1, 1, tzinfo=timezone.utc)


def fallback_clock() -> datetime:
    return FALLBACK


# -- Concrete scenario ---------------------------------------------------------


class TestParseFile:
    def test_valid_trailing_comma_and_summary(self, tmp_path: Path, assistant_entry, write_jsonl):
        entry = assistant_entry("2025-06-15T10:00:00.000Z")
        path = write_jsonl(
            tmp_path / "s.jsonl",
            [entry, json.dumps(entry) + ",", {"type": "summary", "summary": "Built a page"}],
        )

        records = parse_jsonl_file(path)

        assert len(records) == 2
        for r in records:
            assert r.usage.total_tokens == 150
            assert r.model_family == ModelFamily.SONNET
            assert r.cost == pytest.approx(0.00105)

    def test_missing_file_returns_empty(self, tmp_path: Path):
        assert parse_jsonl_file(tmp_path / "nope.jsonl") == []

    def test_file_order_is_preserved(self, tmp_path: Path, assistant_entry, write_jsonl):
        path = write_jsonl(tmp_path / "s.jsonl", [
            assistant_entry("2025-06-15T12:00:00Z", input_tokens=1),
            assistant_entry("2025-06-15T10:00:00Z", input_tokens=2),
        ])
        assert [r.usage.input_tokens for r in parse_jsonl_file(path)] == [1, 2]

    def test_parsing_is_idempotent(self, tmp_path: Path, assistant_entry, write_jsonl):
        path = write_jsonl(tmp_path / "s.jsonl", [
            assistant_entry("2025-06-15T10:00:00Z"),
            '{"type":"assistant","sessionId":"s1","message":{"usage":{"input_tokens":1',
            assistant_entry("2025-06-15T11:00:00Z", output_tokens=7),
        ])
        assert parse_jsonl_file(path) == parse_jsonl_file(path)

    def test_corrupt_lines_do_not_drop_valid_ones(self, tmp_path: Path, assistant_entry, write_jsonl):
        path = write_jsonl(tmp_path / "s.jsonl", [
            assistant_entry("2025-06-15T10:00:00Z"),
            "not json at all",
            '{"type":"assistant","sessionId":"s1","message":{"mod',
            "",
            {"type": "user", "message": {"role": "user", "content": "hi"}},
            assistant_entry("2025-06-15T10:05:00Z"),
        ])

        records, stats = parse_jsonl_file_with_stats(path)

        assert len(records) == 2
        assert stats.total_lines == 5
        assert stats.valid == 2
        assert stats.incomplete == 1
        assert stats.parse_errors == 2
        assert stats.recoverable == 1

    def test_low_valid_rate_logs_terse_line(self, tmp_path: Path, write_jsonl, caplog):
        path = write_jsonl(tmp_path / "s.jsonl", ["garbage", "more garbage"])
        with caplog.at_level(logging.INFO, logger="usage_monitor.token_tracker.session_parser"):
            parse_jsonl_file(path)
        assert "0 usage records" in caplog.text

    def test_cut_multibyte_tail_only_loses_last_line(self, tmp_path: Path, assistant_entry):
        valid = "\n".join(
            json.dumps(assistant_entry(f"2025-06-15T1{i}:00:00Z")) for i in range(3)
        )
        tail = '{"type":"assistant","message":{"content":"'.encode() + "中".encode()[:2]
        path = tmp_path / "s.jsonl"
        path.write_bytes(valid.encode() + b"\n" + tail)

        records, stats = parse_jsonl_file_with_stats(path)

        assert len(records) == 3
        assert stats.parse_errors == 1

    def test_deeply_nested_line_is_dropped(self, tmp_path: Path, assistant_entry, write_jsonl):
        path = write_jsonl(tmp_path / "s.jsonl", [
            "[" * 200_000,
            assistant_entry("2025-06-15T10:00:00Z"),
        ])

        records, stats = parse_jsonl_file_with_stats(path)

        assert len(records) == 1
        assert stats.parse_errors == 1

    def test_out_of_range_timestamp_keeps_record(self, tmp_path: Path, assistant_entry, write_jsonl):
        path = write_jsonl(tmp_path / "s.jsonl", [
            assistant_entry("0001-01-01T00:00:00+05:00"),
            assistant_entry("2025-06-15T10:00:00Z"),
        ])

        records = parse_jsonl_file(path, clock=fallback_clock)

        assert [r.timestamp for r in records] == [
            FALLBACK,
            datetime(2025, 6, 15, 10, tzinfo=timezone.utc),
        ]


# -- Line classification -------------------------------------------------------


class TestParseLine:
    def test_summary(self):
        assert isinstance(parse_line('{"type": "summary"}'), SummaryLine)

    def test_user_message_is_incomplete(self):
        result = parse_line(json.dumps({"type": "user", "message": {"content": "hi"}}))
        assert result == IncompleteRecord("user message")

    def test_assistant_without_usage_is_incomplete(self):
        result = parse_line(json.dumps({"type": "assistant", "message": {"content": []}}))
        assert result == IncompleteRecord("assistant without usage")

    def test_entry_without_message_is_incomplete(self):
        result = parse_line(json.dumps({"parentUuid": "p", "sessionId": "s"}))
        assert result == IncompleteRecord("entry without message")

    def test_non_numeric_input_tokens_is_not_valid(self):
        entry = {"type": "assistant", "message": {"usage": {"input_tokens": "100"}}}
        assert not isinstance(parse_line(json.dumps(entry)), ValidRecord)

    def test_unrecognized(self):
        assert isinstance(parse_line('{"foo": 1}'), Unrecognized)
        assert isinstance(classify_entry([1, 2, 3]), Unrecognized)

    def test_truncated_line_flagged_partial(self):
        result = parse_line('{"sessionId":"s1","message":{"usage":{"input_tokens":5')
        assert isinstance(result, MalformedLine)
        assert result.partial is True

    def test_garbage_not_partial(self):
        result = parse_line("{{{")
        assert isinstance(result, MalformedLine)
        assert result.partial is False

    def test_nesting_too_deep_is_malformed(self):
        assert isinstance(parse_line("[" * 200_000), MalformedLine)


# -- Normalisation -------------------------------------------------------------


class TestNormalisation:
    def test_cache_creation_tokens_preferred(self, assistant_entry):
        entry = assistant_entry(
            "2025-06-15T10:00:00Z", cache_creation_input_tokens=400, cache_tokens=9
        )
        record = parse_line(json.dumps(entry)).record
        assert record.usage.cache_tokens == 400
        # Cache tokens are priced but do not count toward total_tokens
        assert record.usage.total_tokens == 150

    def test_cache_tokens_fallback(self, assistant_entry):
        entry = assistant_entry("2025-06-15T10:00:00Z", cache_tokens=9)
        assert parse_line(json.dumps(entry)).record.usage.cache_tokens == 9

    def test_missing_output_tokens_is_zero(self):
        entry = {"type": "assistant", "message": {"usage": {"input_tokens": 10}}}
        record = parse_line(json.dumps(entry), clock=fallback_clock).record
        assert record.usage.output_tokens == 0
        assert record.usage.total_tokens == 10

    def test_defaults(self):
        entry = {"type": "assistant", "message": {"usage": {"input_tokens": 10}}}
        record = parse_line(json.dumps(entry), clock=fallback_clock).record
        assert record.model == "claude-3-sonnet-20240229"
        assert record.model_family == ModelFamily.SONNET
        assert record.project_name == "unknown"
        assert record.timestamp == FALLBACK
        assert record.session_id == f"session_{int(FALLBACK.timestamp() * 1000)}"
        assert record.message_count == 1

    def test_identity_fields_retained(self, assistant_entry):
        entry = assistant_entry("2025-06-15T10:00:00Z", session_id="abc")
        entry["parentUuid"] = "parent-1"
        entry["projectName"] = "website"
        record = parse_line(json.dumps(entry)).record
        assert record.session_id == "abc"
        assert record.parent_uuid == "parent-1"
        assert record.uuid == "uuid-2025-06-15T10:00:00Z"
        assert record.project_name == "website"

    def test_unknown_model_family(self, assistant_entry):
        entry = assistant_entry("2025-06-15T10:00:00Z", model="gpt-4")
        assert parse_line(json.dumps(entry)).record.model_family == ModelFamily.UNKNOWN

    def test_opus_pricing(self, assistant_entry):
        entry = assistant_entry(
            "2025-06-15T10:00:00Z",
            input_tokens=1000,
            output_tokens=1000,
            model="claude-3-opus-20240229",
        )
        record = parse_line(json.dumps(entry)).record
        assert record.model_family == ModelFamily.OPUS
        assert record.cost == pytest.approx(0.015 + 0.075)


class TestParseTimestamp:
    def test_iso_with_z(self):
        ts = parse_timestamp("2025-06-15T10:00:00.000Z")
        assert ts == datetime(2025, 6, 15, 10, 0, tzinfo=timezone.utc)

    def test_offset_is_converted_to_utc(self):
        ts = parse_timestamp("2025-06-15T12:00:00+02:00")
        assert ts == datetime(2025, 6, 15, 10, 0, tzinfo=timezone.utc)
        assert ts.tzinfo == timezone.utc

    def test_naive_is_assumed_utc(self):
        assert parse_timestamp("2025-06-15T10:00:00").tzinfo is not None

    def test_epoch_millis(self):
        ts = parse_timestamp(1_750_000_000_000)
        assert ts == datetime.fromtimestamp(1_750_000_000, tz=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "yesterday", True])
    def test_fallback_to_clock(self, value):
        assert parse_timestamp(value, fallback_clock) == FALLBACK

    def test_offset_outside_datetime_range_falls_back(self):
        assert parse_timestamp("0001-01-01T00:00:00+05:00", fallback_clock) == FALLBACK


class TestParseLines:
    def test_blank_lines_not_counted(self, assistant_entry):
        lines = ["", "   ", json.dumps(assistant_entry("2025-06-15T10:00:00Z"))]
        records, stats = parse_lines(lines)
        assert len(records) == 1
        assert stats.total_lines == 1
        assert stats.valid_rate == 100
