"""CSV export of daily / monthly usage reports."""

from __future__ import annotations

import csv
import io
from typing import Any, Sequence

DAILY_HEADERS = [
    "date",
    "total_tokens",
    "input_tokens",
    "output_tokens",
    "cache_tokens",
    "total_cost",
    "sessions",
]
MONTHLY_HEADERS = [
    "month",
    "total_tokens",
    "total_cost",
    "sessions",
    "avg_daily_tokens",
    "avg_daily_cost",
]

EXPORT_TYPES = ("daily", "monthly")


def daily_report_to_csv(report: Sequence[dict[str, Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(DAILY_HEADERS)
    for day in report:
        stats = day["stats"]
        writer.writerow([
            day["date"],
            stats["total_tokens"],
            stats["total_input_tokens"],
            stats["total_output_tokens"],
            stats["total_cache_tokens"],
            f"{stats['total_cost']:.4f}",
            day["session_count"],
        ])
    return buf.getvalue()


def monthly_report_to_csv(report: Sequence[dict[str, Any]]) -> str:
    """Monthly rows; the per-day averages assume a 30-day month."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(MONTHLY_HEADERS)
    for month in report:
        stats = month["stats"]
        writer.writerow([
            month["month"],
            stats["total_tokens"],
            f"{stats['total_cost']:.4f}",
            month["session_count"],
            round(stats["total_tokens"] / 30),
            f"{stats['total_cost'] / 30:.4f}",
        ])
    return buf.getvalue()


def report_to_csv(report: Sequence[dict[str, Any]], report_type: str) -> str:
    if report_type == "daily":
        return daily_report_to_csv(report)
    if report_type == "monthly":
        return monthly_report_to_csv(report)
    raise ValueError(f"Unsupported export type: {report_type!r}")
