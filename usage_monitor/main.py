"""Entry point for the Claude usage monitor."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import math
import sys
from pathlib import Path
from typing import Any

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from usage_monitor.config import settings
from usage_monitor.token_tracker.aggregator import DataAggregator
from usage_monitor.token_tracker.export import report_to_csv
from usage_monitor.token_tracker.models import to_jsonable

console = Console()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def _fmt_minutes(minutes: float) -> str:
    if not math.isfinite(minutes):
        return "∞"
    hours, mins = divmod(int(minutes), 60)
    return f"{hours}h {mins}m" if hours else f"{mins}m"


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(to_jsonable(data)))


def run_server(config_dir: str | None = None) -> None:
    """Start the FastAPI server."""
    if config_dir:
        # The server lifespan builds its aggregator from settings
        settings.claude_config_dir = Path(config_dir)
    console.print(Panel("Starting Claude Usage Monitor API", style="bold green"))
    uvicorn.run(
        "usage_monitor.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def show_realtime(aggregator: DataAggregator, as_json: bool = False) -> None:
    data = asyncio.run(aggregator.get_real_time_data())
    if as_json:
        _print_json(data)
        return

    usage = data["current_usage"]
    limits = data["limits"]
    plan = data["plan_detection"]
    burn = data["burn_rate"]
    window = data["session_window"]

    pct = usage["total_tokens"] / limits["tokens"] * 100 if limits["tokens"] else 0.0
    console.print(Panel(
        f"Window: {window['start']:%Y-%m-%d %H:%M} → {window['end']:%H:%M} UTC "
        f"(resets in {_fmt_minutes(window['time_to_reset'] / 60)})\n"
        f"Tokens: {usage['total_tokens']:,} / {limits['tokens']:,} ({pct:.1f}%)\n"
        f"Cost: ${usage['total_cost']:.4f} / ${limits['cost']:.2f}\n"
        f"Messages: {usage['total_messages']}\n"
        f"Plan: {plan['plan']} (confidence {plan['confidence']:.0%})\n"
        f"Burn rate: {burn['tokens_per_minute']:.1f} tokens/min, "
        f"limit in {_fmt_minutes(burn['estimated_time_remaining'])}",
        title="Current session window",
        style="bold blue",
    ))

    if data["model_distribution"]:
        table = Table(title="Models (active window)")
        table.add_column("Family")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        table.add_column("Share", justify="right")
        for family, d in data["model_distribution"].items():
            table.add_row(family, f"{d['tokens']:,}", f"${d['cost']:.4f}", f"{d['percentage']}%")
        console.print(table)

    for w in data["warnings"]:
        style = "bold red" if w["type"] == "danger" else "yellow"
        console.print(f"[{style}]{w['message']}[/{style}]")


def show_daily(aggregator: DataAggregator, days: int, as_json: bool = False) -> None:
    data = asyncio.run(aggregator.get_daily_data(days))
    if as_json:
        _print_json(data)
        return

    table = Table(title=f"Daily usage (last {days} days)")
    for col in ("Date", "Tokens", "Input", "Output", "Cache", "Cost", "Messages"):
        table.add_column(col, justify="left" if col == "Date" else "right")
    for day in data["report"]:
        s = day["stats"]
        table.add_row(
            day["date"],
            f"{s['total_tokens']:,}",
            f"{s['total_input_tokens']:,}",
            f"{s['total_output_tokens']:,}",
            f"{s['total_cache_tokens']:,}",
            f"${s['total_cost']:.4f}",
            str(day["session_count"]),
        )
    console.print(table)

    summary = data["summary"]
    console.print(
        f"[dim]Total {summary['total_tokens']:,} tokens / ${summary['total_cost']:.4f} | "
        f"avg {summary['average_tokens_per_day']:,.0f} tokens/day | "
        f"trend {summary['trends']['tokens_change']:+.1f}%[/dim]"
    )


def show_monthly(aggregator: DataAggregator, months: int, as_json: bool = False) -> None:
    data = asyncio.run(aggregator.get_monthly_data(months))
    if as_json:
        _print_json(data)
        return

    table = Table(title=f"Monthly usage (last {months} months)")
    for col in ("Month", "Tokens", "Cost", "Messages", "Active days"):
        table.add_column(col, justify="left" if col == "Month" else "right")
    for month in data["report"]:
        s = month["stats"]
        table.add_row(
            month["month"],
            f"{s['total_tokens']:,}",
            f"${s['total_cost']:.4f}",
            str(month["session_count"]),
            str(len(month["daily_breakdown"])),
        )
    console.print(table)

    growth = data["summary"]["growth"]
    console.print(f"[dim]Month-over-month tokens {growth['tokens_growth']:+.1f}%[/dim]")


def export_report(aggregator: DataAggregator, report_type: str, period: int) -> None:
    if report_type == "daily":
        data = asyncio.run(aggregator.get_daily_data(period))
    else:
        data = asyncio.run(aggregator.get_monthly_data(period))
    sys.stdout.write(report_to_csv(data["report"], report_type))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Claude Code usage monitor")
    parser.add_argument("--config-dir", help="Claude config directory (default: ~/.claude)")
    parser.add_argument("--log-level", help="Logging level (default from settings)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server")

    rt = sub.add_parser("realtime", help="Show usage in the current session window")
    rt.add_argument("--json", action="store_true", help="Print raw JSON")

    daily = sub.add_parser("daily", help="Show daily usage")
    daily.add_argument("--days", type=int, default=settings.default_daily_days)
    daily.add_argument("--json", action="store_true", help="Print raw JSON")

    monthly = sub.add_parser("monthly", help="Show monthly usage")
    monthly.add_argument("--months", type=int, default=settings.default_monthly_months)
    monthly.add_argument("--json", action="store_true", help="Print raw JSON")

    export = sub.add_parser("export", help="Export a report as CSV to stdout")
    export.add_argument("--type", dest="report_type", choices=("daily", "monthly"), default="daily")
    export.add_argument("--period", type=int, default=30)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "serve":
        run_server(args.config_dir)
        return
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    aggregator = DataAggregator(args.config_dir)
    if args.command == "realtime":
        show_realtime(aggregator, as_json=args.json)
    elif args.command == "daily":
        show_daily(aggregator, args.days, as_json=args.json)
    elif args.command == "monthly":
        show_monthly(aggregator, args.months, as_json=args.json)
    elif args.command == "export":
        export_report(aggregator, args.report_type, args.period)


if __name__ == "__main__":
    main()
