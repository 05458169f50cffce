"""Discover session logs under the Claude config directory.

Layout::

    <config_dir>/projects/<project>/sessions/*.jsonl
    <config_dir>/projects/<project>/*.jsonl

Both locations are read for every project. If ``projects`` is missing the
scanner probes a short list of alternative install locations once.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from usage_monitor.token_tracker.models import Clock, UsageRecord, utc_now
from usage_monitor.token_tracker.session_parser import parse_jsonl_file

logger = logging.getLogger(__name__)


def default_config_dir() -> Path:
    """Return the path to the ~/.claude directory."""
    return Path.home() / ".claude"


def default_alternative_dirs() -> list[Path]:
    home = Path.home()
    return [
        home / ".config" / "claude",
        home / "Library" / "Application Support" / "Claude",
        home / "AppData" / "Roaming" / "Claude",
        home / ".anthropic",
        home / ".claude-cli",
    ]


class SessionScanner:
    """Walks ``projects/`` and returns every usage record, newest first."""

    def __init__(
        self,
        claude_config_dir: Path | str | None = None,
        *,
        alternative_dirs: Sequence[Path | str] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config_dir = Path(claude_config_dir) if claude_config_dir else default_config_dir()
        self.projects_dir = self.config_dir / "projects"
        self._clock = clock
        # Probing other install locations only makes sense for the default root
        if alternative_dirs is None:
            alternative_dirs = [] if claude_config_dir else default_alternative_dirs()
        self._alternative_dirs = [Path(p) for p in alternative_dirs]

    # -- Scanning --------------------------------------------------------------

    def get_all_project_sessions(self) -> list[UsageRecord]:
        if not self.projects_dir.is_dir():
            logger.warning("Projects directory not found: %s", self.projects_dir)
            if not self._use_alternative_location():
                return []
        return self._scan_projects_dir()

    def _scan_projects_dir(self) -> list[UsageRecord]:
        records: list[UsageRecord] = []
        try:
            project_dirs = sorted(p for p in self.projects_dir.iterdir() if p.is_dir())
        except OSError as e:
            logger.error("Could not list %s: %s", self.projects_dir, e)
            return []

        logger.info("Scanning %d project directories in %s", len(project_dirs), self.projects_dir)
        for project_dir in project_dirs:
            try:
                records.extend(self.scan_project(project_dir, project_dir.name))
            except OSError as e:
                logger.error("Could not scan project %s: %s", project_dir.name, e)

        logger.info("Loaded %d usage records", len(records))
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def scan_project(self, project_path: Path, project_name: str) -> list[UsageRecord]:
        """Parse ``sessions/*.jsonl`` and top-level ``*.jsonl`` of one project."""
        files: list[Path] = []
        sessions_dir = project_path / "sessions"
        if sessions_dir.is_dir():
            files.extend(sorted(sessions_dir.glob("*.jsonl")))
        files.extend(sorted(project_path.glob("*.jsonl")))

        records: list[UsageRecord] = []
        for jsonl_file in files:
            for record in parse_jsonl_file(jsonl_file, clock=self._clock):
                records.append(
                    replace(record, project_name=project_name, source_file=str(jsonl_file))
                )
        return records

    def _use_alternative_location(self) -> bool:
        """Switch to the first alternative root that has a projects dir."""
        for alt in self._alternative_dirs:
            if (alt / "projects").is_dir():
                logger.info("Using alternative Claude config directory: %s", alt)
                self.config_dir = alt
                self.projects_dir = alt / "projects"
                return True
        if self._alternative_dirs:
            logger.warning("No Claude config directory found")
        return False

    # -- Grouping / filtering --------------------------------------------------

    @staticmethod
    def filter_by_time_range(
        records: Sequence[UsageRecord],
        start: datetime,
        end: datetime,
    ) -> list[UsageRecord]:
        return [r for r in records if start <= r.timestamp <= end]

    @staticmethod
    def group_by_date(records: Sequence[UsageRecord]) -> dict[str, list[UsageRecord]]:
        """Group by UTC calendar day (``YYYY-MM-DD``)."""
        grouped: dict[str, list[UsageRecord]] = {}
        for r in records:
            grouped.setdefault(r.timestamp.strftime("%Y-%m-%d"), []).append(r)
        return grouped

    @staticmethod
    def group_by_month(records: Sequence[UsageRecord]) -> dict[str, list[UsageRecord]]:
        """Group by UTC calendar month (``YYYY-MM``)."""
        grouped: dict[str, list[UsageRecord]] = {}
        for r in records:
            grouped.setdefault(r.timestamp.strftime("%Y-%m"), []).append(r)
        return grouped

    # -- Diagnostics -----------------------------------------------------------

    def describe(self) -> dict[str, Any]:
        """Snapshot of what the scanner can see on disk."""
        info: dict[str, Any] = {
            "claude_config_dir": str(self.config_dir),
            "projects_dir": str(self.projects_dir),
            "config_dir_exists": self.config_dir.is_dir(),
            "projects_dir_exists": self.projects_dir.is_dir(),
            "home_dir": str(Path.home()),
        }
        if not info["projects_dir_exists"]:
            return info

        try:
            projects = sorted(p.name for p in self.projects_dir.iterdir())
            info["projects"] = projects
            info["project_count"] = len(projects)
            if projects:
                sample = self.projects_dir / projects[0]
                sample_info: dict[str, Any] = {"name": projects[0], "path": str(sample)}
                if sample.is_dir():
                    sample_info["contents"] = sorted(p.name for p in sample.iterdir())
                    sessions_dir = sample / "sessions"
                    sample_info["sessions_exists"] = sessions_dir.is_dir()
                    if sessions_dir.is_dir():
                        sample_info["session_files"] = sorted(
                            p.name for p in sessions_dir.iterdir()
                        )
                info["sample_project"] = sample_info
        except OSError as e:
            info["scan_error"] = str(e)
        return info
