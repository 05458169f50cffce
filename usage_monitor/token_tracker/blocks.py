"""Group usage records into fixed-width UTC billing windows.

Windows are anchored to UTC clock hours (00:00, 05:00, 10:00, ... for the
default 5-hour width), not to the time of first use, so two records in the
same aligned slot always share a block no matter how far apart they are.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Sequence

from usage_monitor.token_tracker.models import SessionBlock, UsageRecord, utc_now

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_HOURS = 5


def current_window(
    moment: datetime,
    window_hours: int = DEFAULT_WINDOW_HOURS,
) -> tuple[datetime, datetime]:
    """Return the UTC-aligned ``(start, end)`` window containing ``moment``."""
    utc = moment.astimezone(timezone.utc)
    start_hour = (utc.hour // window_hours) * window_hours
    start = utc.replace(hour=start_hour, minute=0, second=0, microsecond=0)
    return start, start + timedelta(hours=window_hours)


def time_to_next_reset(
    now: datetime | None = None,
    window_hours: int = DEFAULT_WINDOW_HOURS,
) -> timedelta:
    now = now or utc_now()
    _, end = current_window(now, window_hours)
    return end - now


def create_session_blocks(
    records: Sequence[UsageRecord],
    window_hours: int = DEFAULT_WINDOW_HOURS,
    now: datetime | None = None,
) -> list[SessionBlock]:
    """Bucket records into blocks, oldest first.

    Records are always sorted ascending first: a new block starts whenever a
    record's bucket differs from the open block's, so unsorted input would
    split one window into several blocks with the same start. A record whose
    window would end past ``datetime.max`` is skipped.
    """
    now = now or utc_now()
    blocks: list[SessionBlock] = []
    current: SessionBlock | None = None

    for record in sorted(records, key=lambda r: r.timestamp):
        try:
            block_start, block_end = current_window(record.timestamp, window_hours)
        except OverflowError:
            logger.debug(
                "Skipping record at %s: its window ends past datetime.max",
                record.timestamp.isoformat(),
            )
            continue

        if current is None or current.start_time != block_start:
            if current is not None:
                current.finalize()
                blocks.append(current)
            current = SessionBlock(
                id=block_start.isoformat(),
                start_time=block_start,
                end_time=block_end,
            )

        current.add(record)

    if current is not None:
        current.finalize()
        blocks.append(current)

    mark_active_blocks(blocks, now)
    return blocks


def mark_active_blocks(blocks: Sequence[SessionBlock], now: datetime | None = None) -> None:
    now = now or utc_now()
    for block in blocks:
        block.is_active = block.end_time > now


def find_active_block(
    blocks: Sequence[SessionBlock],
    now: datetime | None = None,
) -> SessionBlock | None:
    """First block whose window has not ended yet, or None.

    None here means "no currently billable window", which is not an error.
    """
    now = now or utc_now()
    for block in blocks:
        if block.end_time > now:
            logger.debug(
                "Active block %s - %s: %d records, %d tokens",
                block.start_time.isoformat(),
                block.end_time.isoformat(),
                len(block.sessions),
                block.total_tokens,
            )
            return block

    if blocks:
        latest = blocks[-1]
        logger.debug(
            "No active block; latest was %s - %s",
            latest.start_time.isoformat(),
            latest.end_time.isoformat(),
        )
    return None


def get_active_session_block(
    records: Sequence[UsageRecord],
    window_hours: int = DEFAULT_WINDOW_HOURS,
    now: datetime | None = None,
) -> SessionBlock | None:
    if not records:
        logger.info("No usage records found")
        return None
    now = now or utc_now()
    return find_active_block(create_session_blocks(records, window_hours, now), now)
