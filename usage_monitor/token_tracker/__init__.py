from usage_monitor.token_tracker.aggregator import DataAggregator
from usage_monitor.token_tracker.blocks import (
    create_session_blocks,
    find_active_block,
    get_active_session_block,
)
from usage_monitor.token_tracker.cache import TieredCache, TTLCache
from usage_monitor.token_tracker.calculator import PlanTier, TokenCalculator
from usage_monitor.token_tracker.models import (
    ModelFamily,
    PlanDetection,
    PlanLimits,
    SessionBlock,
    SessionStats,
    TokenUsage,
    UsageRecord,
    UsageWarning,
    to_jsonable,
)
from usage_monitor.token_tracker.scanner import SessionScanner
from usage_monitor.token_tracker.session_parser import parse_jsonl_file, parse_line

__all__ = [
    "DataAggregator",
    "ModelFamily",
    "PlanDetection",
    "PlanLimits",
    "PlanTier",
    "SessionBlock",
    "SessionScanner",
    "SessionStats",
    "TTLCache",
    "TieredCache",
    "TokenCalculator",
    "TokenUsage",
    "UsageRecord",
    "UsageWarning",
    "create_session_blocks",
    "find_active_block",
    "get_active_session_block",
    "parse_jsonl_file",
    "parse_line",
    "to_jsonable",
]
