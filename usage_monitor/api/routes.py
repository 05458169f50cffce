"""API routes exposing the usage-monitor aggregator."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel

from usage_monitor.token_tracker.aggregator import DataAggregator
from usage_monitor.token_tracker.export import EXPORT_TYPES, report_to_csv
from usage_monitor.token_tracker.models import to_jsonable

logger = logging.getLogger(__name__)

router = APIRouter()


# -- Request/Response models ---------------------------------------------------


class CustomLimitsRequest(BaseModel):
    tokens: int
    cost: float | None = None
    messages: int | None = None


# -- Helpers -------------------------------------------------------------------


def _aggregator(request: Request) -> DataAggregator:
    return request.app.state.aggregator


def _ok(data: Any, **extra: Any) -> dict[str, Any]:
    return to_jsonable(
        {
            "success": True,
            "data": data,
            **extra,
            "timestamp": datetime.now(timezone.utc),
        }
    )


# -- Usage endpoints -----------------------------------------------------------


@router.get("/usage/realtime")
async def get_realtime(request: Request) -> dict[str, Any]:
    """Usage in the active 5-hour window, plan detection, burn rate and warnings."""
    data = await _aggregator(request).get_real_time_data()
    return _ok(data)


@router.get("/usage/daily")
async def get_daily(request: Request, days: int = Query(30, ge=1, le=366)) -> dict[str, Any]:
    data = await _aggregator(request).get_daily_data(days)
    return _ok(data, params={"days": days})


@router.get("/usage/monthly")
async def get_monthly(request: Request, months: int = Query(6, ge=1, le=60)) -> dict[str, Any]:
    data = await _aggregator(request).get_monthly_data(months)
    return _ok(data, params={"months": months})


@router.get("/usage/plan-detection")
async def get_plan_detection(request: Request) -> dict[str, Any]:
    data = await _aggregator(request).get_plan_detection()
    return _ok(data)


@router.post("/usage/custom-limits")
def set_custom_limits(req: CustomLimitsRequest, request: Request) -> dict[str, Any]:
    """Override the detected plan limits used for real-time warnings."""
    try:
        limits = _aggregator(request).set_custom_limits(req.tokens, req.cost, req.messages)
    except ValueError as e:
        logger.warning("Rejected custom limits %s: %s", req.model_dump(), e)
        raise HTTPException(status_code=400, detail=str(e))
    return _ok({"custom_limits": limits, "applied": True})


@router.delete("/usage/custom-limits")
def clear_custom_limits(request: Request) -> dict[str, Any]:
    _aggregator(request).clear_custom_limits()
    return _ok({"applied": False})


@router.delete("/usage/cache")
def clear_cache(request: Request) -> dict[str, Any]:
    _aggregator(request).clear_cache()
    return _ok({"message": "Cache cleared"})


@router.get("/usage/status")
def get_status(request: Request) -> dict[str, Any]:
    """Cache statistics and configuration of the monitor."""
    return _ok({"system": _aggregator(request).get_system_status(), "health": "healthy"})


@router.get("/usage/debug")
async def get_debug(request: Request) -> dict[str, Any]:
    """What the scanner sees on disk, for troubleshooting empty dashboards."""
    data = await _aggregator(request).get_debug_info()
    return _ok(data)


@router.get("/usage/export", response_model=None)
async def export_usage(
    request: Request,
    export_format: str = Query("csv", alias="format"),
    report_type: str = Query("daily", alias="type"),
    period: int = Query(30, ge=1),
) -> Response | dict[str, Any]:
    """Export the daily or monthly report as CSV (default) or JSON."""
    if report_type not in EXPORT_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported export type: {report_type}")

    aggregator = _aggregator(request)
    if report_type == "daily":
        result = await aggregator.get_daily_data(period)
    else:
        result = await aggregator.get_monthly_data(period)
    report = result["report"]

    if export_format == "csv":
        filename = f"claude-usage-{report_type}-{datetime.now(timezone.utc):%Y-%m-%d}.csv"
        return Response(
            content=report_to_csv(report, report_type),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return _ok(report, format=export_format, type=report_type)
