import logging
from datetime import datetime, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..schemas import ReadingOut, ReadingPage
from ..settings import get_settings
from ..storage import fetch_readings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["readings"])


def _parse_iso_datetime(value: str | None, field_name: str) -> datetime | None:
    if not value:
        return None
    try:
        normalized = value.strip()
        if not normalized:
            return None
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        return datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}. Use ISO-8601 format.") from exc


@lru_cache
def display_zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown DISPLAY_TIMEZONE %r, showing UTC", name)
        return timezone.utc


def local_timestamp(value: datetime, zone: tzinfo) -> str:
    """``YYYY-MM-DD HH:MM:SS`` wall-clock time in *zone*; naive values are taken as UTC."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(zone).strftime("%Y-%m-%d %H:%M:%S")


def _to_out(row, zone: tzinfo) -> ReadingOut:
    out = ReadingOut.model_validate(row)
    out.recorded_at_str = local_timestamp(out.recorded_at, zone)
    return out


@router.get("/los", response_model=ReadingPage)
async def list_los_readings(
    from_ts: str | None = Query(None, alias="from"),
    to_ts: str | None = Query(None, alias="to"),
    limit: int = Query(500, gt=0, le=5000),
    offset: int = Query(0, ge=0),
    serial_number: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    start_dt = _parse_iso_datetime(from_ts, "from")
    end_dt = _parse_iso_datetime(to_ts, "to")

    try:
        rows = await fetch_readings(db, start_dt, end_dt, limit, offset, serial_number)
    except SQLAlchemyError as exc:
        logger.exception("GET /api/los query failed")
        raise HTTPException(status_code=500, detail="Failed to query database") from exc

    zone = display_zone(get_settings().display_timezone)
    return ReadingPage(rows=[_to_out(r, zone) for r in rows])
