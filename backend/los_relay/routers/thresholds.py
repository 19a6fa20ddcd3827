from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..schemas import ThresholdIn, ThresholdOut
from ..storage import list_thresholds, set_threshold

router = APIRouter(prefix="/api/thresholds", tags=["thresholds"])


@router.get("", response_model=list[ThresholdOut])
async def get_thresholds(db: AsyncSession = Depends(get_db)):
    rows = await list_thresholds(db)
    return [ThresholdOut.model_validate(r) for r in rows]


@router.put("", response_model=ThresholdOut)
async def put_threshold(data: ThresholdIn, db: AsyncSession = Depends(get_db)):
    """Set the PPM threshold for one device, or the global one when no serial is given."""

    serial = data.serial_number.strip() if data.serial_number else None
    row = await set_threshold(db, serial or None, data.ppm)
    return ThresholdOut.model_validate(row)
