"""Persistence for normalized readings and alert thresholds."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Sequence

from sqlalchemy import desc, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import AlertThreshold, LosReading
from .normalizer import Reading

logger = logging.getLogger(__name__)


def reading_row(reading: Reading) -> dict:
    return {
        "temperature": reading.temperature,
        "rx_light": reading.rx_light,
        "r2": reading.r2,
        "heartbeat": reading.heartbeat,
        "concentration": reading.concentration,
        "recorded_at": reading.recorded_at,
        "serial_number": reading.device_serial,
        "topic": reading.origin_topic,
    }


async def insert_reading(session: AsyncSession, reading: Reading) -> int:
    # keyed by mapped attribute, since the column names are the legacy "LoS-..." ones
    values = {getattr(LosReading, key): value for key, value in reading_row(reading).items()}
    stmt = insert(LosReading).values(values).returning(LosReading.id)
    result = await session.execute(stmt)
    await session.commit()
    return result.scalar_one()


async def fetch_readings(
    session: AsyncSession,
    start: datetime | None,
    end: datetime | None,
    limit: int = 500,
    offset: int = 0,
    serial_number: str | None = None,
) -> Sequence[LosReading]:
    """Return readings inside ``[start, end]``, newest first."""

    stmt = select(LosReading)
    if start:
        stmt = stmt.where(LosReading.recorded_at >= start)
    if end:
        stmt = stmt.where(LosReading.recorded_at <= end)
    if serial_number:
        stmt = stmt.where(LosReading.serial_number == serial_number)
    stmt = stmt.order_by(desc(LosReading.recorded_at), desc(LosReading.id)).limit(limit).offset(offset)

    res = await session.execute(stmt)
    return res.scalars().all()


async def get_threshold(session: AsyncSession, serial_number: str | None) -> float | None:
    """Device-specific threshold if one exists, else the global one."""

    if serial_number:
        stmt = select(AlertThreshold.ppm).where(AlertThreshold.serial_number == serial_number)
        value = (await session.execute(stmt)).scalars().first()
        if value is not None:
            return float(value)

    stmt = (
        select(AlertThreshold.ppm)
        .where(AlertThreshold.serial_number.is_(None))
        .order_by(desc(AlertThreshold.updated_at))
    )
    value = (await session.execute(stmt)).scalars().first()
    return None if value is None else float(value)


async def list_thresholds(session: AsyncSession) -> Sequence[AlertThreshold]:
    stmt = select(AlertThreshold).order_by(AlertThreshold.serial_number.asc().nulls_first())
    return (await session.execute(stmt)).scalars().all()


async def set_threshold(session: AsyncSession, serial_number: str | None, ppm: float) -> AlertThreshold:
    if serial_number:
        stmt = select(AlertThreshold).where(AlertThreshold.serial_number == serial_number)
    else:
        stmt = select(AlertThreshold).where(AlertThreshold.serial_number.is_(None))
    row = (await session.execute(stmt)).scalars().first()
    if row is None:
        row = AlertThreshold(serial_number=serial_number or None, ppm=ppm)
        session.add(row)
    else:
        row.ppm = ppm
        row.updated_at = datetime.now().astimezone()
    await session.commit()
    return row


class ReadingStore:
    """Session-owning facade used by the ingest pipeline.

    ``insert`` never raises: a failed write is logged and reported as ``None``.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        default_threshold: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.default_threshold = default_threshold

    async def insert(self, reading: Reading) -> int | None:
        try:
            async with self._session_factory() as session:
                return await insert_reading(session, reading)
        except (SQLAlchemyError, OSError):
            logger.exception(
                "Error inserting into los_data",
                extra={"topic": reading.origin_topic, "serial_number": reading.device_serial},
            )
            return None

    async def query(
        self,
        start: datetime | None,
        end: datetime | None,
        limit: int = 500,
        offset: int = 0,
        serial_number: str | None = None,
    ) -> Sequence[LosReading]:
        async with self._session_factory() as session:
            return await fetch_readings(session, start, end, limit, offset, serial_number)

    async def get_threshold(self, serial_number: str | None) -> float | None:
        async with self._session_factory() as session:
            value = await get_threshold(session, serial_number)
        return value if value is not None else self.default_threshold
