from datetime import datetime

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import BigInteger, Float, Integer, String, TIMESTAMP, Index, text


class Base(DeclarativeBase):
    pass


class LosReading(Base):
    # Column names are the ones the stations' firmware and the legacy dashboard use.
    __tablename__ = "los_data"
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    temperature: Mapped[float | None] = mapped_column("LoS-Temp(c)", Float, nullable=True)
    rx_light: Mapped[float | None] = mapped_column("LoS-Rx Light", Float, nullable=True)
    r2: Mapped[float | None] = mapped_column("LoS- R2", Float, nullable=True)
    heartbeat: Mapped[float | None] = mapped_column("LoS-HeartBeat", Float, nullable=True)
    concentration: Mapped[float | None] = mapped_column("LoS - PPM", Float, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"), index=True
    )
    serial_number: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    topic: Mapped[str | None] = mapped_column(String(255), nullable=True)


Index("ix_los_data_serial_recorded_desc", LosReading.serial_number, LosReading.recorded_at.desc())


class AlertThreshold(Base):
    # serial_number NULL holds the global threshold.
    __tablename__ = "los_thresholds"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    serial_number: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    ppm: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )
