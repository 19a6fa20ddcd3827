from datetime import datetime
from typing import Optional, Any, Union
from pydantic import BaseModel, Field, AliasChoices, ConfigDict


class ReadingOut(BaseModel):
    # Serialized under the los_* names the dashboard's query page reads.
    id: int
    temperature: Optional[float] = Field(default=None, serialization_alias="los_temp")
    rx_light: Optional[float] = Field(default=None, serialization_alias="los_rx_light")
    r2: Optional[float] = Field(default=None, serialization_alias="los_r2")
    heartbeat: Optional[float] = Field(default=None, serialization_alias="los_heartbeat")
    concentration: Optional[float] = Field(default=None, serialization_alias="los_ppm")
    recorded_at: datetime
    recorded_at_str: Optional[str] = None
    serial_number: Optional[str] = None
    topic: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ReadingPage(BaseModel):
    ok: bool = True
    rows: list[ReadingOut]


class IngestIn(BaseModel):
    topic: str = Field(min_length=1)
    payload: Union[dict[str, Any], str]


class IngestOut(BaseModel):
    ok: bool = True
    accepted: bool
    reason: Optional[str] = None
    id: Optional[int] = None
    alerted: bool = False
    reading: Optional[dict[str, Any]] = None


class ThresholdIn(BaseModel):
    serial_number: Optional[str] = Field(default=None, validation_alias=AliasChoices("serial_number", "serial", "sn"))
    ppm: float = Field(gt=0)


class ThresholdOut(BaseModel):
    serial_number: Optional[str] = None
    ppm: float
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)
