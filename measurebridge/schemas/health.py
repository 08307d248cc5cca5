"""Health data value types exchanged with the underlying sensor client."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DataType(str, Enum):
    """Measure data types a health client may support."""

    HEART_RATE_BPM = "HEART_RATE_BPM"
    STEPS = "STEPS"
    CALORIES = "CALORIES"
    DISTANCE = "DISTANCE"
    SPEED = "SPEED"
    ELEVATION = "ELEVATION"
    SPO2 = "SPO2"


class Availability(str, Enum):
    """Reported availability of a data type on the device."""

    UNKNOWN = "UNKNOWN"
    AVAILABLE = "AVAILABLE"
    ACQUIRING = "ACQUIRING"
    UNAVAILABLE = "UNAVAILABLE"
    UNAVAILABLE_DEVICE_OFF_BODY = "UNAVAILABLE_DEVICE_OFF_BODY"


class DataPoint(BaseModel):
    """A single sample; ``end`` defaults to ``start`` for instantaneous readings."""

    model_config = ConfigDict(frozen=True)

    data_type: DataType
    value: float
    start: datetime
    end: datetime
    accuracy: Optional[float] = Field(None, ge=0, description="Sensor reported accuracy")

    @model_validator(mode="before")
    @classmethod
    def _default_end(cls, data):
        if isinstance(data, dict) and data.get("end") is None and data.get("start") is not None:
            data = {**data, "end": data["start"]}
        return data

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_interval(self) -> "DataPoint":
        if self.end < self.start:
            raise ValueError("end must not precede start")
        return self


class Capabilities(BaseModel):
    """Data types the client can measure."""

    model_config = ConfigDict(frozen=True)

    supported_data_types_measure: FrozenSet[DataType] = frozenset()


__all__ = ["Availability", "Capabilities", "DataPoint", "DataType"]
