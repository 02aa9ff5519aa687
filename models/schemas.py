"""Pydantic schemas for broker messages and stored table rows."""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.records import SensorReading


class SensorPayload(BaseModel):
    """Wire format published on the sensor topic."""

    model_config = ConfigDict(extra="ignore")

    timestamp: str = Field(..., min_length=1, description="ISO-8601 timestamp set by the device.")
    temperature: float = Field(..., description="Degrees Celsius.")
    humidity: float = Field(..., description="Relative humidity in percent.")
    vibration: float = Field(..., ge=0, description="Vibration in mm/s^2; wear never decreases.")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _require_string(cls, value: Any) -> Any:
        if not isinstance(value, str):
            raise ValueError("timestamp must be a string")
        return value.strip()

    @field_validator("temperature", "humidity", "vibration", mode="before")
    @classmethod
    def _require_number(cls, value: Any) -> Any:
        # bool is an int subclass; JSON true/false is not a measurement.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("measurement must be a JSON number")
        if not math.isfinite(value):
            raise ValueError("measurement must be finite")
        return value

    def to_reading(self) -> SensorReading:
        return SensorReading(
            timestamp=self.timestamp,
            temperature=float(self.temperature),
            humidity=float(self.humidity),
            vibration=float(self.vibration),
        )


class ReadingItem(BaseModel):
    """One row of the sensor table, keyed by ``timestamp``."""

    timestamp: str
    temperature: float
    humidity: float
    vibration: float

    @classmethod
    def from_reading(cls, reading: SensorReading) -> "ReadingItem":
        return cls(
            timestamp=reading.timestamp,
            temperature=reading.temperature,
            humidity=reading.humidity,
            vibration=reading.vibration,
        )
