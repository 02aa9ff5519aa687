"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A single validated sample from the factory device."""

    timestamp: str
    temperature: float
    humidity: float
    vibration: float


@dataclass(slots=True)
class TwinState:
    """Derived condition of the monitored asset."""

    current_temp: float = 0.0
    current_humidity: float = 0.0
    current_vibration: float = 0.0
    accumulated_wear: float = 0.0
    energy_efficiency: float = 100.0
    updates: int = 0


class AlertKind(str, Enum):
    statistical_temperature = "statistical_temperature"
    trend_vibration = "trend_vibration"
    integrated_twin = "integrated_twin"
    instantaneous_threshold = "instantaneous_threshold"


@dataclass(frozen=True, slots=True)
class Alert:
    """Transient alert decision; ``reference`` holds thresholds or predictions."""

    kind: AlertKind
    timestamp: str
    observed: Dict[str, float] = field(default_factory=dict)
    reference: Dict[str, float] = field(default_factory=dict)
