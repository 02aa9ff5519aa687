"""Digital twin of the monitored machine."""

from __future__ import annotations

import logging
from dataclasses import replace
from threading import Lock

from models.records import SensorReading, TwinState

logger = logging.getLogger(__name__)

WEAR_COEFFICIENT = 0.05
EFFICIENCY_STEP = 1.0
TEMPERATURE_COMFORT_LIMIT = 30.0
HUMIDITY_COMFORT_LIMIT = 70.0


class DigitalTwin:
    """Accumulates wear and efficiency loss from each accepted reading.

    Wear only grows and efficiency only drops; neither is ever reset for the
    lifetime of the instance. Updates are serialized so a single writer is
    guaranteed even if several consumers share one twin.
    """

    def __init__(self, state: TwinState | None = None) -> None:
        self._state = state if state is not None else TwinState()
        self._lock = Lock()

    @property
    def accumulated_wear(self) -> float:
        with self._lock:
            return self._state.accumulated_wear

    @property
    def energy_efficiency(self) -> float:
        with self._lock:
            return self._state.energy_efficiency

    def snapshot(self) -> TwinState:
        with self._lock:
            return replace(self._state)

    def update(self, reading: SensorReading) -> None:
        with self._lock:
            state = self._state
            state.current_temp = reading.temperature
            state.current_humidity = reading.humidity
            state.current_vibration = reading.vibration
            state.accumulated_wear += reading.vibration * WEAR_COEFFICIENT
            if (
                reading.temperature > TEMPERATURE_COMFORT_LIMIT
                or reading.humidity > HUMIDITY_COMFORT_LIMIT
            ):
                state.energy_efficiency -= EFFICIENCY_STEP
            state.updates += 1
            wear = state.accumulated_wear
            efficiency = state.energy_efficiency

        logger.info(
            "Digital twin updated",
            extra={
                "reading_timestamp": reading.timestamp,
                "accumulated_wear": wear,
                "energy_efficiency": efficiency,
            },
        )
