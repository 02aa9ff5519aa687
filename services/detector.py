"""Anomaly detection combining fixed, statistical and trend thresholds."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from statistics import fmean, stdev
from typing import Optional, Sequence

from models.records import Alert, AlertKind, SensorReading, TwinState
from services.history import HistoryStore
from services.trend import TrendPredictor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionThresholds:
    window: int = 10
    min_history: int = 2
    sigma: float = 2.0
    trend_deviation: float = 2.0
    wear_limit: float = 50.0
    efficiency_floor: float = 80.0
    instant_temperature: float = 80.0
    instant_vibration: float = 4.0


def statistical_threshold(values: Sequence[float], sigma: float) -> float:
    """Return ``mean + sigma * stdev`` using the sample standard deviation."""
    return fmean(values) + sigma * stdev(values)


class InstantaneousDetector:
    """Fixed-limit check that needs no history."""

    def __init__(self, thresholds: DetectionThresholds | None = None) -> None:
        self.thresholds = thresholds or DetectionThresholds()

    def evaluate(self, reading: SensorReading) -> list[Alert]:
        limits = self.thresholds
        if (
            reading.temperature > limits.instant_temperature
            or reading.vibration > limits.instant_vibration
        ):
            return [
                Alert(
                    kind=AlertKind.instantaneous_threshold,
                    timestamp=reading.timestamp,
                    observed={
                        "temperature": reading.temperature,
                        "vibration": reading.vibration,
                    },
                    reference={
                        "temperature": limits.instant_temperature,
                        "vibration": limits.instant_vibration,
                    },
                )
            ]
        return []


class AnomalyDetector:
    """History-aware detector: statistical temperature, vibration trend, and
    twin-integrated checks.

    The statistical and trend checks both require at least
    ``min_history`` temperature *and* vibration values; when either series
    is short, both are skipped and the integrated check relies on twin state
    alone. Evaluation never mutates the twin.
    """

    def __init__(
        self,
        history: HistoryStore,
        predictor: TrendPredictor | None = None,
        thresholds: DetectionThresholds | None = None,
    ) -> None:
        self.history = history
        self.predictor = predictor or TrendPredictor()
        self.thresholds = thresholds or DetectionThresholds()

    def evaluate(self, reading: SensorReading, twin: TwinState) -> list[Alert]:
        limits = self.thresholds
        alerts: list[Alert] = []
        vib_diff: Optional[float] = None

        temperatures = self.history.recent_values("temperature", limits.window)
        vibrations = self.history.recent_values("vibration", limits.window)

        if len(temperatures) < limits.min_history or len(vibrations) < limits.min_history:
            logger.info(
                "Skipping statistical and trend checks: not enough history",
                extra={
                    "reading_timestamp": reading.timestamp,
                    "temperature_count": len(temperatures),
                    "vibration_count": len(vibrations),
                },
            )
        else:
            threshold = statistical_threshold(temperatures, limits.sigma)
            if reading.temperature > threshold:
                alerts.append(
                    Alert(
                        kind=AlertKind.statistical_temperature,
                        timestamp=reading.timestamp,
                        observed={"temperature": reading.temperature},
                        reference={"threshold": threshold},
                    )
                )

            # History arrives newest first; the fit expects oldest first.
            predicted = self.predictor.predict_next(list(reversed(vibrations)))
            vib_diff = abs(reading.vibration - predicted)
            if vib_diff > limits.trend_deviation:
                alerts.append(
                    Alert(
                        kind=AlertKind.trend_vibration,
                        timestamp=reading.timestamp,
                        observed={"vibration": reading.vibration, "difference": vib_diff},
                        reference={"predicted": predicted, "max_difference": limits.trend_deviation},
                    )
                )

        trend_breach = vib_diff is not None and vib_diff > limits.trend_deviation
        if (
            twin.accumulated_wear > limits.wear_limit
            or twin.energy_efficiency < limits.efficiency_floor
            or trend_breach
        ):
            observed = {
                "accumulated_wear": twin.accumulated_wear,
                "energy_efficiency": twin.energy_efficiency,
            }
            if vib_diff is not None:
                observed["vibration_difference"] = vib_diff
            alerts.append(
                Alert(
                    kind=AlertKind.integrated_twin,
                    timestamp=reading.timestamp,
                    observed=observed,
                    reference={
                        "wear_limit": limits.wear_limit,
                        "efficiency_floor": limits.efficiency_floor,
                        "max_difference": limits.trend_deviation,
                    },
                )
            )

        return alerts
