"""Per-message orchestration: parse, twin update, detection, persistence."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from models.records import Alert, SensorReading
from models.schemas import SensorPayload
from services.detector import AnomalyDetector, InstantaneousDetector
from services.persistence import PersistenceSink
from services.twin import DigitalTwin

logger = logging.getLogger(__name__)

AlertHandler = Callable[[Alert], None]

_PAYLOAD_PREVIEW_CHARS = 512


@dataclass
class IngestionStats:
    received: int = 0
    processed: int = 0
    dropped: int = 0
    duplicates: int = 0
    alerts: int = 0
    persist_failures: int = 0


def _preview(payload: bytes | str) -> str:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    return payload[:_PAYLOAD_PREVIEW_CHARS]


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "payload"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class IngestionPipeline:
    """Processes one raw message at a time; never raises past ``handle``.

    Detection runs before persistence, so history queries made while
    evaluating a reading never include that reading.
    """

    def __init__(
        self,
        twin: DigitalTwin,
        detector: AnomalyDetector,
        sink: PersistenceSink,
        instant_detector: Optional[InstantaneousDetector] = None,
        alert_handlers: Iterable[AlertHandler] = (),
        dedup_window: int = 1024,
    ) -> None:
        self.twin = twin
        self.detector = detector
        self.sink = sink
        self.instant_detector = instant_detector
        self.stats = IngestionStats()
        self.dedup_window = max(dedup_window, 0)
        self._alert_handlers: list[AlertHandler] = list(alert_handlers)
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._lock = Lock()

    def add_alert_handler(self, handler: AlertHandler) -> None:
        self._alert_handlers.append(handler)

    def handle(self, payload: bytes | str) -> None:
        with self._lock:
            self.stats.received += 1
            try:
                self._process(payload)
            except Exception:  # message boundary: log and move on
                self.stats.dropped += 1
                logger.exception(
                    "Error processing message",
                    extra={"payload": _preview(payload)},
                )

    def _process(self, payload: bytes | str) -> None:
        reading = self._parse(payload)
        if reading is None:
            self.stats.dropped += 1
            return

        # The timestamp is recorded before the write, so a redelivery cannot retry a failed put.
        if self._is_duplicate(reading.timestamp):
            self.stats.duplicates += 1
            logger.info(
                "Dropping duplicate reading",
                extra={"reading_timestamp": reading.timestamp},
            )
            return

        self.twin.update(reading)

        alerts: list[Alert] = []
        if self.instant_detector is not None:
            alerts.extend(self.instant_detector.evaluate(reading))
        alerts.extend(self.detector.evaluate(reading, self.twin.snapshot()))
        for alert in alerts:
            self._emit(alert)

        if not self.sink.put(reading):
            self.stats.persist_failures += 1

        self.stats.processed += 1

    def _parse(self, payload: bytes | str) -> Optional[SensorReading]:
        logger.debug("Received message", extra={"payload": _preview(payload)})
        try:
            parsed = SensorPayload.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning(
                "Dropping malformed payload",
                extra={
                    "payload": _preview(payload),
                    "reason": _describe_validation_error(exc),
                },
            )
            return None
        return parsed.to_reading()

    def _is_duplicate(self, timestamp: str) -> bool:
        if not self.dedup_window:
            return False
        if timestamp in self._seen:
            self._seen.move_to_end(timestamp)
            return True
        self._seen[timestamp] = None
        while len(self._seen) > self.dedup_window:
            self._seen.popitem(last=False)
        return False

    def _emit(self, alert: Alert) -> None:
        self.stats.alerts += 1
        logger.warning(
            "Anomaly alert raised: %s",
            alert.kind.value,
            extra={
                "alert_kind": alert.kind.value,
                "reading_timestamp": alert.timestamp,
                "observed": alert.observed,
                "reference": alert.reference,
            },
        )
        for handler in self._alert_handlers:
            try:
                handler(alert)
            except Exception:  # handlers must not break ingestion
                logger.exception(
                    "Alert handler failed",
                    extra={"alert_kind": alert.kind.value, "reading_timestamp": alert.timestamp},
                )
