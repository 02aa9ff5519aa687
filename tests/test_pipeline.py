import json
import logging

import pytest

from datastore.mock_dynamodb import MockDynamoDBTable, StoreUnavailableError
from models.records import Alert, AlertKind, SensorReading, TwinState
from services.detector import AnomalyDetector, InstantaneousDetector
from services.history import HistoryStore
from services.persistence import PersistenceSink
from services.pipeline import IngestionPipeline
from services.twin import DigitalTwin


def _message(timestamp: str, temperature, humidity, vibration) -> bytes:
    return json.dumps(
        {
            "timestamp": timestamp,
            "temperature": temperature,
            "humidity": humidity,
            "vibration": vibration,
        }
    ).encode("utf-8")


def _build_pipeline(table: MockDynamoDBTable, **kwargs) -> IngestionPipeline:
    return IngestionPipeline(
        twin=DigitalTwin(),
        detector=AnomalyDetector(HistoryStore(table)),
        sink=PersistenceSink(table),
        instant_detector=InstantaneousDetector(),
        **kwargs,
    )


def test_end_to_end_two_readings() -> None:
    table = MockDynamoDBTable(name="test")
    pipeline = _build_pipeline(table)

    pipeline.handle(_message("T1", 25, 50, 1.0))
    pipeline.handle(_message("T2", 35, 50, 1.0))

    assert pipeline.twin.accumulated_wear == pytest.approx(0.10)
    assert pipeline.twin.energy_efficiency == 99.0
    assert len(table) == 2
    assert table.get_item("T2").temperature == 35.0  # type: ignore[union-attr]
    assert pipeline.stats.processed == 2
    assert pipeline.stats.dropped == 0


def test_missing_field_drops_message_without_side_effects(caplog) -> None:
    table = MockDynamoDBTable(name="test")
    pipeline = _build_pipeline(table)
    payload = json.dumps({"timestamp": "T1", "temperature": 25, "humidity": 50}).encode()

    with caplog.at_level(logging.WARNING, logger="services.pipeline"):
        pipeline.handle(payload)

    assert pipeline.twin.snapshot().updates == 0
    assert len(table) == 0
    assert pipeline.stats.dropped == 1
    records = [record for record in caplog.records if record.name == "services.pipeline"]
    assert any("Dropping malformed payload" in record.getMessage() for record in records)
    assert any("vibration" in getattr(record, "reason", "") for record in records)
    assert any('"timestamp": "T1"' in getattr(record, "payload", "") for record in records)


@pytest.mark.parametrize(
    "payload",
    [
        b"not json at all",
        b"[1, 2, 3]",
        _message("T1", "25", 50, 1.0),
        _message("T1", 25, True, 1.0),
        _message("T1", 25, 50, None),
        _message("T1", 25, 50, -0.5),
        _message(123, 25, 50, 1.0),
        _message("", 25, 50, 1.0),
        b'{"timestamp": "T1", "temperature": NaN, "humidity": 50, "vibration": 1.0}',
    ],
)
def test_malformed_payloads_are_dropped(payload: bytes) -> None:
    table = MockDynamoDBTable(name="test")
    pipeline = _build_pipeline(table)

    pipeline.handle(payload)

    assert pipeline.stats.dropped == 1
    assert pipeline.twin.snapshot().updates == 0
    assert len(table) == 0


def test_pipeline_continues_after_malformed_message() -> None:
    table = MockDynamoDBTable(name="test")
    pipeline = _build_pipeline(table)

    pipeline.handle(b"{broken")
    pipeline.handle(_message("T1", 25, 50, 2.0))

    assert pipeline.stats.received == 2
    assert pipeline.stats.processed == 1
    assert pipeline.twin.accumulated_wear == pytest.approx(0.1)


def test_string_payload_and_extra_keys_are_accepted() -> None:
    table = MockDynamoDBTable(name="test")
    pipeline = _build_pipeline(table)
    payload = json.dumps(
        {"timestamp": "T1", "temperature": 25, "humidity": 50, "vibration": 1, "device": "press-1"}
    )

    pipeline.handle(payload)

    assert pipeline.stats.processed == 1
    assert table.get_item("T1") is not None


def test_duplicate_delivery_is_counted_once() -> None:
    table = MockDynamoDBTable(name="test")
    pipeline = _build_pipeline(table)
    message = _message("T1", 35, 50, 2.0)

    pipeline.handle(message)
    pipeline.handle(message)

    assert pipeline.stats.duplicates == 1
    assert pipeline.twin.accumulated_wear == pytest.approx(0.1)
    assert pipeline.twin.energy_efficiency == 99.0
    assert len(table) == 1


def test_disabled_dedup_double_counts_but_persists_one_row() -> None:
    table = MockDynamoDBTable(name="test")
    pipeline = _build_pipeline(table, dedup_window=0)
    message = _message("T1", 25, 50, 2.0)

    pipeline.handle(message)
    pipeline.handle(message)

    assert pipeline.stats.duplicates == 0
    assert pipeline.twin.accumulated_wear == pytest.approx(0.2)
    assert len(table) == 1


def test_dedup_window_is_bounded() -> None:
    table = MockDynamoDBTable(name="test")
    pipeline = _build_pipeline(table, dedup_window=2)

    for timestamp in ("T1", "T2", "T3", "T1"):
        pipeline.handle(_message(timestamp, 25, 50, 1.0))

    # T1 has been evicted by T3, so its redelivery is accepted again.
    assert pipeline.stats.duplicates == 0
    assert pipeline.twin.snapshot().updates == 4


def test_detection_runs_before_persistence() -> None:
    table = MockDynamoDBTable(name="test")
    seen_rows: list[int] = []

    class RecordingDetector(AnomalyDetector):
        def evaluate(self, reading: SensorReading, twin: TwinState) -> list[Alert]:
            seen_rows.append(len(table))
            assert twin.updates == len(seen_rows)
            return super().evaluate(reading, twin)

    pipeline = IngestionPipeline(
        twin=DigitalTwin(),
        detector=RecordingDetector(HistoryStore(table)),
        sink=PersistenceSink(table),
    )

    pipeline.handle(_message("T1", 25, 50, 1.0))
    pipeline.handle(_message("T2", 25, 50, 1.0))

    assert seen_rows == [0, 1]


def test_persistence_failure_keeps_twin_update(caplog) -> None:
    class FailingTable(MockDynamoDBTable):
        def put_item(self, item):  # type: ignore[override]
            raise StoreUnavailableError("table offline", error_code="ResourceNotFoundException")

    table = FailingTable(name="test")
    pipeline = _build_pipeline(table)

    with caplog.at_level(logging.ERROR, logger="services.persistence"):
        pipeline.handle(_message("T1", 25, 50, 1.0))

    assert pipeline.stats.persist_failures == 1
    assert pipeline.stats.processed == 1
    assert pipeline.twin.accumulated_wear == pytest.approx(0.05)
    assert any(
        getattr(record, "error_code", None) == "ResourceNotFoundException"
        for record in caplog.records
    )


def test_instantaneous_alert_is_emitted_with_no_history(caplog) -> None:
    table = MockDynamoDBTable(name="test")
    received: list[Alert] = []
    pipeline = _build_pipeline(table, alert_handlers=[received.append])

    with caplog.at_level(logging.WARNING, logger="services.pipeline"):
        pipeline.handle(_message("T1", 85, 50, 1.0))

    assert [alert.kind for alert in received] == [AlertKind.instantaneous_threshold]
    assert pipeline.stats.alerts == 1
    assert any(getattr(record, "alert_kind", None) == "instantaneous_threshold" for record in caplog.records)


def test_failing_alert_handler_does_not_stop_processing() -> None:
    table = MockDynamoDBTable(name="test")
    received: list[Alert] = []

    def broken_handler(alert: Alert) -> None:
        raise RuntimeError("notification channel down")

    pipeline = _build_pipeline(table, alert_handlers=[broken_handler])
    pipeline.add_alert_handler(received.append)

    pipeline.handle(_message("T1", 85, 50, 4.5))

    assert len(received) == 1
    assert pipeline.stats.processed == 1
    assert len(table) == 1


def test_unexpected_error_is_contained_at_message_boundary(caplog) -> None:
    table = MockDynamoDBTable(name="test")

    class ExplodingDetector(AnomalyDetector):
        def evaluate(self, reading, twin):  # type: ignore[override]
            raise ZeroDivisionError("boom")

    pipeline = IngestionPipeline(
        twin=DigitalTwin(),
        detector=ExplodingDetector(HistoryStore(table)),
        sink=PersistenceSink(table),
    )

    with caplog.at_level(logging.ERROR, logger="services.pipeline"):
        pipeline.handle(_message("T1", 25, 50, 1.0))

    assert pipeline.stats.dropped == 1
    assert len(table) == 0
    assert any("Error processing message" in record.getMessage() for record in caplog.records)


def test_statistical_alert_fires_once_history_builds_up() -> None:
    table = MockDynamoDBTable(name="test")
    received: list[Alert] = []
    pipeline = _build_pipeline(table, alert_handlers=[received.append])
    baseline = [20, 22, 21, 23, 22, 21, 20, 24, 23, 22]

    for second, temperature in enumerate(baseline):
        pipeline.handle(_message(f"2024-01-01T00:00:{second:02d}", temperature, 50, 1.0))
    received.clear()

    pipeline.handle(_message("2024-01-01T00:00:10", 30, 50, 1.0))

    assert [alert.kind for alert in received] == [AlertKind.statistical_temperature]


def test_statistical_alert_tracks_recent_readings_in_a_large_table() -> None:
    table = MockDynamoDBTable(name="test")
    received: list[Alert] = []
    pipeline = _build_pipeline(table, alert_handlers=[received.append])
    older = [20, 22, 21, 23, 22, 21, 20, 24, 23, 22] * 2
    recent = [40, 42, 41, 43, 42, 41, 40, 44, 43, 42]

    for second, temperature in enumerate(older + recent):
        pipeline.handle(_message(f"2024-01-01T00:00:{second:02d}", temperature, 50, 1.0))
    received.clear()
    assert len(table) == 30

    pipeline.handle(_message("2024-01-01T00:00:30", 43, 50, 1.0))
    assert received == []

    pipeline.handle(_message("2024-01-01T00:00:31", 50, 50, 1.0))
    assert [alert.kind for alert in received] == [AlertKind.statistical_temperature]


def test_negative_vibration_is_rejected_without_touching_twin() -> None:
    table = MockDynamoDBTable(name="test")
    pipeline = _build_pipeline(table)

    pipeline.handle(_message("T1", 25, 50, 2.0))
    pipeline.handle(_message("T2", 25, 50, -3.0))

    assert pipeline.twin.accumulated_wear == pytest.approx(0.1)
    assert pipeline.twin.snapshot().updates == 1
    assert len(table) == 1
    assert table.get_item("T2") is None
    assert pipeline.stats.processed == 1
    assert pipeline.stats.dropped == 1


def test_redelivery_after_failed_write_is_dropped_as_duplicate() -> None:
    class FlakyTable(MockDynamoDBTable):
        def __init__(self, name: str) -> None:
            super().__init__(name=name)
            self.fail_next = True

        def put_item(self, item):  # type: ignore[override]
            if self.fail_next:
                self.fail_next = False
                raise StoreUnavailableError("throttled", error_code="ProvisionedThroughputExceeded")
            super().put_item(item)

    table = FlakyTable(name="test")
    pipeline = _build_pipeline(table)
    message = _message("T1", 25, 50, 1.0)

    pipeline.handle(message)
    pipeline.handle(message)

    assert pipeline.stats.persist_failures == 1
    assert pipeline.stats.duplicates == 1
    assert len(table) == 0
