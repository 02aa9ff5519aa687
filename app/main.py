from __future__ import annotations
import logging
from functools import lru_cache
from typing import Callable, Iterable, Optional

from broker.mock_broker import MockIoTBroker, build_default_broker
from broker.subscriber import SensorSubscriber, connect_with_retry
from datastore.mock_dynamodb import MockDynamoDBTable, build_default_table
from logging_config import configure_logging
from services.detector import AnomalyDetector, DetectionThresholds, InstantaneousDetector
from services.history import HistoryStore
from services.persistence import PersistenceSink
from services.pipeline import AlertHandler, IngestionPipeline
from services.trend import TrendPredictor
from services.twin import DigitalTwin
from settings import Settings, get_settings

logger = logging.getLogger(__name__)


class ServiceRuntime:
    """Wires the table, twin, detectors and pipeline onto a broker subscription."""

    def __init__(
        self,
        settings: Settings,
        table: MockDynamoDBTable,
        broker: MockIoTBroker,
        alert_handlers: Iterable[AlertHandler] = (),
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.settings = settings
        self.table = table
        self.broker = broker
        self._sleep = sleep

        thresholds = DetectionThresholds(window=settings.history_window)
        self.twin = DigitalTwin()
        self.history = HistoryStore(table)
        self.pipeline = IngestionPipeline(
            twin=self.twin,
            detector=AnomalyDetector(self.history, TrendPredictor(), thresholds),
            sink=PersistenceSink(table),
            instant_detector=InstantaneousDetector(thresholds),
            alert_handlers=alert_handlers,
            dedup_window=settings.dedup_window,
        )
        self.subscriber = SensorSubscriber(self.pipeline)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Connect with bounded retries and subscribe to the sensor topic."""
        if self._started:
            return
        retry_kwargs = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        connect_with_retry(
            self.broker.connect,
            max_attempts=self.settings.connect_max_attempts,
            base_delay=self.settings.connect_base_delay,
            max_delay=self.settings.connect_max_delay,
            **retry_kwargs,
        )
        self.broker.subscribe(self.settings.topic, self.subscriber)
        self._started = True
        logger.info("Sensor subscriber started", extra={"topic": self.settings.topic})

    def stop(self, drain: bool = True) -> None:
        """Stop intake, let in-flight work finish, then disconnect."""
        self.broker.unsubscribe(self.settings.topic, self.subscriber)
        self.subscriber.shutdown(drain=drain)
        self.broker.disconnect()
        self._started = False
        logger.info(
            "Sensor subscriber stopped",
            extra={"topic": self.settings.topic},
        )


@lru_cache
def build_default_runtime(endpoint: Optional[str] = None) -> ServiceRuntime:
    """Factory that wires the runtime with the default mocks."""
    configure_logging()
    settings = get_settings()
    return ServiceRuntime(
        settings=settings,
        table=build_default_table(),
        broker=build_default_broker(endpoint),
    )
