"""Write side of the sensor table."""

from __future__ import annotations

import logging

from datastore.mock_dynamodb import MockDynamoDBTable, StoreUnavailableError
from models.records import SensorReading
from models.schemas import ReadingItem

logger = logging.getLogger(__name__)


class PersistenceSink:
    def __init__(self, table: MockDynamoDBTable) -> None:
        self.table = table

    def put(self, reading: SensorReading) -> bool:
        """Store ``reading``; returns ``False`` when the table rejected the write."""
        try:
            self.table.put_item(ReadingItem.from_reading(reading))
        except StoreUnavailableError as exc:
            logger.error(
                "Failed to save reading: %s",
                exc,
                extra={"reading_timestamp": reading.timestamp, "error_code": exc.error_code},
            )
            return False
        logger.info(
            "Reading saved",
            extra={"reading_timestamp": reading.timestamp},
        )
        return True
