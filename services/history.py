"""Bounded recent-history queries over the sensor table."""

from __future__ import annotations

import heapq
import logging
from typing import Any, Mapping, Optional

from datastore.mock_dynamodb import MockDynamoDBTable, StoreUnavailableError

logger = logging.getLogger(__name__)

OVERFETCH_FACTOR = 2


class HistoryStore:
    """Read side of the sensor table used by the anomaly detector."""

    def __init__(self, table: MockDynamoDBTable) -> None:
        self.table = table

    def recent_values(self, attribute: str, limit: int) -> list[float]:
        """Return up to ``limit`` values of ``attribute``, newest first.

        The table gives no ordering guarantee, so every page of
        ``OVERFETCH_FACTOR * limit`` rows is scanned and the newest ``limit``
        usable rows are kept, ordered client-side by timestamp. Rows without a
        usable value are skipped and do not count towards ``limit``. A store
        failure yields an empty list.
        """

        if limit <= 0:
            return []

        newest: list[tuple[str, float]] = []
        start_key: Optional[str] = None
        try:
            while True:
                page = self.table.scan_page(
                    limit=limit * OVERFETCH_FACTOR,
                    projection=(attribute, "timestamp"),
                    exclusive_start_key=start_key,
                )
                for row in page.items:
                    timestamp = row.get("timestamp")
                    if not isinstance(timestamp, str):
                        continue
                    value = _parse_value(row, attribute)
                    if value is None:
                        continue
                    newest.append((timestamp, value))
                newest = heapq.nlargest(limit, newest, key=lambda pair: pair[0])
                start_key = page.last_evaluated_key
                if start_key is None:
                    break
        except StoreUnavailableError as exc:
            logger.error(
                "Failed to scan recent values: %s",
                exc,
                extra={"attribute": attribute, "limit": limit, "error_code": exc.error_code},
            )
            return []

        return [value for _timestamp, value in newest]


def _parse_value(row: Mapping[str, Any], attribute: str) -> float | None:
    raw = row.get(attribute)
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.debug(
            "Skipping unparsable history value",
            extra={"attribute": attribute, "reading_timestamp": row.get("timestamp")},
        )
        return None
