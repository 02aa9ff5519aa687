from __future__ import annotations
import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from models.schemas import ReadingItem
from settings import get_settings


class StoreUnavailableError(RuntimeError):
    """Raised when the table cannot serve a read or accept a write."""

    def __init__(self, message: str, error_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.error_code = error_code


@dataclass
class ScanPage:
    items: list[dict[str, Any]]
    last_evaluated_key: Optional[str] = None


class MockDynamoDBTable:
    """In-process stand-in for the sensor table, keyed by reading timestamp."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[str, ReadingItem] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def put_item(self, item: ReadingItem) -> None:
        with self._lock:
            previous = self._items.get(item.timestamp)
            self._items[item.timestamp] = item.model_copy(deep=True)
            try:
                self._persist()
            except OSError as exc:
                if previous is None:
                    self._items.pop(item.timestamp, None)
                else:
                    self._items[item.timestamp] = previous
                raise StoreUnavailableError(
                    f"Failed to write item {item.timestamp!r} to table {self.name!r}: {exc}",
                    error_code="PersistenceWriteFailed",
                ) from exc

    def get_item(self, key: str) -> Optional[ReadingItem]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            return item.model_copy(deep=True)

    def scan(
        self,
        limit: Optional[int] = None,
        projection: Optional[Iterable[str]] = None,
    ) -> list[dict[str, Any]]:
        """Return one page of up to ``limit`` rows as plain dicts, in no particular order.

        ``projection`` restricts each row to the named attributes; attributes a
        row does not carry are simply absent from it.
        """

        return self.scan_page(limit=limit, projection=projection).items

    def scan_page(
        self,
        limit: Optional[int] = None,
        projection: Optional[Iterable[str]] = None,
        exclusive_start_key: Optional[str] = None,
    ) -> ScanPage:
        """Return the page after ``exclusive_start_key``.

        ``limit`` is the page size, not a cap on the whole scan. The page's
        ``last_evaluated_key`` is ``None`` once the table is exhausted.
        """

        include = set(projection) if projection is not None else None
        with self._lock:
            keys = list(self._items)
            start = 0
            if exclusive_start_key is not None:
                try:
                    start = keys.index(exclusive_start_key) + 1
                except ValueError as exc:
                    raise StoreUnavailableError(
                        f"Unknown start key {exclusive_start_key!r} for table {self.name!r}.",
                        error_code="ValidationException",
                    ) from exc
            stop = len(keys) if limit is None else start + max(limit, 0)
            page_keys = keys[start:stop]
            items = [self._items[key].model_dump(include=include) for key in page_keys]
        last_key = page_keys[-1] if page_keys and stop < len(keys) else None
        return ScanPage(items=items, last_evaluated_key=last_key)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            key: item.model_dump(mode="json") for key, item in self._items.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for key, payload in data.items():
            try:
                self._items[key] = ReadingItem.model_validate(payload)
            except ValidationError:
                continue


@lru_cache
def build_default_table(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockDynamoDBTable:
    settings = get_settings()
    table_name = settings.table_name if name is None else name
    table_path = settings.table_persistence_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return MockDynamoDBTable(name=table_name, persistence_path=persistence)
