from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_TABLE_NAME_ENV = "SENSOR_TABLE_NAME"
_TABLE_PATH_ENV = "SENSOR_TABLE_PERSISTENCE_PATH"
_TOPIC_ENV = "SENSOR_TOPIC"
_HISTORY_WINDOW_ENV = "HISTORY_WINDOW"
_DEDUP_WINDOW_ENV = "DEDUP_WINDOW"
_CONNECT_ATTEMPTS_ENV = "BROKER_CONNECT_MAX_ATTEMPTS"
_CONNECT_BASE_DELAY_ENV = "BROKER_CONNECT_BASE_DELAY"
_CONNECT_MAX_DELAY_ENV = "BROKER_CONNECT_MAX_DELAY"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    table_name: str
    table_persistence_path: Optional[str]
    topic: str
    history_window: int
    dedup_window: int
    connect_max_attempts: int
    connect_base_delay: float
    connect_max_delay: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_int_env(name: str, default: int, minimum: int = 1) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _read_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        table_name=_read_str_env(_TABLE_NAME_ENV, "SensorData"),
        table_persistence_path=_read_optional_env(_TABLE_PATH_ENV, "./tmp/sensor_data.json"),
        topic=_read_str_env(_TOPIC_ENV, "factory/sensor/data"),
        history_window=_read_int_env(_HISTORY_WINDOW_ENV, 10),
        dedup_window=_read_int_env(_DEDUP_WINDOW_ENV, 1024, minimum=0),
        connect_max_attempts=_read_int_env(_CONNECT_ATTEMPTS_ENV, 5),
        connect_base_delay=_read_float_env(_CONNECT_BASE_DELAY_ENV, 5.0),
        connect_max_delay=_read_float_env(_CONNECT_MAX_DELAY_ENV, 60.0),
        log_level=_read_log_level("INFO"),
    )
