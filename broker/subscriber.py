"""Broker-facing side of the ingestion service."""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock
from typing import Callable, Optional

from broker.mock_broker import BrokerConnectionError
from services.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


class BrokerUnavailableError(RuntimeError):
    """Raised once every connection attempt has failed."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


def connect_with_retry(
    connect: Callable[[], None],
    max_attempts: int = 5,
    base_delay: float = 5.0,
    max_delay: float = 60.0,
    jitter: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Call ``connect`` until it succeeds, backing off exponentially.

    Returns the attempt number that succeeded. Raises
    ``BrokerUnavailableError`` after ``max_attempts`` failures.
    """

    attempts = max(max_attempts, 1)
    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            connect()
        except (BrokerConnectionError, OSError) as exc:
            last_error = exc
            if attempt == attempts:
                break
            delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
            delay += random.uniform(0, delay * jitter) if jitter > 0 else 0.0
            logger.warning(
                "Failed to connect to broker, retrying: %s",
                exc,
                extra={"attempt": attempt, "delay_s": delay},
            )
            sleep(delay)
            continue
        logger.info("Connected to broker", extra={"attempt": attempt})
        return attempt

    logger.error(
        "Giving up on broker connection: %s",
        last_error,
        extra={"attempt": attempts},
    )
    raise BrokerUnavailableError(
        f"Broker unavailable after {attempts} attempts: {last_error}", attempts=attempts
    ) from last_error


class SensorSubscriber:
    """Named message handler feeding the pipeline from one worker thread.

    The single worker preserves arrival order and guarantees that message N
    is fully handled before message N+1 starts.
    """

    def __init__(self, pipeline: IngestionPipeline) -> None:
        self.pipeline = pipeline
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sensor-ingest")
        self._accepting = True
        self._pending: set[Future[None]] = set()
        self._lock = Lock()

    @property
    def accepting(self) -> bool:
        with self._lock:
            return self._accepting

    def on_message(self, topic: str, payload: bytes) -> None:
        with self._lock:
            if not self._accepting:
                logger.warning(
                    "Subscriber is shutting down; rejecting message",
                    extra={"topic": topic},
                )
                return
            future = self.executor.submit(self.pipeline.handle, payload)
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Block until every message accepted so far has been handled."""
        with self._lock:
            pending = list(self._pending)
        deadline = None if timeout is None else time.monotonic() + timeout
        for future in pending:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            future.result(timeout=remaining)

    def shutdown(self, drain: bool = True) -> None:
        """Stop accepting messages; ``drain`` lets queued ones finish first.

        The message currently being handled always completes.
        """
        with self._lock:
            self._accepting = False
        self.executor.shutdown(wait=True, cancel_futures=not drain)

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)
