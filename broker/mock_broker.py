from __future__ import annotations
from functools import lru_cache
from threading import Lock
from typing import Dict, List, Optional, Protocol


class BrokerConnectionError(ConnectionError):
    """Raised when the broker cannot be reached or is not connected."""


class MessageHandler(Protocol):
    def on_message(self, topic: str, payload: bytes) -> None: ...


class MockIoTBroker:
    """In-process publish/subscribe broker with at-least-once delivery.

    ``fail_connects`` makes the first N ``connect()`` calls fail, which is how
    an unreachable endpoint is simulated.
    """

    def __init__(self, endpoint: str = "local", fail_connects: int = 0) -> None:
        self.endpoint = endpoint
        self._subscriptions: Dict[str, List[MessageHandler]] = {}
        self._pending_failures = max(fail_connects, 0)
        self._connected = False
        self.connect_attempts = 0
        self._lock = Lock()

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    def connect(self) -> None:
        with self._lock:
            self.connect_attempts += 1
            if self._pending_failures:
                self._pending_failures -= 1
                raise BrokerConnectionError(
                    f"Unable to connect to broker endpoint {self.endpoint!r}."
                )
            self._connected = True

    def disconnect(self) -> None:
        with self._lock:
            self._connected = False

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        with self._lock:
            self._require_connected()
            handlers = self._subscriptions.setdefault(topic, [])
            if handler not in handlers:
                handlers.append(handler)

    def unsubscribe(self, topic: str, handler: MessageHandler) -> None:
        with self._lock:
            handlers = self._subscriptions.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, topic: str, payload: bytes | str, qos: int = 1) -> int:
        """Deliver ``payload`` to every handler on ``topic``; returns the delivery count."""
        if qos not in (0, 1):
            raise ValueError(f"Unsupported QoS level {qos!r}; expected 0 or 1.")
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        with self._lock:
            self._require_connected()
            handlers = list(self._subscriptions.get(topic, ()))

        for handler in handlers:
            handler.on_message(topic, payload)
        return len(handlers)

    def _require_connected(self) -> None:
        if not self._connected:
            raise BrokerConnectionError(
                f"Broker endpoint {self.endpoint!r} is not connected."
            )


@lru_cache
def build_default_broker(endpoint: Optional[str] = None) -> MockIoTBroker:
    return MockIoTBroker(endpoint=endpoint or "local")
