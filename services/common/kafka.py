"""In-process stand-in for the platform Kafka producer."""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Any

_HISTORY_SIZE = 100


class _InMemoryBroker:
    """Keeps a short history of published messages per topic."""

    def __init__(self) -> None:
        self._history: dict[str, deque[dict[str, Any]]] = defaultdict(lambda: deque(maxlen=_HISTORY_SIZE))

    async def publish(self, topic: str, message: dict[str, Any]) -> None:
        self._history[topic].append(message)

    def history(self, topic: str) -> list[dict[str, Any]]:
        return list(self._history.get(topic, ()))

    def clear_history(self) -> None:
        self._history.clear()


_BROKER = _InMemoryBroker()


def recent_messages(topic: str) -> list[dict[str, Any]]:
    """Return the most recent messages published on a topic, oldest first."""

    return _BROKER.history(topic)


def clear_message_history() -> None:
    _BROKER.clear_history()


class KafkaProducerStub:
    """Producer with the platform producer's connect/send/close surface."""

    def __init__(self, *, bootstrap_servers: str | None = None, **_kwargs: Any) -> None:
        self.bootstrap_servers = bootstrap_servers
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def send(self, topic: str, value: dict[str, Any]) -> None:
        if not self._connected:
            raise RuntimeError("Producer not connected")
        await _BROKER.publish(topic, value)

    async def close(self) -> None:
        self._connected = False
