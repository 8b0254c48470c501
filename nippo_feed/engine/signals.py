"""Publish/subscribe channel for "new content is available" notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewContentSignal:
    identity: str
    newest_ms: int
    high_water_mark_ms: int
    record_id: Optional[str] = None
    partition_id: Optional[str] = None


Subscriber = Callable[[NewContentSignal], None]


class SignalChannel:
    """Delivers signals to subscribers and remembers the last undelivered one.

    A subscriber that raises is logged and skipped; it never stops delivery to
    the others or reaches the publisher.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._pending: NewContentSignal | None = None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, signal: NewContentSignal):
        self._pending = signal
        for callback in list(self._subscribers):
            try:
                callback(signal)
            except Exception as exc:
                logger.warning("New-content subscriber %r failed: %s", callback, exc)

    @property
    def pending(self) -> NewContentSignal | None:
        return self._pending

    def consume(self) -> NewContentSignal | None:
        signal, self._pending = self._pending, None
        return signal
