"""In-process progress channel: publish/subscribe keyed by topic."""

from __future__ import annotations

import itertools
import logging
import threading
from collections import defaultdict, deque
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from .models import ProgressEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[ProgressEvent], None]

ANALYSIS_PROGRESS = "analysis:progress"
ANALYSIS_COMPLETE = "analysis:complete"
WORKLOAD_PROGRESS = "workload:progress"
WORKLOAD_COMPLETE = "workload:complete"
SAMPLING_STATUS = "sampling:status"


def analysis_topic(analysis_id: str) -> str:
    return f"analysis:{analysis_id}"


def workload_topic(namespace: str) -> str:
    return f"workload:{namespace}"


def sampling_topic(namespace: str) -> str:
    return f"sampling:{namespace}"


class ProgressChannel:
    """Fan events out to subscribers and keep a short per-topic history."""

    def __init__(self, history: int = 200) -> None:
        self._history_size = history
        self._history: dict[str, deque[ProgressEvent]] = defaultdict(
            lambda: deque(maxlen=self._history_size)
        )
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``topic``; returns an unsubscribe function."""
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers.get(topic, []):
                    self._subscribers[topic].remove(callback)

        return unsubscribe

    def publish(self, topic: str, event: str, payload: Mapping[str, Any]) -> ProgressEvent:
        with self._lock:
            message = ProgressEvent(
                topic=topic,
                event=event,
                sequence=next(self._sequence),
                emitted_at=datetime.now(timezone.utc),
                payload=dict(payload),
            )
            self._history[topic].append(message)
            subscribers = list(self._subscribers.get(topic, []))
        for callback in subscribers:
            try:
                callback(message)
            except Exception:
                logger.exception("Subscriber failed for %s on %s", event, topic)
        return message

    def history(self, topic: str, *, since: int = 0) -> list[ProgressEvent]:
        """Events for ``topic`` with a sequence number greater than ``since``."""
        with self._lock:
            return [ev for ev in self._history.get(topic, ()) if ev.sequence > since]
