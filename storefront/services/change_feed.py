"""
In-process change feed for storefront tables.

Admin screens poll ``since(cursor)`` (or register a subscriber callback) to
hear about order, product, review and profile writes without re-reading
whole tables.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from storefront.config import Config
from storefront.observability import increment_counter

CHANGE_EVENTS = ("INSERT", "UPDATE", "DELETE")

Subscriber = Callable[["ChangeEvent"], None]


@dataclass
class ChangeEvent:
    sequence: int
    table: str
    event: str
    record_id: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "table": self.table,
            "event": self.event,
            "record_id": self.record_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


class ChangeFeed:
    """Bounded, sequence-numbered buffer of table changes."""

    _instance: Optional["ChangeFeed"] = None
    _lock: Lock = Lock()

    def __new__(cls) -> "ChangeFeed":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._events: Deque[ChangeEvent] = deque(maxlen=Config.CHANGE_FEED_MAX_EVENTS)
        self._sequence = 0
        self._subscribers: Dict[int, tuple] = {}
        self._subscriber_counter = 0
        self.logger = logging.getLogger(__name__)
        self._initialized = True

    def publish(
        self,
        table: str,
        event: str,
        record_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ChangeEvent:
        event = event.upper()
        if event not in CHANGE_EVENTS:
            raise ValueError(f"Unsupported change event {event}")

        with self._lock:
            self._sequence += 1
            change = ChangeEvent(
                sequence=self._sequence,
                table=table,
                event=event,
                record_id=record_id,
                payload=dict(payload or {}),
            )
            self._events.append(change)
            listeners = [
                callback
                for tables, callback in self._subscribers.values()
                if not tables or table in tables
            ]

        increment_counter("change_feed_events_total", labels={"table": table, "event": event})
        for callback in listeners:
            try:
                callback(change)
            except Exception:
                # One broken listener must not block delivery to the rest
                self.logger.exception("Change feed subscriber failed", extra={"table": table})
        return change

    def since(self, cursor: int = 0, tables: Optional[Iterable[str]] = None) -> List[ChangeEvent]:
        wanted = set(tables or ())
        with self._lock:
            return [
                change
                for change in self._events
                if change.sequence > cursor and (not wanted or change.table in wanted)
            ]

    @property
    def cursor(self) -> int:
        return self._sequence

    def subscribe(self, callback: Subscriber, tables: Optional[Iterable[str]] = None) -> int:
        with self._lock:
            self._subscriber_counter += 1
            self._subscribers[self._subscriber_counter] = (frozenset(tables or ()), callback)
            return self._subscriber_counter

    def unsubscribe(self, subscription_id: int) -> bool:
        with self._lock:
            return self._subscribers.pop(subscription_id, None) is not None

    def reset(self) -> None:
        """Testing helper."""
        with self._lock:
            self._events.clear()
            self._subscribers.clear()
            self._sequence = 0


def publish_change(
    table: str,
    event: str,
    record_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> ChangeEvent:
    return ChangeFeed().publish(table, event, record_id, payload)
