from collections import deque
from dataclasses import dataclass

from ulid import ULID

from ..domain import DomainEvent


@dataclass(frozen=True)
class HistoryFilter:
    """Criteria for querying the event history. Unset fields match anything."""

    event_type: str | None = None
    correlation_id: ULID | None = None
    limit: int | None = None


class EventHistory:
    """Bounded, most-recent-first record of published events."""

    __slots__ = ("_events",)

    def __init__(self, limit: int = 1000):
        if limit <= 0:
            raise ValueError("history limit must be positive")
        self._events: deque[DomainEvent] = deque(maxlen=limit)

    def record(self, event: DomainEvent) -> None:
        self._events.appendleft(event)

    def query(self, criteria: HistoryFilter | None = None) -> list[DomainEvent]:
        criteria = criteria or HistoryFilter()
        events = [
            event
            for event in self._events
            if (criteria.event_type is None or event.type == criteria.event_type)
            and (criteria.correlation_id is None or event.correlation_id == criteria.correlation_id)
        ]
        if criteria.limit is not None:
            events = events[: criteria.limit]
        return events

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
