from collections import Counter, defaultdict
from dataclasses import dataclass, field


@dataclass(frozen=True)
class EventBusMetrics:
    """Point-in-time view of event bus activity.

    Attributes:
        published_events: Number of events accepted by `publish`.
        failed_handlers: Number of handler invocations that raised.
        handler_counts: Registered handlers per event type.
        average_processing_times: Mean handler duration per event type,
            in seconds.
    """

    published_events: int = 0
    failed_handlers: int = 0
    handler_counts: dict[str, int] = field(default_factory=dict)
    average_processing_times: dict[str, float] = field(default_factory=dict)


class MetricsRecorder:
    """Running counters behind `EventBus.get_metrics`.

    Handler durations are folded into a total and a count per event type,
    so memory stays constant however many events are published.
    """

    __slots__ = ("published_events", "failed_handlers", "_total_durations", "_handler_runs")

    def __init__(self) -> None:
        self.published_events = 0
        self.failed_handlers = 0
        self._total_durations: defaultdict[str, float] = defaultdict(float)
        self._handler_runs: Counter[str] = Counter()

    def record_published(self) -> None:
        self.published_events += 1

    def record_handler(self, event_type: str, duration: float, *, failed: bool) -> None:
        self._total_durations[event_type] += duration
        self._handler_runs[event_type] += 1
        if failed:
            self.failed_handlers += 1

    def snapshot(self, handler_counts: dict[str, int]) -> EventBusMetrics:
        return EventBusMetrics(
            published_events=self.published_events,
            failed_handlers=self.failed_handlers,
            handler_counts=dict(handler_counts),
            average_processing_times={
                event_type: total / self._handler_runs[event_type]
                for event_type, total in self._total_durations.items()
            },
        )

    def reset(self) -> None:
        self.published_events = 0
        self.failed_handlers = 0
        self._total_durations.clear()
        self._handler_runs.clear()
