"""In-process event bus for domain events published after commit.

- EventBus: Sequential, failure-isolating publish/subscribe
- Subscription / EventTypeInfo: Registration records
- EventHistory / HistoryFilter: Optional bounded history of published events
- EventBusMetrics: Counters and timings exposed by `EventBus.get_metrics`
"""

from .bus import EventBus, EventHandler, EventTypeInfo, Subscription
from .history import EventHistory, HistoryFilter
from .metrics import EventBusMetrics, MetricsRecorder

__all__ = [
    "EventBus",
    "EventHandler",
    "EventTypeInfo",
    "Subscription",
    "EventHistory",
    "HistoryFilter",
    "EventBusMetrics",
    "MetricsRecorder",
]
