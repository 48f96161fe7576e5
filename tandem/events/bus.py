import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ulid import ULID

from ..context import ExecutionContext, reset_context, set_context
from ..domain import DomainEvent
from .history import EventHistory, HistoryFilter
from .metrics import EventBusMetrics, MetricsRecorder

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], Awaitable[Any] | Any]


@dataclass(frozen=True)
class Subscription:
    """A handler registered for one event type."""

    event_type: str
    handler_id: str
    handler: EventHandler
    once: bool = False


@dataclass(frozen=True)
class EventTypeInfo:
    """Descriptive metadata for a known event type."""

    name: str
    description: str = ""
    category: str = "domain"
    schema: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """In-process publish/subscribe bus for domain events.

    Handlers for an event type run sequentially in registration order, each
    awaited before the next one starts. Handler failures are isolated: a
    raising handler is logged and counted, and the remaining handlers still
    run. `publish` itself never raises, so a repository can publish after a
    commit without the write appearing to fail.

    While a handler runs, the execution context carries the event's
    correlation_id and the event id as causation_id. Writes a handler makes
    are therefore correlated with the write that triggered them.

    There is no process-wide instance. Construct a bus at the composition
    root and inject it wherever events are published or handled.

    Examples:
        >>> bus = EventBus(record_history=True)
        >>> unregister = bus.register("FOCUS_AREA_CREATED", send_welcome_tip)
        >>> await bus.publish(event)
        >>> unregister()
        True
    """

    def __init__(self, *, record_history: bool = False, history_limit: int = 1000):
        """Initialize the bus.

        Args:
            record_history: Whether published events are kept for
                `get_history`.
            history_limit: Maximum number of events kept in the history.
        """
        self.record_history = record_history
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._event_types: dict[str, EventTypeInfo] = {}
        self._history = EventHistory(history_limit)
        self._metrics = MetricsRecorder()

    # ========== Registration ==========

    def register(
        self,
        event_type: str,
        handler: EventHandler,
        *,
        handler_id: str | None = None,
        once: bool = False,
    ) -> Callable[[], bool]:
        """Register a handler for an event type.

        Args:
            event_type: The event type tag to subscribe to.
            handler: Sync or async callable receiving the DomainEvent.
            handler_id: Identifier used in logs. Generated when omitted.
            once: Remove the subscription after its first invocation.

        Returns:
            A callable that unregisters this handler. It returns True when a
            subscription was removed.

        Raises:
            ValueError: If event_type is empty or handler is not callable.
        """
        if not event_type:
            raise ValueError("event_type must be a non-empty string")
        if not callable(handler):
            raise ValueError("handler must be callable")

        subscription = Subscription(
            event_type=event_type,
            handler_id=handler_id or f"{event_type}:{ULID()}",
            handler=handler,
            once=once,
        )
        self._subscriptions.setdefault(event_type, []).append(subscription)
        LOGGER.debug(
            "Registered event handler",
            extra={"event_type": event_type, "handler_id": subscription.handler_id},
        )
        return lambda: self._remove(subscription)

    def once(
        self,
        event_type: str,
        handler: EventHandler,
        *,
        handler_id: str | None = None,
    ) -> Callable[[], bool]:
        """Register a handler that runs for the next matching event only."""
        return self.register(event_type, handler, handler_id=handler_id, once=True)

    def unregister(self, event_type: str, handler: EventHandler) -> bool:
        """Remove the first subscription of `handler` for `event_type`.

        Returns:
            True if a subscription was removed.
        """
        for subscription in self._subscriptions.get(event_type, []):
            if subscription.handler == handler:
                return self._remove(subscription)
        return False

    def remove_all_handlers(self, event_type: str | None = None) -> None:
        """Remove every handler for `event_type`, or for all types when None."""
        if event_type is None:
            self._subscriptions.clear()
        else:
            self._subscriptions.pop(event_type, None)

    def handler_count(self, event_type: str) -> int:
        return len(self._subscriptions.get(event_type, []))

    def register_event_type(
        self,
        name: str,
        *,
        description: str = "",
        category: str = "domain",
        schema: dict[str, Any] | None = None,
    ) -> EventTypeInfo:
        """Record descriptive metadata for an event type."""
        info = EventTypeInfo(name=name, description=description, category=category, schema=dict(schema or {}))
        self._event_types[name] = info
        return info

    def get_event_types(self) -> dict[str, EventTypeInfo]:
        return dict(self._event_types)

    # ========== Publishing ==========

    async def publish(self, event: DomainEvent) -> None:
        """Deliver an event to every handler registered for its type.

        Never raises. Handler errors are logged with the event id and
        handler id and counted in the metrics.
        """
        if not event.type:
            LOGGER.warning("Skipping event without a type", extra={"event_id": str(event.id)})
            return

        self._metrics.record_published()
        if self.record_history:
            self._history.record(event)

        subscriptions = list(self._subscriptions.get(event.type, []))
        if not subscriptions:
            LOGGER.debug("No handlers for event", extra=event.log_extra())
            return

        for subscription in subscriptions:
            if subscription.once:
                self._remove(subscription)
            await self._invoke(subscription, event)

    async def publish_all(self, events: Iterable[DomainEvent]) -> None:
        """Publish events one after another, in order."""
        for event in events:
            await self.publish(event)

    async def _invoke(self, subscription: Subscription, event: DomainEvent) -> None:
        token = set_context(ExecutionContext(correlation_id=event.correlation_id, causation_id=event.id))
        started = time.perf_counter()
        failed = False
        try:
            result = subscription.handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            failed = True
            LOGGER.exception(
                "Event handler failed",
                extra={**event.log_extra(), "handler_id": subscription.handler_id},
            )
        finally:
            reset_context(token)
            self._metrics.record_handler(event.type, time.perf_counter() - started, failed=failed)

    def _remove(self, subscription: Subscription) -> bool:
        subscriptions = self._subscriptions.get(subscription.event_type, [])
        for i, candidate in enumerate(subscriptions):
            if candidate is subscription:
                del subscriptions[i]
                if not subscriptions:
                    del self._subscriptions[subscription.event_type]
                return True
        return False

    # ========== Introspection ==========

    def get_history(self, criteria: HistoryFilter | None = None) -> list[DomainEvent]:
        """Published events, most recent first.

        Always empty unless the bus was created with `record_history=True`.
        """
        return self._history.query(criteria)

    def get_metrics(self) -> EventBusMetrics:
        counts = {name: 0 for name in self._event_types}
        counts.update({name: len(subs) for name, subs in self._subscriptions.items()})
        return self._metrics.snapshot(counts)

    def reset(self) -> None:
        """Clear the history and the metrics. Subscriptions are kept."""
        self._history.clear()
        self._metrics.reset()
