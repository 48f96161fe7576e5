import contextvars
from dataclasses import dataclass, replace

from ulid import ULID


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable context for tracing one logical operation through the system.

    The context travels with the current asyncio task. Domain events created
    while a context is active are stamped with its correlation_id, so a
    request, the writes it performs and the handlers those writes trigger
    can all be tied together in the logs.

    Attributes:
        correlation_id: Traces an entire logical operation. Remains constant
            while the operation flows through repositories and event handlers.
        causation_id: ID of what directly caused the current work. Inside an
            event handler this is the id of the event being handled.

    Examples:
        Create a new context at a system entry point:

        >>> ctx = ExecutionContext.create()
        >>> set_context(ctx)

        Derive the context used while handling an event:

        >>> handler_ctx = ctx.for_event(event.id)
        >>> # correlation_id stays the same, causation_id becomes event.id
    """

    correlation_id: ULID | None = None
    causation_id: ULID | None = None

    @classmethod
    def create(cls, correlation_id: ULID | None = None) -> "ExecutionContext":
        """Create a new context, typically at a system entry point.

        Args:
            correlation_id: Optional correlation ID. A new ULID is generated
                when omitted. At entry points the causation_id refers back to
                the correlation_id.

        Returns:
            A new ExecutionContext instance.
        """
        if correlation_id is None:
            correlation_id = ULID()

        return cls(correlation_id=correlation_id, causation_id=correlation_id)

    def for_event(self, event_id: ULID) -> "ExecutionContext":
        """Create a child context for handling an event.

        Args:
            event_id: The ID of the event being handled.

        Returns:
            A new ExecutionContext with causation_id set to event_id.
        """
        return replace(self, causation_id=event_id)


_context: contextvars.ContextVar[ExecutionContext | None] = contextvars.ContextVar(
    "execution_context", default=None
)


def get_context() -> ExecutionContext:
    """Get the current execution context.

    Returns an empty ExecutionContext (all fields None) when none was set.
    """
    ctx = _context.get()
    if ctx is None:
        return ExecutionContext()
    return ctx


def set_context(context: ExecutionContext) -> contextvars.Token[ExecutionContext | None]:
    """Set the current execution context.

    Returns:
        A token that can be handed to `reset_context` to restore the
        previous context.
    """
    return _context.set(context)


def reset_context(token: contextvars.Token[ExecutionContext | None]) -> None:
    """Restore the context that was active before `set_context`."""
    _context.reset(token)


def clear_context() -> None:
    """Clear the current execution context."""
    _context.set(None)


def get_or_create_context() -> ExecutionContext:
    """Get the current context, or create and set a new one if not set."""
    ctx = _context.get()
    if ctx is None:
        ctx = ExecutionContext.create()
        set_context(ctx)
    return ctx
