"""Event bus for step lifecycle output.

A synchronous bus that carries lifecycle events from the orchestrator to
CLI formatters, keeping presentation out of the orchestration code.
"""

from collections.abc import Callable
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Interface satisfied by both EventBus and NullEventBus."""

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None: ...

    def emit(self, event: T) -> None: ...


class EventBus:
    """Synchronous event bus.

    Handlers run in subscription order. Handler exceptions propagate to
    the emitter; formatters are harness code and a bug there should surface.
    Events with no subscribers are ignored.

    Example:
        bus = EventBus()
        bus.subscribe(StepStarted, lambda e: print(f"-> {e.name}"))
        bus.emit(StepStarted(name="02-login-admin", title="Login", index=1, total=1))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        self._subscribers.setdefault(event_type, []).append(handler)

    def emit(self, event: T) -> None:
        for handler in self._subscribers.get(type(event), []):
            handler(event)


class NullEventBus:
    """Bus that drops every event. Used when no formatter is attached."""

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        pass

    def emit(self, event: T) -> None:
        pass
