"""In-process fan-out of refinement events to listeners."""

from typing import Any, Callable


class EventBus:
    """Delivers each emitted event to the listeners registered for it.

    Delivery is synchronous, in registration order, inside the task that
    emits. A listener registered for a type also sees its subclasses; one
    registered with :meth:`on_all` sees everything.
    """

    def __init__(self) -> None:
        self._routes: list[tuple[type | None, Callable[[Any], None]]] = []

    def subscribe(self, event_type: type, callback: Callable[[Any], None]) -> None:
        self._routes.append((event_type, callback))

    def on_all(self, callback: Callable[[Any], None]) -> None:
        self._routes.append((None, callback))

    def emit(self, event: Any) -> None:
        for event_type, callback in list(self._routes):
            if event_type is None or isinstance(event, event_type):
                callback(event)
