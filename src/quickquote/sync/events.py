"""Synchronous observer fan-out for sync status changes."""
import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StatusEmitter(Generic[T]):
    """
    Calls every registered listener, in registration order, with each
    emitted value. Listeners run synchronously inside emit(); an exception
    from one listener is logged and does not reach the emitter or the
    other listeners.
    """

    def __init__(self):
        self._listeners: List[Callable[[T], None]] = []

    def add_listener(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.warning("Sync listener %r raised", listener, exc_info=True)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
