"""
Listener Registry

Small publish/subscribe helper used for status and "updated" notifications.
A failing listener is logged and never breaks the publisher.
"""

from typing import Any, Callable

from .logging_setup import get_service_logger

logger = get_service_logger("events")


class Listeners:
    """Ordered set of callbacks with unsubscribe handles"""

    def __init__(self, name: str):
        self.name = name
        self._callbacks: list[Callable[..., Any]] = []

    def add(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register a callback; returns a function that removes it"""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, *args: Any) -> None:
        for callback in list(self._callbacks):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Listener error on '{self.name}': {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._callbacks)
