"""
Observer registry with unsubscribe handles.

One failing subscriber never stops the others from being notified.
"""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ObserverRegistry:
    def __init__(self, name: str = "observers"):
        self.name = name
        self._callbacks: list[Callable[..., Any]] = []

    def subscribe(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register a callback. Returns a function that removes it again."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def notify(self, *args, **kwargs) -> None:
        # Iterate over a copy so callbacks may unsubscribe themselves
        for callback in list(self._callbacks):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"[{self.name}] Callback error: {e}")

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)
