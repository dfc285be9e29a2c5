from __future__ import annotations

from typing import Callable

Listener = Callable[[], None]


class Observable:
    """Synchronous listener set; listener errors reach the mutating caller."""

    def __init__(self) -> None:
        self._listeners: dict[int, Listener] = {}
        self._next_listener_id = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = listener

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners.values()):
            listener()
