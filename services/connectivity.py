"""In-process "is connected" signal the Sync Service can subscribe to."""
from __future__ import annotations

import threading
from typing import Callable, List

from core.logs import get_logger


logger = get_logger("connectivity")

Listener = Callable[[bool], None]
Unsubscribe = Callable[[], None]


class ConnectivitySignal:
    """Boolean stream fed by whatever watches the network.

    Listeners fire only on changes. ``set_connected`` may be called from any
    thread; listeners run on the caller's thread.
    """

    def __init__(self, connected: bool = True) -> None:
        self._connected = connected
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def subscribe(self, callback: Listener) -> Unsubscribe:
        with self._lock:
            self._listeners.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return _unsubscribe

    def set_connected(self, connected: bool) -> None:
        with self._lock:
            if connected == self._connected:
                return
            self._connected = connected
            listeners = list(self._listeners)
        logger.info("Connectivity changed: %s", "online" if connected else "offline")
        for listener in listeners:
            try:
                listener(connected)
            except Exception:
                logger.exception("Connectivity listener failed")

    # The Sync Service accepts any ``callback -> unsubscribe`` callable.
    __call__ = subscribe


__all__ = ["ConnectivitySignal"]
