from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from prayersync.models import SettingsSnapshot


Subscriber = Callable[[SettingsSnapshot], None]
TimerFactory = Callable[[float, Callable[[], None]], "threading.Timer"]

DEFAULT_DEBOUNCE_SECONDS = 0.3


def _daemon_timer(interval: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


class SettingsChangeBus:
    """Trailing-edge debounced fan-out of settings snapshots.

    Every ``notify`` cancels the pending timer and starts a new one; when a
    timer elapses the latest snapshot is delivered once to every subscriber.
    """

    def __init__(
        self,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        *,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        if debounce_seconds < 0:
            raise ValueError("debounce_seconds must not be negative")
        self._debounce_seconds = debounce_seconds
        self._timer_factory = timer_factory or _daemon_timer
        self._subscribers: List[Subscriber] = []
        self._pending: Optional[SettingsSnapshot] = None
        self._timer = None
        self._generation = 0
        self._closed = False
        self._lock = threading.Lock()
        self._emit_lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(callback)

        return unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def notify(self, snapshot: SettingsSnapshot) -> None:
        with self._lock:
            if self._closed:
                self._logger.warning("Settings bus closed; dropping notification")
                return
            self._pending = snapshot
            self._generation += 1
            generation = self._generation
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._timer_factory(
                self._debounce_seconds, lambda: self._on_timer(generation)
            )
            timer = self._timer
        timer.start()

    def flush(self) -> bool:
        """Emit a pending snapshot immediately. Returns whether one was pending."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            generation = self._generation
        return self._emit(generation)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._pending = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def _on_timer(self, generation: int) -> None:
        self._emit(generation)

    def _emit(self, generation: int) -> bool:
        # Serialize emissions so subscribers observe events in settle order.
        with self._emit_lock:
            with self._lock:
                if generation != self._generation or self._pending is None:
                    # A newer notify superseded this timer.
                    return False
                snapshot = self._pending
                self._pending = None
                self._timer = None
                subscribers = list(self._subscribers)

            self._logger.info(
                "Publishing settings: method=%s madhab=%s",
                snapshot.method.value,
                snapshot.madhab.value,
            )
            for callback in subscribers:
                try:
                    callback(snapshot)
                except Exception as exc:
                    # One failing consumer must not starve the others.
                    self._logger.exception("Settings subscriber %r failed: %s", callback, exc)
            return True
