"""Fire-and-expire messages for whatever front-end is attached to the store."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from . import log
from .constants import TOAST_DURATION, Severity
from .time_utils import Clock, utcnow


@dataclass(frozen=True)
class Toast:
    id: str
    title: str
    message: str
    severity: Severity
    expires_at: datetime


Listener = Callable[[Toast], None]


class NotificationBus:
    """Holds active toasts and fans new ones out to subscribers.

    Toasts expire on their own after ``duration``; :meth:`remove_toast`
    dismisses one early. Expired toasts are pruned lazily whenever the active
    list is read or a new toast arrives.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._toasts: List[Toast] = []
        self._listeners: List[Listener] = []

    def notify(
        self,
        title: str,
        message: str,
        severity: Severity = Severity.INFO,
        *,
        duration: Optional[timedelta] = None,
    ) -> str:
        toast = Toast(
            id=uuid.uuid4().hex,
            title=title,
            message=message,
            severity=Severity(severity),
            expires_at=self._clock() + (duration if duration is not None else TOAST_DURATION),
        )
        with self._lock:
            self._prune()
            self._toasts.append(toast)
            listeners = list(self._listeners)
        log.debug("Notification [%s] %s: %s", toast.severity.value, title, message)
        for listener in listeners:
            listener(toast)
        return toast.id

    def remove_toast(self, toast_id: str) -> bool:
        with self._lock:
            before = len(self._toasts)
            self._toasts = [toast for toast in self._toasts if toast.id != toast_id]
            return len(self._toasts) != before

    def active_toasts(self) -> List[Toast]:
        with self._lock:
            self._prune()
            return list(self._toasts)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unsubscribes it."""

        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _prune(self) -> None:
        now = self._clock()
        self._toasts = [toast for toast in self._toasts if toast.expires_at > now]
