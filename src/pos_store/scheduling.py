"""Background work: the periodic sync tick and the idle-lock check.

Each task runs on its own daemon thread and sleeps on a ``threading.Event``
so :func:`shutdown` can stop it without waiting out the interval.
"""

from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, List, Optional

from . import core_logic, data_manager, log, session, sync
from .constants import IDLE_CHECK_INTERVAL
from .core_logic import RuntimeContext
from .time_utils import Clock, utcnow


class PeriodicTask:
    """Call ``action`` every ``interval`` until stopped."""

    def __init__(self, name: str, interval: timedelta, action: Callable[[], Any]) -> None:
        self.name = name
        self.interval = interval
        self.action = action
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        log.debug("Started task '%s' every %ss", self.name, self.interval.total_seconds())

    def run_once(self) -> None:
        """Run the action; a failure is logged and the schedule continues."""
        try:
            self.action()
        except Exception:
            log.exception("Background task '%s' failed", self.name)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval.total_seconds()):
            self.run_once()


def start_background_tasks(context: RuntimeContext) -> List[PeriodicTask]:
    """Start the sync tick and the idle-lock check for ``context``."""
    tasks = [
        PeriodicTask("pos-store-sync", context.config.sync_interval, lambda: sync.sync_tick(context)),
        PeriodicTask("pos-store-idle-lock", IDLE_CHECK_INTERVAL, lambda: session.check_idle_lock(context)),
    ]
    for task in tasks:
        task.start()
    context.tasks.extend(tasks)
    return tasks


def start_application(
    config_path: Optional[Path] = None,
    *,
    storage: Optional[data_manager.KeyValueStore] = None,
    clock: Clock = utcnow,
    background: bool = True,
) -> RuntimeContext:
    """Load the store, seed the first administrator and resume the last session.

    Args:
        config_path (Path | None): Explicit ``config.ini`` location.
        storage (KeyValueStore | None): Backend override, mainly for tests.
        clock (Clock): Source of the current time.
        background (bool): Start the periodic tasks.

    Returns:
        RuntimeContext: The running context; pass it to :func:`shutdown`.
    """
    context = core_logic.load_runtime_context(config_path, storage=storage, clock=clock)
    session.ensure_default_admin(context)
    session.restore_session(context)
    if background:
        start_background_tasks(context)
    log.info("Store '%s' started", context.config.store_name)
    return context


def shutdown(context: RuntimeContext, timeout: Optional[float] = 5.0) -> None:
    """Stop every background task of ``context``."""
    for task in context.tasks:
        task.stop(timeout)
    context.tasks.clear()
    log.info("Store '%s' stopped", context.config.store_name)
