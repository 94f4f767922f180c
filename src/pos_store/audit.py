"""Bounded, newest-first activity trail.

Entries are only written from inside entity-store mutators and the session
manager, which already hold the context lock and persist the trail together
with the keys they touched.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, List

from . import log
from .constants import SYSTEM_USER_ID, SYSTEM_USER_NAME, ActivityAction
from .models import ActivityLog
from .time_utils import to_iso

if TYPE_CHECKING:
    from .core_logic import RuntimeContext


def log_activity(context: "RuntimeContext", action: ActivityAction, details: str) -> ActivityLog:
    """Prepend an entry attributed to the signed-in user or the system.

    Entries past ``config.activity_log_limit`` are evicted oldest first.

    Args:
        context (RuntimeContext): Active runtime context.
        action (ActivityAction): Category of the event.
        details (str): Human-readable description.

    Returns:
        ActivityLog: The entry that was recorded.
    """

    actor = context.session.snapshot
    if actor is not None:
        user_id, user_name = actor.user_id, actor.username
        user_role = getattr(actor.role, "value", str(actor.role))
    else:
        user_id, user_name, user_role = SYSTEM_USER_ID, SYSTEM_USER_NAME, SYSTEM_USER_ID

    entry = ActivityLog(
        id=uuid.uuid4().hex,
        user_id=user_id,
        user_name=user_name,
        user_role=user_role,
        action=action,
        details=details,
        timestamp=to_iso(context.clock()),
    )
    logs = context.state.activity_logs
    logs.insert(0, entry)
    del logs[context.config.activity_log_limit:]
    log.info("Activity %s by '%s': %s", action.value, user_name, details)
    return entry


def recent_activity(context: "RuntimeContext", limit: int = 50) -> List[ActivityLog]:
    return list(context.state.activity_logs[:limit])
