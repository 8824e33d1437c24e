"""
Fire-and-forget notification sink for fulfillment events.

Notifications are queued only after the surrounding transaction commits,
and a failure to queue never propagates to the caller.
"""
import logging
from functools import partial
from typing import Dict, Optional

from django.db import transaction

from .models import Notification

logger = logging.getLogger(__name__)


def _dispatch(user_id: str, type: str, title: str, message: str, data: Dict) -> None:
    try:
        from .tasks import deliver_notification
        deliver_notification.delay(user_id, type, title, message, data)
    except Exception as e:
        # Don't fail the fulfillment operation if the queue is unreachable
        logger.error(f"Failed to queue {type} notification for user {user_id}: {e}")


def notify(user_id, type: str, title: str, message: str, data: Optional[Dict] = None) -> None:
    """
    Schedule a notification for ``user_id`` once the current transaction
    commits (immediately when called outside a transaction).
    """
    if type not in Notification.Type.values:
        raise ValueError(f"Unknown notification type: {type}")

    payload = {
        key: (str(value) if value is not None and not isinstance(value, (int, float, bool, str)) else value)
        for key, value in (data or {}).items()
    }
    transaction.on_commit(partial(_dispatch, str(user_id), type, title, message, payload))
