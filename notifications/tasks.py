"""
Celery tasks for notification delivery.

Tasks:
    - deliver_notification: Persist a notification for its recipient
"""
import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def deliver_notification(self, user_id: str, type: str, title: str, message: str, data=None):
    """
    Store a notification for ``user_id``.

    Returns:
        Dict with the created notification id
    """
    from notifications.models import Notification

    notification = Notification.objects.create(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=data or {},
    )
    logger.info(f"[CELERY] Delivered {type} notification #{notification.id} to user {user_id}")

    return {
        'status': 'success',
        'notification_id': notification.id,
    }
