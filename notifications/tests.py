"""
Tests for post-commit notification dispatch.
"""
import uuid
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase

from notifications.models import Notification
from notifications.services import notify


class NotifyTestCase(TestCase):

    def setUp(self):
        self.user_id = uuid.uuid4()

    def test_delivered_after_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            notify(self.user_id, Notification.Type.SYSTEM, 'Hello', 'Welcome aboard', {'total': Decimal('1.50')})

        self.assertEqual(len(callbacks), 1)
        self.assertFalse(Notification.objects.exists())

        callbacks[0]()

        notification = Notification.objects.get(user_id=self.user_id)
        self.assertEqual(notification.title, 'Hello')
        self.assertEqual(notification.data, {'total': '1.50'})
        self.assertFalse(notification.is_read)

    def test_unknown_type_rejected(self):
        with self.assertRaises(ValueError):
            notify(self.user_id, 'CARRIER_PIGEON', 'Hi', 'There')

    def test_queue_failure_is_logged_not_raised(self):
        with patch('notifications.tasks.deliver_notification.delay', side_effect=ConnectionError('down')):
            with self.assertLogs('notifications.services', level='ERROR'):
                with self.captureOnCommitCallbacks(execute=True):
                    notify(self.user_id, Notification.Type.PROMOTION, 'Sale', 'Everything 10% off')

        self.assertFalse(Notification.objects.exists())
