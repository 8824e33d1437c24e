"""
Tests for the shared API plumbing: error envelope, gateway identity,
pagination, rate limiting and settings.
"""
import os
import runpy
import uuid
from unittest.mock import MagicMock, patch

import redis
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework.test import APIClient

from catalog.models import Store
from core.exceptions import InsufficientStock, InvalidTransition, NotFound, api_exception_handler
from core.identity import Role
from core.pagination import paginate_queryset


class ExceptionHandlerTestCase(TestCase):

    def test_operational_error_envelope(self):
        response = api_exception_handler(NotFound('Order not found'), {})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data, {'status': 'error', 'message': 'Order not found'})

    def test_domain_error_messages(self):
        error = InsufficientStock(7, 'Bagels', 20, 100)
        self.assertEqual(error.message, 'Insufficient stock for Bagels. Available: 20, Requested: 100')

        error = InvalidTransition('CANCELLED', 'CONFIRMED', [])
        self.assertEqual(
            error.message,
            'Cannot transition order from CANCELLED to CONFIRMED. Allowed transitions: none (terminal state)'
        )

    @override_settings(DEBUG=False)
    def test_unexpected_error_is_hidden(self):
        with self.assertLogs('core.exceptions', level='ERROR'):
            response = api_exception_handler(RuntimeError('database password is hunter2'), {})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data['message'], 'An unexpected internal server error occurred.')


class GatewayAuthenticationTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('orders:order-list')

    def test_valid_identity(self):
        response = self.client.get(
            self.url, HTTP_X_USER_ID=str(uuid.uuid4()), HTTP_X_USER_ROLE='customer'
        )
        self.assertEqual(response.status_code, 200)

    def test_missing_identity(self):
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['status'], 'error')

    def test_malformed_identity(self):
        response = self.client.get(self.url, HTTP_X_USER_ID='not-a-uuid', HTTP_X_USER_ROLE='CUSTOMER')
        self.assertEqual(response.status_code, 401)

        response = self.client.get(self.url, HTTP_X_USER_ID=str(uuid.uuid4()), HTTP_X_USER_ROLE='ROOT')
        self.assertEqual(response.status_code, 401)


class PaginationTestCase(TestCase):

    def test_paginate_queryset(self):
        for i in range(5):
            Store.objects.create(owner_id=uuid.uuid4(), name=f'Store {i}')

        result = paginate_queryset(Store.objects.order_by('id'), page=2, limit=2,
                                   serialize=lambda stores: [s.name for s in stores])

        self.assertEqual(result['data'], ['Store 2', 'Store 3'])
        self.assertEqual(result['pagination'], {'page': 2, 'limit': 2, 'total': 5, 'totalPages': 3})

    def test_page_past_the_end(self):
        result = paginate_queryset(Store.objects.all(), page=9, limit=10)

        self.assertEqual(result['data'], [])
        self.assertEqual(result['pagination']['totalPages'], 0)

    def test_page_past_the_end_of_results(self):
        """
        Test: Asking beyond the last page is not an error.

        Given: 5 stores, 2 per page
        When: Requesting page 9
        Then: Empty data, while the totals still describe the full result
        """
        for i in range(5):
            Store.objects.create(owner_id=uuid.uuid4(), name=f'Store {i}')

        result = paginate_queryset(Store.objects.order_by('id'), page=9, limit=2)

        self.assertEqual(result['data'], [])
        self.assertEqual(result['pagination'], {'page': 9, 'limit': 2, 'total': 5, 'totalPages': 3})

    def test_last_page_is_partial(self):
        for i in range(5):
            Store.objects.create(owner_id=uuid.uuid4(), name=f'Store {i}')

        result = paginate_queryset(Store.objects.order_by('id'), page=3, limit=2,
                                   serialize=lambda stores: [s.name for s in stores])

        self.assertEqual(result['data'], ['Store 4'])


@override_settings(RATE_LIMIT_ENABLED=True, RATE_LIMIT_MAX_REQUESTS=1, RATE_LIMIT_WINDOW_SECONDS=60)
class RateLimitTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('orders:order-list')
        self.headers = {'HTTP_X_USER_ID': str(uuid.uuid4()), 'HTTP_X_USER_ROLE': Role.CUSTOMER.value}

    def test_requests_over_the_limit_are_rejected(self):
        fake_redis = MagicMock()
        fake_redis.incr.side_effect = [1, 2]
        fake_redis.ttl.return_value = 42

        with patch('core.rate_limiting.get_redis_client', return_value=fake_redis):
            first = self.client.post(self.url, {}, format='json', **self.headers)
            second = self.client.post(self.url, {}, format='json', **self.headers)

        self.assertEqual(first.status_code, 400)
        self.assertEqual(first['X-RateLimit-Remaining'], '0')

        self.assertEqual(second.status_code, 429)
        self.assertEqual(second['Retry-After'], '42')
        self.assertEqual(second.json()['status'], 'error')
        self.assertIn('Too many requests', second.json()['message'])

    def test_fails_open_without_redis(self):
        with patch('core.rate_limiting.get_redis_client', return_value=None):
            response = self.client.post(self.url, {}, format='json', **self.headers)

        self.assertEqual(response.status_code, 400)

    def test_fails_open_on_redis_errors(self):
        fake_redis = MagicMock()
        fake_redis.incr.side_effect = redis.ConnectionError('gone')

        with patch('core.rate_limiting.get_redis_client', return_value=fake_redis):
            with self.assertLogs('core.rate_limiting', level='ERROR'):
                response = self.client.post(self.url, {}, format='json', **self.headers)

        self.assertEqual(response.status_code, 400)


class HealthCheckTestCase(TestCase):

    def test_health_check(self):
        response = self.client.get(reverse('health-check'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'status': 'healthy', 'service': 'fulfillment-api'})


class SettingsTestCase(TestCase):
    """The base settings are production-safe; test overrides live apart."""

    def load_settings(self, **env):
        with patch.dict(os.environ, env):
            for name in ('DJANGO_DEBUG', 'DJANGO_SECRET_KEY', 'CELERY_TASK_ALWAYS_EAGER', 'RATE_LIMIT_ENABLED'):
                if name not in env:
                    os.environ.pop(name, None)
            return runpy.run_path(str(settings.BASE_DIR / 'config' / 'settings.py'))

    def test_debug_is_off_by_default(self):
        loaded = self.load_settings(DJANGO_SECRET_KEY='a-real-secret')

        self.assertFalse(loaded['DEBUG'])
        self.assertFalse(loaded['CELERY_TASK_ALWAYS_EAGER'])
        self.assertTrue(loaded['RATE_LIMIT_ENABLED'])

    def test_secret_key_required_without_debug(self):
        with self.assertRaises(ImproperlyConfigured):
            self.load_settings()

        loaded = self.load_settings(DJANGO_DEBUG='true')
        self.assertTrue(loaded['DEBUG'])

    def test_suite_runs_on_test_settings(self):
        self.assertEqual(settings.SETTINGS_MODULE, 'config.settings_test')
        self.assertTrue(settings.CELERY_TASK_ALWAYS_EAGER)
        self.assertFalse(settings.RATE_LIMIT_ENABLED)
