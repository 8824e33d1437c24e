"""
Redis-based rate limiting for the mutating fulfillment endpoints.
Fixed window counter per caller (or client IP for anonymous requests).
"""
import logging

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

from .exceptions import error_body

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis_client():
    """Return a shared Redis client, or None when Redis is unreachable."""
    global _redis_client
    if _redis_client is None:
        try:
            client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5
            )
            client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning(f"Redis connection failed: {e}. Rate limiting will be disabled.")
            return None
        _redis_client = client
    return _redis_client


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def get_rate_limit_identity(request):
    caller_id = request.META.get('HTTP_X_USER_ID')
    if caller_id:
        return f"user:{caller_id.strip()}"
    return f"ip:{get_client_ip(request)}"


class RateLimitMixin:
    """
    Mixin for class-based views that caps requests per window.

    Usage:
        class MyView(RateLimitMixin, APIView):
            rate_limit_max_requests = 20
            rate_limit_window_seconds = 60

    Fails open when Redis is unavailable.
    """
    rate_limit_max_requests = None
    rate_limit_window_seconds = None

    def get_rate_limit(self):
        max_requests = self.rate_limit_max_requests or settings.RATE_LIMIT_MAX_REQUESTS
        window = self.rate_limit_window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS
        return max_requests, window

    def dispatch(self, request, *args, **kwargs):
        if not getattr(settings, 'RATE_LIMIT_ENABLED', True):
            return super().dispatch(request, *args, **kwargs)

        client = get_redis_client()
        if client is None:
            return super().dispatch(request, *args, **kwargs)

        max_requests, window = self.get_rate_limit()

        try:
            key = f"rate_limit:{self.__class__.__name__}:{get_rate_limit_identity(request)}"
            current_count = client.incr(key)
            if current_count == 1:
                client.expire(key, window)
            ttl = client.ttl(key)
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return super().dispatch(request, *args, **kwargs)

        if current_count > max_requests:
            response = Response(
                error_body(f'Too many requests. Maximum {max_requests} requests per {window} seconds allowed.'),
                status=status.HTTP_429_TOO_MANY_REQUESTS,
                headers={
                    'X-RateLimit-Limit': str(max_requests),
                    'X-RateLimit-Remaining': '0',
                    'X-RateLimit-Reset': str(ttl),
                    'Retry-After': str(ttl)
                }
            )
            # dispatch() normally attaches the renderer; do it by hand here
            request = self.initialize_request(request, *args, **kwargs)
            self.request = request
            self.headers = self.default_response_headers
            return self.finalize_response(request, response, *args, **kwargs)

        response = super().dispatch(request, *args, **kwargs)
        response['X-RateLimit-Limit'] = str(max_requests)
        response['X-RateLimit-Remaining'] = str(max(0, max_requests - current_count))
        response['X-RateLimit-Reset'] = str(ttl)
        return response
