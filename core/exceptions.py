"""
Operational error taxonomy for the fulfillment engine and the DRF handler
that turns it into the API error envelope.

Services raise subclasses of AppError; views never build error responses
themselves. Anything raised inside ``transaction.atomic()`` aborts that
transaction before it reaches the handler.
"""
import logging
from typing import Iterable, List, Optional

from django.conf import settings
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for expected, operational domain failures."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'error'
    default_message = 'The request could not be processed.'

    def __init__(self, message: Optional[str] = None, is_operational: bool = True):
        self.message = message or self.default_message
        self.is_operational = is_operational
        super().__init__(self.message)


class InvalidRequest(AppError):
    code = 'invalid_request'
    default_message = 'Invalid request.'


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'not_found'
    default_message = 'The requested resource was not found.'


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = 'forbidden'
    default_message = 'You are not authorized to perform this action.'


class StoreInactive(AppError):
    code = 'store_inactive'
    default_message = 'This store is currently not accepting orders.'


class CrossStoreViolation(AppError):
    code = 'cross_store_violation'
    default_message = 'All products must belong to the specified store.'


class InsufficientStock(AppError):
    """Raised when a requested quantity exceeds the available stock."""
    code = 'insufficient_stock'

    def __init__(self, product_id, product_name: str, available: int, requested: int):
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name}. "
            f"Available: {available}, Requested: {requested}"
        )


class InvalidTransition(AppError):
    """Raised when a status change is not in the transition table."""
    code = 'invalid_transition'

    def __init__(self, current: str, requested: str, allowed: Iterable[str]):
        self.current = current
        self.requested = requested
        self.allowed: List[str] = list(allowed)
        allowed_text = ', '.join(self.allowed) if self.allowed else 'none (terminal state)'
        super().__init__(
            f"Cannot transition order from {current} to {requested}. "
            f"Allowed transitions: {allowed_text}"
        )


class AlreadyCheckedIn(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = 'already_checked_in'
    default_message = 'You have already checked in for this order.'


class InvalidPickupCode(AppError):
    code = 'invalid_pickup_code'
    default_message = 'Invalid pickup code.'


class NoItemsAvailable(AppError):
    code = 'no_items_available'
    default_message = 'No items from the previous order are currently available for reorder.'


class InvalidOrExpiredCoupon(AppError):
    code = 'invalid_or_expired_coupon'
    default_message = 'Invalid or expired coupon code.'


class CouponExhausted(AppError):
    code = 'coupon_exhausted'
    default_message = 'This coupon has reached its maximum number of uses.'


class MinimumNotMet(AppError):
    code = 'minimum_not_met'
    default_message = 'The order does not meet the minimum amount for this coupon.'


class DuplicatePromotion(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = 'duplicate_promotion'
    default_message = 'A promotion has already been applied to this order.'


def error_body(message: str, errors=None) -> dict:
    body = {'status': 'error', 'message': message}
    if errors:
        body['errors'] = errors
    return body


def _flatten_validation_errors(detail, prefix=''):
    """Turn DRF's nested ValidationError detail into [{field, message}]."""
    errors = []
    if isinstance(detail, dict):
        for key, value in detail.items():
            field = f"{prefix}.{key}" if prefix else str(key)
            errors.extend(_flatten_validation_errors(value, field))
    elif isinstance(detail, list):
        for idx, value in enumerate(detail):
            if isinstance(value, (dict, list)):
                errors.extend(_flatten_validation_errors(value, f"{prefix}.{idx}" if prefix else str(idx)))
            else:
                errors.append({'field': prefix or 'non_field_errors', 'message': str(value)})
    else:
        errors.append({'field': prefix or 'non_field_errors', 'message': str(detail)})
    return errors


def api_exception_handler(exc, context):
    """
    DRF exception handler producing ``{status, message, errors?}`` bodies.

    Operational errors keep their own status code and message. Unexpected
    errors are logged with traceback and reported as a generic 500.
    """
    if isinstance(exc, AppError):
        logger.info(f"{exc.__class__.__name__}: {exc.message}")
        return Response(error_body(exc.message), status=exc.status_code)

    if isinstance(exc, drf_exceptions.ValidationError):
        return Response(
            error_body(
                'Validation failed. Please check the submitted data.',
                _flatten_validation_errors(exc.detail),
            ),
            status=status.HTTP_400_BAD_REQUEST,
        )

    if isinstance(exc, Http404):
        return Response(error_body('Not found.'), status=status.HTTP_404_NOT_FOUND)

    if isinstance(exc, drf_exceptions.APIException):
        headers = {}
        auth_header = getattr(exc, 'auth_header', None)
        if auth_header:
            headers['WWW-Authenticate'] = auth_header
        wait = getattr(exc, 'wait', None)
        if wait:
            headers['Retry-After'] = str(int(wait))
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return Response(error_body(detail), status=exc.status_code, headers=headers)

    view = context.get('view')
    logger.exception(
        f"Unexpected error in {view.__class__.__name__ if view else 'unknown view'}: {exc}"
    )
    message = str(exc) if settings.DEBUG and str(exc) else 'An unexpected internal server error occurred.'
    return Response(error_body(message), status=status.HTTP_500_INTERNAL_SERVER_ERROR)
