"""
Promotion Evaluator - coupon resolution, discount calculation, redemption.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict

from django.db import IntegrityError, transaction
from django.db.models import F, ProtectedError, Q
from django.utils import timezone

from catalog.models import Product
from catalog.services import get_store
from core.exceptions import (
    CouponExhausted,
    DuplicatePromotion,
    Forbidden,
    InvalidOrExpiredCoupon,
    InvalidRequest,
    NotFound,
)
from core.pagination import paginate_queryset
from .models import MAX_PERCENTAGE, Promotion

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')

UPDATABLE_FIELDS = (
    'code', 'type', 'value', 'min_order_amount', 'max_uses', 'product_ids',
    'start_date', 'end_date', 'is_active',
)


def normalize_code(code: str) -> str:
    return (code or '').strip().upper()


def validate_coupon_code(code: str, store_id, lock: bool = False) -> Promotion:
    """
    Resolve a coupon code for a store.

    The promotion must be active, inside its date window and have uses left.
    With ``lock=True`` the promotion row is locked for the rest of the
    surrounding transaction.
    """
    now = timezone.now()
    queryset = Promotion.objects.filter(
        code=normalize_code(code),
        store_id=store_id,
        is_active=True,
        start_date__lte=now,
        end_date__gte=now,
    )
    if lock:
        queryset = queryset.select_for_update()

    promotion = queryset.first()
    if promotion is None:
        raise InvalidOrExpiredCoupon()

    if promotion.is_exhausted:
        raise CouponExhausted()

    return promotion


def calculate_discount(promotion: Promotion, subtotal: Decimal) -> Decimal:
    """Discount for ``subtotal``; never more than the subtotal itself."""
    value = Decimal(promotion.value)

    if promotion.type == Promotion.Type.PERCENTAGE:
        discount = (subtotal * value / Decimal('100')).quantize(CENTS, rounding=ROUND_HALF_UP)
    elif promotion.type in (Promotion.Type.FIXED_AMOUNT, Promotion.Type.BUY_X_GET_Y):
        # BUY_X_GET_Y carries its benefit as a fixed amount
        discount = value
    else:
        discount = Decimal('0.00')

    return min(discount, subtotal)


def redeem(promotion: Promotion) -> None:
    """
    Count one use of ``promotion``.

    The increment is a guarded relative UPDATE; callers run it in the same
    transaction as the order change it pays for.
    """
    guard = Q(max_uses__isnull=True) | Q(current_uses__lt=F('max_uses'))
    updated = Promotion.objects.filter(Q(id=promotion.id) & guard).update(
        current_uses=F('current_uses') + 1
    )
    if not updated:
        raise CouponExhausted()


def _get_owned_promotion(promotion_id, caller, action: str, lock: bool = False) -> Promotion:
    queryset = Promotion.objects.select_related('store')
    if lock:
        queryset = queryset.select_for_update(of=('self',))
    try:
        promotion = queryset.get(id=promotion_id)
    except Promotion.DoesNotExist:
        raise NotFound('Promotion not found')

    if promotion.store.owner_id != caller.id:
        raise Forbidden(f'You are not authorized to {action} this promotion')
    return promotion


def _check_code_free(store, code, exclude_id=None) -> None:
    if not code:
        return
    queryset = Promotion.objects.filter(store=store, code=code)
    if exclude_id is not None:
        queryset = queryset.exclude(id=exclude_id)
    if queryset.exists():
        raise DuplicatePromotion(f'A promotion with code {code} already exists for this store')


def _check_product_scope(store, product_ids) -> None:
    found = set(Product.objects.filter(store=store, id__in=product_ids).values_list('id', flat=True))
    foreign = [pid for pid in product_ids if pid not in found]
    if foreign:
        raise InvalidRequest(
            "Products do not belong to this store: " + ', '.join(str(pid) for pid in foreign)
        )


def create_promotion(store_id, caller, data: Dict) -> Promotion:
    """
    Create a promotion for a store owned by ``caller``.

    ``data`` is already shape-validated; business rules (dates, percentage
    cap, code uniqueness) are enforced here.
    """
    store = get_store(store_id)
    if store.owner_id != caller.id:
        raise Forbidden('You are not authorized to create promotions for this store')

    if data['end_date'] <= data['start_date']:
        raise InvalidRequest('End date must be after start date')

    if data['type'] == Promotion.Type.PERCENTAGE and data['value'] > MAX_PERCENTAGE:
        raise InvalidRequest('Percentage discount cannot exceed 100%')

    code = normalize_code(data.get('code')) or None
    _check_code_free(store, code)

    if data.get('product_ids'):
        _check_product_scope(store, data['product_ids'])

    try:
        with transaction.atomic():
            promotion = Promotion.objects.create(
                store=store,
                code=code,
                type=data['type'],
                value=data['value'],
                min_order_amount=data.get('min_order_amount'),
                max_uses=data.get('max_uses'),
                product_ids=data.get('product_ids'),
                start_date=data['start_date'],
                end_date=data['end_date'],
                is_active=data.get('is_active', True),
            )
    except IntegrityError:
        raise DuplicatePromotion(f'A promotion with code {code} already exists for this store')

    logger.info(f"Created promotion #{promotion.id} ({promotion.type}) for store {store.name}")
    return promotion


def list_promotions(store_id, active_only: bool = True, page: int = 1, limit: int = 20,
                    serialize=None) -> Dict:
    store = get_store(store_id)
    queryset = Promotion.objects.filter(store=store)

    if active_only:
        now = timezone.now()
        queryset = queryset.filter(is_active=True, start_date__lte=now, end_date__gte=now)

    return paginate_queryset(queryset.order_by('-created_at'), page, limit, serialize)


def update_promotion(promotion_id, caller, data: Dict) -> Promotion:
    """
    Partially update a promotion of a store owned by ``caller``.

    Dates and the percentage cap are re-checked against the merged old and
    new values. Lowering ``max_uses`` below the redemptions already made
    is refused.
    """
    with transaction.atomic():
        promotion = _get_owned_promotion(promotion_id, caller, 'update', lock=True)

        start_date = data.get('start_date', promotion.start_date)
        end_date = data.get('end_date', promotion.end_date)
        if end_date <= start_date:
            raise InvalidRequest('End date must be after start date')

        promotion_type = data.get('type', promotion.type)
        value = data.get('value', promotion.value)
        if promotion_type == Promotion.Type.PERCENTAGE and value > MAX_PERCENTAGE:
            raise InvalidRequest('Percentage discount cannot exceed 100%')

        if 'code' in data:
            data = {**data, 'code': normalize_code(data['code']) or None}
            _check_code_free(promotion.store, data['code'], exclude_id=promotion.id)

        if data.get('max_uses') is not None and data['max_uses'] < promotion.current_uses:
            raise InvalidRequest(
                f'Max uses cannot be lower than the {promotion.current_uses} uses already made'
            )

        if data.get('product_ids'):
            _check_product_scope(promotion.store, data['product_ids'])

        changed = [field for field in UPDATABLE_FIELDS if field in data]
        for field in changed:
            setattr(promotion, field, data[field])

        try:
            with transaction.atomic():
                promotion.save()
        except IntegrityError:
            raise DuplicatePromotion(
                f'A promotion with code {promotion.code} already exists for this store'
            )

    logger.info(f"Updated promotion #{promotion.id}: {', '.join(changed)}")
    return promotion


def delete_promotion(promotion_id, caller) -> bool:
    """
    Delete a promotion of a store owned by ``caller``.

    Orders keep a protected reference to the promotion they used, so a
    promotion that was ever applied is deactivated instead.

    Returns:
        True when the row was deleted, False when it was deactivated
    """
    promotion = _get_owned_promotion(promotion_id, caller, 'delete')

    try:
        promotion.delete()
    except ProtectedError:
        if promotion.is_active:
            promotion.is_active = False
            promotion.save(update_fields=['is_active', 'updated_at'])
        logger.info(f"Deactivated promotion #{promotion.id}; orders still reference it")
        return False

    logger.info(f"Deleted promotion #{promotion_id}")
    return True
