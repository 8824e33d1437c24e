"""
Order Service Layer - the fulfillment use cases.

Each operation follows the same shape:
1. Resolve and authorize against the caller (fail fast, no writes)
2. Run every invariant check
3. Perform the ledger mutation inside one transaction.atomic() block
4. Queue notifications for after commit (best-effort, never rolls back)
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import Avg, Count, Q, Sum
from django.utils import timezone

from catalog import services as catalog
from core.exceptions import (
    AlreadyCheckedIn,
    CrossStoreViolation,
    DuplicatePromotion,
    Forbidden,
    InsufficientStock,
    InvalidPickupCode,
    InvalidRequest,
    InvalidTransition,
    MinimumNotMet,
    NoItemsAvailable,
    NotFound,
    StoreInactive,
)
from core.identity import Caller
from core.pagination import paginate_queryset
from notifications.models import Notification
from notifications.services import notify
from promotions import services as promotions
from . import ledger
from .models import Order, OrderStatus, allowed_next_statuses

logger = logging.getLogger(__name__)

CHECK_IN_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY})
MAX_ESTIMATE_MINUTES = 480

STATUS_MESSAGES = {
    OrderStatus.PENDING: 'Your order is pending.',
    OrderStatus.CONFIRMED: 'Your order has been confirmed by the store.',
    OrderStatus.PREPARING: 'Your order is now being prepared.',
    OrderStatus.READY: 'Your order is ready for pickup!',
    OrderStatus.PICKED_UP: 'Your order has been picked up. Thank you!',
    OrderStatus.CANCELLED: 'Your order has been cancelled.',
}


# =============================================================================
# Helpers
# =============================================================================

def validate_order_items(items: List[Dict]) -> None:
    """
    Validate order items structure. Quantities are checked later, per
    product, once the store and products have been resolved.

    Args:
        items: List of dicts with 'product_id' and 'quantity'

    Raises:
        InvalidRequest: If validation fails
    """
    if not items:
        raise InvalidRequest("Order must contain at least one item")

    for idx, item in enumerate(items):
        if 'product_id' not in item:
            raise InvalidRequest(f"Item {idx}: missing 'product_id'")
        if 'quantity' not in item:
            raise InvalidRequest(f"Item {idx}: missing 'quantity'")


def _check_quantity(product, quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidRequest(f"Quantity for {product.name} must be greater than zero")


def _get_order(order_id) -> Order:
    try:
        return Order.objects.select_related('store').get(id=order_id)
    except Order.DoesNotExist:
        raise NotFound('Order not found')


def _require_customer(order: Order, caller: Caller, message: str) -> None:
    if order.customer_id != caller.id:
        raise Forbidden(message)


def _require_store_owner(order: Order, caller: Caller, message: str) -> None:
    if order.store.owner_id != caller.id:
        raise Forbidden(message)


def _notify_new_order(order: Order, low_stock: List[ledger.LowStockHit], reorder: bool = False) -> None:
    owner_id = order.store.owner_id
    if reorder:
        title = 'New Order Received (Reorder)'
        message = f"You have received a reorder #{order.order_number} totaling ${order.total:.2f}."
    else:
        title = 'New Order Received'
        message = f"You have received a new order #{order.order_number} totaling ${order.total:.2f}."

    notify(owner_id, Notification.Type.ORDER_STATUS, title, message, {
        'order_id': order.id,
        'order_number': order.order_number,
        'total': order.total,
    })

    for hit in low_stock:
        notify(owner_id, Notification.Type.LOW_STOCK, 'Low Stock Alert',
               f"{hit.product_name} has only {hit.remaining} units remaining.", {
                   'product_id': hit.product_id,
                   'store_id': order.store_id,
                   'product_name': hit.product_name,
                   'current_stock': hit.remaining,
                   'threshold': hit.threshold,
               })


# =============================================================================
# Create / reorder
# =============================================================================

def create_order(caller: Caller, store_id, items: List[Dict], pickup_time=None,
                 notes: Optional[str] = None) -> Order:
    """
    Create a pickup order and reserve its stock atomically.

    Checks, in order: items present and well formed, store exists and is
    active, no product repeated, every product exists/is active/belongs to
    the store, every quantity is positive and fits the stock. The stock
    counts are re-read under row locks inside the transaction, and the
    decrement itself is conditional, so a count that went stale still
    rolls the whole order back with InsufficientStock.

    Raises:
        InvalidRequest, NotFound, StoreInactive, CrossStoreViolation,
        InsufficientStock
    """
    validate_order_items(items)

    store = catalog.get_store(store_id)
    if not store.is_active:
        raise StoreInactive()

    product_ids = [item['product_id'] for item in items]
    duplicates = sorted({pid for pid in product_ids if product_ids.count(pid) > 1}, key=str)
    if duplicates:
        raise InvalidRequest(
            "Duplicate product_id in order items: " + ', '.join(str(pid) for pid in duplicates)
        )

    with transaction.atomic():
        products = {
            p.id: p for p in catalog.find_active_products_by_ids(product_ids, lock=True)
        }
        missing = [pid for pid in product_ids if pid not in products]
        if missing:
            raise NotFound(
                "The following products were not found or are inactive: "
                + ', '.join(str(pid) for pid in missing)
            )

        if any(p.store_id != store.id for p in products.values()):
            raise CrossStoreViolation()

        lines = []
        for item in items:
            product = products[item['product_id']]
            _check_quantity(product, item['quantity'])
            if product.stock_quantity < item['quantity']:
                logger.warning(
                    f"Order rejected for store {store.id}: insufficient stock for product {product.id}"
                )
                raise InsufficientStock(product.id, product.name, product.stock_quantity, item['quantity'])
            lines.append(ledger.OrderLine(product=product, quantity=item['quantity'], unit_price=product.price))

        order, low_stock = ledger.place_order(
            caller.id, store, lines, pickup_time=pickup_time, notes=notes
        )
        _notify_new_order(order, low_stock)

    return order


def reorder(order_id, caller: Caller) -> Tuple[Order, List[str]]:
    """
    Place a new order with the items of a past order, at current prices.

    Items that are inactive or short on stock are skipped and reported back.

    Returns:
        Tuple of (new Order, list of unavailable item descriptions)

    Raises:
        NotFound, Forbidden, StoreInactive, NoItemsAvailable
    """
    past_order = _get_order(order_id)
    _require_customer(past_order, caller, 'You can only reorder from your own past orders')

    if not past_order.store.is_active:
        raise StoreInactive()

    past_items = list(past_order.items.select_related('product').order_by('id'))

    with transaction.atomic():
        live = {
            p.id: p for p in catalog.find_active_products_by_ids(
                [item.product_id for item in past_items], lock=True
            )
        }

        lines = []
        unavailable = []
        for item in past_items:
            product = live.get(item.product_id)
            if product is None:
                unavailable.append(item.product.name)
                continue
            if product.stock_quantity < item.quantity:
                unavailable.append(f"{product.name} (only {product.stock_quantity} available)")
                continue
            lines.append(ledger.OrderLine(product=product, quantity=item.quantity, unit_price=product.price))

        if not lines:
            raise NoItemsAvailable()

        order, low_stock = ledger.place_order(
            caller.id, past_order.store, lines,
            notes=f"Reorder from order #{past_order.order_number}",
        )
        _notify_new_order(order, low_stock, reorder=True)

    if unavailable:
        logger.info(f"Reorder #{order.order_number} skipped {len(unavailable)} unavailable items")
    return order, unavailable


# =============================================================================
# Reads
# =============================================================================

def get_order(order_id, caller: Caller) -> Order:
    """
    Fetch an order the caller may see: admins see all, customers their own,
    store owners the orders of their stores.
    """
    order = _get_order(order_id)

    if caller.is_admin:
        return order
    if caller.is_customer and order.customer_id != caller.id:
        raise Forbidden('You are not authorized to view this order')
    if caller.is_store_owner and order.store.owner_id != caller.id:
        raise Forbidden('You are not authorized to view this order')
    return order


def list_orders(caller: Caller, status: Optional[str] = None, store_id=None,
                page: int = 1, limit: int = 20, serialize=None) -> Dict:
    """Role-scoped, newest-first order listing with the pagination envelope."""
    limit = min(limit, settings.ORDER_LIST_MAX_LIMIT)
    queryset = Order.objects.select_related('store').prefetch_related('items__product')

    if caller.is_customer:
        queryset = queryset.filter(customer_id=caller.id)
    elif caller.is_store_owner:
        queryset = queryset.filter(store__owner_id=caller.id)
        if store_id:
            queryset = queryset.filter(store_id=store_id)
    elif store_id:
        queryset = queryset.filter(store_id=store_id)

    if status:
        queryset = queryset.filter(status=status)

    return paginate_queryset(queryset.order_by('-created_at', '-id'), page, limit, serialize)


def get_order_stats(store_id, caller: Caller) -> Dict:
    """
    Aggregate order statistics for a store owned by the caller.
    Revenue and average order value exclude cancelled orders.
    """
    store = catalog.get_store(store_id)
    if store.owner_id != caller.id:
        raise Forbidden('You are not authorized to view stats for this store')

    queryset = Order.objects.filter(store=store)
    not_cancelled = ~Q(status=OrderStatus.CANCELLED)

    stats = queryset.aggregate(
        total_orders=Count('id'),
        total_revenue=Sum('total', filter=not_cancelled),
        average_order_value=Avg('total', filter=not_cancelled),
    )
    by_status = {
        row['status']: row['count']
        for row in queryset.values('status').annotate(count=Count('id')).order_by()
    }

    cents = Decimal('0.01')
    return {
        'total_orders': stats['total_orders'],
        'pending_orders': by_status.get(OrderStatus.PENDING, 0),
        'completed_orders': by_status.get(OrderStatus.PICKED_UP, 0),
        'cancelled_orders': by_status.get(OrderStatus.CANCELLED, 0),
        'total_revenue': Decimal(stats['total_revenue'] or 0).quantize(cents),
        'average_order_value': Decimal(stats['average_order_value'] or 0).quantize(cents),
        'orders_by_status': by_status,
    }


# =============================================================================
# Status changes
# =============================================================================

def _apply_transition(order_id, new_status) -> Tuple[Order, str]:
    """
    Lock the order, move it to ``new_status`` and, on cancellation, give the
    stock back. Must run inside transaction.atomic().
    """
    order = ledger.lock_order(order_id)
    previous = ledger.transition(order, new_status)

    if new_status == OrderStatus.CANCELLED:
        restored = ledger.restore_stock(order)
        failed = [item_id for item_id, ok in restored.items() if not ok]
        if failed:
            logger.error(f"Order #{order.order_number} cancelled with unrestored items: {failed}")

    return order, previous


def update_order_status(order_id, caller: Caller, new_status: str) -> Order:
    """
    Move an order along the status table on behalf of its store owner.

    Raises:
        NotFound, Forbidden, InvalidTransition
    """
    if new_status not in OrderStatus.values:
        raise InvalidRequest(f"Unknown order status: {new_status}")

    order = _get_order(order_id)
    _require_store_owner(order, caller, 'You are not authorized to update this order')

    with transaction.atomic():
        order, previous = _apply_transition(order_id, new_status)

        notify(order.customer_id, Notification.Type.ORDER_STATUS,
               f"Order #{order.order_number} Updated", STATUS_MESSAGES[new_status], {
                   'order_id': order.id,
                   'order_number': order.order_number,
                   'previous_status': previous,
                   'new_status': new_status,
                   'store_name': order.store.name,
               })

    return order


def check_in(order_id, caller: Caller) -> Order:
    """
    Record that the customer has arrived at the store.

    Raises:
        NotFound, Forbidden, AlreadyCheckedIn, InvalidRequest
    """
    order = _get_order(order_id)
    _require_customer(order, caller, 'You can only check in for your own orders')

    with transaction.atomic():
        order = ledger.lock_order(order_id)

        if order.customer_checked_in:
            raise AlreadyCheckedIn()

        if order.status not in CHECK_IN_STATUSES:
            raise InvalidRequest(
                f"Cannot check in for an order with status {order.status}. "
                "Order must be CONFIRMED, PREPARING, or READY."
            )

        order.customer_checked_in = True
        order.checked_in_at = timezone.now()
        order.save(update_fields=['customer_checked_in', 'checked_in_at', 'updated_at'])

        notify(order.store.owner_id, Notification.Type.ORDER_STATUS,
               f"Customer Arrived for Order #{order.order_number}",
               f"The customer has checked in and is waiting for order #{order.order_number}.", {
                   'order_id': order.id,
                   'order_number': order.order_number,
               })

    logger.info(f"Order #{order.order_number}: customer checked in")
    return order


def verify_pickup(order_id, caller: Caller, pickup_code: str) -> Order:
    """
    Complete a READY order once the customer's pickup code matches.
    The comparison is exact and case-sensitive; a mismatch changes nothing.

    Raises:
        NotFound, Forbidden, InvalidTransition, InvalidPickupCode
    """
    order = _get_order(order_id)
    _require_store_owner(order, caller, 'You are not authorized to verify pickup for this order')

    with transaction.atomic():
        order = ledger.lock_order(order_id)

        if order.status != OrderStatus.READY:
            raise InvalidTransition(order.status, OrderStatus.PICKED_UP, allowed_next_statuses(order.status))

        if not order.pickup_code:
            raise InvalidPickupCode('This order does not have a pickup code')

        if order.pickup_code != pickup_code:
            logger.warning(f"Order #{order.order_number}: pickup code mismatch")
            raise InvalidPickupCode()

        ledger.transition(order, OrderStatus.PICKED_UP)

        notify(order.customer_id, Notification.Type.ORDER_STATUS,
               f"Order #{order.order_number} Picked Up",
               f"Your order #{order.order_number} has been verified and picked up. Thank you!", {
                   'order_id': order.id,
                   'order_number': order.order_number,
                   'new_status': OrderStatus.PICKED_UP,
               })

    return order


def set_estimated_ready_time(order_id, caller: Caller, minutes: int) -> Order:
    """
    Set the ready estimate to now + ``minutes``, replacing any earlier one.

    Raises:
        NotFound, Forbidden, InvalidRequest
    """
    if isinstance(minutes, bool) or not isinstance(minutes, int) or not 1 <= minutes <= MAX_ESTIMATE_MINUTES:
        raise InvalidRequest(f"Minutes must be between 1 and {MAX_ESTIMATE_MINUTES}")

    order = _get_order(order_id)
    _require_store_owner(order, caller, 'You are not authorized to update this order')

    with transaction.atomic():
        order = ledger.lock_order(order_id)

        if order.is_terminal:
            raise InvalidRequest(f"Cannot set estimated time for an order with status {order.status}")

        order.estimated_ready_time = timezone.now() + timedelta(minutes=minutes)
        order.save(update_fields=['estimated_ready_time', 'updated_at'])

        notify(order.customer_id, Notification.Type.ORDER_STATUS,
               f"Order #{order.order_number} - Estimated Ready Time Updated",
               f"Your order will be ready in approximately {minutes} minute{'' if minutes == 1 else 's'}.", {
                   'order_id': order.id,
                   'order_number': order.order_number,
                   'estimated_ready_time': order.estimated_ready_time.isoformat(),
                   'minutes': minutes,
               })

    return order


# =============================================================================
# Promotions
# =============================================================================

def apply_promotion(order_id, caller: Caller, code: str) -> Order:
    """
    Redeem a coupon against a PENDING order.

    The promotion's use counter and the order's discount/total are written in
    the same transaction.

    Raises:
        NotFound, Forbidden, InvalidRequest, DuplicatePromotion,
        InvalidOrExpiredCoupon, CouponExhausted, MinimumNotMet
    """
    order = _get_order(order_id)
    _require_customer(order, caller, 'You can only apply coupons to your own orders')

    with transaction.atomic():
        order = ledger.lock_order(order_id)

        if order.status != OrderStatus.PENDING:
            raise InvalidRequest('Coupons can only be applied to orders with PENDING status')

        if order.promotion_id is not None:
            raise DuplicatePromotion()

        promotion = promotions.validate_coupon_code(code, order.store_id, lock=True)

        if promotion.min_order_amount is not None and order.subtotal < promotion.min_order_amount:
            raise MinimumNotMet(
                f"This coupon requires a minimum order of ${promotion.min_order_amount:.2f}"
            )

        discount = promotions.calculate_discount(promotion, order.subtotal)
        promotions.redeem(promotion)

        order.promotion = promotion
        order.discount_amount = discount
        order.total = ledger.compute_total(order.subtotal, order.tax, discount)
        order.save(update_fields=['promotion', 'discount_amount', 'total', 'updated_at'])

    logger.info(
        f"Order #{order.order_number}: applied promotion #{promotion.id}, "
        f"discount ${discount}, new total ${order.total}"
    )
    return order
