"""
Order Ledger - persistence-level order mutations.

Every function that writes here either runs inside the caller's
``transaction.atomic()`` block or opens its own. Callers decide what is
atomic; the ledger only guarantees that a single call never leaves partial
state behind.
"""
import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Sequence, Tuple

from django.conf import settings
from django.db import transaction

from catalog import services as catalog
from catalog.models import Product
from core.exceptions import InvalidTransition
from .models import Order, OrderItem, OrderStatus, allowed_next_statuses, can_transition

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
ZERO = Decimal('0.00')
PICKUP_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
PICKUP_CODE_LENGTH = 6


@dataclass(frozen=True)
class OrderLine:
    """One priced line ready to be written as an OrderItem."""
    product: Product
    quantity: int
    unit_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class LowStockHit:
    product_id: int
    product_name: str
    remaining: int
    threshold: int


def to_base36(number: int) -> str:
    digits = '0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ'
    if number == 0:
        return '0'
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return ''.join(reversed(out))


def generate_order_number() -> str:
    """e.g. ``GL-M3X1K2ZQ-9F2C61AB``"""
    timestamp = to_base36(int(time.time() * 1000))
    random_part = uuid.uuid4().hex[:8].upper()
    return f"{settings.ORDER_NUMBER_PREFIX}-{timestamp}-{random_part}"


def generate_pickup_code() -> str:
    return ''.join(secrets.choice(PICKUP_CODE_ALPHABET) for _ in range(PICKUP_CODE_LENGTH))


def calculate_tax(subtotal: Decimal) -> Decimal:
    return (subtotal * settings.ORDER_TAX_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_total(subtotal: Decimal, tax: Decimal, discount: Decimal = None) -> Decimal:
    """subtotal + tax - discount, never below zero."""
    total = subtotal + tax - (discount or ZERO)
    return max(total, ZERO).quantize(CENTS)


def calculate_totals(lines: Sequence[OrderLine]) -> Tuple[Decimal, Decimal, Decimal]:
    """Return (subtotal, tax, total) for priced lines."""
    subtotal = sum((line.total_price for line in lines), ZERO).quantize(CENTS)
    tax = calculate_tax(subtotal)
    return subtotal, tax, compute_total(subtotal, tax)


def place_order(customer_id, store, lines: Sequence[OrderLine], *, pickup_time=None,
                notes: str = '') -> Tuple[Order, List[LowStockHit]]:
    """
    Write the order, its items and every stock decrement as one unit.

    A decrement that no longer fits (a concurrent order got there first)
    raises InsufficientStock and rolls the whole order back.

    Returns:
        Tuple of (Order, low stock hits for post-commit alerts)
    """
    subtotal, tax, total = calculate_totals(lines)
    low_stock = []

    with transaction.atomic():
        order = Order.objects.create(
            order_number=generate_order_number(),
            customer_id=customer_id,
            store=store,
            status=OrderStatus.PENDING,
            subtotal=subtotal,
            tax=tax,
            total=total,
            pickup_time=pickup_time,
            pickup_code=generate_pickup_code(),
            notes=notes or '',
        )

        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                product=line.product,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
            )
            for line in lines
        ])

        # Primary key order keeps lock acquisition consistent across orders
        for line in sorted(lines, key=lambda l: l.product.id):
            remaining = catalog.decrement_stock(line.product.id, line.quantity)
            if remaining <= line.product.low_stock_threshold:
                low_stock.append(LowStockHit(
                    product_id=line.product.id,
                    product_name=line.product.name,
                    remaining=remaining,
                    threshold=line.product.low_stock_threshold,
                ))
            logger.debug(
                f"Order #{order.order_number}: deducted {line.quantity} of "
                f"{line.product.name}, remaining stock: {remaining}"
            )

    logger.info(
        f"Order #{order.order_number} placed: {len(lines)} items, "
        f"subtotal ${subtotal}, tax ${tax}, total ${total}"
    )
    return order, low_stock


def lock_order(order_id) -> Order:
    """Re-read an order FOR UPDATE; call inside transaction.atomic()."""
    return Order.objects.select_for_update().select_related('store').get(id=order_id)


def transition(order: Order, new_status) -> str:
    """
    Move a locked order to ``new_status`` if the transition table allows it.

    Returns:
        The previous status
    """
    previous = order.status
    if not can_transition(previous, new_status):
        raise InvalidTransition(previous, new_status, allowed_next_statuses(previous))

    order.status = new_status
    order.save(update_fields=['status', 'updated_at'])
    logger.info(f"Order #{order.order_number}: {previous} -> {new_status}")
    return previous


def restore_stock(order: Order) -> Dict[int, bool]:
    """
    Put every line's quantity back into stock, one item at a time.

    A failure on one item is logged and does not stop the others or undo the
    status change that triggered the restore.

    Returns:
        Mapping of order item id to whether its stock was restored
    """
    results = {}
    for item in order.items.all():
        try:
            catalog.restock(item.product_id, item.quantity)
            results[item.id] = True
        except Exception:
            logger.exception(
                f"Order #{order.order_number}: failed to restore {item.quantity} "
                f"units of product {item.product_id}"
            )
            results[item.id] = False
    return results
