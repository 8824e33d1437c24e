"""
Catalog read and stock-adjustment operations used by order fulfillment.

Stock is only ever changed through relative UPDATEs (F expressions) so that
concurrent orders against the same product serialize in the database instead
of overwriting each other from application memory.
"""
import logging
from typing import Iterable, List

from django.db import transaction
from django.db.models import F

from core.exceptions import InsufficientStock, NotFound
from .models import Product, Store

logger = logging.getLogger(__name__)


def get_store(store_id) -> Store:
    try:
        return Store.objects.get(id=store_id)
    except Store.DoesNotExist:
        raise NotFound('Store not found')


def find_active_products_by_ids(product_ids: Iterable, lock: bool = False) -> List[Product]:
    """
    Return the active products among ``product_ids``.

    Missing or inactive ids are simply absent from the result; callers detect
    them by set difference. With ``lock=True`` the rows are locked FOR UPDATE
    in primary key order, so this must run inside ``transaction.atomic()``.
    """
    queryset = Product.objects.filter(id__in=list(product_ids), is_active=True)
    if lock:
        queryset = queryset.select_for_update().order_by('id')
    return list(queryset)


def decrement_stock(product_id, quantity: int) -> int:
    """
    Atomically remove ``quantity`` units and return the remaining stock.

    The UPDATE only matches while enough stock is left, so a concurrent order
    that already consumed the units makes this raise InsufficientStock rather
    than driving the count negative.
    """
    updated = Product.objects.filter(
        id=product_id,
        stock_quantity__gte=quantity
    ).update(stock_quantity=F('stock_quantity') - quantity)

    row = Product.objects.filter(id=product_id).values('name', 'stock_quantity').first()
    if row is None:
        raise NotFound(f'Product {product_id} not found')

    if not updated:
        raise InsufficientStock(product_id, row['name'], row['stock_quantity'], quantity)

    return row['stock_quantity']


def increment_stock(product_id, quantity: int) -> None:
    updated = Product.objects.filter(id=product_id).update(
        stock_quantity=F('stock_quantity') + quantity
    )
    if not updated:
        raise NotFound(f'Product {product_id} not found')


def restock(product_id, quantity: int) -> None:
    """Return units to stock in their own transaction."""
    with transaction.atomic():
        increment_stock(product_id, quantity)
    logger.debug(f"Restored {quantity} units to product {product_id}")
