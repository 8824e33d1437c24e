"""
Tests for catalog reads and stock adjustments.
"""
import uuid
from decimal import Decimal

from django.test import TestCase

from catalog.models import Product, Store
from catalog.services import (
    decrement_stock,
    find_active_products_by_ids,
    get_store,
    increment_stock,
    restock,
)
from core.exceptions import InsufficientStock, NotFound


class StockAdjustmentTestCase(TestCase):

    def setUp(self):
        self.store = Store.objects.create(owner_id=uuid.uuid4(), name='Catalog Store')
        self.product = Product.objects.create(
            store=self.store,
            name='Oat Milk',
            sku='OAT-1',
            price=Decimal('4.25'),
            stock_quantity=10,
            low_stock_threshold=3
        )

    def test_decrement_returns_remaining_stock(self):
        self.assertEqual(decrement_stock(self.product.id, 4), 6)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 6)

    def test_decrement_never_goes_negative(self):
        with self.assertRaises(InsufficientStock) as context:
            decrement_stock(self.product.id, 11)

        self.assertEqual(context.exception.available, 10)
        self.assertEqual(context.exception.requested, 11)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)

    def test_decrement_unknown_product(self):
        with self.assertRaises(NotFound):
            decrement_stock(99999, 1)

    def test_increment_and_restock(self):
        increment_stock(self.product.id, 5)
        restock(self.product.id, 2)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 17)

        with self.assertRaises(NotFound):
            increment_stock(99999, 1)

    def test_stock_level_properties(self):
        self.assertFalse(self.product.is_low_stock)

        self.product.stock_quantity = 3
        self.assertTrue(self.product.is_low_stock)
        self.assertFalse(self.product.is_out_of_stock)

        self.product.stock_quantity = 0
        self.assertTrue(self.product.is_out_of_stock)


class CatalogReadTestCase(TestCase):

    def setUp(self):
        self.store = Store.objects.create(owner_id=uuid.uuid4(), name='Catalog Store')
        self.active = Product.objects.create(
            store=self.store, name='Bread', sku='BR-1', price=Decimal('3.00'), stock_quantity=5
        )
        self.inactive = Product.objects.create(
            store=self.store, name='Old Bread', sku='BR-0', price=Decimal('1.00'), is_active=False
        )

    def test_find_active_products_skips_inactive_and_missing(self):
        found = find_active_products_by_ids([self.active.id, self.inactive.id, 99999])
        self.assertEqual([p.id for p in found], [self.active.id])

    def test_get_store(self):
        self.assertEqual(get_store(self.store.id), self.store)

        with self.assertRaises(NotFound):
            get_store(99999)
