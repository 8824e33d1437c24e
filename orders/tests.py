"""
Tests for order fulfillment logic.

Test Cases:
1. Order created with sufficient stock, totals and stock deductions
2. Order rejected with insufficient stock, no stock deduction on rejection
3. Atomic rollback on error
4. Status transitions follow the transition table; cancellation restores stock
5. Check-in, pickup verification, ready estimates
6. Reorder, coupons, reads and statistics
7. HTTP envelope for the order endpoints
8. Concurrent order race condition prevention
"""
import threading
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from catalog import services as catalog_services
from catalog.models import Product, Store
from core.exceptions import (
    AlreadyCheckedIn,
    CouponExhausted,
    CrossStoreViolation,
    DuplicatePromotion,
    Forbidden,
    InsufficientStock,
    InvalidOrExpiredCoupon,
    InvalidPickupCode,
    InvalidRequest,
    InvalidTransition,
    MinimumNotMet,
    NoItemsAvailable,
    NotFound,
    StoreInactive,
)
from core.identity import Caller, Role
from notifications.models import Notification
from orders import ledger
from orders.models import ALLOWED_TRANSITIONS, Order, OrderItem, OrderStatus, can_transition
from orders.services import (
    apply_promotion,
    check_in,
    create_order,
    get_order,
    get_order_stats,
    list_orders,
    reorder,
    set_estimated_ready_time,
    update_order_status,
    verify_pickup,
)
from promotions.models import Promotion


class OrderTestBase(TestCase):
    """Store with two products and the three kinds of callers."""

    def setUp(self):
        """Set up test data."""
        self.owner = Caller(id=uuid.uuid4(), role=Role.STORE_OWNER)
        self.customer = Caller(id=uuid.uuid4(), role=Role.CUSTOMER)
        self.other_customer = Caller(id=uuid.uuid4(), role=Role.CUSTOMER)
        self.admin = Caller(id=uuid.uuid4(), role=Role.ADMIN)

        self.store = Store.objects.create(
            owner_id=self.owner.id,
            name='Test Store',
            address='123 Test Street'
        )
        self.product_p = Product.objects.create(
            store=self.store,
            name='Test Product P',
            sku='P-001',
            price=Decimal('3.99'),
            stock_quantity=20
        )
        self.product_q = Product.objects.create(
            store=self.store,
            name='Test Product Q',
            sku='Q-001',
            price=Decimal('2.50'),
            stock_quantity=15
        )

    def place(self, *lines, customer=None):
        items = [{'product_id': product.id, 'quantity': qty} for product, qty in lines]
        return create_order(customer or self.customer, self.store.id, items)

    def advance(self, order, *statuses):
        for new_status in statuses:
            order = update_order_status(order.id, self.owner, new_status)
        return order

    def assertStock(self, product, expected):
        product.refresh_from_db()
        self.assertEqual(product.stock_quantity, expected)


class OrderCreationTestCase(OrderTestBase):
    """Test cases for order creation and stock reservation."""

    def test_order_created_with_sufficient_stock(self):
        """
        Test: Order is created PENDING when all items have enough stock.

        Given: P ($3.99, stock 20) and Q ($2.50, stock 15)
        When: Ordering 2x P and 3x Q
        Then: subtotal 15.48, tax 1.32, total 16.80, stock 18 and 12
        """
        order = self.place((self.product_p, 2), (self.product_q, 3))

        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.subtotal, Decimal('15.48'))
        self.assertEqual(order.tax, Decimal('1.32'))
        self.assertEqual(order.total, Decimal('16.80'))
        self.assertIsNone(order.discount_amount)
        self.assertEqual(order.items.count(), 2)

        self.assertStock(self.product_p, 18)
        self.assertStock(self.product_q, 12)

    def test_order_items_keep_price_at_time_of_order(self):
        order = self.place((self.product_p, 2))

        Product.objects.filter(id=self.product_p.id).update(price=Decimal('9.99'))

        item = order.items.get()
        self.assertEqual(item.unit_price, Decimal('3.99'))
        self.assertEqual(item.total_price, Decimal('7.98'))

    def test_order_number_and_pickup_code_are_generated(self):
        order = self.place((self.product_p, 1))
        second = self.place((self.product_p, 1))

        self.assertTrue(order.order_number.startswith('GL-'))
        self.assertNotEqual(order.order_number, second.order_number)
        self.assertEqual(len(order.pickup_code), ledger.PICKUP_CODE_LENGTH)
        self.assertTrue(set(order.pickup_code) <= set(ledger.PICKUP_CODE_ALPHABET))

    def test_order_rejected_with_insufficient_stock(self):
        """
        Test: Order fails when an item lacks stock, and no stock moves.
        """
        with self.assertRaises(InsufficientStock) as context:
            self.place((self.product_q, 1), (self.product_p, 100))

        self.assertIn('Available: 20, Requested: 100', context.exception.message)
        self.assertIn('Test Product P', context.exception.message)
        self.assertEqual(Order.objects.count(), 0)
        self.assertStock(self.product_p, 20)
        self.assertStock(self.product_q, 15)

    def test_order_with_exact_stock(self):
        self.place((self.product_q, 15))
        self.assertStock(self.product_q, 0)

    def test_atomic_rollback_on_error(self):
        """
        Test: A failure after the first stock deduction rolls everything back.
        """
        real_decrement = catalog_services.decrement_stock
        calls = []

        def flaky_decrement(product_id, quantity):
            calls.append(product_id)
            if len(calls) == 2:
                raise RuntimeError('connection lost')
            return real_decrement(product_id, quantity)

        with patch('catalog.services.decrement_stock', side_effect=flaky_decrement):
            with self.assertRaises(RuntimeError):
                self.place((self.product_p, 2), (self.product_q, 3))

        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(OrderItem.objects.count(), 0)
        self.assertStock(self.product_p, 20)
        self.assertStock(self.product_q, 15)

    def test_validation_error_empty_items(self):
        with self.assertRaises(InvalidRequest) as context:
            create_order(self.customer, self.store.id, [])

        self.assertIn('at least one item', context.exception.message)

    def test_validation_error_invalid_quantity(self):
        with self.assertRaises(InvalidRequest):
            self.place((self.product_p, 0))

    def test_validation_error_duplicate_products(self):
        with self.assertRaises(InvalidRequest) as context:
            self.place((self.product_p, 1), (self.product_p, 2))

        self.assertIn('duplicate', context.exception.message.lower())

    def test_quantity_error_names_the_product(self):
        with self.assertRaises(InvalidRequest) as context:
            self.place((self.product_q, 1), (self.product_p, 0))

        self.assertEqual(context.exception.message, 'Quantity for Test Product P must be greater than zero')
        self.assertStock(self.product_q, 15)

    def test_unknown_store_reported_before_bad_quantity(self):
        """
        Test: Store resolution comes before quantity checks.

        Given: A store id that does not exist
        When: Ordering quantity 0 from it
        Then: NotFound('Store not found'), not InvalidRequest
        """
        with self.assertRaises(NotFound) as context:
            create_order(self.customer, 99999, [{'product_id': self.product_p.id, 'quantity': 0}])

        self.assertEqual(context.exception.message, 'Store not found')

    def test_unknown_product_reported_before_bad_quantity(self):
        with self.assertRaises(NotFound):
            create_order(self.customer, self.store.id, [{'product_id': 99999, 'quantity': 0}])

    def test_stale_stock_read_rolls_back(self):
        """
        Test: A stock count that changes after it was read cannot oversell.

        Given: The product rows are read with stock 20
        When: Another writer drops P to 1 before the decrement runs
        Then: InsufficientStock, no order or items written, stock untouched
        """
        real_find = catalog_services.find_active_products_by_ids

        def find_then_sell_out(product_ids, lock=False):
            products = real_find(product_ids, lock=lock)
            Product.objects.filter(id=self.product_p.id).update(stock_quantity=1)
            return products

        with patch('catalog.services.find_active_products_by_ids', side_effect=find_then_sell_out):
            with self.assertRaises(InsufficientStock) as context:
                self.place((self.product_p, 2), (self.product_q, 3))

        self.assertIn('Available: 1, Requested: 2', context.exception.message)
        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(OrderItem.objects.count(), 0)
        self.assertStock(self.product_p, 1)
        self.assertStock(self.product_q, 15)

    def test_order_invalid_store(self):
        with self.assertRaises(NotFound) as context:
            create_order(self.customer, 99999, [{'product_id': self.product_p.id, 'quantity': 1}])

        self.assertEqual(context.exception.message, 'Store not found')

    def test_order_inactive_store(self):
        Store.objects.filter(id=self.store.id).update(is_active=False)

        with self.assertRaises(StoreInactive):
            self.place((self.product_p, 1))

        self.assertStock(self.product_p, 20)

    def test_order_missing_or_inactive_products(self):
        Product.objects.filter(id=self.product_q.id).update(is_active=False)
        items = [
            {'product_id': self.product_p.id, 'quantity': 1},
            {'product_id': self.product_q.id, 'quantity': 1},
            {'product_id': 99999, 'quantity': 1},
        ]

        with self.assertRaises(NotFound) as context:
            create_order(self.customer, self.store.id, items)

        self.assertIn(str(self.product_q.id), context.exception.message)
        self.assertIn('99999', context.exception.message)
        self.assertStock(self.product_p, 20)

    def test_cross_store_products_rejected(self):
        other_store = Store.objects.create(owner_id=uuid.uuid4(), name='Other Store')
        foreign = Product.objects.create(
            store=other_store, name='Foreign', sku='F-1', price=Decimal('1.00'), stock_quantity=5
        )

        with self.assertRaises(CrossStoreViolation):
            self.place((self.product_p, 1), (foreign, 1))

        self.assertStock(self.product_p, 20)
        self.assertStock(foreign, 5)

    def test_new_order_and_low_stock_notifications(self):
        """
        Test: The owner hears about the order and about stock at or below
        the threshold, once the transaction commits.
        """
        with self.captureOnCommitCallbacks(execute=True):
            order = self.place((self.product_p, 16), (self.product_q, 1))

        owner_notes = Notification.objects.filter(user_id=self.owner.id)
        new_order = owner_notes.get(type=Notification.Type.ORDER_STATUS)
        self.assertEqual(new_order.title, 'New Order Received')
        self.assertIn(order.order_number, new_order.message)

        low_stock = owner_notes.get(type=Notification.Type.LOW_STOCK)
        self.assertEqual(low_stock.data['product_id'], self.product_p.id)
        self.assertEqual(low_stock.data['current_stock'], 4)

    def test_no_notifications_for_rejected_order(self):
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(InsufficientStock):
                self.place((self.product_p, 100))

        self.assertFalse(Notification.objects.exists())


class OrderStatusTestCase(OrderTestBase):
    """Test cases for the order status machine."""

    def test_transition_table(self):
        expected = {
            'PENDING': {'CONFIRMED', 'CANCELLED'},
            'CONFIRMED': {'PREPARING', 'CANCELLED'},
            'PREPARING': {'READY', 'CANCELLED'},
            'READY': {'PICKED_UP', 'CANCELLED'},
            'PICKED_UP': set(),
            'CANCELLED': set(),
        }
        self.assertEqual(set(ALLOWED_TRANSITIONS), set(OrderStatus))

        for current in OrderStatus.values:
            for new in OrderStatus.values:
                self.assertEqual(
                    can_transition(current, new),
                    new in expected[current],
                    f"{current} -> {new}"
                )

    def test_invalid_transition_lists_allowed_states(self):
        """
        Test: PENDING -> READY is refused and the order stays PENDING.
        """
        order = self.place((self.product_p, 1))

        with self.assertRaises(InvalidTransition) as context:
            update_order_status(order.id, self.owner, OrderStatus.READY)

        self.assertEqual(context.exception.allowed, ['CONFIRMED', 'CANCELLED'])
        self.assertIn('Allowed transitions: CONFIRMED, CANCELLED', context.exception.message)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PENDING)

    def test_full_lifecycle(self):
        order = self.place((self.product_p, 1))
        order = self.advance(order, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY)
        self.assertEqual(order.status, OrderStatus.READY)
        self.assertEqual(order.allowed_transitions, ['PICKED_UP', 'CANCELLED'])

        order = self.advance(order, OrderStatus.PICKED_UP)
        self.assertTrue(order.is_terminal)

    def test_cancellation_restores_stock(self):
        order = self.place((self.product_p, 2), (self.product_q, 3))
        self.assertStock(self.product_p, 18)

        order = self.advance(order, OrderStatus.CONFIRMED, OrderStatus.CANCELLED)

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertStock(self.product_p, 20)
        self.assertStock(self.product_q, 15)

    def test_terminal_states_refuse_every_transition(self):
        cancelled = self.advance(self.place((self.product_p, 2)), OrderStatus.CANCELLED)
        self.assertStock(self.product_p, 20)

        for new_status in OrderStatus.values:
            with self.assertRaises(InvalidTransition) as context:
                update_order_status(cancelled.id, self.owner, new_status)
            self.assertEqual(context.exception.allowed, [])
            self.assertIn('none (terminal state)', context.exception.message)

        # A second cancel must not hand the stock back twice
        self.assertStock(self.product_p, 20)

    def test_cancel_continues_when_one_restock_fails(self):
        order = self.place((self.product_p, 2), (self.product_q, 3))
        real_restock = catalog_services.restock

        def failing_restock(product_id, quantity):
            if product_id == self.product_p.id:
                raise RuntimeError('restock failed')
            return real_restock(product_id, quantity)

        with patch('catalog.services.restock', side_effect=failing_restock):
            order = self.advance(order, OrderStatus.CANCELLED)

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertStock(self.product_p, 18)
        self.assertStock(self.product_q, 15)

    def test_only_store_owner_can_update(self):
        order = self.place((self.product_p, 1))
        stranger = Caller(id=uuid.uuid4(), role=Role.STORE_OWNER)

        with self.assertRaises(Forbidden):
            update_order_status(order.id, stranger, OrderStatus.CONFIRMED)

    def test_unknown_status_rejected(self):
        order = self.place((self.product_p, 1))

        with self.assertRaises(InvalidRequest):
            update_order_status(order.id, self.owner, 'SHIPPED')

    def test_missing_order(self):
        with self.assertRaises(NotFound):
            update_order_status(99999, self.owner, OrderStatus.CONFIRMED)

    def test_customer_notified_of_status_change(self):
        order = self.place((self.product_p, 1))

        with self.captureOnCommitCallbacks(execute=True):
            self.advance(order, OrderStatus.CONFIRMED)

        notification = Notification.objects.get(user_id=self.customer.id)
        self.assertEqual(notification.message, 'Your order has been confirmed by the store.')
        self.assertEqual(notification.data['previous_status'], 'PENDING')
        self.assertEqual(notification.data['new_status'], 'CONFIRMED')


class PickupFlowTestCase(OrderTestBase):
    """Check-in, pickup code verification and ready estimates."""

    def setUp(self):
        super().setUp()
        self.order = self.place((self.product_p, 2))

    def test_check_in_requires_confirmed_order(self):
        with self.assertRaises(InvalidRequest):
            check_in(self.order.id, self.customer)

    def test_check_in(self):
        self.advance(self.order, OrderStatus.CONFIRMED)

        with self.captureOnCommitCallbacks(execute=True):
            order = check_in(self.order.id, self.customer)

        self.assertTrue(order.customer_checked_in)
        self.assertIsNotNone(order.checked_in_at)
        self.assertTrue(Notification.objects.filter(user_id=self.owner.id).exists())

        with self.assertRaises(AlreadyCheckedIn):
            check_in(self.order.id, self.customer)

    def test_check_in_only_by_own_customer(self):
        self.advance(self.order, OrderStatus.CONFIRMED)

        with self.assertRaises(Forbidden):
            check_in(self.order.id, self.other_customer)

    def test_verify_pickup(self):
        self.advance(self.order, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY)
        Order.objects.filter(id=self.order.id).update(pickup_code='ABC234')

        with self.assertRaises(InvalidPickupCode):
            verify_pickup(self.order.id, self.owner, 'abc234')
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.READY)

        order = verify_pickup(self.order.id, self.owner, 'ABC234')
        self.assertEqual(order.status, OrderStatus.PICKED_UP)

    def test_verify_pickup_requires_ready_order(self):
        with self.assertRaises(InvalidTransition) as context:
            verify_pickup(self.order.id, self.owner, self.order.pickup_code)

        self.assertEqual(context.exception.allowed, ['CONFIRMED', 'CANCELLED'])

    def test_verify_pickup_without_code(self):
        self.advance(self.order, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY)
        Order.objects.filter(id=self.order.id).update(pickup_code=None)

        with self.assertRaises(InvalidPickupCode) as context:
            verify_pickup(self.order.id, self.owner, 'ABC234')

        self.assertEqual(context.exception.message, 'This order does not have a pickup code')

    def test_set_estimated_ready_time(self):
        before = timezone.now()
        order = set_estimated_ready_time(self.order.id, self.owner, 30)

        self.assertGreaterEqual(order.estimated_ready_time, before + timedelta(minutes=30))
        self.assertLessEqual(order.estimated_ready_time, timezone.now() + timedelta(minutes=30))

        order = set_estimated_ready_time(self.order.id, self.owner, 480)
        self.assertGreater(order.estimated_ready_time, before + timedelta(minutes=479))

    def test_estimated_ready_time_bounds(self):
        for minutes in (0, 481, -5):
            with self.assertRaises(InvalidRequest):
                set_estimated_ready_time(self.order.id, self.owner, minutes)

    def test_estimated_ready_time_refused_for_terminal_order(self):
        self.advance(self.order, OrderStatus.CANCELLED)

        with self.assertRaises(InvalidRequest):
            set_estimated_ready_time(self.order.id, self.owner, 15)


class ReorderTestCase(OrderTestBase):
    """Test cases for reordering a past order."""

    def setUp(self):
        super().setUp()
        self.past = self.place((self.product_p, 2), (self.product_q, 3))

    def test_reorder_uses_current_prices(self):
        Product.objects.filter(id=self.product_p.id).update(price=Decimal('4.99'))

        order, unavailable = reorder(self.past.id, self.customer)

        self.assertEqual(unavailable, [])
        self.assertNotEqual(order.id, self.past.id)
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.notes, f"Reorder from order #{self.past.order_number}")
        self.assertEqual(order.subtotal, Decimal('17.48'))
        self.assertIsNotNone(order.pickup_code)
        self.assertStock(self.product_p, 16)
        self.assertStock(self.product_q, 9)

    def test_reorder_skips_unavailable_items(self):
        Product.objects.filter(id=self.product_q.id).update(stock_quantity=1)

        order, unavailable = reorder(self.past.id, self.customer)

        self.assertEqual(unavailable, ['Test Product Q (only 1 available)'])
        self.assertEqual([item.product_id for item in order.items.all()], [self.product_p.id])
        self.assertStock(self.product_q, 1)

    def test_reorder_skips_inactive_products(self):
        Product.objects.filter(id=self.product_q.id).update(is_active=False)

        order, unavailable = reorder(self.past.id, self.customer)

        self.assertEqual(unavailable, ['Test Product Q'])
        self.assertEqual(order.items.count(), 1)

    def test_reorder_with_nothing_available(self):
        Product.objects.filter(store=self.store).update(is_active=False)

        with self.assertRaises(NoItemsAvailable):
            reorder(self.past.id, self.customer)

        self.assertEqual(Order.objects.count(), 1)

    def test_reorder_inactive_store(self):
        Store.objects.filter(id=self.store.id).update(is_active=False)

        with self.assertRaises(StoreInactive):
            reorder(self.past.id, self.customer)

    def test_reorder_only_own_orders(self):
        with self.assertRaises(Forbidden):
            reorder(self.past.id, self.other_customer)


class ApplyPromotionTestCase(OrderTestBase):
    """Test cases for redeeming coupons against orders."""

    def setUp(self):
        super().setUp()
        self.product_ten = Product.objects.create(
            store=self.store, name='Ten Dollar Item', sku='T-010',
            price=Decimal('10.00'), stock_quantity=50
        )
        # subtotal 100.00, tax 8.50
        self.order = self.place((self.product_ten, 10))
        now = timezone.now()
        self.promotion = Promotion.objects.create(
            store=self.store,
            code='SAVE10',
            type=Promotion.Type.PERCENTAGE,
            value=Decimal('10'),
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=1),
        )

    def make_promotion(self, code, **kwargs):
        now = timezone.now()
        defaults = {
            'type': Promotion.Type.FIXED_AMOUNT,
            'value': Decimal('5.00'),
            'start_date': now - timedelta(days=1),
            'end_date': now + timedelta(days=1),
        }
        defaults.update(kwargs)
        return Promotion.objects.create(store=self.store, code=code, **defaults)

    def test_percentage_coupon(self):
        """
        Test: 10% off a $100 subtotal with $8.50 tax totals $98.50.
        """
        order = apply_promotion(self.order.id, self.customer, 'save10')

        self.assertEqual(order.discount_amount, Decimal('10.00'))
        self.assertEqual(order.total, Decimal('98.50'))
        self.assertEqual(order.promotion_id, self.promotion.id)
        self.promotion.refresh_from_db()
        self.assertEqual(self.promotion.current_uses, 1)

    def test_fixed_discount_capped_at_subtotal(self):
        self.make_promotion('BIGSAVE', value=Decimal('500.00'))

        order = apply_promotion(self.order.id, self.customer, 'BIGSAVE')

        self.assertEqual(order.discount_amount, Decimal('100.00'))
        self.assertEqual(order.total, Decimal('8.50'))

    def test_minimum_not_met(self):
        promotion = self.make_promotion('BIGSPEND', min_order_amount=Decimal('150.00'))

        with self.assertRaises(MinimumNotMet):
            apply_promotion(self.order.id, self.customer, 'BIGSPEND')

        promotion.refresh_from_db()
        self.assertEqual(promotion.current_uses, 0)

    def test_exhausted_coupon(self):
        self.make_promotion('ONCE', max_uses=1, current_uses=1)

        with self.assertRaises(CouponExhausted):
            apply_promotion(self.order.id, self.customer, 'ONCE')

    def test_expired_coupon(self):
        now = timezone.now()
        self.make_promotion('OLD', start_date=now - timedelta(days=10), end_date=now - timedelta(days=1))

        with self.assertRaises(InvalidOrExpiredCoupon):
            apply_promotion(self.order.id, self.customer, 'OLD')

    def test_coupon_from_other_store(self):
        other_store = Store.objects.create(owner_id=uuid.uuid4(), name='Other Store')
        now = timezone.now()
        Promotion.objects.create(
            store=other_store, code='ELSEWHERE', type=Promotion.Type.FIXED_AMOUNT,
            value=Decimal('1.00'), start_date=now - timedelta(days=1), end_date=now + timedelta(days=1)
        )

        with self.assertRaises(InvalidOrExpiredCoupon):
            apply_promotion(self.order.id, self.customer, 'ELSEWHERE')

    def test_second_coupon_rejected(self):
        apply_promotion(self.order.id, self.customer, 'SAVE10')
        self.make_promotion('AGAIN')

        with self.assertRaises(DuplicatePromotion):
            apply_promotion(self.order.id, self.customer, 'AGAIN')

        self.order.refresh_from_db()
        self.assertEqual(self.order.total, Decimal('98.50'))

    def test_coupon_only_on_pending_orders(self):
        self.advance(self.order, OrderStatus.CONFIRMED)

        with self.assertRaises(InvalidRequest):
            apply_promotion(self.order.id, self.customer, 'SAVE10')

    def test_coupon_only_by_own_customer(self):
        with self.assertRaises(Forbidden):
            apply_promotion(self.order.id, self.other_customer, 'SAVE10')


class OrderQueryTestCase(OrderTestBase):
    """Visibility, listing and statistics."""

    def test_get_order_visibility(self):
        order = self.place((self.product_p, 1))

        self.assertEqual(get_order(order.id, self.customer).id, order.id)
        self.assertEqual(get_order(order.id, self.owner).id, order.id)
        self.assertEqual(get_order(order.id, self.admin).id, order.id)

        with self.assertRaises(Forbidden):
            get_order(order.id, self.other_customer)
        with self.assertRaises(Forbidden):
            get_order(order.id, Caller(id=uuid.uuid4(), role=Role.STORE_OWNER))
        with self.assertRaises(NotFound):
            get_order(99999, self.admin)

    def test_list_orders_scoped_and_paginated(self):
        for _ in range(3):
            self.place((self.product_p, 1))
        self.place((self.product_q, 1), customer=self.other_customer)

        result = list_orders(self.customer, page=1, limit=2)
        self.assertEqual(len(result['data']), 2)
        self.assertEqual(result['pagination'], {'page': 1, 'limit': 2, 'total': 3, 'totalPages': 2})

        self.assertEqual(list_orders(self.owner)['pagination']['total'], 4)
        self.assertEqual(list_orders(self.admin, store_id=self.store.id)['pagination']['total'], 4)

        stranger = Caller(id=uuid.uuid4(), role=Role.STORE_OWNER)
        self.assertEqual(list_orders(stranger)['pagination']['total'], 0)

    def test_list_orders_status_filter(self):
        first = self.place((self.product_p, 1))
        self.place((self.product_p, 1))
        self.advance(first, OrderStatus.CONFIRMED)

        result = list_orders(self.customer, status=OrderStatus.CONFIRMED)
        self.assertEqual([order.id for order in result['data']], [first.id])

    def test_order_stats(self):
        kept = self.place((self.product_p, 2), (self.product_q, 3))
        dropped = self.place((self.product_p, 1))
        self.advance(dropped, OrderStatus.CANCELLED)

        stats = get_order_stats(self.store.id, self.owner)

        self.assertEqual(stats['total_orders'], 2)
        self.assertEqual(stats['pending_orders'], 1)
        self.assertEqual(stats['cancelled_orders'], 1)
        self.assertEqual(stats['completed_orders'], 0)
        self.assertEqual(stats['total_revenue'], kept.total)
        self.assertEqual(stats['average_order_value'], Decimal('16.80'))
        self.assertEqual(stats['orders_by_status'], {'PENDING': 1, 'CANCELLED': 1})

    def test_order_stats_only_for_owner(self):
        with self.assertRaises(Forbidden):
            get_order_stats(self.store.id, Caller(id=uuid.uuid4(), role=Role.STORE_OWNER))


class OrderLedgerTestCase(TestCase):
    """Money helpers and model rules."""

    def test_tax_rounds_half_up(self):
        self.assertEqual(ledger.calculate_tax(Decimal('15.48')), Decimal('1.32'))
        self.assertEqual(ledger.calculate_tax(Decimal('100.00')), Decimal('8.50'))
        # 0.30 * 0.085 = 0.0255
        self.assertEqual(ledger.calculate_tax(Decimal('0.30')), Decimal('0.03'))

    def test_total_never_negative(self):
        self.assertEqual(
            ledger.compute_total(Decimal('5.00'), Decimal('0.43'), Decimal('50.00')),
            Decimal('0.00')
        )

    def test_to_base36(self):
        self.assertEqual(ledger.to_base36(0), '0')
        self.assertEqual(ledger.to_base36(35), 'Z')
        self.assertEqual(ledger.to_base36(36), '10')

    def test_order_items_are_immutable(self):
        store = Store.objects.create(owner_id=uuid.uuid4(), name='Model Test Store')
        product = Product.objects.create(
            store=store, name='Model Test Product', sku='M-1', price=Decimal('25.50'), stock_quantity=5
        )
        order = Order.objects.create(
            order_number='GL-TEST-1', customer_id=uuid.uuid4(), store=store,
            subtotal=Decimal('76.50'), tax=Decimal('6.50'), total=Decimal('83.00')
        )
        item = OrderItem.objects.create(
            order=order, product=product, quantity=3,
            unit_price=Decimal('25.50'), total_price=Decimal('76.50')
        )

        item.quantity = 4
        with self.assertRaises(ValueError):
            item.save()


class OrderAPITestCase(OrderTestBase):
    """HTTP envelope for the order endpoints."""

    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def headers(self, caller):
        return {'HTTP_X_USER_ID': str(caller.id), 'HTTP_X_USER_ROLE': caller.role}

    def create_payload(self, **overrides):
        payload = {
            'store_id': self.store.id,
            'items': [
                {'product_id': self.product_p.id, 'quantity': 2},
                {'product_id': self.product_q.id, 'quantity': 3},
            ],
        }
        payload.update(overrides)
        return payload

    def test_create_order(self):
        response = self.client.post(
            reverse('orders:order-list'), self.create_payload(), format='json', **self.headers(self.customer)
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['status'], 'success')
        self.assertEqual(body['data']['total'], '16.80')
        self.assertEqual(body['data']['status'], 'PENDING')
        self.assertEqual(body['data']['allowed_transitions'], ['CONFIRMED', 'CANCELLED'])
        self.assertEqual(len(body['data']['items']), 2)
        self.assertIn('pickup_code', body['data'])

    def test_create_order_requires_identity(self):
        response = self.client.post(reverse('orders:order-list'), self.create_payload(), format='json')

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['status'], 'error')

    def test_create_order_requires_customer_role(self):
        response = self.client.post(
            reverse('orders:order-list'), self.create_payload(), format='json', **self.headers(self.owner)
        )

        self.assertEqual(response.status_code, 403)

    def test_create_order_validation_errors(self):
        response = self.client.post(
            reverse('orders:order-list'), self.create_payload(items=[]), format='json',
            **self.headers(self.customer)
        )

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body['message'], 'Validation failed. Please check the submitted data.')
        self.assertIn('items', [error['field'] for error in body['errors']])

    def test_create_order_insufficient_stock(self):
        payload = self.create_payload(items=[{'product_id': self.product_p.id, 'quantity': 100}])
        response = self.client.post(
            reverse('orders:order-list'), payload, format='json', **self.headers(self.customer)
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['status'], 'error')
        self.assertIn('Available: 20, Requested: 100', response.json()['message'])
        self.assertStock(self.product_p, 20)

    def test_pickup_code_hidden_from_store_owner(self):
        order = self.place((self.product_p, 1))

        response = self.client.get(
            reverse('orders:order-detail', args=[order.id]), **self.headers(self.owner)
        )

        self.assertEqual(response.status_code, 200)
        self.assertNotIn('pickup_code', response.json()['data'])

    def test_invalid_transition_response(self):
        order = self.place((self.product_p, 1))

        response = self.client.put(
            reverse('orders:order-status', args=[order.id]), {'status': 'READY'}, format='json',
            **self.headers(self.owner)
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn('Allowed transitions: CONFIRMED, CANCELLED', response.json()['message'])

    def test_missing_order_response(self):
        response = self.client.get(
            reverse('orders:order-detail', args=[99999]), **self.headers(self.customer)
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {'status': 'error', 'message': 'Order not found'})

    def test_double_check_in_conflict(self):
        order = self.advance(self.place((self.product_p, 1)), OrderStatus.CONFIRMED)
        url = reverse('orders:order-checkin', args=[order.id])

        self.assertEqual(self.client.put(url, **self.headers(self.customer)).status_code, 200)
        self.assertEqual(self.client.put(url, **self.headers(self.customer)).status_code, 409)

    def test_reorder_response(self):
        order = self.place((self.product_p, 1), (self.product_q, 1))
        Product.objects.filter(id=self.product_q.id).update(is_active=False)

        response = self.client.post(
            reverse('orders:order-reorder', args=[order.id]), **self.headers(self.customer)
        )

        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['unavailable_products'], ['Test Product Q'])
        self.assertEqual(len(data['order']['items']), 1)

    def test_estimated_time_validation(self):
        order = self.place((self.product_p, 1))

        response = self.client.put(
            reverse('orders:order-estimated-time', args=[order.id]), {'minutes': 600}, format='json',
            **self.headers(self.owner)
        )

        self.assertEqual(response.status_code, 400)

    def test_list_orders(self):
        self.place((self.product_p, 1))

        response = self.client.get(reverse('orders:order-list'), **self.headers(self.customer))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['pagination']['total'], 1)
        self.assertEqual(body['data'][0]['store_name'], 'Test Store')

    def test_order_stats_response(self):
        self.place((self.product_p, 2), (self.product_q, 3))

        response = self.client.get(
            reverse('orders:order-stats', args=[self.store.id]), **self.headers(self.owner)
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['total_revenue'], '16.80')


class ConcurrentOrderTestCase(TransactionTestCase):
    """
    Test concurrent order handling against a shared stock count.
    Uses TransactionTestCase so every thread commits on its own connection.

    On PostgreSQL the product rows are locked FOR UPDATE; on SQLite each
    order takes the database write lock at BEGIN and the others queue on
    the busy timeout. Run both in CI:

        pytest orders/tests.py
        POSTGRES_DB=getlocal_test pytest orders/tests.py
    """

    def setUp(self):
        """Set up test data for concurrent testing."""
        self.store = Store.objects.create(
            owner_id=uuid.uuid4(),
            name='Concurrent Test Store',
            address='456 Race Street'
        )
        # Only 3 units available
        self.product = Product.objects.create(
            store=self.store,
            name='Limited Stock Product',
            sku='LIMITED-1',
            price=Decimal('50.00'),
            stock_quantity=3
        )

    def race(self, buyers, quantity):
        results = {}
        errors = []
        barrier = threading.Barrier(buyers)

        def place_order(key):
            caller = Caller(id=uuid.uuid4(), role=Role.CUSTOMER)
            items = [{'product_id': self.product.id, 'quantity': quantity}]
            try:
                barrier.wait()
                create_order(caller, self.store.id, items)
                results[key] = 'created'
            except InsufficientStock:
                results[key] = 'rejected'
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=place_order, args=(key,)) for key in range(buyers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        return sorted(results.values())

    def test_concurrent_orders_no_overselling(self):
        """
        Test: Concurrent orders don't oversell stock.

        Given: 3 units in stock
        When: 8 customers each order 1 unit at the same moment
        Then: Exactly 3 succeed, 5 fail with InsufficientStock, final stock 0
        """
        outcomes = self.race(buyers=8, quantity=1)

        self.assertEqual(outcomes.count('created'), 3)
        self.assertEqual(outcomes.count('rejected'), 5)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 0)
        self.assertEqual(Order.objects.count(), 3)
        self.assertEqual(OrderItem.objects.count(), 3)

    def test_two_large_orders_one_wins(self):
        """
        Given: 3 units in stock
        When: Two concurrent orders of 2 units each
        Then: One succeeds, one fails with InsufficientStock, final stock 1
        """
        outcomes = self.race(buyers=2, quantity=2)

        self.assertEqual(outcomes, ['created', 'rejected'])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 1)
        self.assertEqual(Order.objects.count(), 1)
