"""
Tests for coupon resolution, discount calculation and promotion management.
"""
import uuid
from datetime import timedelta
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from catalog.models import Product, Store
from core.exceptions import (
    CouponExhausted,
    DuplicatePromotion,
    Forbidden,
    InvalidOrExpiredCoupon,
    InvalidRequest,
    NotFound,
)
from core.identity import Caller, Role
from orders.models import Order
from promotions.models import Promotion
from promotions.services import (
    calculate_discount,
    create_promotion,
    delete_promotion,
    list_promotions,
    redeem,
    update_promotion,
    validate_coupon_code,
)


class PromotionTestBase(TestCase):

    def setUp(self):
        self.owner = Caller(id=uuid.uuid4(), role=Role.STORE_OWNER)
        self.store = Store.objects.create(owner_id=self.owner.id, name='Promo Store')
        self.now = timezone.now()

    def make_promotion(self, code='SPRING10', **kwargs):
        defaults = {
            'type': Promotion.Type.PERCENTAGE,
            'value': Decimal('10'),
            'start_date': self.now - timedelta(days=1),
            'end_date': self.now + timedelta(days=1),
        }
        defaults.update(kwargs)
        return Promotion.objects.create(store=self.store, code=code, **defaults)


class DiscountCalculationTestCase(PromotionTestBase):

    def test_percentage_discount(self):
        promotion = self.make_promotion(value=Decimal('10'))
        self.assertEqual(calculate_discount(promotion, Decimal('100.00')), Decimal('10.00'))

    def test_percentage_discount_rounds_half_up(self):
        promotion = self.make_promotion(value=Decimal('15'))
        # 15% of 10.10 = 1.515
        self.assertEqual(calculate_discount(promotion, Decimal('10.10')), Decimal('1.52'))

    def test_fixed_amount_discount(self):
        promotion = self.make_promotion(type=Promotion.Type.FIXED_AMOUNT, value=Decimal('5.00'))
        self.assertEqual(calculate_discount(promotion, Decimal('30.00')), Decimal('5.00'))

    def test_buy_x_get_y_applies_value_as_amount(self):
        promotion = self.make_promotion(type=Promotion.Type.BUY_X_GET_Y, value=Decimal('3.50'))
        self.assertEqual(calculate_discount(promotion, Decimal('30.00')), Decimal('3.50'))

    def test_discount_never_exceeds_subtotal(self):
        promotion = self.make_promotion(type=Promotion.Type.FIXED_AMOUNT, value=Decimal('50.00'))
        self.assertEqual(calculate_discount(promotion, Decimal('12.00')), Decimal('12.00'))


class CouponValidationTestCase(PromotionTestBase):

    def test_code_is_case_insensitive(self):
        promotion = self.make_promotion(code='spring10')

        self.assertEqual(promotion.code, 'SPRING10')
        self.assertEqual(validate_coupon_code(' Spring10 ', self.store.id).id, promotion.id)

    def test_inactive_or_out_of_window(self):
        self.make_promotion(code='OFF', is_active=False)
        self.make_promotion(
            code='LATER', start_date=self.now + timedelta(days=1), end_date=self.now + timedelta(days=2)
        )
        self.make_promotion(
            code='GONE', start_date=self.now - timedelta(days=3), end_date=self.now - timedelta(days=1)
        )

        for code in ('OFF', 'LATER', 'GONE', 'MISSING'):
            with self.assertRaises(InvalidOrExpiredCoupon):
                validate_coupon_code(code, self.store.id)

    def test_code_scoped_to_store(self):
        self.make_promotion()
        other_store = Store.objects.create(owner_id=uuid.uuid4(), name='Other Store')

        with self.assertRaises(InvalidOrExpiredCoupon):
            validate_coupon_code('SPRING10', other_store.id)

    def test_exhausted(self):
        self.make_promotion(max_uses=2, current_uses=2)

        with self.assertRaises(CouponExhausted):
            validate_coupon_code('SPRING10', self.store.id)

    def test_redeem_counts_uses_up_to_max(self):
        promotion = self.make_promotion(max_uses=1)

        redeem(promotion)
        promotion.refresh_from_db()
        self.assertEqual(promotion.current_uses, 1)

        with self.assertRaises(CouponExhausted):
            redeem(promotion)
        promotion.refresh_from_db()
        self.assertEqual(promotion.current_uses, 1)

    def test_database_rejects_bad_windows(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            self.make_promotion(code='BACKWARDS', start_date=self.now, end_date=self.now - timedelta(days=1))


class PromotionManagementTestCase(PromotionTestBase):

    def promotion_data(self, **overrides):
        data = {
            'code': 'summer5',
            'type': Promotion.Type.FIXED_AMOUNT,
            'value': Decimal('5.00'),
            'start_date': self.now,
            'end_date': self.now + timedelta(days=7),
        }
        data.update(overrides)
        return data

    def test_create_promotion(self):
        promotion = create_promotion(self.store.id, self.owner, self.promotion_data())

        self.assertEqual(promotion.code, 'SUMMER5')
        self.assertEqual(promotion.current_uses, 0)
        self.assertTrue(promotion.is_active)

    def test_create_promotion_only_for_own_store(self):
        stranger = Caller(id=uuid.uuid4(), role=Role.STORE_OWNER)

        with self.assertRaises(Forbidden):
            create_promotion(self.store.id, stranger, self.promotion_data())

    def test_create_promotion_unknown_store(self):
        with self.assertRaises(NotFound):
            create_promotion(99999, self.owner, self.promotion_data())

    def test_create_promotion_business_rules(self):
        with self.assertRaises(InvalidRequest):
            create_promotion(self.store.id, self.owner, self.promotion_data(end_date=self.now))

        with self.assertRaises(InvalidRequest):
            create_promotion(self.store.id, self.owner, self.promotion_data(
                type=Promotion.Type.PERCENTAGE, value=Decimal('150')
            ))

    def test_duplicate_code(self):
        create_promotion(self.store.id, self.owner, self.promotion_data())

        with self.assertRaises(DuplicatePromotion):
            create_promotion(self.store.id, self.owner, self.promotion_data(code='SUMMER5'))

    def test_list_promotions(self):
        self.make_promotion(code='A')
        self.make_promotion(code='B')
        self.make_promotion(code='OFF', is_active=False)

        running = list_promotions(self.store.id)
        self.assertEqual(running['pagination']['total'], 2)

        everything = list_promotions(self.store.id, active_only=False, page=2, limit=2)
        self.assertEqual(len(everything['data']), 1)
        self.assertEqual(everything['pagination']['totalPages'], 2)

    def test_create_promotion_for_some_products(self):
        product = Product.objects.create(
            store=self.store, name='Bread', sku='B-1', price=Decimal('2.00'), stock_quantity=5
        )
        other_store = Store.objects.create(owner_id=uuid.uuid4(), name='Other Store')
        foreign = Product.objects.create(
            store=other_store, name='Milk', sku='M-1', price=Decimal('1.00'), stock_quantity=5
        )

        promotion = create_promotion(self.store.id, self.owner, self.promotion_data(product_ids=[product.id]))
        self.assertEqual(promotion.product_ids, [product.id])

        with self.assertRaises(InvalidRequest) as context:
            create_promotion(self.store.id, self.owner, self.promotion_data(
                code='OTHER', product_ids=[product.id, foreign.id]
            ))
        self.assertIn(str(foreign.id), context.exception.message)


class PromotionUpdateDeleteTestCase(PromotionTestBase):
    """Owner-only changes to an existing promotion."""

    def setUp(self):
        super().setUp()
        self.promotion = self.make_promotion(code='SPRING10')
        self.stranger = Caller(id=uuid.uuid4(), role=Role.STORE_OWNER)

    def use_in_order(self, promotion):
        return Order.objects.create(
            order_number='GL-TEST-0001',
            customer_id=uuid.uuid4(),
            store=self.store,
            subtotal=Decimal('20.00'),
            tax=Decimal('1.70'),
            discount_amount=Decimal('2.00'),
            total=Decimal('19.70'),
            promotion=promotion,
            pickup_code='ABC234',
        )

    def test_update_promotion(self):
        updated = update_promotion(self.promotion.id, self.owner, {
            'code': ' spring15 ', 'value': Decimal('15'), 'max_uses': 50,
        })

        self.promotion.refresh_from_db()
        self.assertEqual(updated.code, 'SPRING15')
        self.assertEqual(self.promotion.code, 'SPRING15')
        self.assertEqual(self.promotion.value, Decimal('15'))
        self.assertEqual(self.promotion.max_uses, 50)
        self.assertEqual(self.promotion.type, Promotion.Type.PERCENTAGE)

    def test_update_clears_nullable_limits(self):
        self.promotion.max_uses = 10
        self.promotion.min_order_amount = Decimal('25.00')
        self.promotion.save()

        update_promotion(self.promotion.id, self.owner, {'max_uses': None, 'min_order_amount': None})

        self.promotion.refresh_from_db()
        self.assertIsNone(self.promotion.max_uses)
        self.assertIsNone(self.promotion.min_order_amount)

    def test_update_missing_or_foreign_promotion(self):
        with self.assertRaises(NotFound) as context:
            update_promotion(99999, self.owner, {'value': Decimal('5')})
        self.assertEqual(context.exception.message, 'Promotion not found')

        with self.assertRaises(Forbidden) as context:
            update_promotion(self.promotion.id, self.stranger, {'value': Decimal('5')})
        self.assertEqual(context.exception.message, 'You are not authorized to update this promotion')

    def test_update_checks_dates_against_stored_values(self):
        """
        Test: A single date is validated against the other stored date.

        Given: A promotion ending tomorrow
        When: Moving only its start to next week
        Then: InvalidRequest, the row is unchanged
        """
        with self.assertRaises(InvalidRequest):
            update_promotion(self.promotion.id, self.owner, {'start_date': self.now + timedelta(days=7)})

        with self.assertRaises(InvalidRequest):
            update_promotion(self.promotion.id, self.owner, {'end_date': self.now - timedelta(days=2)})

        self.promotion.refresh_from_db()
        self.assertEqual(self.promotion.end_date, self.now + timedelta(days=1))

    def test_update_checks_percentage_cap_against_stored_type(self):
        fixed = self.make_promotion(code='FIVE', type=Promotion.Type.FIXED_AMOUNT, value=Decimal('150'))

        with self.assertRaises(InvalidRequest):
            update_promotion(self.promotion.id, self.owner, {'value': Decimal('120')})

        with self.assertRaises(InvalidRequest):
            update_promotion(fixed.id, self.owner, {'type': Promotion.Type.PERCENTAGE})

        update_promotion(fixed.id, self.owner, {'type': Promotion.Type.PERCENTAGE, 'value': Decimal('20')})
        fixed.refresh_from_db()
        self.assertEqual(fixed.type, Promotion.Type.PERCENTAGE)

    def test_update_code_must_stay_unique(self):
        self.make_promotion(code='TAKEN')

        with self.assertRaises(DuplicatePromotion):
            update_promotion(self.promotion.id, self.owner, {'code': 'taken'})

        # Keeping its own code is not a conflict
        update_promotion(self.promotion.id, self.owner, {'code': 'SPRING10', 'value': Decimal('12')})
        self.promotion.refresh_from_db()
        self.assertEqual(self.promotion.value, Decimal('12'))

    def test_update_max_uses_not_below_current_uses(self):
        Promotion.objects.filter(id=self.promotion.id).update(current_uses=5)

        with self.assertRaises(InvalidRequest):
            update_promotion(self.promotion.id, self.owner, {'max_uses': 4})

        update_promotion(self.promotion.id, self.owner, {'max_uses': 5})
        self.promotion.refresh_from_db()
        self.assertTrue(self.promotion.is_exhausted)

    def test_delete_unused_promotion(self):
        self.assertTrue(delete_promotion(self.promotion.id, self.owner))
        self.assertFalse(Promotion.objects.filter(id=self.promotion.id).exists())

    def test_delete_used_promotion_deactivates_it(self):
        """
        Test: Orders keep the promotion they used.

        Given: An order that applied the promotion
        When: The owner deletes the promotion
        Then: It is deactivated, the order still points at it, and the
              code no longer validates
        """
        order = self.use_in_order(self.promotion)

        self.assertFalse(delete_promotion(self.promotion.id, self.owner))

        self.promotion.refresh_from_db()
        self.assertFalse(self.promotion.is_active)
        order.refresh_from_db()
        self.assertEqual(order.promotion_id, self.promotion.id)
        with self.assertRaises(InvalidOrExpiredCoupon):
            validate_coupon_code('SPRING10', self.store.id)

    def test_delete_only_by_owner(self):
        with self.assertRaises(Forbidden) as context:
            delete_promotion(self.promotion.id, self.stranger)
        self.assertEqual(context.exception.message, 'You are not authorized to delete this promotion')

        with self.assertRaises(NotFound):
            delete_promotion(99999, self.owner)

        self.assertTrue(Promotion.objects.filter(id=self.promotion.id).exists())


class PromotionAPITestCase(PromotionTestBase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.url = reverse('promotions:store-promotions', args=[self.store.id])

    def test_list_is_public(self):
        self.make_promotion()

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data'][0]['code'], 'SPRING10')

    def test_create_requires_store_owner(self):
        payload = {
            'code': 'NEW', 'type': 'PERCENTAGE', 'value': '10.00',
            'start_date': self.now.isoformat(), 'end_date': (self.now + timedelta(days=1)).isoformat(),
        }
        customer = {'HTTP_X_USER_ID': str(uuid.uuid4()), 'HTTP_X_USER_ROLE': Role.CUSTOMER}
        owner = {'HTTP_X_USER_ID': str(self.owner.id), 'HTTP_X_USER_ROLE': Role.STORE_OWNER}

        self.assertEqual(self.client.post(self.url, payload, format='json', **customer).status_code, 403)

        response = self.client.post(self.url, payload, format='json', **owner)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['data']['code'], 'NEW')

        response = self.client.post(self.url, payload, format='json', **owner)
        self.assertEqual(response.status_code, 409)

    def test_percentage_over_100_rejected(self):
        payload = {
            'type': 'PERCENTAGE', 'value': '120.00',
            'start_date': self.now.isoformat(), 'end_date': (self.now + timedelta(days=1)).isoformat(),
        }
        owner = {'HTTP_X_USER_ID': str(self.owner.id), 'HTTP_X_USER_ROLE': Role.STORE_OWNER}

        response = self.client.post(self.url, payload, format='json', **owner)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['errors'][0]['field'], 'value')

    def test_update_and_delete_endpoints(self):
        promotion = self.make_promotion()
        url = reverse('promotions:promotion-detail', args=[promotion.id])
        owner = {'HTTP_X_USER_ID': str(self.owner.id), 'HTTP_X_USER_ROLE': Role.STORE_OWNER}
        stranger = {'HTTP_X_USER_ID': str(uuid.uuid4()), 'HTTP_X_USER_ROLE': Role.STORE_OWNER}

        response = self.client.put(url, {'value': '20.00'}, format='json', **stranger)
        self.assertEqual(response.status_code, 403)

        response = self.client.put(url, {'value': '20.00', 'max_uses': None}, format='json', **owner)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['value'], '20.00')

        response = self.client.put(url, {}, format='json', **owner)
        self.assertEqual(response.status_code, 400)

        response = self.client.delete(url, **owner)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['message'], 'Promotion deleted successfully.')

        response = self.client.delete(url, **owner)
        self.assertEqual(response.status_code, 404)
