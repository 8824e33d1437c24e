"""
Management command to seed the database with sample data.

Generates:
- stores, each owned by a generated store owner id
- products with stock levels for every store
- a few running coupon promotions per store

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
import uuid
from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from catalog.models import Product, Store
from promotions.models import Promotion


class Command(BaseCommand):
    help = 'Seed the database with sample stores, products, and promotions'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding',
        )
        parser.add_argument(
            '--stores',
            type=int,
            default=10,
            help='Number of stores to create (default: 10)',
        )
        parser.add_argument(
            '--products',
            type=int,
            default=40,
            help='Number of products per store (default: 40)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            stores = self._create_stores(options['stores'])
            self._create_products(stores, options['products'])
            self._create_promotions(stores)

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))
        for store in stores[:3]:
            self.stdout.write(f'  Store #{store.id} {store.name}: owner X-User-Id {store.owner_id}')

    def _clear_data(self):
        """Clear all existing data."""
        from notifications.models import Notification
        from orders.models import Order, OrderItem

        OrderItem.objects.all().delete()
        Order.objects.all().delete()
        Promotion.objects.all().delete()
        Product.objects.all().delete()
        Store.objects.all().delete()
        Notification.objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_stores(self, count):
        streets = [
            'Main Street', 'Market Street', 'Oak Avenue', 'Maple Drive',
            'Elm Street', 'Park Road', 'Cedar Lane', 'Harbor Way',
        ]
        kinds = ['Corner Market', 'Bakery', 'Grocer', 'Deli', 'Farm Stand', 'Pantry']

        stores = [
            Store(
                owner_id=uuid.uuid4(),
                name=f"{random.choice(['Sunny', 'Green', 'Old Town', 'Hilltop', 'Riverside'])} "
                     f"{random.choice(kinds)} {i + 1}",
                address=f"{random.randint(100, 9999)} {random.choice(streets)}",
                is_active=random.random() > 0.1  # 90% active
            )
            for i in range(count)
        ]
        Store.objects.bulk_create(stores)

        stores = list(Store.objects.order_by('-id')[:count])
        self.stdout.write(self.style.SUCCESS(f'Created {len(stores)} stores'))
        return stores

    def _create_products(self, stores, per_store):
        """Create products with realistic prices and stock for each store."""
        names = [
            'Whole Milk', 'Sourdough Loaf', 'Free Range Eggs', 'Cheddar Cheese',
            'Honeycrisp Apples', 'Bananas', 'Ground Coffee', 'Orange Juice',
            'Greek Yogurt', 'Butter', 'Pasta', 'Tomato Sauce', 'Olive Oil',
            'Granola', 'Spinach', 'Avocados', 'Chicken Breast', 'Rice',
            'Peanut Butter', 'Sparkling Water',
        ]
        sizes = ['Small', 'Regular', 'Large', 'Family']

        products = []
        for store in stores:
            for i in range(per_store):
                name = f"{random.choice(sizes)} {random.choice(names)}"
                products.append(Product(
                    store=store,
                    name=name,
                    sku=f"SKU-{store.id}-{i + 1:04d}",
                    price=Decimal(str(round(random.uniform(0.99, 24.99), 2))),
                    stock_quantity=random.randint(0, 120),
                    low_stock_threshold=random.randint(3, 10),
                    is_active=random.random() > 0.05  # 95% active
                ))

        Product.objects.bulk_create(products, batch_size=1000, ignore_conflicts=True)
        self.stdout.write(self.style.SUCCESS(f'Created {len(products)} products'))

    def _create_promotions(self, stores):
        now = timezone.now()
        promotions = []
        for store in stores:
            promotions.append(Promotion(
                store=store,
                code='WELCOME10',
                type=Promotion.Type.PERCENTAGE,
                value=Decimal('10'),
                start_date=now - timedelta(days=1),
                end_date=now + timedelta(days=30),
            ))
            promotions.append(Promotion(
                store=store,
                code='SAVE5',
                type=Promotion.Type.FIXED_AMOUNT,
                value=Decimal('5.00'),
                min_order_amount=Decimal('25.00'),
                max_uses=100,
                start_date=now - timedelta(days=1),
                end_date=now + timedelta(days=14),
            ))

        Promotion.objects.bulk_create(promotions, ignore_conflicts=True)
        self.stdout.write(self.style.SUCCESS(f'Created {len(promotions)} promotions'))
