"""
Catalog Models - stores and the products they sell.

Models:
    - Store: A local shop owned by one store owner
    - Product: An item sold by exactly one store, carrying its own stock level

Store and product management is handled by the catalog service upstream;
the fulfillment engine reads prices and adjusts stock_quantity only.
"""
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class Store(models.Model):
    """
    Store entity representing a local shop customers pick orders up from.
    """
    owner_id = models.UUIDField(
        db_index=True,
        help_text="User id of the store owner"
    )
    name = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Store name"
    )
    address = models.CharField(
        max_length=500,
        blank=True,
        default='',
        help_text="Street address shown on pickup instructions"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether store is accepting orders"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Store'
        verbose_name_plural = 'Stores'
        ordering = ['name']

    def __str__(self):
        return self.name


class Product(models.Model):
    """
    Product entity. Stock lives on the product row because every product
    belongs to a single store.
    """
    store = models.ForeignKey(
        Store,
        on_delete=models.CASCADE,
        related_name='products',
        help_text="Store selling this product"
    )
    name = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Product name"
    )
    sku = models.CharField(
        max_length=100,
        help_text="Store-assigned stock keeping unit"
    )
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Current unit price (must be positive)"
    )
    stock_quantity = models.PositiveIntegerField(
        default=0,
        help_text="Units currently in stock"
    )
    low_stock_threshold = models.PositiveIntegerField(
        default=5,
        help_text="Stock level at or below which the owner is alerted"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether product is available for ordering"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Product'
        verbose_name_plural = 'Products'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['store', 'sku'],
                name='unique_store_product_sku'
            ),
        ]
        indexes = [
            models.Index(fields=['store', 'is_active'], name='product_store_active_idx'),
        ]

    def __str__(self):
        return f"{self.name} (${self.price})"

    @property
    def is_low_stock(self) -> bool:
        """Check if stock is at or below the low stock threshold."""
        return self.stock_quantity <= self.low_stock_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_quantity == 0
