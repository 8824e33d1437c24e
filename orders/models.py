"""
Order Models - Order and OrderItem entities with status tracking.

Order Status Flow:
    PENDING -> CONFIRMED -> PREPARING -> READY -> PICKED_UP
    PENDING | CONFIRMED | PREPARING | READY -> CANCELLED

PICKED_UP and CANCELLED are terminal. ALLOWED_TRANSITIONS below is the only
place the flow is defined.
"""
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q

from catalog.models import Product, Store
from promotions.models import Promotion


class OrderStatus(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    CONFIRMED = 'CONFIRMED', 'Confirmed'
    PREPARING = 'PREPARING', 'Preparing'
    READY = 'READY', 'Ready'
    PICKED_UP = 'PICKED_UP', 'Picked up'
    CANCELLED = 'CANCELLED', 'Cancelled'


ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.PICKED_UP, OrderStatus.CANCELLED}),
    OrderStatus.PICKED_UP: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, allowed in ALLOWED_TRANSITIONS.items() if not allowed
)

# Declaration order of OrderStatus doubles as the display order of next states
_STATUS_ORDER = {status: idx for idx, status in enumerate(OrderStatus.values)}


def allowed_next_statuses(status) -> list:
    """Legal next statuses for ``status``, in lifecycle order."""
    return sorted(ALLOWED_TRANSITIONS[OrderStatus(status)], key=_STATUS_ORDER.__getitem__)


def can_transition(current, new) -> bool:
    return OrderStatus(new) in ALLOWED_TRANSITIONS[OrderStatus(current)]


class Order(models.Model):
    """
    Order entity representing one customer's pickup order at a store.

    Money fields are fixed-point with two decimal places and always satisfy
    total == max(0, subtotal + tax - discount_amount).
    """

    Status = OrderStatus

    order_number = models.CharField(
        max_length=50,
        unique=True,
        help_text="Human-readable order number"
    )
    customer_id = models.UUIDField(
        db_index=True,
        help_text="User id of the customer who placed the order"
    )
    store = models.ForeignKey(
        Store,
        on_delete=models.PROTECT,
        related_name='orders',
        help_text="Store where the order is picked up"
    )
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        db_index=True,
        help_text="Current order status"
    )
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    tax = models.DecimalField(max_digits=12, decimal_places=2)
    discount_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Discount from the applied promotion"
    )
    total = models.DecimalField(max_digits=12, decimal_places=2)
    promotion = models.ForeignKey(
        Promotion,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='orders',
        help_text="Promotion applied to this order, at most one"
    )
    pickup_time = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Pickup time requested by the customer"
    )
    estimated_ready_time = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Ready time estimated by the store"
    )
    pickup_code = models.CharField(
        max_length=10,
        null=True,
        blank=True,
        help_text="Code the customer presents at pickup"
    )
    customer_checked_in = models.BooleanField(default=False)
    checked_in_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=Q(subtotal__gte=0) & Q(tax__gte=0) & Q(total__gte=0),
                name='order_amounts_non_negative'
            ),
        ]
        indexes = [
            models.Index(fields=['store', 'status'], name='order_store_status_idx'),
            models.Index(fields=['customer_id', 'created_at'], name='order_customer_created_idx'),
        ]

    def __str__(self):
        return f"Order #{self.order_number} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def allowed_transitions(self) -> list:
        return allowed_next_statuses(self.status)

    def can_transition_to(self, new_status) -> bool:
        return can_transition(self.status, new_status)

    @property
    def item_count(self) -> int:
        return self.items.count()


class OrderItem(models.Model):
    """
    OrderItem entity representing a product line in an order.

    Stores the unit price at time of order to preserve historical pricing;
    rows are written once together with their order.
    """
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='items',
        help_text="Parent order"
    )
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,  # Prevent deletion of products with orders
        related_name='order_items',
        help_text="Ordered product"
    )
    quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity ordered"
    )
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Price per unit at time of order"
    )
    total_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="unit_price x quantity"
    )

    class Meta:
        verbose_name = 'Order Item'
        verbose_name_plural = 'Order Items'
        ordering = ['id']
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gte=1),
                name='order_item_quantity_positive'
            ),
        ]

    def __str__(self):
        return f"{self.quantity}x {self.product.name} @ ${self.unit_price}"

    def save(self, *args, **kwargs):
        if self.pk is not None and not kwargs.get('force_insert'):
            raise ValueError('Order items are immutable once written')
        super().save(*args, **kwargs)
