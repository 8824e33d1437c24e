"""
Promotion Models - store-scoped discount rules redeemable by coupon code.
"""
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from catalog.models import Store

MAX_PERCENTAGE = Decimal('100')


class Promotion(models.Model):
    """
    Discount rule owned by one store.

    Types:
        - PERCENTAGE: value is a percent of the order subtotal (at most 100)
        - FIXED_AMOUNT: value is a currency amount
        - BUY_X_GET_Y: value is applied as a fixed currency amount
    """

    class Type(models.TextChoices):
        PERCENTAGE = 'PERCENTAGE', 'Percentage'
        FIXED_AMOUNT = 'FIXED_AMOUNT', 'Fixed amount'
        BUY_X_GET_Y = 'BUY_X_GET_Y', 'Buy X get Y'

    store = models.ForeignKey(
        Store,
        on_delete=models.CASCADE,
        related_name='promotions',
        help_text="Store offering the promotion"
    )
    code = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        help_text="Upper-case coupon code, unique per store"
    )
    type = models.CharField(
        max_length=20,
        choices=Type.choices,
        help_text="How the value is applied"
    )
    value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Percent or currency amount depending on type"
    )
    min_order_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Minimum order subtotal required"
    )
    max_uses = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Total redemptions allowed (unlimited when empty)"
    )
    product_ids = models.JSONField(
        null=True,
        blank=True,
        help_text="Product ids the promotion is limited to (whole store when empty)"
    )
    current_uses = models.PositiveIntegerField(
        default=0,
        help_text="Redemptions so far"
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Promotion'
        verbose_name_plural = 'Promotions'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['store', 'code'],
                condition=Q(code__isnull=False),
                name='unique_store_promotion_code'
            ),
            models.CheckConstraint(
                condition=Q(end_date__gt=F('start_date')),
                name='promotion_end_after_start'
            ),
            models.CheckConstraint(
                condition=~Q(type='PERCENTAGE') | Q(value__lte=MAX_PERCENTAGE),
                name='promotion_percentage_max_100'
            ),
            models.CheckConstraint(
                condition=Q(max_uses__isnull=True) | Q(current_uses__lte=F('max_uses')),
                name='promotion_uses_within_max'
            ),
        ]
        indexes = [
            models.Index(fields=['store', 'code'], name='promotion_store_code_idx'),
            models.Index(fields=['store', 'is_active'], name='promotion_store_active_idx'),
        ]

    def __str__(self):
        return f"{self.code or 'Promotion'} ({self.type} {self.value})"

    def clean(self):
        errors = {}
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            errors['end_date'] = 'End date must be after start date.'
        if self.type == self.Type.PERCENTAGE and self.value is not None and self.value > MAX_PERCENTAGE:
            errors['value'] = 'Percentage discount cannot exceed 100%.'
        if self.max_uses is not None and self.current_uses > self.max_uses:
            errors['current_uses'] = 'Current uses cannot exceed max uses.'
        if errors:
            raise ValidationError(errors)

    def save(self, *args, **kwargs):
        if self.code:
            self.code = self.code.strip().upper()
        super().save(*args, **kwargs)

    @property
    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.current_uses >= self.max_uses

    @property
    def is_running(self) -> bool:
        now = timezone.now()
        return self.is_active and self.start_date <= now <= self.end_date
