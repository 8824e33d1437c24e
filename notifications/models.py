"""
Notification Models - messages delivered to customers and store owners.
"""
from django.db import models


class Notification(models.Model):

    class Type(models.TextChoices):
        ORDER_STATUS = 'ORDER_STATUS', 'Order status'
        LOW_STOCK = 'LOW_STOCK', 'Low stock'
        PROMOTION = 'PROMOTION', 'Promotion'
        SYSTEM = 'SYSTEM', 'System'

    user_id = models.UUIDField(db_index=True, help_text="Recipient user id")
    type = models.CharField(max_length=20, choices=Type.choices)
    title = models.CharField(max_length=255)
    message = models.TextField()
    data = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = 'Notification'
        verbose_name_plural = 'Notifications'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user_id', 'is_read'], name='notification_user_read_idx'),
        ]

    def __str__(self):
        return f"[{self.type}] {self.title} -> {self.user_id}"
