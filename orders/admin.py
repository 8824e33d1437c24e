"""
Django Admin configuration for order models.
"""
from django.contrib import admin

from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product', 'quantity', 'unit_price', 'total_price']
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'store', 'customer_id', 'status', 'total', 'customer_checked_in', 'created_at']
    list_filter = ['status', 'store', 'customer_checked_in', 'created_at']
    search_fields = ['order_number', 'customer_id', 'store__name']
    ordering = ['-created_at']
    readonly_fields = [
        'order_number', 'customer_id', 'store', 'status', 'subtotal', 'tax',
        'discount_amount', 'total', 'promotion', 'pickup_code',
        'customer_checked_in', 'checked_in_at', 'created_at', 'updated_at'
    ]
    inlines = [OrderItemInline]

    def has_delete_permission(self, request, obj=None):
        # Orders are an append-only audit trail
        return False
