"""
Django Admin configuration for promotions.
"""
from django.contrib import admin

from .models import Promotion


@admin.register(Promotion)
class PromotionAdmin(admin.ModelAdmin):
    list_display = ['id', 'code', 'store', 'type', 'value', 'current_uses', 'max_uses', 'is_active', 'end_date']
    list_filter = ['type', 'is_active', 'store']
    search_fields = ['code', 'store__name']
    ordering = ['-created_at']
    raw_id_fields = ['store']
    readonly_fields = ['current_uses', 'created_at', 'updated_at']
