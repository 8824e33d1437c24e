"""
Django Admin configuration for catalog models.
"""
from django.contrib import admin

from .models import Product, Store


@admin.register(Store)
class StoreAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'owner_id', 'is_active', 'product_count', 'created_at']
    list_filter = ['is_active', 'created_at']
    search_fields = ['name', 'address', 'owner_id']
    ordering = ['name']

    def product_count(self, obj):
        return obj.products.count()
    product_count.short_description = 'Products'


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'store', 'price', 'stock_quantity', 'is_low_stock', 'is_active']
    list_filter = ['is_active', 'store']
    search_fields = ['name', 'sku', 'store__name']
    ordering = ['store', 'name']
    raw_id_fields = ['store']

    def is_low_stock(self, obj):
        return obj.is_low_stock
    is_low_stock.boolean = True
    is_low_stock.short_description = 'Low Stock'
