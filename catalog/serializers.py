"""
Read-only serializers for catalog data nested in order responses.
"""
from rest_framework import serializers

from .models import Product, Store


class StoreMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested store representation."""
    class Meta:
        model = Store
        fields = ['id', 'name', 'address']


class ProductMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested product representation."""
    class Meta:
        model = Product
        fields = ['id', 'name', 'sku']
