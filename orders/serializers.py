"""
Serializers for order models and fulfillment requests.
"""
from django.utils import timezone
from rest_framework import serializers

from catalog.serializers import ProductMinimalSerializer, StoreMinimalSerializer
from .models import Order, OrderItem, OrderStatus
from .services import MAX_ESTIMATE_MINUTES


class OrderItemSerializer(serializers.ModelSerializer):
    """Serializer for OrderItem with product details."""
    product = ProductMinimalSerializer(read_only=True)

    class Meta:
        model = OrderItem
        fields = ['id', 'product', 'quantity', 'unit_price', 'total_price']


class OrderItemCreateSerializer(serializers.Serializer):
    """Serializer for creating order items in order creation request."""
    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)


class OrderSerializer(serializers.ModelSerializer):
    """
    Serializer for Order model with nested items.
    Expects store and items__product to be loaded with the order.
    """
    store = StoreMinimalSerializer(read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)
    allowed_transitions = serializers.ListField(child=serializers.CharField(), read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'customer_id', 'store', 'status',
            'subtotal', 'tax', 'discount_amount', 'total', 'promotion',
            'pickup_time', 'estimated_ready_time', 'pickup_code',
            'customer_checked_in', 'checked_in_at', 'notes',
            'items', 'allowed_transitions', 'created_at', 'updated_at'
        ]

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # The pickup code is the customer's proof of purchase; only they see it
        caller = self.context.get('caller')
        if caller is None or caller.id != instance.customer_id:
            data.pop('pickup_code', None)
        return data


class OrderListSerializer(serializers.ModelSerializer):
    """Compact serializer for listing orders."""
    store_name = serializers.CharField(source='store.name', read_only=True)
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'order_number', 'store_name', 'status',
            'total', 'item_count', 'pickup_time', 'created_at'
        ]

    def get_item_count(self, obj):
        # Use prefetched items count if available
        if hasattr(obj, '_prefetched_objects_cache') and 'items' in obj._prefetched_objects_cache:
            return len(obj.items.all())
        return obj.items.count()


class OrderCreateSerializer(serializers.Serializer):
    """
    Serializer for creating orders via POST /orders/

    Request format:
    {
        "store_id": 1,
        "items": [
            {"product_id": 1, "quantity": 2},
            {"product_id": 3, "quantity": 1}
        ],
        "pickup_time": "2026-05-01T17:30:00Z",
        "notes": "Extra bag please"
    }
    """
    store_id = serializers.IntegerField(min_value=1)
    items = OrderItemCreateSerializer(many=True)
    pickup_time = serializers.DateTimeField(required=False)
    notes = serializers.CharField(max_length=500, required=False, allow_blank=True)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("Order must contain at least one item")

        # Check for duplicate products
        product_ids = [item['product_id'] for item in value]
        if len(product_ids) != len(set(product_ids)):
            raise serializers.ValidationError("Duplicate products in order items")

        return value

    def validate_pickup_time(self, value):
        if value <= timezone.now():
            raise serializers.ValidationError("Pickup time must be in the future")
        return value


class OrderQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OrderStatus.choices, required=False)
    store_id = serializers.IntegerField(min_value=1, required=False)
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, default=20)


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.PICKED_UP,
        OrderStatus.CANCELLED,
    ])


class VerifyPickupSerializer(serializers.Serializer):
    pickup_code = serializers.CharField(min_length=1, max_length=10, trim_whitespace=False)


class EstimatedTimeSerializer(serializers.Serializer):
    minutes = serializers.IntegerField(min_value=1, max_value=MAX_ESTIMATE_MINUTES)


class OrderStatsSerializer(serializers.Serializer):
    total_orders = serializers.IntegerField()
    pending_orders = serializers.IntegerField()
    completed_orders = serializers.IntegerField()
    cancelled_orders = serializers.IntegerField()
    total_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
    average_order_value = serializers.DecimalField(max_digits=14, decimal_places=2)
    orders_by_status = serializers.DictField(child=serializers.IntegerField())
