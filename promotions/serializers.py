"""
Serializers for promotions and coupon input.
"""
from decimal import Decimal

from rest_framework import serializers

from .models import Promotion


class PromotionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Promotion
        fields = [
            'id', 'store', 'code', 'type', 'value', 'min_order_amount',
            'max_uses', 'current_uses', 'product_ids', 'start_date', 'end_date',
            'is_active', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class PromotionCreateSerializer(serializers.Serializer):
    """
    Request format:
    {
        "code": "SPRING10",
        "type": "PERCENTAGE",
        "value": "10.00",
        "min_order_amount": "25.00",
        "max_uses": 100,
        "product_ids": [12, 15],
        "start_date": "2026-03-01T00:00:00Z",
        "end_date": "2026-03-31T23:59:59Z"
    }
    """
    code = serializers.CharField(min_length=2, max_length=50, required=False)
    type = serializers.ChoiceField(choices=Promotion.Type.choices)
    value = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.01'))
    min_order_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal('0.01'), required=False
    )
    max_uses = serializers.IntegerField(min_value=1, required=False)
    product_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1), allow_empty=False, required=False
    )
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    is_active = serializers.BooleanField(default=True)

    def validate_code(self, value):
        return value.strip().upper()

    def validate(self, attrs):
        if attrs['end_date'] <= attrs['start_date']:
            raise serializers.ValidationError({'end_date': 'End date must be after start date.'})
        if attrs['type'] == Promotion.Type.PERCENTAGE and attrs['value'] > Decimal('100'):
            raise serializers.ValidationError({'value': 'Percentage discount cannot exceed 100%.'})
        return attrs


class PromotionUpdateSerializer(serializers.Serializer):
    """
    Partial update; only the fields present change. ``min_order_amount``,
    ``max_uses`` and ``product_ids`` accept null to clear the limit.
    Rules spanning fields are checked against the stored row in the service.
    """
    code = serializers.CharField(min_length=2, max_length=50, required=False)
    type = serializers.ChoiceField(choices=Promotion.Type.choices, required=False)
    value = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal('0.01'), required=False
    )
    min_order_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal('0.01'), required=False, allow_null=True
    )
    max_uses = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    product_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1), allow_empty=False, required=False, allow_null=True
    )
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)
    is_active = serializers.BooleanField(required=False)

    def validate_code(self, value):
        return value.strip().upper()

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('No fields to update.')
        return attrs


class PromotionQuerySerializer(serializers.Serializer):
    active_only = serializers.BooleanField(default=True)
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, default=20)


class ApplyCouponSerializer(serializers.Serializer):
    code = serializers.CharField(min_length=1, max_length=50)

    def validate_code(self, value):
        return value.strip().upper()
