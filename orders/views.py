"""
Order API Views.

Implements:
- GET /orders/ - List orders visible to the caller
- POST /orders/ - Create order (customer)
- GET /orders/{id}/ - Order detail with items
- PUT /orders/{id}/status/ - Status transition (store owner)
- POST /orders/{id}/reorder/ - Reorder a past order (customer)
- PUT /orders/{id}/checkin/ - Customer arrival (customer)
- PUT /orders/{id}/verify-pickup/ - Pickup code check (store owner)
- PUT /orders/{id}/estimated-time/ - Ready estimate (store owner)
- POST /orders/{id}/apply-coupon/ - Redeem a coupon (customer)
- GET /orders/stores/{store_id}/stats/ - Store order statistics (store owner)

Domain errors propagate to core.exceptions.api_exception_handler.
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.permissions import IsCustomer, IsStoreOwner
from core.rate_limiting import RateLimitMixin
from promotions.serializers import ApplyCouponSerializer
from . import services
from .models import Order
from .serializers import (
    EstimatedTimeSerializer,
    OrderCreateSerializer,
    OrderListSerializer,
    OrderQuerySerializer,
    OrderSerializer,
    OrderStatsSerializer,
    OrderStatusUpdateSerializer,
    VerifyPickupSerializer,
)

logger = logging.getLogger(__name__)


def success(data=None, message=None, status_code=status.HTTP_200_OK):
    body = {'status': 'success'}
    if message:
        body['message'] = message
    if data is not None:
        body['data'] = data
    return Response(body, status=status_code)


class OrderDetailMixin:
    """Serializes an order freshly loaded with its store and items."""

    def serialize_order(self, order):
        order = Order.objects.select_related('store').prefetch_related(
            'items__product'
        ).get(id=order.id)
        return OrderSerializer(order, context={'caller': self.request.user}).data


class OrderListCreateView(RateLimitMixin, OrderDetailMixin, APIView):
    """
    GET: List orders visible to the caller

    Query Parameters (GET):
        - status: Filter by status
        - store_id: Filter by store (store owners and admins)
        - page, limit: Pagination (limit at most 100)

    POST: Create a new order with atomic stock reservation

    Request Body (POST):
    {
        "store_id": 1,
        "items": [
            {"product_id": 1, "quantity": 2},
            {"product_id": 3, "quantity": 1}
        ]
    }
    """

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsCustomer()]
        return super().get_permissions()

    def get(self, request):
        query = OrderQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        result = services.list_orders(
            request.user,
            status=query.validated_data.get('status'),
            store_id=query.validated_data.get('store_id'),
            page=query.validated_data['page'],
            limit=query.validated_data['limit'],
            serialize=lambda orders: OrderListSerializer(orders, many=True).data,
        )
        return Response({'status': 'success', **result})

    def post(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.create_order(
            request.user,
            serializer.validated_data['store_id'],
            serializer.validated_data['items'],
            pickup_time=serializer.validated_data.get('pickup_time'),
            notes=serializer.validated_data.get('notes'),
        )
        return success(
            self.serialize_order(order),
            message='Order created successfully.',
            status_code=status.HTTP_201_CREATED,
        )


class OrderDetailView(OrderDetailMixin, APIView):
    """
    GET: Retrieve order details with all items, scoped to the caller's role.
    """

    def get(self, request, pk):
        order = services.get_order(pk, request.user)
        return success(self.serialize_order(order))


class OrderStatusView(RateLimitMixin, OrderDetailMixin, APIView):
    """PUT: Move the order to the next status."""
    permission_classes = [IsStoreOwner]

    def put(self, request, pk):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.update_order_status(pk, request.user, serializer.validated_data['status'])
        return success(self.serialize_order(order), message='Order status updated successfully.')


class ReorderView(RateLimitMixin, OrderDetailMixin, APIView):
    """POST: Place a new order from the items of a past order."""
    permission_classes = [IsCustomer]

    def post(self, request, pk):
        order, unavailable = services.reorder(pk, request.user)

        data = {'order': self.serialize_order(order)}
        if unavailable:
            data['unavailable_products'] = unavailable
        return success(data, message='Reorder created successfully.', status_code=status.HTTP_201_CREATED)


class CheckInView(RateLimitMixin, OrderDetailMixin, APIView):
    """PUT: Customer reports arrival at the store."""
    permission_classes = [IsCustomer]

    def put(self, request, pk):
        order = services.check_in(pk, request.user)
        return success(self.serialize_order(order), message='Checked in successfully.')


class VerifyPickupView(RateLimitMixin, OrderDetailMixin, APIView):
    """PUT: Store owner verifies the customer's pickup code."""
    permission_classes = [IsStoreOwner]

    def put(self, request, pk):
        serializer = VerifyPickupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.verify_pickup(pk, request.user, serializer.validated_data['pickup_code'])
        return success(self.serialize_order(order), message='Pickup verified successfully.')


class EstimatedTimeView(RateLimitMixin, OrderDetailMixin, APIView):
    """PUT: Store owner sets the estimated ready time in minutes from now."""
    permission_classes = [IsStoreOwner]

    def put(self, request, pk):
        serializer = EstimatedTimeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.set_estimated_ready_time(pk, request.user, serializer.validated_data['minutes'])
        return success(self.serialize_order(order), message='Estimated ready time updated.')


class ApplyCouponView(RateLimitMixin, OrderDetailMixin, APIView):
    """POST: Customer applies a coupon code to a pending order."""
    permission_classes = [IsCustomer]

    def post(self, request, pk):
        serializer = ApplyCouponSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = services.apply_promotion(pk, request.user, serializer.validated_data['code'])
        return success(self.serialize_order(order), message='Coupon applied successfully.')


class OrderStatsView(APIView):
    """
    GET: Order statistics for a store owned by the caller.
    """
    permission_classes = [IsStoreOwner]

    def get(self, request, store_id):
        stats = services.get_order_stats(store_id, request.user)
        return success(OrderStatsSerializer(stats).data)
