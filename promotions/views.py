"""
Promotion API Views.

Implements:
- GET /stores/{store_id}/promotions/ - Running promotions for a store
- POST /stores/{store_id}/promotions/ - Create a promotion (store owner)
- PUT /promotions/{id}/ - Update a promotion (store owner)
- DELETE /promotions/{id}/ - Delete or deactivate a promotion (store owner)
"""
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from core.permissions import IsStoreOwner
from .serializers import (
    PromotionCreateSerializer,
    PromotionQuerySerializer,
    PromotionSerializer,
    PromotionUpdateSerializer,
)
from .services import create_promotion, delete_promotion, list_promotions, update_promotion


class StorePromotionListCreateView(APIView):
    """
    GET: List promotions for a store (public)

    Query Parameters:
        - active_only: Only promotions running now (default true)
        - page, limit: Pagination

    POST: Create a promotion for a store the caller owns
    """

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsStoreOwner()]
        return [AllowAny()]

    def get(self, request, store_id):
        query = PromotionQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        result = list_promotions(
            store_id,
            active_only=query.validated_data['active_only'],
            page=query.validated_data['page'],
            limit=query.validated_data['limit'],
            serialize=lambda items: PromotionSerializer(items, many=True).data,
        )
        return Response({'status': 'success', **result})

    def post(self, request, store_id):
        serializer = PromotionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        promotion = create_promotion(store_id, request.user, serializer.validated_data)
        return Response(
            {
                'status': 'success',
                'message': 'Promotion created successfully.',
                'data': PromotionSerializer(promotion).data,
            },
            status=status.HTTP_201_CREATED
        )


class PromotionDetailView(APIView):
    """
    PUT/PATCH: Partially update a promotion of a store the caller owns
    DELETE: Delete it, or deactivate it when orders already used it
    """
    permission_classes = [IsStoreOwner]

    def put(self, request, pk):
        serializer = PromotionUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        promotion = update_promotion(pk, request.user, serializer.validated_data)
        return Response({
            'status': 'success',
            'message': 'Promotion updated successfully.',
            'data': PromotionSerializer(promotion).data,
        })

    patch = put

    def delete(self, request, pk):
        if delete_promotion(pk, request.user):
            message = 'Promotion deleted successfully.'
        else:
            message = 'Promotion has been used by orders and was deactivated instead.'
        return Response({'status': 'success', 'message': message})
