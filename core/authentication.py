"""
DRF authentication backed by identity headers set by the API gateway.

The gateway verifies the user's token and forwards:
    X-User-Id:   UUID of the authenticated user
    X-User-Role: CUSTOMER | STORE_OWNER | ADMIN
"""
import uuid

from rest_framework import authentication, exceptions

from .identity import Caller, Role


class GatewayIdentityAuthentication(authentication.BaseAuthentication):
    user_header = 'HTTP_X_USER_ID'
    role_header = 'HTTP_X_USER_ROLE'

    def authenticate(self, request):
        raw_id = request.META.get(self.user_header)
        if not raw_id:
            return None

        try:
            user_id = uuid.UUID(raw_id.strip())
        except ValueError:
            raise exceptions.AuthenticationFailed('Invalid user id header.')

        role = request.META.get(self.role_header, '').strip().upper()
        if role not in Role.values:
            raise exceptions.AuthenticationFailed('Invalid or missing user role header.')

        return Caller(id=user_id, role=role), None

    def authenticate_header(self, request):
        return 'Gateway'
