"""
Role gates for the order endpoints. Ownership checks (is this the order's
customer, does this owner own the store) live in the services.
"""
from rest_framework.permissions import BasePermission

from .identity import Role


class HasRole(BasePermission):
    allowed_roles = ()
    message = 'You do not have the role required for this action.'

    def has_permission(self, request, view):
        user = request.user
        return bool(
            user and getattr(user, 'is_authenticated', False)
            and getattr(user, 'role', None) in self.allowed_roles
        )


class IsCustomer(HasRole):
    allowed_roles = (Role.CUSTOMER,)
    message = 'Only customers can perform this action.'


class IsStoreOwner(HasRole):
    allowed_roles = (Role.STORE_OWNER,)
    message = 'Only store owners can perform this action.'
