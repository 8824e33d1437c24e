"""
Caller identity consumed by the fulfillment engine.

Authentication itself happens upstream; the engine only needs to know who is
calling and in which role.
"""
import uuid
from dataclasses import dataclass

from django.db import models


class Role(models.TextChoices):
    CUSTOMER = 'CUSTOMER', 'Customer'
    STORE_OWNER = 'STORE_OWNER', 'Store owner'
    ADMIN = 'ADMIN', 'Admin'


@dataclass(frozen=True)
class Caller:
    """An authenticated caller: opaque user id plus role."""
    id: uuid.UUID
    role: str

    # DRF treats request.user as authenticated through this flag
    is_authenticated = True
    is_anonymous = False

    @property
    def is_customer(self) -> bool:
        return self.role == Role.CUSTOMER

    @property
    def is_store_owner(self) -> bool:
        return self.role == Role.STORE_OWNER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def pk(self):
        return self.id

    def __str__(self):
        return f"{self.role}:{self.id}"
