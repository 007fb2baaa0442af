"""
Role checks for the marketplace.

Roles are read from the database rather than from the request's user object,
so a demotion takes effect immediately even for a JWT issued earlier.
"""

from django.contrib.auth import get_user_model

ROLE_USER = "user"
ROLE_SELLER = "seller"
ROLE_ADMIN = "admin"


def _current_role(user):
    """Return ``(role, is_superuser)`` as stored, or None for anonymous and deleted users."""
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    return get_user_model().objects.filter(pk=user.pk).values_list("role", "is_superuser").first()


def is_admin(user) -> bool:
    current = _current_role(user)
    if current is None:
        return False
    role, is_superuser = current
    return is_superuser or role == ROLE_ADMIN


def is_seller(user) -> bool:
    """Sellers may hold a balance and request withdrawals. Admins count as sellers."""
    current = _current_role(user)
    if current is None:
        return False
    role, is_superuser = current
    return is_superuser or role in (ROLE_SELLER, ROLE_ADMIN)
