import logging

from django.conf import settings
from rest_framework import permissions

from utils.rbac import is_admin, is_seller

logger = logging.getLogger(__name__)


def client_ip(request) -> str:
    """
    Address of the peer that reached the outermost trusted proxy.

    Only the right-most ``TRUSTED_PROXY_COUNT`` entries of X-Forwarded-For are
    written by our own proxies; anything left of them came from the client.
    """
    remote_addr = request.META.get("REMOTE_ADDR", "")
    trusted_proxies = getattr(settings, "TRUSTED_PROXY_COUNT", 0)
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if trusted_proxies <= 0 or not x_forwarded_for:
        return remote_addr
    hops = [hop.strip() for hop in x_forwarded_for.split(",") if hop.strip()]
    if not hops:
        return remote_addr
    return hops[-min(trusted_proxies, len(hops))]


class IsAdminRole(permissions.BasePermission):
    """Platform admins (role ``admin`` or superuser)."""

    message = "Admin access required"

    def has_permission(self, request, view):
        allowed = is_admin(request.user)
        if not allowed and request.user and request.user.is_authenticated:
            logger.warning(f"Non-admin user {request.user.pk} attempted to access {request.path}")
        return allowed


class IsSeller(permissions.BasePermission):
    message = "Seller access required"

    def has_permission(self, request, view):
        return is_seller(request.user)


class IsAllowedCallbackSource(permissions.BasePermission):
    """
    Gateway callbacks may only come from ``MPESA_CALLBACK_ALLOWED_IPS``.

    An empty allow-list admits every source (sandbox and local development).
    """

    def has_permission(self, request, view):
        allowed_ips = getattr(settings, "MPESA_CALLBACK_ALLOWED_IPS", [])
        if not allowed_ips:
            return True
        ip = client_ip(request)
        if ip in allowed_ips:
            return True
        logger.warning(f"Rejected payment callback from non-allow-listed address {ip}")
        return False
