"""Custom middleware helpers for the campus marketplace backend."""

from __future__ import annotations

from typing import Callable


class JWTCSRFBypassMiddleware:
    """Skip CSRF enforcement for stateless requests.

    Two kinds of requests never carry a session cookie: API clients sending a
    JWT Bearer token, and the gateway posting payment callbacks to the paths in
    ``CSRF_EXEMPT_PREFIXES``. Session-based endpoints such as the Django admin
    keep their CSRF protection.
    """

    CSRF_EXEMPT_PREFIXES = ("/api/payments/mpesa/callback/",)

    def __init__(self, get_response: Callable):
        self.get_response = get_response

    def __call__(self, request):
        authorization = request.META.get("HTTP_AUTHORIZATION", "")
        if authorization.lower().startswith("bearer "):
            request._dont_enforce_csrf_checks = True  # type: ignore[attr-defined]
            request.META.setdefault("CSRF_SKIP_REASON", "jwt-bearer")
        elif request.path.startswith(self.CSRF_EXEMPT_PREFIXES):
            request._dont_enforce_csrf_checks = True  # type: ignore[attr-defined]
            request.META.setdefault("CSRF_SKIP_REASON", "gateway-callback")
        return self.get_response(request)
