# portal/public_routes.py
"""
Central place to define which routes are public.

Public surfaces never require a session, and the end-session action never
redirects away from them (redirecting /login to /login would loop).
"""
from __future__ import annotations

PUBLIC_PREFIXES: tuple[str, ...] = (
    "/",
    "/health",
    "/login",
    "/signup",
    "/auth/login",
    "/auth/signup",
    "/auth/sso",
    "/static",
    "/billing/stripe/webhook",  # Stripe calls this without a session
    "/docs",
    "/openapi.json",
)


def is_public_path(path: str | None) -> bool:
    if not path:
        return False
    path = path.split("?", 1)[0].rstrip("/") or "/"
    return any(path == p or path.startswith(p + "/") for p in PUBLIC_PREFIXES)
