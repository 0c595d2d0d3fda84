import hmac
import secrets

from flask import Request, session

# Endpoints that never carry a session CSRF token (pre-login, public links, webhooks).
CSRF_EXEMPT_ENDPOINTS = frozenset({"auth.login", "auth.logout"})
PUBLIC_BLUEPRINT_PREFIX = "public_"


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate the CSRF token from the X-CSRF-Token header or a form field."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    expected = session.get("csrf_token")
    if not token or not expected:
        return False
    return hmac.compare_digest(str(token), str(expected))


def is_csrf_exempt(endpoint: str | None) -> bool:
    endpoint = endpoint or ""
    if endpoint in CSRF_EXEMPT_ENDPOINTS:
        return True
    return endpoint.split(".", 1)[0].startswith(PUBLIC_BLUEPRINT_PREFIX)


def generate_token(nbytes: int = 32) -> str:
    """Opaque URL-safe token for invitation links."""
    return secrets.token_urlsafe(nbytes)


def generate_password(length: int = 12) -> str:
    alphabet = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789"
    return "".join(secrets.choice(alphabet) for _ in range(length))
