"""
Caller identity middleware — parses the bearer token, sets g.user_id / g.tenant_id / g.roles.

Authentication is performed by an external identity provider; this
service only verifies the token signature and reads three claims:

    sub        acting user id
    tenant_id  tenant the caller belongs to
    roles      role names, e.g. ["first-validator"]

Missing or invalid tokens, and tokens without a tenant claim, leave the
identity empty; routes that act on participants use ``require_identity``
and answer 401.
"""

import functools
import logging

import jwt as pyjwt
from flask import current_app, g, request

from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip identity parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def decode_access_token(token: str) -> dict:
    """Verify and decode a bearer token issued by the identity provider."""
    return pyjwt.decode(
        token,
        current_app.config["JWT_SECRET_KEY"],
        algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        options={"require": ["sub"]},
    )


def init_jwt_middleware(app):
    """Register identity parsing as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.user_id = None
        g.tenant_id = None
        g.roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired bearer token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid bearer token on %s: %s", path, exc)
            return

        try:
            g.user_id = int(payload["sub"])
        except (TypeError, ValueError):
            logger.warning("Bearer token carries non-numeric sub=%r", payload.get("sub"))
            return
        try:
            g.tenant_id = int(payload["tenant_id"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Bearer token for user %s carries no usable tenant_id", g.user_id)
            g.user_id = None
            return
        g.roles = list(payload.get("roles") or [])


def require_identity(f):
    """Decorator: answer 401 unless the request carries a valid, tenant-scoped bearer token."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "user_id", None) is None or getattr(g, "tenant_id", None) is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        return f(*args, **kwargs)

    return decorated
