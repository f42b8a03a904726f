"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

READ_LIMIT = "300/minute"


def rate_limit_key():
    """Limit per acting user when known, else per remote IP."""
    user_id = getattr(g, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per acting user, falling back to remote IP):
        - Participant actions/intake: ACTION_RATE_LIMIT (default 60/minute)
        - Read endpoints:             300/minute
        - Health check:               exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    action_limit = app.config.get("ACTION_RATE_LIMIT", "60/minute")

    bp = app.blueprints.get("participant")
    if bp:
        limiter.limit(action_limit, key_func=rate_limit_key, methods=["POST"])(bp)
        limiter.limit(READ_LIMIT, key_func=rate_limit_key, methods=["GET"])(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — actions: %s, read: %s", action_limit, READ_LIMIT)
