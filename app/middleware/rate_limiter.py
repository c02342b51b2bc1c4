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

logger = logging.getLogger(__name__)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to the blueprints.

    Limits (per remote IP):
        - Public approval link: PUBLIC_APPROVAL_RATE_LIMIT (default 30/minute).
          The token is the only credential there, so guessing is throttled.
        - Internal workflow API: INTERNAL_WRITE_RATE_LIMIT (default 60/minute)
          on mutating methods.
        - Health check: exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    public_limit = app.config.get("PUBLIC_APPROVAL_RATE_LIMIT", "30/minute")
    bp = app.blueprints.get("public_approval")
    if bp:
        limiter.limit(public_limit)(bp)

    write_limit = app.config.get("INTERNAL_WRITE_RATE_LIMIT", "60/minute")
    bp = app.blueprints.get("stages")
    if bp:
        limiter.limit(write_limit, methods=["POST", "PUT", "PATCH", "DELETE"])(bp)

    # Health check: exempt from rate limiting
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured (public approval %s, internal writes %s)",
        public_limit, write_limit,
    )
