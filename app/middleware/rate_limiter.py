"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies the limits per blueprint.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

SCHEDULE_LIMIT = "120/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Schedule API:   SCHEDULE_RATE_LIMIT (default 120/minute)
        - Health check:   exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    schedule_limit = app.config.get("SCHEDULE_RATE_LIMIT", SCHEDULE_LIMIT)
    bp = app.blueprints.get("schedule")
    if bp:
        limiter.limit(schedule_limit)(bp)

    # Health probes are never limited
    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — schedule: %s, health: exempt", schedule_limit)
