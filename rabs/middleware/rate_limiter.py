"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.  The Limiter instance
is created in rabs/__init__.py with no default limits; this module applies
limits per route category.

Usage:
    from rabs.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Loom engine endpoints fan out into many writes (window generation, reoptimize)
LOOM_LIMIT = "30/minute"
WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Loom engine:           30/minute
        - Programs/availability: 60/minute
        - Health check:          exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("loom")
    if bp:
        limiter.limit(LOOM_LIMIT)(bp)

    for bp_name in ("programs", "availability"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: loom=%s, write=%s", LOOM_LIMIT, WRITE_LIMIT)
