"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in wbs_tracker/__init__.py with no default
limits; this module applies granular limits per blueprint.

Usage:
    from wbs_tracker.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WBS_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - WBS endpoints:  60/minute  (every write rewrites a subtree)
        - Health check:   exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("wbs")
    if bp:
        limiter.limit(WBS_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — wbs: %s, health: exempt", WBS_LIMIT)
