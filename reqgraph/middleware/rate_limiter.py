"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in reqgraph/__init__.py with no default
limits; this module applies limits per route category.

Usage:
    from reqgraph.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _is_read_request() -> bool:
    return flask_request.method not in _WRITE_METHODS


def _is_write_request() -> bool:
    return flask_request.method in _WRITE_METHODS


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Relationship mutations:  60/minute  (POST/DELETE, each locks a project)
        - Relationship queries:    200/minute (GET, generous for the tree view)
        - Health check:            exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("relationships")
    if bp:
        limiter.limit(WRITE_LIMIT, exempt_when=_is_read_request)(bp)
        limiter.limit(READ_LIMIT, exempt_when=_is_write_request)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — write: %s, read: %s", WRITE_LIMIT, READ_LIMIT,
    )
