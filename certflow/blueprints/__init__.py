"""
certflow: Safety-Certification Workflow Service
Blueprint registry.
"""

import logging

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from certflow import limiter
from certflow.utils.errors import E, api_error, register_service_error_handlers

logger = logging.getLogger(__name__)

# Every route that calls the generation service draws from this one bucket.
generation_limit = limiter.shared_limit(
    lambda: current_app.config.get("GENERATION_RATE_LIMIT", "30/minute"),
    scope="generation",
)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit:  max items (default 200, capped at max_limit)
        offset: starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def paginated(query, **kwargs):
    items, total = paginate_query(query, **kwargs)
    return jsonify({"items": [i.to_dict() for i in items], "total": total})


def install_error_handlers(bp) -> None:
    """Service exceptions → JSON, plus a logged 500 for anything unexpected."""
    register_service_error_handlers(bp)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
