"""
API-key authentication and role checks for /api/v1.

Callers send ``X-API-Key``. Keys and their roles come from the API_KEYS
environment variable, read on every request so rotation needs no restart:

    API_KEYS="ci-key:editor,dashboard-key:viewer,ops-key:admin"

A key listed without a role is a viewer. Roles are ranked
viewer < editor < admin; reads need viewer, anything that changes workflow
or project state needs editor. Health probes and CORS pre-flight requests
are never checked. API_AUTH_ENABLED=false (env, else app config) turns the
checks off and treats every caller as admin.

State-changing requests that carry a body must declare
``Content-Type: application/json``; plain HTML forms cannot, which keeps
cross-site form posts out.
"""

import functools
import logging
import os

from flask import current_app, g, request

from certflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ROLE_RANK = {"viewer": 1, "editor": 2, "admin": 3}
DEFAULT_ROLE = "viewer"

_OFF_VALUES = {"false", "0", "no", "off"}
_UNGUARDED_PREFIX = "/api/v1/health"
_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def parse_api_keys(raw: str) -> dict[str, str]:
    """``"k1:editor,k2"`` → ``{"k1": "editor", "k2": "viewer"}``; unknown roles become viewer."""
    keys = {}
    for entry in (raw or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        key, _, role = entry.rpartition(":") if ":" in entry else (entry, "", DEFAULT_ROLE)
        role = role.strip().lower()
        if role not in ROLE_RANK:
            logger.warning("API key configured with unknown role %r; treating as %s", role, DEFAULT_ROLE)
            role = DEFAULT_ROLE
        keys[key.strip()] = role
    return keys


def auth_enabled() -> bool:
    flag = os.getenv("API_AUTH_ENABLED") or str(current_app.config.get("API_AUTH_ENABLED", "true"))
    return flag.strip().lower() not in _OFF_VALUES


def has_role(minimum_role: str) -> bool:
    """True when the caller authenticated for this request ranks at least ``minimum_role``."""
    rank = ROLE_RANK.get(getattr(g, "current_user_role", None), 0)
    return rank >= ROLE_RANK[minimum_role]


def require_role(minimum_role: str):
    """View decorator: 401 without an authenticated caller, 403 below ``minimum_role``."""
    def decorator(view):
        @functools.wraps(view)
        def wrapper(*args, **kwargs):
            role = getattr(g, "current_user_role", None)
            if role is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")
            if not has_role(minimum_role):
                logger.warning("Role %s denied %s %s (needs %s)", role, request.method, request.path,
                               minimum_role)
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return view(*args, **kwargs)
        return wrapper
    return decorator


def _non_json_body():
    if request.method not in _BODY_METHODS or not request.content_length:
        return None
    if "application/json" in (request.content_type or ""):
        return None
    return api_error(E.VALIDATION_INVALID, "Content-Type must be application/json", status=415)


def _authenticate():
    """Set g.current_user_role for the request, or return the error response."""
    if not auth_enabled():
        g.current_user_role = "admin"
        return None

    supplied = request.headers.get("X-API-Key", "").strip()
    if not supplied:
        return api_error(E.UNAUTHORIZED, "Authentication required. Provide X-API-Key header.")

    keys = parse_api_keys(os.getenv("API_KEYS", ""))
    if not keys:
        logger.error("Auth is enabled but API_KEYS is empty")
        return api_error(E.INTERNAL, "Server authentication not configured")

    role = keys.get(supplied)
    if role is None:
        logger.warning("Rejected API key %s... on %s", supplied[:6], request.path)
        return api_error(E.UNAUTHORIZED, "Invalid API key")
    g.current_user_role = role
    return None


def init_auth(app):
    """Guard every /api/v1 request except health probes and pre-flight."""

    @app.before_request
    def _guard_api():
        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(_UNGUARDED_PREFIX):
            return None
        if request.method == "OPTIONS":
            return None
        return _non_json_body() or _authenticate()

    with app.app_context():
        logger.info("API key auth %s", "enabled" if auth_enabled() else "disabled")
