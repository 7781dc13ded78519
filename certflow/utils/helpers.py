"""Shared utility functions for services and blueprints.

get_or_raise:   primary-key lookup that raises NotFoundError (service layer)
current_user:   acting user from request headers (blueprints)
json_body:      request JSON as a dict, never None (blueprints)
generate_uid:   fallback uid for materialized entities that arrive without one
"""
import logging
import secrets
import string
import time

from flask import request

from certflow.core.exceptions import NotFoundError, ValidationError
from certflow.models import db

logger = logging.getLogger(__name__)

_UID_ALPHABET = string.ascii_uppercase + string.digits


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError.

    Usage:
        run = get_or_raise(WorkflowRun, workflow_id)
    """
    label = label or model.__name__
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(resource=label, resource_id=pk)
    return obj


def current_user() -> str:
    """Best-effort acting-user extraction from headers (auth is handled by middleware)."""
    return (
        request.headers.get("X-User", "")
        or request.headers.get("X-Forwarded-User", "")
        or "system"
    )


def json_body() -> dict:
    """Return the request JSON object, raising ValidationError for non-object bodies."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def generate_uid(prefix: str) -> str:
    """Build ``<PREFIX>-<epoch-ms>-<4 random chars>``, e.g. ``HAZ-1718000000000-K3PQ``."""
    suffix = "".join(secrets.choice(_UID_ALPHABET) for _ in range(4))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"
