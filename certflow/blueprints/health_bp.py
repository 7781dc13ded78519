"""
Health probes (unauthenticated).

    GET /api/v1/health        process is up
    GET /api/v1/health/ready  process is up (load-balancer probe)
    GET /api/v1/health/live   database round-trip + generation config, 503 if degraded
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from certflow.ai.gateway import LLMGateway
from certflow.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    return jsonify({"status": "ok", "app": "certflow"})


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"})


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Liveness: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _generation_check() -> dict:
    # configuration only; a probe must never spend provider tokens
    gateway = LLMGateway(current_app)
    return {
        "status": "ok",
        "default_model": gateway.default_model,
        "providers": sorted(gateway.available_providers),
    }


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _database_check(), "generation": _generation_check()}
    healthy = all(c["status"] == "ok" for c in checks.values())
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
