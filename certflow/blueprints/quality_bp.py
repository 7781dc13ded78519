"""
Requirement quality blueprint.

Endpoints:
    POST /api/v1/requirements/validate                        score one text
    POST /api/v1/projects/<pid>/requirements/batch-validate   score + write back
    GET  /api/v1/requirements/design-precedence               mitigation hierarchy
"""

import logging

from flask import Blueprint, jsonify

from certflow.auth import require_role
from certflow.blueprints import install_error_handlers
from certflow.services import requirement_quality
from certflow.utils.helpers import json_body

logger = logging.getLogger(__name__)

quality_bp = Blueprint("quality_bp", __name__, url_prefix="/api/v1")
install_error_handlers(quality_bp)


@quality_bp.route("/requirements/validate", methods=["POST"])
def validate_requirement():
    """
    Body: {text, hazard_severity?, verification_method?, mitigation_level?, rule_set?}
    Returns: QualityResult as JSON.
    """
    data = json_body()
    result = requirement_quality.validate(
        data.get("text"),
        hazard_severity=data.get("hazard_severity"),
        verification_method=data.get("verification_method"),
        mitigation_level=data.get("mitigation_level"),
        rule_set=data.get("rule_set") or "reference",
    )
    return jsonify(result.to_dict())


@quality_bp.route("/projects/<int:project_id>/requirements/batch-validate", methods=["POST"])
@require_role("editor")
def batch_validate(project_id):
    """Body: {requirement_ids?, rule_set?}"""
    data = json_body()
    return jsonify(requirement_quality.batch_validate_requirements(
        project_id,
        requirement_ids=data.get("requirement_ids"),
        rule_set=data.get("rule_set") or "batch",
    ))


@quality_bp.route("/requirements/design-precedence", methods=["GET"])
def design_precedence():
    return jsonify({"levels": list(requirement_quality.DESIGN_PRECEDENCE)})
