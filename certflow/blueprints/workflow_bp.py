"""
Workflow orchestration blueprint.

Endpoints (all under /api/v1):
    POST /projects/<pid>/workflows                 initiate (201)
    GET  /projects/<pid>/workflows                 list runs
    GET  /workflows/<wid>                          status
    POST /workflows/<wid>/progress                 advance current step
    POST /workflows/<wid>/steps/<sid>/run          run the step's executor
    POST /workflow-steps/<sid>/approve             approve (auto-runs the next phase)
    POST /workflow-steps/<sid>/reject              reject with {reason}
    POST /workflows/<wid>/cancel                   cancel
    POST /workflows/<wid>/apply-all                skip ahead and apply
    GET  /workflows/<wid>/artifacts                artifact detail (?status=&type=)
    POST /workflow-orchestrator                    RPC: {action, ...params}

Mutations need the 'editor' role; generation-triggering routes share one
rate-limit bucket. The service layer owns all state changes and commits.
"""

import logging

from flask import Blueprint, jsonify, request

from certflow.auth import has_role, require_role
from certflow.blueprints import generation_limit, install_error_handlers
from certflow.core.exceptions import ValidationError
from certflow.services import workflow_orchestrator as orchestrator
from certflow.utils.errors import E, api_error
from certflow.utils.helpers import current_user, json_body

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow_bp", __name__, url_prefix="/api/v1")
install_error_handlers(workflow_bp)


def _project_scope():
    return request.args.get("project_id", type=int)


# ═════════════════════════════════════════════════════════════════════════
# Runs
# ═════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/projects/<int:project_id>/workflows", methods=["POST"])
@require_role("editor")
def initiate_workflow(project_id):
    """Start a workflow run. Body: {config?: {framework?, source_documents?, ...}}"""
    data = json_body()
    run = orchestrator.initiate(project_id, data.get("config"), user_id=current_user())
    return jsonify(run), 201


@workflow_bp.route("/projects/<int:project_id>/workflows", methods=["GET"])
def list_workflows(project_id):
    return jsonify(orchestrator.list_runs(project_id))


@workflow_bp.route("/workflows/<int:workflow_id>", methods=["GET"])
def workflow_status(workflow_id):
    return jsonify(orchestrator.status(workflow_id, project_id=_project_scope()))


@workflow_bp.route("/workflows/<int:workflow_id>/progress", methods=["POST"])
@require_role("editor")
def progress_workflow(workflow_id):
    return jsonify(orchestrator.progress(workflow_id, user_id=current_user(), project_id=_project_scope()))


@workflow_bp.route("/workflows/<int:workflow_id>/cancel", methods=["POST"])
@require_role("editor")
def cancel_workflow(workflow_id):
    return jsonify(orchestrator.cancel(workflow_id, user_id=current_user(), project_id=_project_scope()))


@workflow_bp.route("/workflows/<int:workflow_id>/apply-all", methods=["POST"])
@require_role("editor")
@generation_limit
def apply_all(workflow_id):
    return jsonify(orchestrator.apply_all(workflow_id, project_id=_project_scope(), user_id=current_user()))


@workflow_bp.route("/workflows/<int:workflow_id>/artifacts", methods=["GET"])
def list_artifacts(workflow_id):
    return jsonify(orchestrator.list_artifacts(
        workflow_id,
        project_id=_project_scope(),
        status=request.args.get("status") or None,
        artifact_type=request.args.get("type") or None,
    ))


# ═════════════════════════════════════════════════════════════════════════
# Steps
# ═════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/workflows/<int:workflow_id>/steps/<int:step_id>/run", methods=["POST"])
@require_role("editor")
@generation_limit
def run_step(workflow_id, step_id):
    return jsonify(orchestrator.run_step(workflow_id, step_id, project_id=_project_scope(),
                                         user_id=current_user()))


@workflow_bp.route("/workflow-steps/<int:step_id>/approve", methods=["POST"])
@require_role("editor")
@generation_limit
def approve_step(step_id):
    return jsonify(orchestrator.approve_step(step_id, user_id=current_user(), project_id=_project_scope()))


@workflow_bp.route("/workflow-steps/<int:step_id>/reject", methods=["POST"])
@require_role("editor")
def reject_step(step_id):
    """Body: {reason}"""
    data = json_body()
    return jsonify(orchestrator.reject_step(step_id, user_id=current_user(), reason=data.get("reason"),
                                            project_id=_project_scope()))


# ═════════════════════════════════════════════════════════════════════════
# RPC dispatch  (/api/v1/workflow-orchestrator)
# ═════════════════════════════════════════════════════════════════════════

def _param(data, name, required=True):
    value = data.get(name)
    if value is None:
        if required:
            raise ValidationError(f"{name} is required", details={name: "required"})
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer", details={name: value})


# action → (minimum role, handler(data, user))
_RPC_ACTIONS = {
    "initiate": ("editor", lambda d, u: orchestrator.initiate(
        _param(d, "project_id"), d.get("config"), user_id=u)),
    "status": ("viewer", lambda d, u: orchestrator.status(
        _param(d, "workflow_id"), project_id=_param(d, "project_id", False))),
    "list": ("viewer", lambda d, u: orchestrator.list_runs(_param(d, "project_id"))),
    "progress": ("editor", lambda d, u: orchestrator.progress(
        _param(d, "workflow_id"), user_id=u, project_id=_param(d, "project_id", False))),
    "run_step": ("editor", lambda d, u: orchestrator.run_step(
        _param(d, "workflow_id"), _param(d, "step_id"),
        project_id=_param(d, "project_id", False), user_id=u)),
    "approve_step": ("editor", lambda d, u: orchestrator.approve_step(
        _param(d, "step_id"), user_id=u, project_id=_param(d, "project_id", False))),
    "reject_step": ("editor", lambda d, u: orchestrator.reject_step(
        _param(d, "step_id"), user_id=u, reason=d.get("reason"),
        project_id=_param(d, "project_id", False))),
    "cancel": ("editor", lambda d, u: orchestrator.cancel(
        _param(d, "workflow_id"), user_id=u, project_id=_param(d, "project_id", False))),
    "apply_all": ("editor", lambda d, u: orchestrator.apply_all(
        _param(d, "workflow_id"), project_id=_param(d, "project_id", False), user_id=u)),
    "list_artifacts": ("viewer", lambda d, u: orchestrator.list_artifacts(
        _param(d, "workflow_id"), project_id=_param(d, "project_id", False),
        status=d.get("status"), artifact_type=d.get("type"))),
}
RPC_ACTIONS = tuple(_RPC_ACTIONS)


@workflow_bp.route("/workflow-orchestrator", methods=["POST"])
@generation_limit
def orchestrator_rpc():
    """Single-endpoint dispatch. Body: {action, workflow_id?, step_id?, project_id?, ...}"""
    data = json_body()
    action = data.get("action")
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required",
                         details={"actions": list(RPC_ACTIONS)})
    if action not in _RPC_ACTIONS:
        return api_error(E.VALIDATION_INVALID, f"Unknown action: {action}",
                         details={"actions": list(RPC_ACTIONS)})

    minimum_role, handler = _RPC_ACTIONS[action]
    if not has_role(minimum_role):
        return api_error(E.FORBIDDEN, "Insufficient permissions")

    result = handler(data, current_user())
    status_code = 201 if action == "initiate" else 200
    return jsonify(result), status_code
