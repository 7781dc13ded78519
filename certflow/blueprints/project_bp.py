"""
Project blueprint: projects, source documents, materialized entities and
notifications.

Endpoints (all under /api/v1):
    GET/POST /projects                                  list / create
    GET      /projects/<pid>                            detail
    GET/POST /projects/<pid>/documents                  list / upload {filename, content_text}
    GET      /projects/<pid>/documents/<did>            detail incl. text
    POST     /projects/<pid>/documents/<did>/extract    {extraction_type} one-off extraction
    GET      /projects/<pid>/<entity>                   hazards | requirements |
                                                        certifiable-elements |
                                                        checklist-items | test-cases
    GET      /notifications                             ?project_id=&recipient=&unread=
    POST     /notifications/<nid>/read
"""

import logging

from flask import Blueprint, jsonify, request

from certflow.auth import require_role
from certflow.blueprints import generation_limit, install_error_handlers, paginated
from certflow.services import project_service
from certflow.utils.helpers import current_user, json_body

logger = logging.getLogger(__name__)

project_bp = Blueprint("project_bp", __name__, url_prefix="/api/v1")
install_error_handlers(project_bp)


# ── Projects ─────────────────────────────────────────────────────────────────

@project_bp.route("/projects", methods=["GET"])
def list_projects():
    return paginated(project_service.list_projects())


@project_bp.route("/projects", methods=["POST"])
@require_role("editor")
def create_project():
    """Body: {name, description?, industry?, compliance_framework?}"""
    project = project_service.create_project(json_body())
    return jsonify(project.to_dict()), 201


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    return jsonify(project_service.get_project(project_id).to_dict())


# ── Documents ────────────────────────────────────────────────────────────────

@project_bp.route("/projects/<int:project_id>/documents", methods=["GET"])
def list_documents(project_id):
    return paginated(project_service.list_documents(project_id))


@project_bp.route("/projects/<int:project_id>/documents", methods=["POST"])
@require_role("editor")
def upload_document(project_id):
    doc = project_service.add_document(project_id, json_body())
    return jsonify(doc.to_dict()), 201


@project_bp.route("/projects/<int:project_id>/documents/<int:document_id>", methods=["GET"])
def get_document(project_id, document_id):
    doc = project_service.get_document(project_id, document_id)
    return jsonify(doc.to_dict(include_content=True))


@project_bp.route("/projects/<int:project_id>/documents/<int:document_id>/extract", methods=["POST"])
@require_role("editor")
@generation_limit
def extract_from_document(project_id, document_id):
    """Body: {extraction_type: hazards | requirements | certifiable_elements}"""
    data = json_body()
    result = project_service.extract_from_document(project_id, document_id, data.get("extraction_type"),
                                                   user=current_user())
    return jsonify(result)


# ── Materialized entities ────────────────────────────────────────────────────

@project_bp.route("/projects/<int:project_id>/<any('hazards', 'requirements', 'certifiable-elements', "
                  "'checklist-items', 'test-cases'):entity>", methods=["GET"])
def list_entities(project_id, entity):
    query = project_service.entity_query(project_id, entity, status=request.args.get("status"))
    return paginated(query)


# ── Notifications ────────────────────────────────────────────────────────────

@project_bp.route("/notifications", methods=["GET"])
def list_notifications():
    query = project_service.notification_query(
        project_id=request.args.get("project_id", type=int),
        recipient=request.args.get("recipient"),
        unread_only=request.args.get("unread", "").lower() in ("1", "true", "yes"),
    )
    return paginated(query, default_limit=50)


@project_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id):
    return jsonify(project_service.mark_notification_read(notification_id).to_dict())
