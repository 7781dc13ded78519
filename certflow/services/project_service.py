"""
Project Service

Projects, their uploaded source documents (plus one-off extraction from
them), read-only listings of the materialized safety entities and in-app
notifications. Commits happen here,
never in the blueprints.
"""

import logging

from certflow.ai.executors import DocumentProcessor
from certflow.core.exceptions import GenerationServiceError, NotFoundError, ValidationError
from certflow.models import db
from certflow.models.notification import Notification
from certflow.models.project import COMPLIANCE_FRAMEWORKS, Project, ProjectDocument
from certflow.models.safety import (
    CertifiableElement,
    ChecklistItem,
    Hazard,
    Requirement,
    TestCase,
)
from certflow.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)

# listing name → (model, default ordering column)
ENTITY_LISTINGS = {
    "hazards": (Hazard, Hazard.uid),
    "requirements": (Requirement, Requirement.uid),
    "certifiable-elements": (CertifiableElement, CertifiableElement.uid),
    "checklist-items": (ChecklistItem, ChecklistItem.display_order),
    "test-cases": (TestCase, TestCase.uid),
}


def _clean(value, field, max_len, required=False):
    text = (value or "").strip() if isinstance(value, str) or value is None else None
    if text is None:
        raise ValidationError(f"{field} must be a string", details={field: "expected string"})
    if required and not text:
        raise ValidationError(f"{field} is required", details={field: "required"})
    if len(text) > max_len:
        raise ValidationError(f"{field} must be ≤ {max_len} characters", details={field: "too long"})
    return text


# ── Projects ─────────────────────────────────────────────────────────────────

def create_project(data: dict) -> Project:
    name = _clean(data.get("name"), "name", 200, required=True)
    framework = (data.get("compliance_framework") or "FTA").strip().upper()
    if framework not in COMPLIANCE_FRAMEWORKS:
        raise ValidationError(
            f"compliance_framework must be one of: {', '.join(sorted(COMPLIANCE_FRAMEWORKS))}",
            details={"compliance_framework": framework},
        )
    project = Project(
        name=name,
        description=_clean(data.get("description"), "description", 10000) or None,
        industry=_clean(data.get("industry"), "industry", 80) or None,
        compliance_framework=framework,
    )
    db.session.add(project)
    db.session.commit()
    logger.info("Project %s created: %s", project.id, project.name, extra={"project_id": project.id})
    return project


def get_project(project_id: int) -> Project:
    return get_or_raise(Project, project_id)


def list_projects():
    return Project.query.order_by(Project.id)


# ── Documents ────────────────────────────────────────────────────────────────

def add_document(project_id: int, data: dict) -> ProjectDocument:
    """Attach a plain-text source document; the text is stored as uploaded."""
    get_or_raise(Project, project_id)
    filename = _clean(data.get("filename"), "filename", 255, required=True)
    content = data.get("content_text")
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("content_text is required", details={"content_text": "required"})

    doc = ProjectDocument(project_id=project_id, filename=filename, content_text=content)
    db.session.add(doc)
    db.session.commit()
    logger.info("Document %s (%s, %d chars) added to project %s", doc.id, filename, len(content), project_id,
                extra={"project_id": project_id})
    return doc


def list_documents(project_id: int):
    get_or_raise(Project, project_id)
    return ProjectDocument.query.filter_by(project_id=project_id).order_by(ProjectDocument.id)


def get_document(project_id: int, document_id: int) -> ProjectDocument:
    doc = db.session.get(ProjectDocument, document_id)
    if doc is None or doc.project_id != project_id:
        raise NotFoundError(resource="ProjectDocument", resource_id=document_id)
    return doc


def extract_from_document(project_id: int, document_id: int, extraction_type,
                          user: str = "system") -> dict:
    """
    One-off extraction of hazards, requirements or certifiable elements from a
    stored document. Nothing is written to the entity tables; only the
    generation usage and audit rows are kept, failed calls included.
    """
    if not isinstance(extraction_type, str) or not extraction_type.strip():
        raise ValidationError("extraction_type is required", details={"extraction_type": "required"})
    doc = get_document(project_id, document_id)
    try:
        result = DocumentProcessor().extract(doc.content_text, extraction_type, user=user,
                                             project_id=project_id)
    except GenerationServiceError:
        db.session.commit()
        raise
    db.session.commit()
    logger.info("Extracted %d %s from document %s (%d dropped)", result["count"], extraction_type, doc.id,
                result["dropped_count"], extra={"project_id": project_id})
    return {"document_id": doc.id, **result}


# ── Entity listings ──────────────────────────────────────────────────────────

def entity_query(project_id: int, entity: str, status: str | None = None):
    """Query over one of the materialized entity tables of a project."""
    if entity not in ENTITY_LISTINGS:
        raise NotFoundError(resource="Listing", resource_id=entity)
    get_or_raise(Project, project_id)
    model, order_col = ENTITY_LISTINGS[entity]
    query = model.query.filter_by(project_id=project_id)
    if status:
        query = query.filter(model.status == status)
    return query.order_by(order_col, model.id)


# ── Notifications ────────────────────────────────────────────────────────────

def notification_query(project_id: int | None = None, recipient: str | None = None,
                       unread_only: bool = False):
    query = Notification.query
    if project_id is not None:
        query = query.filter(Notification.project_id == project_id)
    if recipient:
        query = query.filter(Notification.recipient.in_((recipient, "all")))
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc())


def mark_notification_read(notification_id: int) -> Notification:
    notif = get_or_raise(Notification, notification_id)
    if not notif.is_read:
        notif.mark_read()
        db.session.commit()
    return notif
