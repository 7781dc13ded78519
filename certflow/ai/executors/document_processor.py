"""
Document processor: splits the run's source documents into reviewable
``document_section`` artifacts that feed every later phase.

Also exposes ``extract(text, extraction_type)`` for one-off extraction of
hazards / requirements / certifiable elements without persisting anything.
"""

import logging

from flask import current_app

from certflow.ai.executors.base import (
    NULLABLE_STRING,
    STRING,
    StepExecutor,
    array_schema,
    count_by,
    enum_property,
)
from certflow.ai.executors.ce_generator import CE_ITEM_PROPERTIES, CE_REQUIRED
from certflow.ai.executors.hazard_extractor import HAZARD_ITEM_PROPERTIES, HAZARD_REQUIRED
from certflow.ai.executors.requirement_extractor import (
    REQUIREMENT_ITEM_PROPERTIES,
    REQUIREMENT_REQUIRED,
)
from certflow.ai.executors.schemas import (
    SECTION_TYPES,
    CertifiableElementRecord,
    DocumentSectionRecord,
    HazardRecord,
    RequirementRecord,
    parse_items,
)
from certflow.core.exceptions import PreconditionFailedError, ValidationError
from certflow.models import db
from certflow.models.project import ProjectDocument

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[...truncated...]\n\n"
DEFAULT_MAX_CHARS = 500_000

# extraction_type → (items key, record class, item properties, required fields)
EXTRACTION_TYPES = {
    "hazards": ("hazards", HazardRecord, HAZARD_ITEM_PROPERTIES, HAZARD_REQUIRED),
    "requirements": ("requirements", RequirementRecord, REQUIREMENT_ITEM_PROPERTIES, REQUIREMENT_REQUIRED),
    "certifiable_elements": ("elements", CertifiableElementRecord, CE_ITEM_PROPERTIES, CE_REQUIRED),
}


def truncate_document(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> tuple[str, bool]:
    """Keep the first and last ``max_chars // 2`` characters of oversized text."""
    if len(text) <= max_chars:
        return text, False
    half = max_chars // 2
    return text[:half] + TRUNCATION_MARKER + text[-half:], True


class DocumentProcessor(StepExecutor):
    step_type = "document_upload"
    prompt_name = "document_processor"
    tool_name = "extract_document_sections"
    items_key = "sections"
    record_cls = DocumentSectionRecord
    summary_type = "document_summary"

    @staticmethod
    def _max_chars() -> int:
        return current_app.config.get("DOCUMENT_MAX_CHARS", DEFAULT_MAX_CHARS)

    def load_context(self, run, step) -> dict:
        config = run.workflow_config or {}
        refs = config.get("source_documents") or []
        if not refs:
            # fall back to everything uploaded for the project
            refs = [d.id for d in ProjectDocument.query.filter_by(project_id=run.project_id)
                    .order_by(ProjectDocument.id)]

        parts = []
        for ref in refs:
            name, text = self._resolve_document(run.project_id, ref)
            if text and text.strip():
                parts.append(f"=== {name} ===\n{text.strip()}")

        if not parts:
            raise PreconditionFailedError(
                "Document upload requires source document text (workflow_config.source_documents)",
            )

        text, truncated = truncate_document("\n\n".join(parts), self._max_chars())
        if truncated:
            logger.warning("Source text for run %s truncated to %d chars", run.id, len(text),
                           extra={"workflow_run_id": run.id})
        return {
            "text": text,
            "truncated": truncated,
            "document_count": len(parts),
            "system_description": config.get("system_description") or "",
            "framework": config.get("framework") or "FTA",
        }

    @staticmethod
    def _resolve_document(project_id: int, ref) -> tuple[str, str]:
        if isinstance(ref, dict):
            return ref.get("name") or "inline document", ref.get("text") or ""
        try:
            doc_id = int(ref)
        except (TypeError, ValueError):
            raise PreconditionFailedError(f"Invalid source document reference: {ref!r}")
        doc = db.session.get(ProjectDocument, doc_id)
        if doc is None or doc.project_id != project_id:
            raise PreconditionFailedError(f"Source document {doc_id} not found in project {project_id}")
        return doc.filename, doc.content_text or ""

    def prompt_variables(self, run, context: dict) -> dict:
        return {
            "framework": context["framework"],
            "system_description": context["system_description"] or "(not provided)",
            "document_text": context["text"],
        }

    def output_schema(self, run, context: dict) -> dict:
        return array_schema(
            "sections",
            {
                "heading": STRING,
                "content": STRING,
                "section_type": enum_property(SECTION_TYPES),
                "page": {"type": ["integer", "null"]},
            },
            ["heading", "content"],
            extra={"summary": NULLABLE_STRING},
        )

    @staticmethod
    def preview(record) -> str:
        return record.heading

    def summarize(self, records: list, data: dict, context: dict) -> dict:
        summary = super().summarize(records, data, context)
        summary.update({
            "by_section_type": count_by(records, "section_type"),
            "source_documents": context["document_count"],
            "truncated": context["truncated"],
            "summary": data.get("summary") or "",
        })
        return summary

    # ── Stand-alone extraction ───────────────────────────────────────────

    def extract(self, text: str, extraction_type: str, *, user: str = "system",
                project_id: int | None = None) -> dict:
        """
        Extract one kind of item straight from ``text``.

        Returns:
            {"extraction_type", "items": [...], "count", "dropped_count", "truncated"}
        """
        if extraction_type not in EXTRACTION_TYPES:
            raise ValidationError(
                f"extraction_type must be one of {', '.join(EXTRACTION_TYPES)}",
                details={"extraction_type": extraction_type},
            )
        if not text or not text.strip():
            raise ValidationError("text is required")

        key, record_cls, properties, required = EXTRACTION_TYPES[extraction_type]
        body, truncated = truncate_document(text, self._max_chars())
        messages = self.registry.render(
            "document_extractor",
            extraction_type=extraction_type.replace("_", " "),
            document_text=body,
        )
        result = self.gateway.generate_structured(
            messages,
            "extract_document_items",
            array_schema(key, properties, required),
            purpose=f"extract_{extraction_type}",
            user=user,
            project_id=project_id,
        )
        records, dropped = parse_items((result.get("data") or {}).get(key), record_cls)
        return {
            "extraction_type": extraction_type,
            "items": [r.to_dict() for r in records],
            "count": len(records),
            "dropped_count": dropped,
            "truncated": truncated,
        }
