"""
Step executor base class.

Every generating phase follows the same unit of work:

    1. mark the step running (committed, so a crash is visible)
    2. load upstream entities: project rows + earlier artifacts of this run
    3. render the prompt and call the gateway for structured output
    4. validate items through the artifact schema, dropping invalid ones
    5. supersede this step's earlier pending_review artifacts
    6. persist one pending_review artifact per item plus a summary artifact
    7. park the step (and run) in awaiting_approval, commit once

Any failure rolls the unit of work back, marks the step ``error`` with the
message and re-raises.
"""

import json
import logging
from datetime import datetime, timezone

from certflow.ai.executors.schemas import parse_items
from certflow.models import db
from certflow.models.safety import CertifiableElement, Hazard, Requirement, TestCase
from certflow.models.workflow import WorkflowArtifact, WorkflowStep

logger = logging.getLogger(__name__)

# Artifact statuses that still count as upstream input
LIVE_ARTIFACT_STATUSES = ("pending_review", "approved", "applied")

SUPERSEDED_BY = "system:superseded"


# ── Upstream loading helpers ─────────────────────────────────────────────

def uid_map(model, project_id: int) -> dict:
    """{uid: id} for one first-class table of a project."""
    rows = db.session.query(model.uid, model.id).filter(model.project_id == project_id).all()
    return {uid.upper(): pk for uid, pk in rows if uid}


def upstream_artifacts(run, step, artifact_type: str) -> list[dict]:
    """artifact_data of live artifacts produced by earlier steps of this run."""
    rows = (
        WorkflowArtifact.query
        .join(WorkflowStep, WorkflowArtifact.workflow_step_id == WorkflowStep.id)
        .filter(
            WorkflowArtifact.workflow_run_id == run.id,
            WorkflowArtifact.artifact_type == artifact_type,
            WorkflowArtifact.status.in_(LIVE_ARTIFACT_STATUSES),
            WorkflowStep.step_number < step.step_number,
        )
        .order_by(WorkflowArtifact.id)
        .all()
    )
    return [a.artifact_data or {} for a in rows]


def merge_by_uid(rows: list[dict], artifacts: list[dict]) -> list[dict]:
    """Project rows first, then artifact items whose uid is not already present."""
    seen = {(r.get("uid") or "").upper() for r in rows}
    merged = list(rows)
    for item in artifacts:
        uid = (item.get("uid") or "").upper()
        if uid and uid in seen:
            continue
        seen.add(uid)
        merged.append(item)
    return merged


def project_hazards(run, step) -> list[dict]:
    rows = [
        {"uid": h.uid, "title": h.title, "description": h.description,
         "severity": h.severity, "likelihood": h.likelihood}
        for h in Hazard.query.filter_by(project_id=run.project_id).order_by(Hazard.id)
    ]
    return merge_by_uid(rows, upstream_artifacts(run, step, "hazard"))


def project_requirements(run, step) -> list[dict]:
    rows = [
        {"uid": r.uid, "title": r.title, "description": r.description,
         "priority": r.priority, "verification_method": r.verification_method}
        for r in Requirement.query.filter_by(project_id=run.project_id).order_by(Requirement.id)
    ]
    return merge_by_uid(rows, upstream_artifacts(run, step, "requirement"))


def project_elements(run, step) -> list[dict]:
    rows = [
        {"uid": c.uid, "name": c.name, "type": c.type, "sil_target": c.sil_target}
        for c in CertifiableElement.query.filter_by(project_id=run.project_id).order_by(CertifiableElement.id)
    ]
    return merge_by_uid(rows, upstream_artifacts(run, step, "certifiable_element"))


def project_test_uids(run) -> list[str]:
    return sorted(uid_map(TestCase, run.project_id))


def format_entities(items: list[dict], fields: tuple) -> str:
    """Render entities as one line each for prompt context."""
    if not items:
        return "(none)"
    lines = []
    for item in items:
        parts = [str(item.get(f)) for f in fields if item.get(f) not in (None, "")]
        lines.append("- " + " | ".join(parts))
    return "\n".join(lines)


def format_sections(sections: list[dict]) -> str:
    if not sections:
        return "(none)"
    return "\n\n".join(f"## {s.get('heading', '')}\n{s.get('content', '')}" for s in sections)


def count_by(records, attr: str) -> dict:
    counts = {}
    for record in records:
        key = getattr(record, attr, None) or "unspecified"
        counts[key] = counts.get(key, 0) + 1
    return counts


# ── StepExecutor ─────────────────────────────────────────────────────────

class StepExecutor:
    """
    Base class for phase executors.

    Subclasses set the class attributes and implement ``load_context`` and
    ``prompt_variables``; the hooks ``output_schema``, ``accept``,
    ``resolve``, ``persist_extras`` and ``summarize`` refine the defaults.
    ``FinalApplyExecutor`` replaces ``execute`` entirely.
    """

    step_type = ""
    prompt_name = ""
    tool_name = ""
    items_key = ""
    record_cls = None
    summary_type = ""

    def __init__(self, gateway=None, registry=None):
        self._gateway = gateway
        self._registry = registry

    @property
    def gateway(self):
        if self._gateway is None:
            from certflow.ai import get_gateway
            self._gateway = get_gateway()
        return self._gateway

    @property
    def registry(self):
        if self._registry is None:
            from certflow.ai import get_prompt_registry
            self._registry = get_prompt_registry()
        return self._registry

    # ── Unit of work ─────────────────────────────────────────────────────

    def run(self, run, step, user: str = "system") -> dict:
        """
        Execute the phase for ``step`` of ``run``.

        Returns:
            The step's output_summary.

        Raises:
            PreconditionFailedError: upstream data missing.
            GenerationServiceError (and subclasses): gateway failure.
        """
        log_extra = {"workflow_run_id": run.id, "step_id": step.id, "step_type": step.step_type}
        self._begin(run, step)
        try:
            summary = self.execute(run, step, user)
            step.transition("await")
            step.output_summary = summary
            if run.status != "awaiting_approval":
                run.transition("await")
            run.current_phase = step.step_type
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            self._mark_error(step, exc)
            logger.warning("Step %s failed: %s", step.step_type, exc, extra=log_extra)
            raise

        logger.info("Step %s awaiting approval (%s)", step.step_type,
                    {k: v for k, v in summary.items() if isinstance(v, (int, float))},
                    extra=log_extra)
        return summary

    @staticmethod
    def _begin(run, step):
        if step.status != "running":
            step.transition("start")
        if step.started_at is None:
            step.started_at = datetime.now(timezone.utc)
        step.error_message = None
        if run.status != "running":
            run.transition("resume")
        run.current_phase = step.step_type
        db.session.commit()

    @staticmethod
    def _mark_error(step, exc):
        step.transition("fail")
        step.error_message = str(exc) or type(exc).__name__
        db.session.commit()

    def execute(self, run, step, user: str) -> dict:
        context = self.load_context(run, step)
        messages = self.registry.render(self.prompt_name, **self.prompt_variables(run, context))
        result = self.gateway.generate_structured(
            messages,
            self.tool_name,
            self.output_schema(run, context),
            purpose=self.step_type,
            user=user,
            project_id=run.project_id,
        )
        data = result.get("data") or {}

        records, dropped = parse_items(data.get(self.items_key), self.record_cls)
        accepted = [r for r in records if self.accept(r, context)]
        dropped += len(records) - len(accepted)
        if dropped:
            logger.warning("%s: dropped %d invalid item(s), kept %d",
                           self.step_type, dropped, len(accepted),
                           extra={"workflow_run_id": run.id, "step_type": self.step_type})

        self.supersede(step)
        for record in accepted:
            self.add_artifact(
                run, step, record.artifact_type,
                {**record.to_dict(), **self.resolve(record, context)},
                target_table=self.target_table_for(record),
                verification_method=getattr(record, "verification_method", None),
            )
        self.persist_extras(run, step, data, context)

        summary = self.summarize(accepted, data, context)
        summary["dropped_count"] = dropped
        summary["generation"] = {
            "provider": result.get("provider"),
            "model": result.get("model"),
            "tokens": (result.get("prompt_tokens") or 0) + (result.get("completion_tokens") or 0),
        }
        self.add_artifact(run, step, self.summary_type, summary)
        return summary

    # ── Hooks ────────────────────────────────────────────────────────────

    def load_context(self, run, step) -> dict:
        raise NotImplementedError

    def prompt_variables(self, run, context: dict) -> dict:
        raise NotImplementedError

    def output_schema(self, run, context: dict) -> dict:
        raise NotImplementedError

    def accept(self, record, context: dict) -> bool:
        return True

    def resolve(self, record, context: dict) -> dict:
        """Resolved ``*_id`` fields stored alongside the record."""
        return {}

    def target_table_for(self, record):
        return record.target_table

    def persist_extras(self, run, step, data: dict, context: dict):
        pass

    def summarize(self, records: list, data: dict, context: dict) -> dict:
        return {
            "extracted_count": len(records),
            "items_preview": [self.preview(r) for r in records[:5]],
        }

    @staticmethod
    def preview(record) -> str:
        return getattr(record, "title", None) or getattr(record, "name", None) or ""

    # ── Persistence ──────────────────────────────────────────────────────

    @staticmethod
    def supersede(step):
        """Reject this step's earlier pending_review artifacts before regenerating."""
        stale = step.artifacts.filter_by(status="pending_review").all()
        for artifact in stale:
            artifact.reject(SUPERSEDED_BY)
        if stale:
            logger.info("Superseded %d pending artifact(s) of step %s", len(stale), step.step_type)
        return len(stale)

    @staticmethod
    def add_artifact(run, step, artifact_type: str, data: dict, *, target_table=None,
                     verification_method=None) -> WorkflowArtifact:
        artifact = WorkflowArtifact(
            workflow_run_id=run.id,
            workflow_step_id=step.id,
            artifact_type=artifact_type,
            artifact_data=json.loads(json.dumps(data, default=str)),
            target_table=target_table,
            status="pending_review",
            verification_method=verification_method,
        )
        db.session.add(artifact)
        return artifact


def array_schema(key: str, item_properties: dict, required: list, extra: dict | None = None) -> dict:
    """JSON schema for ``{key: [ {item} ... ]}`` tool arguments."""
    properties = {
        key: {
            "type": "array",
            "items": {"type": "object", "properties": item_properties, "required": required},
        },
    }
    properties.update(extra or {})
    return {"type": "object", "properties": properties, "required": [key]}


def enum_property(values, description: str = "") -> dict:
    prop = {"type": "string", "enum": list(values)}
    if description:
        prop["description"] = description
    return prop


STRING = {"type": "string"}
NULLABLE_STRING = {"type": ["string", "null"]}
