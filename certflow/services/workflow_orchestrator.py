"""
Workflow Orchestrator

Owns the phase state machine of a certification workflow run:
  - initiate / status / list
  - progress (advance the current step without running an executor)
  - run_step (dispatch to the phase executor)
  - approve_step (compare-and-swap, bulk-approve artifacts, auto-run next phase)
  - reject_step / cancel
  - list_artifacts (artifact detail with status/type filters)
  - apply_all (skip to final apply through the normal run/approve path)

Every status change goes through the transition tables in
certflow.models.workflow; illegal moves raise PreconditionFailedError
before anything is mutated.

Usage:
    from certflow.services import workflow_orchestrator as orchestrator

    run = orchestrator.initiate(project_id=1, config={"framework": "FTA"}, user_id="alice")
    orchestrator.run_step(run["id"], step_id, user_id="alice")
    orchestrator.approve_step(step_id, user_id="alice")
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from certflow.ai.executors import (
    CEStructureGenerator,
    ConformanceGenerator,
    DocumentProcessor,
    FinalApplyExecutor,
    HazardExtractor,
    HazardRequirementLinker,
    RequirementCELinker,
    RequirementExtractor,
    TestCaseGenerator,
)
from certflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from certflow.models import db
from certflow.models.project import Project
from certflow.models.workflow import (
    ACTIVE_RUN_STATUSES,
    ARTIFACT_STATUSES,
    CURRENT_STEP_STATUSES,
    STEP_TRANSITIONS,
    WORKFLOW_PHASES,
    WorkflowArtifact,
    WorkflowRun,
    WorkflowStep,
    check_transition,
)
from certflow.utils.helpers import get_or_raise

logger = logging.getLogger(__name__)


# step_type → executor class; project_setup has no executor
STEP_EXECUTORS = {
    "document_upload": DocumentProcessor,
    "hazard_extraction": HazardExtractor,
    "requirement_extraction": RequirementExtractor,
    "ce_structure_generation": CEStructureGenerator,
    "hazard_requirement_linking": HazardRequirementLinker,
    "requirement_ce_linking": RequirementCELinker,
    "conformance_generation": ConformanceGenerator,
    "test_case_generation": TestCaseGenerator,
    "final_apply": FinalApplyExecutor,
}

_NO_EXECUTOR = {"project_setup"}

_unregistered = {p["step_type"] for p in WORKFLOW_PHASES} - set(STEP_EXECUTORS) - _NO_EXECUTOR
if _unregistered:
    raise RuntimeError(f"Workflow phases without executor: {sorted(_unregistered)}")
for _step_type, _executor in STEP_EXECUTORS.items():
    if _executor.step_type != _step_type:
        raise RuntimeError(f"{_executor.__name__} registered for {_step_type} but handles {_executor.step_type}")


def _now():
    return datetime.now(timezone.utc)


def _ensure_active(run: WorkflowRun):
    if run.is_terminal:
        raise PreconditionFailedError(
            f"Workflow {run.id} is {run.status}", current_status=run.status,
        )


def _get_run(workflow_id, project_id=None) -> WorkflowRun:
    run = get_or_raise(WorkflowRun, workflow_id)
    if project_id is not None and run.project_id != int(project_id):
        raise NotFoundError(resource="WorkflowRun", resource_id=workflow_id)
    return run


def _get_step(step_id, run: WorkflowRun | None = None, project_id=None) -> WorkflowStep:
    step = get_or_raise(WorkflowStep, step_id)
    if run is not None and step.workflow_run_id != run.id:
        raise NotFoundError(resource="WorkflowStep", resource_id=step_id)
    if project_id is not None and step.run.project_id != int(project_id):
        raise NotFoundError(resource="WorkflowStep", resource_id=step_id)
    return step


def _current_step(run: WorkflowRun) -> WorkflowStep | None:
    return next((s for s in run.steps if s.status in CURRENT_STEP_STATUSES), None)


def _advance(run: WorkflowRun, step: WorkflowStep) -> WorkflowStep | None:
    """Start the next pending step, or complete the run when none is left."""
    next_step = next(
        (s for s in run.steps if s.step_number > step.step_number and s.status == "pending"),
        None,
    )
    if next_step is None:
        run.transition("complete")
        run.current_phase = "completed"
        return None

    next_step.transition("start")
    next_step.started_at = _now()
    if run.status != "running":
        run.transition("resume")
    run.current_phase = next_step.step_type
    return next_step


def _validate_config(config) -> dict:
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValidationError("config must be an object")
    docs = config.get("source_documents")
    if docs is not None and not isinstance(docs, list):
        raise ValidationError("source_documents must be a list",
                              details={"source_documents": "expected list"})
    for name in ("framework", "industry", "system_description"):
        value = config.get(name)
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{name} must be a string", details={name: "expected string"})
    return dict(config)


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════

def initiate(project_id: int, config: dict | None = None, user_id: str = "system") -> dict:
    """
    Create a run with all phases; step 1 starts immediately.

    Raises:
        NotFoundError: unknown project.
        ConflictError: the project already has a non-terminal run.
    """
    project = get_or_raise(Project, project_id)
    config = _validate_config(config)

    active = WorkflowRun.query.filter(
        WorkflowRun.project_id == project.id,
        WorkflowRun.status.in_(ACTIVE_RUN_STATUSES),
    ).first()
    if active:
        raise ConflictError("WorkflowRun", "project_id", project.id)

    config.setdefault("framework", project.compliance_framework or "FTA")
    if project.industry:
        config.setdefault("industry", project.industry)

    now = _now()
    run = WorkflowRun(project_id=project.id, status="pending",
                      workflow_config=config, initiated_by=user_id)
    run.transition("start")
    run.current_phase = WORKFLOW_PHASES[0]["step_type"]
    for number, phase in enumerate(WORKFLOW_PHASES, start=1):
        run.steps.append(WorkflowStep(
            step_number=number,
            step_type=phase["step_type"],
            step_name=phase["step_name"],
            requires_approval=phase["requires_approval"],
            status="running" if number == 1 else "pending",
            started_at=now if number == 1 else None,
        ))
    db.session.add(run)
    try:
        db.session.commit()
    except IntegrityError:
        # lost the race against a concurrent initiate
        db.session.rollback()
        raise ConflictError("WorkflowRun", "project_id", project_id)

    logger.info("Workflow %s initiated for project %s by %s", run.id, project.id, user_id,
                extra={"workflow_run_id": run.id, "project_id": project.id})
    return run.to_dict(include_steps=True)


def status(workflow_id: int, project_id: int | None = None) -> dict:
    """Run, ordered steps, artifact summaries and progress."""
    run = _get_run(workflow_id, project_id)
    steps = list(run.steps)
    artifacts = run.artifacts.order_by(WorkflowArtifact.id).all()

    completed = sum(1 for s in steps if s.status == "completed")
    current = _current_step(run)
    return {
        "workflow": run.to_dict(),
        "steps": [s.to_dict() for s in steps],
        "artifacts": [a.to_summary() for a in artifacts],
        "progress": round(100 * completed / len(steps)) if steps else 0,
        "summary": {
            "total_steps": len(steps),
            "completed_steps": completed,
            "current_step": current.to_dict() if current else None,
            "pending_approvals": sum(1 for s in steps if s.status == "awaiting_approval"),
        },
    }


def list_runs(project_id: int) -> dict:
    """All runs of a project, newest first, with nested steps."""
    get_or_raise(Project, project_id)
    runs = (
        WorkflowRun.query
        .filter_by(project_id=project_id)
        .order_by(WorkflowRun.created_at.desc(), WorkflowRun.id.desc())
        .all()
    )
    return {"workflows": [r.to_dict(include_steps=True) for r in runs], "count": len(runs)}


def progress(workflow_id: int, user_id: str = "system", project_id: int | None = None) -> dict:
    """
    Advance the current running step without invoking its executor.

    Steps requiring approval park in awaiting_approval; the others complete
    and hand over to the next phase.
    """
    run = _get_run(workflow_id, project_id)
    _ensure_active(run)
    step = _current_step(run)
    if step is None or step.status != "running":
        raise PreconditionFailedError(
            f"Workflow {run.id} has no running step",
            current_status=step.status if step else run.status,
        )

    next_step = None
    if step.requires_approval:
        step.transition("await")
        if run.status != "awaiting_approval":
            run.transition("await")
    else:
        step.transition("complete")
        step.completed_at = _now()
        next_step = _advance(run, step)
    db.session.commit()

    logger.info("Workflow %s progressed step %s → %s by %s", run.id, step.step_type, step.status, user_id,
                extra={"workflow_run_id": run.id, "step_id": step.id})
    return {
        "step": step.to_dict(),
        "next_step": next_step.to_dict() if next_step else None,
        "workflow": run.to_dict(),
        "workflow_completed": run.status == "completed",
    }


# ═════════════════════════════════════════════════════════════════════════════
# Step execution & review
# ═════════════════════════════════════════════════════════════════════════════

def run_step(workflow_id: int, step_id: int, project_id: int | None = None,
             user_id: str = "system") -> dict:
    """
    Run the executor of the current step.

    Raises:
        NotFoundError: unknown run, or the step is not part of it.
        PreconditionFailedError: terminal run, step not running/error, or
            the executor is missing upstream data.
        GenerationServiceError: the generation gateway failed (step → error).
    """
    run = _get_run(workflow_id, project_id)
    step = _get_step(step_id, run=run)
    _ensure_active(run)
    if step.status not in ("running", "error"):
        raise PreconditionFailedError(
            f"Step {step.step_number} ({step.step_type}) is not the current step",
            current_status=step.status,
        )

    executor_cls = STEP_EXECUTORS.get(step.step_type)
    if executor_cls is None:
        return {"step": step.to_dict(), "executed": False, "output_summary": None}

    summary = executor_cls().run(run, step, user=user_id)
    return {"step": step.to_dict(), "executed": True, "output_summary": summary}


def approve_step(step_id: int, user_id: str = "system", project_id: int | None = None) -> dict:
    """
    Approve an awaiting step and move the run on.

    The status flip is a single conditional UPDATE, so of two concurrent
    approvals exactly one wins; the loser gets PreconditionFailedError.
    """
    step = _get_step(step_id, project_id=project_id)
    run = step.run
    _ensure_active(run)
    if step.status != "awaiting_approval":
        raise PreconditionFailedError(
            f"Step {step.step_number} ({step.step_type}) is not awaiting approval",
            current_status=step.status,
        )
    target = check_transition(STEP_TRANSITIONS, f"Step {step.step_number}", step.status, "complete")

    now = _now()
    result = db.session.execute(
        update(WorkflowStep)
        .where(WorkflowStep.id == step.id, WorkflowStep.status == "awaiting_approval")
        .values(status=target, approved_by=user_id, approved_at=now, completed_at=now)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise PreconditionFailedError(
            f"Step {step_id} was approved concurrently", current_status="completed",
        )
    db.session.refresh(step)

    approved = 0
    for artifact in step.artifacts.filter_by(status="pending_review").all():
        artifact.approve(user_id)
        approved += 1

    next_step = _advance(run, step)
    db.session.commit()
    logger.info("Step %s approved by %s (%d artifact(s))", step.step_type, user_id, approved,
                extra={"workflow_run_id": run.id, "step_id": step.id})

    auto_run = False
    if next_step is not None and next_step.step_type in STEP_EXECUTORS:
        auto_run = True
        try:
            run_step(run.id, next_step.id, user_id=user_id)
        except Exception:
            # the step is left in error for the user to retry
            logger.exception("Auto-run of step %s failed", next_step.step_type,
                             extra={"workflow_run_id": run.id, "step_id": next_step.id})

    return {
        "step": step.to_dict(),
        "artifacts_approved": approved,
        "next_step": next_step.to_dict() if next_step else None,
        "workflow_completed": run.status == "completed",
        "auto_run": auto_run,
    }


def reject_step(step_id: int, user_id: str = "system", reason: str | None = None,
                project_id: int | None = None) -> dict:
    """Send a step back to running for regeneration."""
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required", details={"reason": "required"})

    step = _get_step(step_id, project_id=project_id)
    run = step.run
    _ensure_active(run)
    step.transition("reject")

    step.rejection_reason = str(reason).strip()
    step.started_at = _now()
    step.completed_at = None
    step.approved_by = None
    step.approved_at = None
    step.error_message = None
    if run.status != "running":
        run.transition("resume")
    run.current_phase = step.step_type
    db.session.commit()

    logger.info("Step %s rejected by %s: %s", step.step_type, user_id, step.rejection_reason,
                extra={"workflow_run_id": run.id, "step_id": step.id})
    return {"step": step.to_dict(), "workflow": run.to_dict()}


def cancel(workflow_id: int, user_id: str = "system", project_id: int | None = None) -> dict:
    run = _get_run(workflow_id, project_id)
    run.transition("cancel")
    db.session.commit()
    logger.info("Workflow %s cancelled by %s", run.id, user_id, extra={"workflow_run_id": run.id})
    return run.to_dict(include_steps=True)


def apply_all(workflow_id: int, project_id: int | None = None, user_id: str = "system") -> dict:
    """
    Jump to final apply: close every unfinished earlier step, then run and
    approve the final_apply step. Only already-approved artifacts are applied.
    """
    run = _get_run(workflow_id, project_id)
    _ensure_active(run)
    steps = list(run.steps)
    final = steps[-1]

    skipped = []
    now = _now()
    for step in steps[:-1]:
        if step.status == "completed":
            continue
        step.transition("skip")
        step.started_at = step.started_at or now
        step.completed_at = now
        step.output_summary = {"skipped": True, "reason": "apply_all"}
        skipped.append(step.step_type)

    if final.status == "pending":
        final.transition("start")
        final.started_at = now
    if run.status != "running":
        run.transition("resume")
    run.current_phase = final.step_type
    db.session.commit()
    if skipped:
        logger.info("apply_all on workflow %s skipped %s", run.id, ", ".join(skipped),
                    extra={"workflow_run_id": run.id})

    if final.status != "awaiting_approval":
        run_step(run.id, final.id, user_id=user_id)
    results = final.output_summary or {}
    approval = approve_step(final.id, user_id=user_id)
    return {
        "workflow": run.to_dict(),
        "skipped_steps": skipped,
        "results": results,
        "workflow_completed": approval["workflow_completed"],
    }


def list_artifacts(workflow_id: int, project_id: int | None = None, status: str | None = None,
                   artifact_type: str | None = None) -> dict:
    """Full artifact records of a run, optionally filtered by status and type."""
    run = _get_run(workflow_id, project_id)
    if status and status not in ARTIFACT_STATUSES:
        raise ValidationError(f"Invalid artifact status: {status}",
                              details={"status": sorted(ARTIFACT_STATUSES)})
    query = run.artifacts
    if status:
        query = query.filter(WorkflowArtifact.status == status)
    if artifact_type:
        query = query.filter(WorkflowArtifact.artifact_type == artifact_type)
    artifacts = query.order_by(WorkflowArtifact.id).all()
    return {"artifacts": [a.to_dict() for a in artifacts], "count": len(artifacts)}
