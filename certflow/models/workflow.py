"""
certflow: Safety-Certification Workflow Service
Workflow domain models: the multi-phase AI extraction / approval pipeline.

Models:
    - WorkflowRun:       one pipeline execution for a project
    - WorkflowStep:      one phase of a run (fixed, ordered, 1..N)
    - WorkflowArtifact:  reviewable unit of generated content produced by a step

State machines are table-driven: every status change goes through
``check_transition`` against RUN_TRANSITIONS / STEP_TRANSITIONS /
ARTIFACT_TRANSITIONS, so an illegal move raises instead of silently
corrupting the run.

    Run:      pending → running ⇄ awaiting_approval → completed
              (a paused run resumes to running; cancelled from any active state)
    Step:     pending → running → awaiting_approval → completed
              running → error; awaiting_approval/error → running (reject)
              any unfinished step → completed (skip, apply-all only)
    Artifact: pending_review → approved | rejected; approved → applied
"""

from datetime import datetime, timezone

from certflow.core.exceptions import PreconditionFailedError
from certflow.models import db


# ── Phase catalogue ──────────────────────────────────────────────────────

WORKFLOW_PHASES = (
    {"step_type": "project_setup", "step_name": "Project Setup", "requires_approval": False},
    {"step_type": "document_upload", "step_name": "Document Upload", "requires_approval": False},
    {"step_type": "hazard_extraction", "step_name": "Hazard Extraction", "requires_approval": True},
    {"step_type": "requirement_extraction", "step_name": "Requirement Extraction", "requires_approval": True},
    {"step_type": "ce_structure_generation", "step_name": "CE Structure Generation", "requires_approval": True},
    {"step_type": "hazard_requirement_linking", "step_name": "Hazard-Requirement Linking",
     "requires_approval": True},
    {"step_type": "requirement_ce_linking", "step_name": "Requirement-CE Linking", "requires_approval": True},
    {"step_type": "conformance_generation", "step_name": "Conformance List Generation",
     "requires_approval": True},
    {"step_type": "test_case_generation", "step_name": "Test Case Generation", "requires_approval": True},
    {"step_type": "final_apply", "step_name": "Final Review & Apply", "requires_approval": True},
)

STEP_TYPES = tuple(p["step_type"] for p in WORKFLOW_PHASES)


# ── Status constants ─────────────────────────────────────────────────────

RUN_STATUSES = {"pending", "running", "paused", "awaiting_approval", "completed", "cancelled"}
ACTIVE_RUN_STATUSES = {"pending", "running", "paused", "awaiting_approval"}
TERMINAL_RUN_STATUSES = RUN_STATUSES - ACTIVE_RUN_STATUSES

STEP_STATUSES = {"pending", "running", "awaiting_approval", "completed", "error"}
CURRENT_STEP_STATUSES = {"running", "awaiting_approval", "error"}

ARTIFACT_STATUSES = {"pending_review", "approved", "rejected", "applied"}

ENTITY_ARTIFACT_TYPES = {
    "document_section", "hazard", "requirement", "certifiable_element",
    "traceability_link", "conformance_item", "test_case",
}
INFO_ARTIFACT_TYPES = {
    "document_summary", "hazard_summary", "requirement_summary",
    "certifiable_element_summary", "traceability_summary", "unlinked_hazard",
    "conformance_summary", "test_coverage_summary",
}


# ── Transition tables ────────────────────────────────────────────────────

RUN_TRANSITIONS = {
    "start": {"from": ["pending"], "to": "running"},
    "await": {"from": ["running"], "to": "awaiting_approval"},
    "resume": {"from": ["awaiting_approval", "paused", "running"], "to": "running"},
    "complete": {"from": ["running", "awaiting_approval"], "to": "completed"},
    "cancel": {"from": sorted(ACTIVE_RUN_STATUSES), "to": "cancelled"},
}

STEP_TRANSITIONS = {
    "start": {"from": ["pending", "running", "error"], "to": "running"},
    "await": {"from": ["running"], "to": "awaiting_approval"},
    "complete": {"from": ["running", "awaiting_approval"], "to": "completed"},
    "fail": {"from": ["running"], "to": "error"},
    "reject": {"from": ["awaiting_approval", "error"], "to": "running"},
    # apply-all closes every earlier step without running it
    "skip": {"from": ["pending", "running", "awaiting_approval", "error"], "to": "completed"},
}

ARTIFACT_TRANSITIONS = {
    "approve": {"from": ["pending_review"], "to": "approved"},
    "reject": {"from": ["pending_review"], "to": "rejected"},
    "apply": {"from": ["approved"], "to": "applied"},
}


def validate_transition(table: dict, current: str, action: str) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = table.get(action)
    if not rule:
        return {"valid": False, "from": current, "to": None,
                "reason": f"Unknown action: {action}"}

    if current not in rule["from"]:
        return {"valid": False, "from": current, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{current}'"}

    return {"valid": True, "from": current, "to": rule["to"], "reason": None}


def check_transition(table: dict, label: str, current: str, action: str) -> str:
    """Return the target status for ``action`` or raise PreconditionFailedError."""
    result = validate_transition(table, current, action)
    if not result["valid"]:
        raise PreconditionFailedError(f"{label}: {result['reason']}", current_status=current)
    return result["to"]


_ACTIVE_STATUS_SQL = "status IN ({})".format(", ".join(f"'{s}'" for s in sorted(ACTIVE_RUN_STATUSES)))


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── WorkflowRun ──────────────────────────────────────────────────────────

class WorkflowRun(db.Model):
    """One execution of the certification pipeline for a project."""

    __tablename__ = "workflow_runs"
    __table_args__ = (
        # at most one non-terminal run per project
        db.Index(
            "uq_workflow_runs_active_project", "project_id", unique=True,
            postgresql_where=db.text(_ACTIVE_STATUS_SQL),
            sqlite_where=db.text(_ACTIVE_STATUS_SQL),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    status = db.Column(db.String(30), nullable=False, default="pending", index=True)
    current_phase = db.Column(db.String(50), nullable=True)
    workflow_config = db.Column(db.JSON, nullable=False, default=dict,
                                comment="industry, framework, system_description, source_documents")
    initiated_by = db.Column(db.String(150), default="system")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    steps = db.relationship(
        "WorkflowStep", backref="run", lazy="select",
        order_by="WorkflowStep.step_number",
        cascade="all, delete-orphan",
    )
    artifacts = db.relationship(
        "WorkflowArtifact", backref="run", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def transition(self, action: str) -> str:
        self.status = check_transition(RUN_TRANSITIONS, f"Workflow {self.id}", self.status, action)
        if self.status in TERMINAL_RUN_STATUSES:
            self.completed_at = _utcnow()
        return self.status

    def to_dict(self, include_steps=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "status": self.status,
            "current_phase": self.current_phase,
            "workflow_config": self.workflow_config or {},
            "initiated_by": self.initiated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }
        if include_steps:
            result["steps"] = [s.to_dict() for s in self.steps]
        return result

    def __repr__(self):
        return f"<WorkflowRun {self.id} project={self.project_id} [{self.status}]>"


# ── WorkflowStep ─────────────────────────────────────────────────────────

class WorkflowStep(db.Model):
    """One phase of a workflow run."""

    __tablename__ = "workflow_steps"
    __table_args__ = (
        db.UniqueConstraint("workflow_run_id", "step_number", name="uq_workflow_step_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_run_id = db.Column(
        db.Integer, db.ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step_number = db.Column(db.Integer, nullable=False)
    step_type = db.Column(db.String(50), nullable=False)
    step_name = db.Column(db.String(120), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="pending")
    requires_approval = db.Column(db.Boolean, nullable=False, default=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    output_summary = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    artifacts = db.relationship(
        "WorkflowArtifact", backref="step", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def transition(self, action: str) -> str:
        label = f"Step {self.step_number} ({self.step_type})"
        self.status = check_transition(STEP_TRANSITIONS, label, self.status, action)
        return self.status

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_run_id": self.workflow_run_id,
            "step_number": self.step_number,
            "step_type": self.step_type,
            "step_name": self.step_name,
            "status": self.status,
            "requires_approval": self.requires_approval,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "output_summary": self.output_summary,
            "error_message": self.error_message,
        }

    def __repr__(self):
        return f"<WorkflowStep {self.step_number}:{self.step_type} [{self.status}]>"


# ── WorkflowArtifact ─────────────────────────────────────────────────────

class WorkflowArtifact(db.Model):
    """
    Generated, reviewable content awaiting materialization.

    ``artifact_data`` shape depends on ``artifact_type``; see
    certflow.ai.executors.schemas for the validated record per type.
    """

    __tablename__ = "workflow_artifacts"

    id = db.Column(db.Integer, primary_key=True)
    workflow_run_id = db.Column(
        db.Integer, db.ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    workflow_step_id = db.Column(
        db.Integer, db.ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    artifact_type = db.Column(db.String(50), nullable=False, index=True)
    artifact_data = db.Column(db.JSON, nullable=False, default=dict)
    target_table = db.Column(db.String(50), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending_review", index=True)
    verification_method = db.Column(db.String(30), nullable=True)

    reviewed_by = db.Column(db.String(150), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def _transition(self, action: str):
        self.status = check_transition(
            ARTIFACT_TRANSITIONS, f"Artifact {self.id} ({self.artifact_type})", self.status, action,
        )

    def approve(self, reviewer: str):
        self._transition("approve")
        self.reviewed_by = reviewer
        self.reviewed_at = _utcnow()

    def reject(self, reviewer: str):
        self._transition("reject")
        self.reviewed_by = reviewer
        self.reviewed_at = _utcnow()

    def mark_applied(self):
        self._transition("apply")
        self.applied_at = _utcnow()

    def to_summary(self):
        return {
            "id": self.id,
            "artifact_type": self.artifact_type,
            "status": self.status,
            "verification_method": self.verification_method,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_run_id": self.workflow_run_id,
            "workflow_step_id": self.workflow_step_id,
            "artifact_type": self.artifact_type,
            "artifact_data": self.artifact_data or {},
            "target_table": self.target_table,
            "status": self.status,
            "verification_method": self.verification_method,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "applied_at": _iso(self.applied_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<WorkflowArtifact {self.id}:{self.artifact_type} [{self.status}]>"
