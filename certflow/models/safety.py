"""
certflow: Safety-Certification Workflow Service
Safety domain models: the first-class project tables that approved
workflow artifacts are materialized into.

Models:
    - Hazard:              potential source of harm (severity × likelihood)
    - Requirement:         safety requirement, carries quality-check write-back
    - CertifiableElement:  system/subsystem/component unit of certification
    - ChecklistItem:       conformance checklist entry per framework phase
    - TestCase:            verification test for a requirement/hazard/CE

Traceability:
    Hazard ──▶ Requirement ──▶ CertifiableElement
    TestCase ──▶ Requirement / Hazard / CertifiableElement
    ChecklistItem ──▶ Hazard / Requirement / CertifiableElement
"""

from datetime import datetime, timezone

from certflow.models import db


# ── Constants ────────────────────────────────────────────────────────────

HAZARD_SEVERITIES = ("catastrophic", "critical", "marginal", "negligible")
HAZARD_LIKELIHOODS = ("frequent", "probable", "occasional", "remote", "improbable")
HAZARD_STATUSES = {"open", "mitigated", "closed", "accepted"}

REQUIREMENT_PRIORITIES = {"critical", "high", "medium", "low"}
REQUIREMENT_STATUSES = {"draft", "approved", "verified", "obsolete"}

CE_TYPES = ("system", "subsystem", "component", "software", "hardware")
SIL_TARGETS = ("SIL1", "SIL2", "SIL3", "SIL4")

VERIFICATION_METHODS = ("analysis", "inspection", "demonstration", "test")

TEST_TYPES = ("unit", "integration", "system", "acceptance", "safety")
TEST_PRIORITIES = ("critical", "high", "medium", "low")

_SEVERITY_RANK = {"catastrophic": 4, "critical": 3, "marginal": 2, "negligible": 1}
_LIKELIHOOD_RANK = {"frequent": 5, "probable": 4, "occasional": 3, "remote": 2, "improbable": 1}


def derive_risk_level(severity: str | None, likelihood: str | None) -> str:
    """Map severity × likelihood onto high / medium / low (MIL-STD-882 style matrix)."""
    s = _SEVERITY_RANK.get((severity or "").lower())
    lk = _LIKELIHOOD_RANK.get((likelihood or "").lower())
    if s is None or lk is None:
        return "medium"
    product = s * lk
    if product >= 12:
        return "high"
    if product >= 6:
        return "medium"
    return "low"


def _iso(value):
    return value.isoformat() if value else None


# ── Hazard ───────────────────────────────────────────────────────────────

class Hazard(db.Model):
    """Identified hazard within a project, optionally mitigated by a requirement and allocated to a CE."""

    __tablename__ = "hazards"
    __table_args__ = (
        db.UniqueConstraint("project_id", "uid", name="uq_hazard_project_uid"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    uid = db.Column(db.String(80), nullable=False)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    severity = db.Column(db.String(20), default="marginal")
    likelihood = db.Column(db.String(20), default="occasional")
    risk_level = db.Column(db.String(20), default="medium")
    analysis_type = db.Column(db.String(20), default="pha", comment="pha | sha | ssha | fmea | fta")
    status = db.Column(db.String(20), default="open")
    mitigation_strategy = db.Column(db.Text, nullable=True)

    requirement_id = db.Column(
        db.Integer, db.ForeignKey("requirements.id", ondelete="SET NULL"), nullable=True,
    )
    ce_id = db.Column(
        db.Integer, db.ForeignKey("certifiable_elements.id", ondelete="SET NULL"), nullable=True,
    )

    created_by = db.Column(db.String(150), default="system")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "uid": self.uid,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "likelihood": self.likelihood,
            "risk_level": self.risk_level,
            "analysis_type": self.analysis_type,
            "status": self.status,
            "mitigation_strategy": self.mitigation_strategy,
            "requirement_id": self.requirement_id,
            "ce_id": self.ce_id,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Hazard {self.uid}: {self.title[:40]}>"


# ── Requirement ──────────────────────────────────────────────────────────

class Requirement(db.Model):
    """
    Safety requirement.

    The ``quality_*`` / ``is_*`` columns are written back by the
    requirement-quality batch validator.
    """

    __tablename__ = "requirements"
    __table_args__ = (
        db.UniqueConstraint("project_id", "uid", name="uq_requirement_project_uid"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    uid = db.Column(db.String(80), nullable=False)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    type = db.Column(db.String(30), default="functional", comment="functional | safety | performance | interface")
    category = db.Column(db.String(80), nullable=True)
    priority = db.Column(db.String(20), default="medium")
    status = db.Column(db.String(20), default="draft")
    verification_method = db.Column(db.String(30), nullable=True)

    ce_id = db.Column(
        db.Integer, db.ForeignKey("certifiable_elements.id", ondelete="SET NULL"), nullable=True,
    )

    # Quality write-back
    quality_score = db.Column(db.Integer, nullable=True)
    quality_status = db.Column(db.String(10), nullable=True, comment="PASS | FLAG | REJECT")
    is_preventive_constraint = db.Column(db.Boolean, nullable=True)
    is_human_independent = db.Column(db.Boolean, nullable=True)
    is_objectively_verifiable = db.Column(db.Boolean, nullable=True)
    is_severity_aligned = db.Column(db.Boolean, nullable=True)
    has_clear_context = db.Column(db.Boolean, nullable=True)
    has_weak_language = db.Column(db.Boolean, nullable=True)
    weak_language_flags = db.Column(db.JSON, nullable=True)
    quality_checked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(150), default="system")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "uid": self.uid,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "verification_method": self.verification_method,
            "ce_id": self.ce_id,
            "quality_score": self.quality_score,
            "quality_status": self.quality_status,
            "is_preventive_constraint": self.is_preventive_constraint,
            "is_human_independent": self.is_human_independent,
            "is_objectively_verifiable": self.is_objectively_verifiable,
            "is_severity_aligned": self.is_severity_aligned,
            "has_clear_context": self.has_clear_context,
            "has_weak_language": self.has_weak_language,
            "weak_language_flags": self.weak_language_flags or [],
            "quality_checked_at": _iso(self.quality_checked_at),
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Requirement {self.uid}: {self.title[:40]}>"


# ── CertifiableElement ───────────────────────────────────────────────────

class CertifiableElement(db.Model):
    """Unit of safety certification; forms a tree through ``parent_id``."""

    __tablename__ = "certifiable_elements"
    __table_args__ = (
        db.UniqueConstraint("project_id", "uid", name="uq_ce_project_uid"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    uid = db.Column(db.String(80), nullable=False)
    name = db.Column(db.String(300), nullable=False)
    type = db.Column(db.String(20), default="system")
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="draft")
    sil_target = db.Column(db.String(10), nullable=True)
    parent_id = db.Column(
        db.Integer, db.ForeignKey("certifiable_elements.id", ondelete="SET NULL"), nullable=True,
    )

    created_by = db.Column(db.String(150), default="system")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "uid": self.uid,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "status": self.status,
            "sil_target": self.sil_target,
            "parent_id": self.parent_id,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<CertifiableElement {self.uid}: {self.name[:40]}>"


# ── ChecklistItem ────────────────────────────────────────────────────────

class ChecklistItem(db.Model):
    """Conformance checklist entry for one phase of the project's compliance framework."""

    __tablename__ = "checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    phase_id = db.Column(db.String(60), nullable=False)
    category = db.Column(db.String(80), nullable=False)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    verification_method = db.Column(db.String(30), nullable=True)
    priority = db.Column(db.String(10), default="medium")
    display_order = db.Column(db.Integer, default=0)
    status = db.Column(db.String(20), default="pending")

    linked_hazard_id = db.Column(db.Integer, db.ForeignKey("hazards.id", ondelete="SET NULL"), nullable=True)
    linked_requirement_id = db.Column(
        db.Integer, db.ForeignKey("requirements.id", ondelete="SET NULL"), nullable=True,
    )
    linked_ce_id = db.Column(
        db.Integer, db.ForeignKey("certifiable_elements.id", ondelete="SET NULL"), nullable=True,
    )

    created_by = db.Column(db.String(150), default="system")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "verification_method": self.verification_method,
            "priority": self.priority,
            "display_order": self.display_order,
            "status": self.status,
            "linked_hazard_id": self.linked_hazard_id,
            "linked_requirement_id": self.linked_requirement_id,
            "linked_ce_id": self.linked_ce_id,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }


# ── TestCase ─────────────────────────────────────────────────────────────

class TestCase(db.Model):
    """Verification test case."""

    __tablename__ = "test_cases"
    __table_args__ = (
        db.UniqueConstraint("project_id", "uid", name="uq_test_case_project_uid"),
    )
    # keep pytest from collecting the model as a test class
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    uid = db.Column(db.String(80), nullable=False)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    test_type = db.Column(db.String(20), default="system")
    procedure = db.Column(db.Text, default="")
    expected_result = db.Column(db.Text, default="")
    priority = db.Column(db.String(20), default="medium")
    status = db.Column(db.String(20), default="pending")
    verification_method = db.Column(db.String(30), nullable=True)

    requirement_id = db.Column(
        db.Integer, db.ForeignKey("requirements.id", ondelete="SET NULL"), nullable=True,
    )
    hazard_id = db.Column(db.Integer, db.ForeignKey("hazards.id", ondelete="SET NULL"), nullable=True)
    ce_id = db.Column(
        db.Integer, db.ForeignKey("certifiable_elements.id", ondelete="SET NULL"), nullable=True,
    )

    created_by = db.Column(db.String(150), default="system")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "uid": self.uid,
            "title": self.title,
            "description": self.description,
            "test_type": self.test_type,
            "procedure": self.procedure,
            "expected_result": self.expected_result,
            "priority": self.priority,
            "status": self.status,
            "verification_method": self.verification_method,
            "requirement_id": self.requirement_id,
            "hazard_id": self.hazard_id,
            "ce_id": self.ce_id,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<TestCase {self.uid}: {self.title[:40]}>"
