"""
Final apply: materializes approved artifacts into the project tables.

Order matters because later categories reference earlier ones by uid:

    1. certifiable elements (two passes so parent_uid resolves)
    2. requirements
    3. hazards
    4. conformance items → checklist_items
    5. test cases
    6. traceability links (hazard.requirement_id / hazard.ce_id / requirement.ce_id)

Every artifact is applied inside its own SAVEPOINT: a failure rolls back
that artifact only and is reported in its category's ``errors``. Only
``approved`` artifacts are considered, so re-running after a partial
failure applies exactly what is left.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from certflow.ai.executors.base import StepExecutor, uid_map
from certflow.ai.executors.schemas import ARTIFACT_SCHEMAS, ArtifactValidationError
from certflow.models import db
from certflow.models.notification import Notification
from certflow.models.safety import (
    CertifiableElement,
    ChecklistItem,
    Hazard,
    Requirement,
    TestCase,
    derive_risk_level,
)
from certflow.models.workflow import WorkflowArtifact
from certflow.utils.helpers import generate_uid

logger = logging.getLogger(__name__)

ENTITY_CATEGORIES = ("certifiable_elements", "requirements", "hazards", "checklist_items", "test_cases")


class ApplyError(Exception):
    """An approved artifact cannot be materialized (e.g. unresolved reference)."""


class FinalApplyExecutor(StepExecutor):
    step_type = "final_apply"

    def execute(self, run, step, user: str) -> dict:
        approved = (
            run.artifacts
            .filter(WorkflowArtifact.status == "approved")
            .order_by(WorkflowArtifact.id)
            .all()
        )
        by_type = {}
        for artifact in approved:
            by_type.setdefault(artifact.artifact_type, []).append(artifact)

        results = {name: {"inserted": 0, "errors": []} for name in ENTITY_CATEGORIES}
        results["traceability_links"] = {"applied": 0, "errors": []}
        self.project_id = run.project_id
        self.user = user

        self._apply_elements(by_type.get("certifiable_element", []), results["certifiable_elements"])
        self._apply_each(by_type.get("requirement", []), results["requirements"], self._insert_requirement)
        self._apply_each(by_type.get("hazard", []), results["hazards"], self._insert_hazard)
        self._apply_each(by_type.get("conformance_item", []), results["checklist_items"],
                         self._insert_checklist_item)
        self._apply_each(by_type.get("test_case", []), results["test_cases"], self._insert_test_case)
        self._apply_each(by_type.get("traceability_link", []), results["traceability_links"],
                         self._apply_link, counter="applied")

        total = sum(results[name]["inserted"] for name in ENTITY_CATEGORIES)
        total += results["traceability_links"]["applied"]
        results["total_applied"] = total

        errors = sum(len(results[name]["errors"]) for name in results if isinstance(results[name], dict))
        if total:
            db.session.add(Notification(
                project_id=run.project_id,
                recipient=user,
                title=f"Workflow #{run.id} applied",
                message=f"{total} item(s) materialized into the project"
                        + (f"; {errors} failed" if errors else ""),
                category="workflow",
                severity="warning" if errors else "success",
                entity_type="workflow_run",
                entity_id=run.id,
            ))
        logger.info("Final apply for run %s: %d applied, %d error(s)", run.id, total, errors,
                    extra={"workflow_run_id": run.id, "project_id": run.project_id})
        return results

    # ── Savepoint wrapper ────────────────────────────────────────────────

    def _apply_one(self, artifact, bucket, fn, counter="inserted"):
        data = artifact.artifact_data or {}
        try:
            with db.session.begin_nested():
                record = ARTIFACT_SCHEMAS[artifact.artifact_type].from_dict(data)
                result = fn(record, data)
                artifact.mark_applied()
        except (SQLAlchemyError, ArtifactValidationError, ApplyError) as exc:
            bucket["errors"].append({
                "artifact_id": artifact.id,
                "uid": data.get("uid") or data.get("hazard_uid"),
                "error": str(getattr(exc, "orig", None) or exc),
            })
            logger.warning("Artifact %s not applied: %s", artifact.id, exc)
            return None
        bucket[counter] += 1
        return result

    def _apply_each(self, artifacts, bucket, fn, counter="inserted"):
        for artifact in artifacts:
            self._apply_one(artifact, bucket, fn, counter)

    # ── Certifiable elements ─────────────────────────────────────────────

    def _apply_elements(self, artifacts, bucket):
        inserted = []
        for artifact in artifacts:
            ce = self._apply_one(artifact, bucket, self._insert_element)
            if ce is not None:
                inserted.append((artifact, ce))

        # second pass: parents may have been inserted after their children
        ce_ids = uid_map(CertifiableElement, self.project_id)
        for artifact, ce in inserted:
            parent_uid = (artifact.artifact_data or {}).get("parent_uid")
            parent_id = ce_ids.get((parent_uid or "").upper())
            if parent_id and parent_id != ce.id:
                try:
                    with db.session.begin_nested():
                        ce.parent_id = parent_id
                except SQLAlchemyError as exc:
                    bucket["errors"].append({"artifact_id": artifact.id, "uid": ce.uid,
                                             "error": f"parent link failed: {exc}"})

    def _insert_element(self, record, data):
        ce = CertifiableElement(
            project_id=self.project_id,
            uid=record.uid or generate_uid("CE"),
            name=record.name,
            type=record.type or "system",
            description=record.description or "",
            status="draft",
            sil_target=record.sil_target,
            created_by=self.user,
        )
        db.session.add(ce)
        return ce

    # ── Requirements / hazards ───────────────────────────────────────────

    def _insert_requirement(self, record, data):
        req = Requirement(
            project_id=self.project_id,
            uid=record.uid or generate_uid("REQ"),
            title=record.title,
            description=record.description,
            type=record.type or "functional",
            category=record.category,
            priority=record.priority or "medium",
            status="draft",
            verification_method=record.verification_method,
            created_by=self.user,
        )
        db.session.add(req)
        return req

    def _insert_hazard(self, record, data):
        severity = record.severity or "marginal"
        likelihood = record.likelihood or "occasional"
        hazard = Hazard(
            project_id=self.project_id,
            uid=record.uid or generate_uid("HAZ"),
            title=record.title,
            description=record.description,
            severity=severity,
            likelihood=likelihood,
            risk_level=derive_risk_level(severity, likelihood),
            analysis_type="pha",
            status="open",
            mitigation_strategy=record.mitigation,
            created_by=self.user,
        )
        db.session.add(hazard)
        return hazard

    # ── Checklist items / test cases ─────────────────────────────────────

    def _insert_checklist_item(self, record, data):
        item = ChecklistItem(
            project_id=self.project_id,
            phase_id=record.phase_id,
            category=record.category,
            title=record.title,
            description=record.description,
            verification_method=record.verification_method,
            priority=record.priority or "medium",
            display_order=data.get("display_order") or 0,
            status="pending",
            linked_hazard_id=self._lookup(Hazard, record.linked_hazard_uid),
            linked_requirement_id=self._lookup(Requirement, record.linked_requirement_uid),
            linked_ce_id=self._lookup(CertifiableElement, record.linked_ce_uid),
            created_by=self.user,
        )
        db.session.add(item)
        return item

    def _insert_test_case(self, record, data):
        tc = TestCase(
            project_id=self.project_id,
            uid=record.uid or generate_uid("TC"),
            title=record.title,
            description=record.description,
            test_type=record.test_type or "system",
            procedure=record.procedure,
            expected_result=record.expected_result,
            priority=record.priority or "medium",
            status="pending",
            verification_method=record.verification_method,
            requirement_id=self._lookup(Requirement, record.linked_requirement_uid),
            hazard_id=self._lookup(Hazard, record.linked_hazard_uid),
            ce_id=self._lookup(CertifiableElement, record.linked_ce_uid),
            created_by=self.user,
        )
        db.session.add(tc)
        return tc

    # ── Traceability links ───────────────────────────────────────────────

    def _apply_link(self, record, data):
        requirement = self._get_by_uid(Requirement, record.requirement_uid)
        ce = self._get_by_uid(CertifiableElement, record.ce_uid) if record.ce_uid else None

        if data.get("link_type") == "requirement_ce":
            if ce is None:
                raise ApplyError(f"Unresolved certifiable element uid {record.ce_uid!r}")
            requirement.ce_id = ce.id
            return requirement

        hazard = self._get_by_uid(Hazard, record.hazard_uid)
        hazard.requirement_id = requirement.id
        if ce is not None:
            hazard.ce_id = ce.id
        return hazard

    def _get_by_uid(self, model, uid):
        obj = model.query.filter_by(project_id=self.project_id, uid=uid).first() if uid else None
        if obj is None:
            raise ApplyError(f"Unresolved {model.__tablename__} uid {uid!r}")
        return obj

    def _lookup(self, model, uid):
        if not uid:
            return None
        row = (
            db.session.query(model.id)
            .filter(model.project_id == self.project_id, model.uid == uid)
            .first()
        )
        return row[0] if row else None
