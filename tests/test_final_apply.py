"""
Tests: Final apply (approved artifacts → project tables).

Covers:
    - category ordering and parent_uid resolution in the second CE pass
    - column defaults for materialized rows
    - per-artifact savepoints: a duplicate uid fails alone
    - unresolved traceability references reported, not raised
    - only approved artifacts are applied; a re-run applies nothing twice
"""

import pytest

from certflow.ai.executors import FinalApplyExecutor
from certflow.models import db as _db
from certflow.models.notification import Notification
from certflow.models.safety import (
    CertifiableElement,
    ChecklistItem,
    Hazard,
    Requirement,
    TestCase,
)
from certflow.models.workflow import WorkflowArtifact, WorkflowRun


# ═════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═════════════════════════════════════════════════════════════════════════════

@pytest.fixture()
def run(workflow):
    return _db.session.get(WorkflowRun, workflow["id"])


@pytest.fixture()
def final_step(run):
    return run.steps[-1]


def _artifact(run, artifact_type, data, status="approved", step=None):
    artifact = WorkflowArtifact(
        workflow_run_id=run.id,
        workflow_step_id=(step or run.steps[2]).id,
        artifact_type=artifact_type,
        artifact_data=data,
        status=status,
    )
    _db.session.add(artifact)
    _db.session.commit()
    return artifact


def _apply(run, final_step, user="lead"):
    results = FinalApplyExecutor().execute(run, final_step, user)
    _db.session.commit()
    return results


HAZARD = {"uid": "HAZ-001", "title": "Loss of braking", "description": "Brake fails on demand",
          "severity": "catastrophic", "likelihood": "remote", "mitigation": "Dual circuits"}
REQUIREMENT = {"uid": "REQ-001", "title": "Redundant brake", "description": "The system shall brake",
               "category": "safety", "priority": "critical"}


# ═════════════════════════════════════════════════════════════════════════════
# TESTS
# ═════════════════════════════════════════════════════════════════════════════

class TestFinalApply:
    def test_child_before_parent_still_linked(self, run, final_step, project):
        _artifact(run, "certifiable_element",
                  {"uid": "CE-001.1", "name": "Brakes", "type": "subsystem", "parent_uid": "CE-001"})
        _artifact(run, "certifiable_element",
                  {"uid": "CE-001", "name": "Train", "type": "system", "sil_target": "SIL4"})

        results = _apply(run, final_step)

        assert results["certifiable_elements"] == {"inserted": 2, "errors": []}
        child = CertifiableElement.query.filter_by(uid="CE-001.1").one()
        parent = CertifiableElement.query.filter_by(uid="CE-001").one()
        assert child.parent_id == parent.id
        assert parent.sil_target == "SIL4"
        assert parent.created_by == "lead"

    def test_defaults(self, run, final_step, project):
        _artifact(run, "requirement", REQUIREMENT)
        _artifact(run, "hazard", HAZARD)
        _artifact(run, "test_case", {
            "title": "Brake test", "description": "Apply emergency brake", "test_type": "safety",
            "procedure": "Trigger brake", "expected_result": "Stops", "priority": "high",
            "verification_method": "test", "linked_requirement_uid": "REQ-001",
        })
        _artifact(run, "conformance_item", {
            "phase_id": "hazard_analysis", "category": "analysis", "title": "PHA reviewed",
            "description": "Review the PHA", "verification_method": "inspection", "priority": "high",
            "display_order": 4, "linked_hazard_uid": "HAZ-001",
        })

        results = _apply(run, final_step)

        assert results["total_applied"] == 4
        req = Requirement.query.filter_by(uid="REQ-001").one()
        assert req.type == "functional"
        assert req.status == "draft"
        hazard = Hazard.query.filter_by(uid="HAZ-001").one()
        assert hazard.status == "open"
        assert hazard.analysis_type == "pha"
        assert hazard.risk_level == "medium"
        assert hazard.mitigation_strategy == "Dual circuits"
        tc = TestCase.query.one()
        assert tc.uid.startswith("TC-")
        assert tc.status == "pending"
        assert tc.requirement_id == req.id
        item = ChecklistItem.query.one()
        assert item.display_order == 4
        assert item.linked_hazard_id == hazard.id

    def test_duplicate_uid_fails_alone(self, run, final_step, project):
        _db.session.add(Hazard(project_id=project.id, uid="HAZ-001", title="Existing",
                               severity="critical", likelihood="remote"))
        _db.session.commit()
        dup = _artifact(run, "hazard", HAZARD)
        ok = _artifact(run, "hazard", {**HAZARD, "uid": "HAZ-002", "title": "Door opens"})

        results = _apply(run, final_step)

        assert results["hazards"]["inserted"] == 1
        assert len(results["hazards"]["errors"]) == 1
        error = results["hazards"]["errors"][0]
        assert error["artifact_id"] == dup.id
        assert error["uid"] == "HAZ-001"
        assert _db.session.get(WorkflowArtifact, dup.id).status == "approved"
        assert _db.session.get(WorkflowArtifact, ok.id).status == "applied"
        assert Hazard.query.filter_by(project_id=project.id).count() == 2
        notif = Notification.query.one()
        assert notif.severity == "warning"
        assert "1 failed" in notif.message

    def test_unresolved_link_reported(self, run, final_step, project):
        _artifact(run, "hazard", HAZARD)
        link = _artifact(run, "traceability_link", {
            "hazard_uid": "HAZ-001", "hazard_title": "Loss of braking",
            "requirement_uid": "REQ-404", "requirement_title": "Emergency brake", "link_rationale": "x",
            "confidence": 0.7, "verification_method": "test", "link_type": "hazard_requirement",
        })

        results = _apply(run, final_step)

        assert results["traceability_links"]["applied"] == 0
        assert results["traceability_links"]["errors"][0]["artifact_id"] == link.id
        assert "REQ-404" in results["traceability_links"]["errors"][0]["error"]
        assert Hazard.query.one().requirement_id is None

    def test_links_applied(self, run, final_step, project):
        _artifact(run, "certifiable_element", {"uid": "CE-001", "name": "Train", "type": "system"})
        _artifact(run, "requirement", REQUIREMENT)
        _artifact(run, "hazard", HAZARD)
        _artifact(run, "traceability_link", {
            "hazard_uid": "HAZ-001", "hazard_title": "Loss of braking",
            "requirement_uid": "REQ-001", "requirement_title": "Emergency brake", "link_rationale": "mitigates",
            "confidence": 0.9, "verification_method": "test", "link_type": "hazard_requirement",
        })
        _artifact(run, "traceability_link", {
            "hazard_uid": "HAZ-001", "hazard_title": "Loss of braking",
            "requirement_uid": "REQ-001", "requirement_title": "Emergency brake", "ce_uid": "CE-001",
            "link_rationale": "allocated", "confidence": 0.9, "verification_method": "test",
            "link_type": "requirement_ce",
        })

        results = _apply(run, final_step)

        assert results["traceability_links"] == {"applied": 2, "errors": []}
        req = Requirement.query.one()
        assert Hazard.query.one().requirement_id == req.id
        assert req.ce_id == CertifiableElement.query.one().id

    def test_invalid_artifact_data_reported(self, run, final_step, project):
        _artifact(run, "hazard", {**HAZARD, "severity": "apocalyptic"})
        results = _apply(run, final_step)

        assert results["hazards"]["inserted"] == 0
        assert "hazard.severity" in results["hazards"]["errors"][0]["error"]
        assert Notification.query.count() == 0

    def test_only_approved_and_idempotent(self, run, final_step, project):
        _artifact(run, "hazard", HAZARD)
        _artifact(run, "hazard", {**HAZARD, "uid": "HAZ-002"}, status="pending_review")
        _artifact(run, "hazard", {**HAZARD, "uid": "HAZ-003"}, status="rejected")

        first = _apply(run, final_step)
        second = _apply(run, final_step)

        assert first["total_applied"] == 1
        assert second["total_applied"] == 0
        assert [h.uid for h in Hazard.query.all()] == ["HAZ-001"]
