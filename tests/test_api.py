"""
Tests: HTTP API.

Covers:
    - health probes
    - projects, documents (incl. one-off extraction), entity listings, notifications
    - workflow routes and service-exception → status mapping
    - RPC dispatch on /workflow-orchestrator
    - requirement quality endpoints
    - X-API-Key auth, role checks and Content-Type enforcement
"""

from unittest.mock import patch

import pytest

from certflow.ai.gateway import LLMGateway, LocalStubProvider
from certflow.auth import parse_api_keys
from certflow.core.exceptions import (
    GenerationServiceError,
    QuotaExhaustedError,
    RateLimitedError,
)
from certflow.models import db as _db
from certflow.models.ai import AIUsageLog
from certflow.models.notification import Notification
from certflow.models.safety import Hazard


BASE = "/api/v1"


def _steps(client, workflow_id):
    return client.get(f"{BASE}/workflows/{workflow_id}").get_json()["steps"]


def _step_id(client, workflow_id, step_type):
    return next(s["id"] for s in _steps(client, workflow_id) if s["step_type"] == step_type)


# ═════════════════════════════════════════════════════════════════════════════
# 1. HEALTH
# ═════════════════════════════════════════════════════════════════════════════

class TestHealth:
    def test_health(self, client):
        res = client.get(f"{BASE}/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_ready(self, client):
        assert client.get(f"{BASE}/health/ready").status_code == 200

    def test_live(self, client):
        res = client.get(f"{BASE}/health/live")
        data = res.get_json()
        assert res.status_code == 200
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "ok"
        assert data["checks"]["generation"]["default_model"] == "local-stub"
        assert "local" in data["checks"]["generation"]["providers"]

    def test_request_id_header(self, client):
        res = client.get(f"{BASE}/projects", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers


# ═════════════════════════════════════════════════════════════════════════════
# 2. PROJECTS & DOCUMENTS
# ═════════════════════════════════════════════════════════════════════════════

class TestProjects:
    def test_create_and_get(self, client):
        res = client.post(f"{BASE}/projects", json={"name": "Tram Depot", "industry": "transit"})
        assert res.status_code == 201
        created = res.get_json()
        assert created["compliance_framework"] == "FTA"

        res = client.get(f"{BASE}/projects/{created['id']}")
        assert res.status_code == 200
        assert res.get_json()["name"] == "Tram Depot"

    def test_list(self, client, project):
        data = client.get(f"{BASE}/projects").get_json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == project.id

    def test_name_required(self, client):
        res = client.post(f"{BASE}/projects", json={"industry": "rail"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_unknown_framework(self, client):
        res = client.post(f"{BASE}/projects", json={"name": "X", "compliance_framework": "ISO"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_not_found(self, client):
        res = client.get(f"{BASE}/projects/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_unknown_api_path_is_json(self, client):
        res = client.get(f"{BASE}/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["details"]["path"] == f"{BASE}/nothing-here"

    def test_method_not_allowed(self, client):
        res = client.get(f"{BASE}/workflow-orchestrator")
        assert res.status_code == 405
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_body_must_be_object(self, client):
        res = client.post(f"{BASE}/projects", json=["Tram"])
        assert res.status_code == 400


class TestDocuments:
    def test_upload_and_detail(self, client, project):
        res = client.post(f"{BASE}/projects/{project.id}/documents",
                          json={"filename": "hazard_log.txt", "content_text": "Brakes may fail."})
        assert res.status_code == 201
        doc = res.get_json()
        assert doc["char_count"] == 16
        assert "content_text" not in doc

        detail = client.get(f"{BASE}/projects/{project.id}/documents/{doc['id']}").get_json()
        assert detail["content_text"] == "Brakes may fail."

    def test_content_required(self, client, project):
        res = client.post(f"{BASE}/projects/{project.id}/documents", json={"filename": "empty.txt"})
        assert res.status_code == 400
        assert res.get_json()["details"] == {"content_text": "required"}

    def test_document_scoped_to_project(self, client, project, document):
        other = client.post(f"{BASE}/projects", json={"name": "Other"}).get_json()
        res = client.get(f"{BASE}/projects/{other['id']}/documents/{document.id}")
        assert res.status_code == 404

    def test_list(self, client, project, document):
        data = client.get(f"{BASE}/projects/{project.id}/documents").get_json()
        assert data["total"] == 1
        assert data["items"][0]["filename"] == "system_spec.txt"


class TestDocumentExtraction:
    def _url(self, project, document):
        return f"{BASE}/projects/{project.id}/documents/{document.id}/extract"

    def test_extract_hazards(self, client, project, document):
        res = client.post(self._url(project, document), json={"extraction_type": "hazards"})

        assert res.status_code == 200
        data = res.get_json()
        assert data["document_id"] == document.id
        assert data["extraction_type"] == "hazards"
        assert data["count"] == 3
        assert data["items"][0]["uid"] == "HAZ-001"
        assert Hazard.query.count() == 0
        usage = AIUsageLog.query.one()
        assert usage.purpose == "extract_hazards"
        assert usage.project_id == project.id

    def test_extraction_type_required(self, client, project, document):
        res = client.post(self._url(project, document), json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_unknown_extraction_type(self, client, project, document):
        res = client.post(self._url(project, document), json={"extraction_type": "risks"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_document_scoped_to_project(self, client, project, document):
        other = client.post(f"{BASE}/projects", json={"name": "Other"}).get_json()
        res = client.post(f"{BASE}/projects/{other['id']}/documents/{document.id}/extract",
                          json={"extraction_type": "hazards"})
        assert res.status_code == 404

    def test_rate_limited_call_still_logged(self, client, project, document):
        with patch.object(LocalStubProvider, "chat_structured",
                          side_effect=RateLimitedError("Too Many Requests", "local")):
            res = client.post(self._url(project, document), json={"extraction_type": "requirements"})

        assert res.status_code == 429
        assert res.get_json()["code"] == "ERR_RATE_LIMITED"
        usage = AIUsageLog.query.one()
        assert usage.success is False
        assert usage.purpose == "extract_requirements"


class TestEntityListings:
    @pytest.fixture()
    def hazards(self, project):
        rows = [
            Hazard(project_id=project.id, uid="HAZ-002", title="Door opens", severity="critical",
                   likelihood="remote", status="mitigated"),
            Hazard(project_id=project.id, uid="HAZ-001", title="Loss of braking", severity="catastrophic",
                   likelihood="remote"),
        ]
        _db.session.add_all(rows)
        _db.session.commit()
        return rows

    def test_ordered_by_uid(self, client, project, hazards):
        data = client.get(f"{BASE}/projects/{project.id}/hazards").get_json()
        assert data["total"] == 2
        assert [h["uid"] for h in data["items"]] == ["HAZ-001", "HAZ-002"]

    def test_pagination(self, client, project, hazards):
        data = client.get(f"{BASE}/projects/{project.id}/hazards?limit=1&offset=1").get_json()
        assert data["total"] == 2
        assert [h["uid"] for h in data["items"]] == ["HAZ-002"]

    def test_status_filter(self, client, project, hazards):
        data = client.get(f"{BASE}/projects/{project.id}/hazards?status=open").get_json()
        assert [h["uid"] for h in data["items"]] == ["HAZ-001"]

    @pytest.mark.parametrize("entity", ["requirements", "certifiable-elements", "checklist-items", "test-cases"])
    def test_empty_listings(self, client, project, entity):
        assert client.get(f"{BASE}/projects/{project.id}/{entity}").get_json() == {"items": [], "total": 0}

    def test_unknown_project(self, client):
        assert client.get(f"{BASE}/projects/999/hazards").status_code == 404


class TestNotifications:
    @pytest.fixture()
    def notifications(self, project):
        rows = [
            Notification(project_id=project.id, recipient="reviewer", title="Workflow applied"),
            Notification(project_id=project.id, recipient="all", title="Maintenance window"),
            Notification(project_id=project.id, recipient="someone-else", title="Not yours"),
        ]
        _db.session.add_all(rows)
        _db.session.commit()
        return rows

    def test_recipient_includes_broadcast(self, client, notifications):
        data = client.get(f"{BASE}/notifications?recipient=reviewer").get_json()
        assert data["total"] == 2
        assert {n["recipient"] for n in data["items"]} == {"reviewer", "all"}

    def test_mark_read(self, client, notifications):
        res = client.post(f"{BASE}/notifications/{notifications[0].id}/read")
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True
        assert res.get_json()["read_at"] is not None

        data = client.get(f"{BASE}/notifications?unread=true").get_json()
        assert data["total"] == 2

    def test_mark_unknown(self, client):
        assert client.post(f"{BASE}/notifications/999/read").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# 3. WORKFLOW ROUTES
# ═════════════════════════════════════════════════════════════════════════════

class TestWorkflowRoutes:
    def test_initiate(self, client, project):
        res = client.post(f"{BASE}/projects/{project.id}/workflows", json={"config": {"framework": "APTA"}},
                          headers={"X-User": "alice"})
        assert res.status_code == 201
        run = res.get_json()
        assert run["initiated_by"] == "alice"
        assert run["workflow_config"]["framework"] == "APTA"
        assert len(run["steps"]) == 10

    def test_initiate_conflict(self, client, project, workflow):
        res = client.post(f"{BASE}/projects/{project.id}/workflows", json={})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_list_and_status(self, client, project, workflow):
        listing = client.get(f"{BASE}/projects/{project.id}/workflows").get_json()
        assert listing["count"] == 1

        status = client.get(f"{BASE}/workflows/{workflow['id']}").get_json()
        assert status["progress"] == 0
        assert status["summary"]["current_step"]["step_type"] == "project_setup"

    def test_status_project_scope(self, client, project, workflow):
        res = client.get(f"{BASE}/workflows/{workflow['id']}?project_id={project.id + 1}")
        assert res.status_code == 404

    def test_progress(self, client, workflow):
        res = client.post(f"{BASE}/workflows/{workflow['id']}/progress")
        assert res.status_code == 200
        assert res.get_json()["next_step"]["step_type"] == "document_upload"

    def test_approve_pending_step(self, client, workflow):
        step_id = _step_id(client, workflow["id"], "hazard_extraction")
        res = client.post(f"{BASE}/workflow-steps/{step_id}/approve")
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_PRECONDITION_FAILED"
        assert body["details"]["current_status"] == "pending"

    def test_reject_needs_reason(self, client, workflow):
        step_id = _step_id(client, workflow["id"], "project_setup")
        res = client.post(f"{BASE}/workflow-steps/{step_id}/reject", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_documents_then_approve(self, client, workflow, document):
        wid = workflow["id"]
        client.post(f"{BASE}/workflows/{wid}/progress")
        step_id = _step_id(client, wid, "document_upload")

        res = client.post(f"{BASE}/workflows/{wid}/steps/{step_id}/run")
        assert res.status_code == 200
        assert res.get_json()["step"]["status"] == "awaiting_approval"

        res = client.post(f"{BASE}/workflow-steps/{step_id}/approve", headers={"X-User": "reviewer"})
        body = res.get_json()
        assert res.status_code == 200
        assert body["artifacts_approved"] == 4
        assert body["auto_run"] is True
        assert body["step"]["approved_by"] == "reviewer"

        approved = client.get(f"{BASE}/workflows/{wid}/artifacts?status=approved").get_json()
        assert approved["count"] == 4
        hazards = client.get(f"{BASE}/workflows/{wid}/artifacts?type=hazard").get_json()
        assert hazards["count"] == 3

    def test_artifacts_invalid_status(self, client, workflow):
        res = client.get(f"{BASE}/workflows/{workflow['id']}/artifacts?status=bogus")
        assert res.status_code == 400

    @pytest.mark.parametrize("error,status,code", [
        (RateLimitedError("Too Many Requests", "openai"), 429, "ERR_RATE_LIMITED"),
        (QuotaExhaustedError("insufficient_quota", "openai"), 402, "ERR_QUOTA_EXHAUSTED"),
        (GenerationServiceError("bad gateway", "anthropic"), 502, "ERR_UPSTREAM"),
    ])
    def test_generation_failures(self, client, workflow, document, error, status, code):
        wid = workflow["id"]
        client.post(f"{BASE}/workflows/{wid}/progress")
        step_id = _step_id(client, wid, "document_upload")

        with patch.object(LLMGateway, "generate_structured", side_effect=error):
            res = client.post(f"{BASE}/workflows/{wid}/steps/{step_id}/run")

        assert res.status_code == status
        assert res.get_json()["code"] == code
        step = next(s for s in _steps(client, wid) if s["id"] == step_id)
        assert step["status"] == "error"

    def test_cancel_then_progress(self, client, workflow):
        res = client.post(f"{BASE}/workflows/{workflow['id']}/cancel")
        assert res.get_json()["status"] == "cancelled"

        res = client.post(f"{BASE}/workflows/{workflow['id']}/progress")
        assert res.status_code == 409
        assert res.get_json()["details"]["current_status"] == "cancelled"

    def test_cancel_completed_run(self, client, workflow):
        client.post(f"{BASE}/workflows/{workflow['id']}/apply-all")
        res = client.post(f"{BASE}/workflows/{workflow['id']}/cancel")
        assert res.status_code == 409
        assert res.get_json()["details"]["current_status"] == "completed"

    def test_apply_all(self, client, project, workflow):
        res = client.post(f"{BASE}/workflows/{workflow['id']}/apply-all")
        body = res.get_json()
        assert res.status_code == 200
        assert body["workflow_completed"] is True
        assert len(body["skipped_steps"]) == 9
        assert body["results"]["total_applied"] == 0


# ═════════════════════════════════════════════════════════════════════════════
# 4. RPC DISPATCH
# ═════════════════════════════════════════════════════════════════════════════

class TestOrchestratorRpc:
    URL = f"{BASE}/workflow-orchestrator"

    def test_action_required(self, client):
        res = client.post(self.URL, json={})
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_REQUIRED"
        assert "initiate" in body["details"]["actions"]

    def test_unknown_action(self, client):
        res = client.post(self.URL, json={"action": "explode"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_initiate(self, client, project):
        res = client.post(self.URL, json={"action": "initiate", "project_id": project.id},
                          headers={"X-User": "bob"})
        assert res.status_code == 201
        assert res.get_json()["initiated_by"] == "bob"

    def test_status(self, client, workflow):
        res = client.post(self.URL, json={"action": "status", "workflow_id": workflow["id"]})
        assert res.status_code == 200
        assert res.get_json()["workflow"]["id"] == workflow["id"]

    def test_missing_param(self, client):
        res = client.post(self.URL, json={"action": "status"})
        assert res.status_code == 400
        assert res.get_json()["details"] == {"workflow_id": "required"}

    def test_non_integer_param(self, client):
        res = client.post(self.URL, json={"action": "status", "workflow_id": "abc"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_reject_step(self, client, workflow):
        step_id = _step_id(client, workflow["id"], "project_setup")
        res = client.post(self.URL, json={"action": "reject_step", "step_id": step_id, "reason": "redo"})
        assert res.status_code == 409


# ═════════════════════════════════════════════════════════════════════════════
# 5. REQUIREMENT QUALITY
# ═════════════════════════════════════════════════════════════════════════════

class TestQualityEndpoints:
    def test_validate(self, client):
        res = client.post(f"{BASE}/requirements/validate",
                          json={"text": "The system shall detect brake failure within 200 ms"})
        body = res.get_json()
        assert res.status_code == 200
        assert body["status"] == "PASS"
        assert body["score"] == 8
        assert body["rule_set"] == "reference"

    def test_validate_batch_rules(self, client):
        res = client.post(f"{BASE}/requirements/validate",
                          json={"text": "The operator should ensure the brake is checked", "rule_set": "batch"})
        assert res.get_json()["status"] == "REJECT"
        assert "ensure" in res.get_json()["weak_terms"]

    def test_validate_text_required(self, client):
        res = client.post(f"{BASE}/requirements/validate", json={"text": ""})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_validate_bad_level(self, client):
        res = client.post(f"{BASE}/requirements/validate", json={"text": "x", "mitigation_level": 9})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_batch_validate(self, client, project):
        res = client.post(f"{BASE}/projects/{project.id}/requirements/batch-validate", json={})
        assert res.status_code == 200
        assert res.get_json()["summary"]["total"] == 0

    def test_batch_validate_unknown_project(self, client):
        assert client.post(f"{BASE}/projects/999/requirements/batch-validate", json={}).status_code == 404

    def test_design_precedence(self, client):
        levels = client.get(f"{BASE}/requirements/design-precedence").get_json()["levels"]
        assert len(levels) == 7


# ═════════════════════════════════════════════════════════════════════════════
# 6. AUTH & CONTENT-TYPE
# ═════════════════════════════════════════════════════════════════════════════

class TestAuth:
    def test_parse_api_keys(self):
        assert parse_api_keys("a:editor, b ,c:root,,d:ADMIN") == {
            "a": "editor", "b": "viewer", "c": "viewer", "d": "admin",
        }

    @pytest.fixture(autouse=True)
    def _enable_auth(self, monkeypatch):
        monkeypatch.setenv("API_AUTH_ENABLED", "true")
        monkeypatch.setenv("API_KEYS", "edit-key:editor,view-key:viewer,plain-key")

    def test_missing_key(self, client):
        res = client.get(f"{BASE}/projects")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"
        assert res.headers["X-Request-ID"]

    def test_invalid_key(self, client):
        assert client.get(f"{BASE}/projects", headers={"X-API-Key": "nope"}).status_code == 401

    def test_health_open(self, client):
        assert client.get(f"{BASE}/health").status_code == 200

    def test_viewer_reads(self, client, project):
        assert client.get(f"{BASE}/projects", headers={"X-API-Key": "view-key"}).status_code == 200
        assert client.get(f"{BASE}/projects", headers={"X-API-Key": "plain-key"}).status_code == 200

    def test_viewer_cannot_mutate(self, client):
        res = client.post(f"{BASE}/projects", json={"name": "X"}, headers={"X-API-Key": "view-key"})
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_editor_mutates(self, client):
        res = client.post(f"{BASE}/projects", json={"name": "X"}, headers={"X-API-Key": "edit-key"})
        assert res.status_code == 201

    def test_rpc_role_per_action(self, client, workflow):
        headers = {"X-API-Key": "view-key"}
        res = client.post(f"{BASE}/workflow-orchestrator",
                          json={"action": "progress", "workflow_id": workflow["id"]}, headers=headers)
        assert res.status_code == 403
        res = client.post(f"{BASE}/workflow-orchestrator",
                          json={"action": "status", "workflow_id": workflow["id"]}, headers=headers)
        assert res.status_code == 200

    def test_keys_not_configured(self, client, monkeypatch):
        monkeypatch.setenv("API_KEYS", "")
        res = client.get(f"{BASE}/projects", headers={"X-API-Key": "edit-key"})
        assert res.status_code == 500
        assert res.get_json()["code"] == "ERR_INTERNAL"


class TestContentType:
    def test_form_body_rejected(self, client):
        res = client.post(f"{BASE}/projects", data="name=Tram",
                          content_type="application/x-www-form-urlencoded")
        assert res.status_code == 415

    def test_empty_post_allowed(self, client, workflow):
        assert client.post(f"{BASE}/workflows/{workflow['id']}/progress").status_code == 200
