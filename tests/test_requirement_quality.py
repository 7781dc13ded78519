"""
Tests: Requirement Quality Validator.

Covers:
    - reference rule set: weak + human escalation, design-precedence alignment,
      informational context check, verification method counts as verifiable
    - batch rule set: separate weak/constraint checks, every issue a warning
    - input validation (text, rule_set, mitigation_level)
    - batch_validate_requirements write-back, summary and top issues
"""

import pytest

from certflow.core.exceptions import NotFoundError, ValidationError
from certflow.models import db as _db
from certflow.models.safety import Requirement
from certflow.services.requirement_quality import (
    DESIGN_PRECEDENCE,
    MSG_CONTEXT,
    batch_validate_requirements,
    find_weak_terms,
    validate,
)


HEDGED_HUMAN = "The operator should ensure the brake is checked"
DETECTION = "The system shall detect brake failure within 200 ms"
INTERLOCK = "The system shall prevent door opening when speed exceeds 3 km/h"


def _rules(result):
    return {i["rule"]: i["severity"] for i in result.issues}


# ═════════════════════════════════════════════════════════════════════════════
# 1. REFERENCE RULE SET
# ═════════════════════════════════════════════════════════════════════════════

class TestReferenceRules:
    def test_hedged_human_action_rejected(self):
        result = validate(HEDGED_HUMAN, hazard_severity="catastrophic")

        assert result.status == "REJECT"
        assert result.score == 0
        assert result.weak_terms == ["should", "operator should"]
        assert _rules(result)["WEAK_LANGUAGE"] == "critical"
        assert _rules(result)["HUMAN_DEPENDENCE"] == "critical"
        assert result.critical_count == 2
        assert result.human_independent is False

    def test_detection_requirement_passes(self):
        result = validate(DETECTION)

        assert result.status == "PASS"
        assert result.score == 8
        assert result.score_percentage == 80
        assert result.preventive_constraint is True
        assert result.objectively_verifiable is True
        assert result.clear_context is False
        assert _rules(result) == {"MISSING_CONTEXT": "info"}

    def test_fully_compliant(self):
        result = validate(INTERLOCK, hazard_severity="catastrophic", mitigation_level=2)
        assert result.status == "PASS"
        assert result.score == 10
        assert result.issues == []

    @pytest.mark.parametrize("level,status,severity", [
        (6, "REJECT", "critical"),
        (5, "REJECT", "critical"),
        (4, "FLAG", "warning"),
        (None, "FLAG", "warning"),
    ])
    def test_design_precedence_alignment(self, level, status, severity):
        result = validate(INTERLOCK, hazard_severity="critical", mitigation_level=level)

        assert result.status == status
        assert result.severity_aligned is False
        assert result.score == 8
        assert _rules(result)["INSUFFICIENT_CONTROL"] == severity

    def test_low_severity_not_checked(self):
        result = validate(INTERLOCK, hazard_severity="marginal", mitigation_level=7)
        assert result.severity_aligned is True
        assert result.status == "PASS"

    def test_weak_language_breaks_preventive_check(self):
        result = validate("The system should limit speed to 80 km/h during degraded mode")
        assert result.has_weak_language is True
        assert result.preventive_constraint is False
        assert _rules(result)["WEAK_LANGUAGE"] == "warning"
        assert result.status == "FLAG"

    def test_verification_method_counts(self):
        text = "The system shall isolate faulty axle counters"
        assert validate(text).objectively_verifiable is False
        assert validate(text, verification_method="inspection").objectively_verifiable is True

    def test_short_text_skips_context(self):
        result = validate("The system shall be fail-safe", verification_method="analysis")
        assert "MISSING_CONTEXT" not in _rules(result)
        assert result.status == "PASS"

    def test_to_dict(self):
        data = validate(DETECTION).to_dict()
        assert data["rule_set"] == "reference"
        assert data["max_score"] == 10
        assert data["warning_count"] == 0


# ═════════════════════════════════════════════════════════════════════════════
# 2. BATCH RULE SET
# ═════════════════════════════════════════════════════════════════════════════

class TestBatchRules:
    def test_hedged_human_action_rejected(self):
        result = validate(HEDGED_HUMAN, rule_set="batch")

        assert result.status == "REJECT"
        assert result.score == 0
        assert result.weak_terms == ["should", "ensure", "operator should"]
        assert set(_rules(result).values()) == {"warning"}

    def test_missing_context_flags(self):
        result = validate(DETECTION, rule_set="batch")
        assert result.status == "FLAG"
        assert result.score == 8
        assert _rules(result) == {"MISSING_CONTEXT": "warning"}

    def test_constraint_scored_separately(self):
        result = validate(INTERLOCK + " as needed", rule_set="batch")
        assert result.preventive_constraint is True
        assert result.has_weak_language is True
        assert result.score == 8
        assert result.status == "FLAG"

    def test_severity_not_evaluated(self):
        result = validate(INTERLOCK, hazard_severity="catastrophic", mitigation_level=7, rule_set="batch")
        assert result.severity_aligned is True
        assert result.status == "PASS"


class TestWeakTerms:
    def test_whole_words_only(self):
        assert find_weak_terms("The display shows the attempted route and mayday alerts") == []

    def test_role_phrases(self):
        assert find_weak_terms("Drivers must confirm the route") == ["driver must"]


# ═════════════════════════════════════════════════════════════════════════════
# 3. INPUT VALIDATION
# ═════════════════════════════════════════════════════════════════════════════

class TestInputValidation:
    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_text_required(self, text):
        with pytest.raises(ValidationError, match="required"):
            validate(text)

    def test_unknown_rule_set(self):
        with pytest.raises(ValidationError):
            validate(DETECTION, rule_set="strict")

    @pytest.mark.parametrize("level", [0, 8, "high"])
    def test_mitigation_level_range(self, level):
        with pytest.raises(ValidationError):
            validate(DETECTION, mitigation_level=level)

    def test_design_precedence_levels(self):
        assert [lvl["level"] for lvl in DESIGN_PRECEDENCE] == list(range(1, 8))
        assert DESIGN_PRECEDENCE[0]["name"] == "Elimination"


# ═════════════════════════════════════════════════════════════════════════════
# 4. BATCH WRITE-BACK
# ═════════════════════════════════════════════════════════════════════════════

@pytest.fixture()
def requirements(project):
    rows = [
        Requirement(project_id=project.id, uid="REQ-001", title="Brake monitoring", description=DETECTION),
        Requirement(project_id=project.id, uid="REQ-002", title="Brake check", description=HEDGED_HUMAN),
        Requirement(project_id=project.id, uid="REQ-003", title="Door interlock", description=INTERLOCK),
    ]
    _db.session.add_all(rows)
    _db.session.commit()
    return rows


class TestBatchValidate:
    def test_summary_and_top_issues(self, project, requirements):
        result = batch_validate_requirements(project.id)

        assert result["rule_set"] == "batch"
        assert result["summary"] == {
            "total": 3, "passed": 1, "flagged": 1, "rejected": 1,
            "average_score": 6.0, "max_score": 10,
        }
        assert next(iter(result["top_issues"])) == MSG_CONTEXT
        assert result["top_issues"][MSG_CONTEXT] == 2
        assert [r["status"] for r in result["results"]] == ["FLAG", "REJECT", "PASS"]

    def test_write_back(self, project, requirements):
        batch_validate_requirements(project.id)
        _db.session.expire_all()

        hedged = Requirement.query.filter_by(uid="REQ-002").one()
        assert hedged.quality_status == "REJECT"
        assert hedged.quality_score == 0
        assert hedged.has_weak_language is True
        assert hedged.weak_language_flags == ["should", "ensure", "operator should"]
        assert hedged.is_human_independent is False
        assert hedged.quality_checked_at is not None

        clean = Requirement.query.filter_by(uid="REQ-003").one()
        assert clean.quality_score == 10
        assert clean.weak_language_flags is None
        assert clean.is_severity_aligned is True

    def test_subset(self, project, requirements):
        result = batch_validate_requirements(project.id, requirement_ids=[requirements[2].id])
        assert result["summary"]["total"] == 1
        assert Requirement.query.filter_by(uid="REQ-001").one().quality_score is None

    def test_reference_rule_set(self, project, requirements):
        result = batch_validate_requirements(project.id, rule_set="reference")
        assert result["rule_set"] == "reference"
        assert result["results"][0]["status"] == "PASS"

    def test_empty_project(self, project):
        result = batch_validate_requirements(project.id)
        assert result["summary"]["total"] == 0
        assert result["summary"]["average_score"] == 0.0

    def test_unknown_project(self):
        with pytest.raises(NotFoundError):
            batch_validate_requirements(4242)

    def test_ids_must_be_list(self, project):
        with pytest.raises(ValidationError):
            batch_validate_requirements(project.id, requirement_ids="1,2")
