"""Test case generator: verification tests for the requirements."""

from certflow.ai.executors.base import (
    NULLABLE_STRING,
    STRING,
    StepExecutor,
    array_schema,
    count_by,
    enum_property,
    format_entities,
    project_elements,
    project_hazards,
    project_requirements,
    project_test_uids,
    uid_map,
)
from certflow.ai.executors.schemas import TestCaseRecord
from certflow.core.exceptions import PreconditionFailedError
from certflow.models.safety import (
    CertifiableElement,
    Hazard,
    Requirement,
    TEST_PRIORITIES,
    TEST_TYPES,
    VERIFICATION_METHODS,
)


class TestCaseGenerator(StepExecutor):
    __test__ = False

    step_type = "test_case_generation"
    prompt_name = "test_generator"
    tool_name = "generate_test_cases"
    items_key = "test_cases"
    record_cls = TestCaseRecord
    summary_type = "test_coverage_summary"

    def load_context(self, run, step) -> dict:
        requirements = project_requirements(run, step)
        if not requirements:
            raise PreconditionFailedError("Test case generation needs requirements")
        return {
            "requirements": requirements,
            "hazards": project_hazards(run, step),
            "elements": project_elements(run, step),
            "existing": project_test_uids(run),
            "hazard_ids": uid_map(Hazard, run.project_id),
            "requirement_ids": uid_map(Requirement, run.project_id),
            "ce_ids": uid_map(CertifiableElement, run.project_id),
        }

    def prompt_variables(self, run, context: dict) -> dict:
        return {
            "requirements": format_entities(
                context["requirements"], ("uid", "title", "verification_method"),
            ),
            "hazards": format_entities(context["hazards"], ("uid", "title", "severity")),
            "certifiable_elements": format_entities(context["elements"], ("uid", "name")),
            "existing_test_cases": ", ".join(context["existing"]) or "(none)",
        }

    def output_schema(self, run, context: dict) -> dict:
        return array_schema(
            "test_cases",
            {
                "uid": NULLABLE_STRING,
                "title": STRING,
                "description": STRING,
                "test_type": enum_property(TEST_TYPES),
                "procedure": STRING,
                "expected_result": STRING,
                "priority": enum_property(TEST_PRIORITIES),
                "verification_method": enum_property(VERIFICATION_METHODS),
                "linked_requirement_uid": NULLABLE_STRING,
                "linked_hazard_uid": NULLABLE_STRING,
                "linked_ce_uid": NULLABLE_STRING,
            },
            ["title", "description", "test_type", "procedure", "expected_result",
             "priority", "verification_method"],
        )

    def resolve(self, record, context: dict) -> dict:
        return {
            "requirement_id": context["requirement_ids"].get(record.linked_requirement_uid or ""),
            "hazard_id": context["hazard_ids"].get(record.linked_hazard_uid or ""),
            "ce_id": context["ce_ids"].get(record.linked_ce_uid or ""),
        }

    def summarize(self, records: list, data: dict, context: dict) -> dict:
        covered = {r.linked_requirement_uid for r in records if r.linked_requirement_uid}
        known = {(r.get("uid") or "").upper() for r in context["requirements"]}
        return {
            "total_test_cases": len(records),
            "by_test_type": count_by(records, "test_type"),
            "by_priority": count_by(records, "priority"),
            "requirements_covered": len(covered & known),
            "requirements_total": len(known),
            "hazards_covered": len({r.linked_hazard_uid for r in records if r.linked_hazard_uid}),
        }
