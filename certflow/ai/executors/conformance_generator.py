"""
Conformance generator: the framework checklist.

Items are generated per phase of the configured compliance framework;
items naming a phase outside the framework are dropped.
"""

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
    uid_map,
)
from certflow.ai.executors.schemas import CHECKLIST_PRIORITIES, ConformanceItemRecord
from certflow.models.safety import CertifiableElement, Hazard, Requirement, VERIFICATION_METHODS

FRAMEWORK_PHASES = {
    "FTA": (
        "identify_ces", "design_criteria", "hazard_analysis",
        "safety_requirements", "design_verification", "safety_certification",
    ),
    "APTA": (
        "system_definition", "hazard_identification", "risk_assessment",
        "safety_requirements", "verification_validation",
    ),
    "EN_50129": (
        "concept", "system_definition", "risk_analysis",
        "system_requirements", "design_implementation", "validation",
    ),
}
DEFAULT_FRAMEWORK = "FTA"


def resolve_framework(name) -> str:
    key = str(name or "").strip().upper().replace(" ", "_").replace("-", "_")
    return key if key in FRAMEWORK_PHASES else DEFAULT_FRAMEWORK


class ConformanceGenerator(StepExecutor):
    step_type = "conformance_generation"
    prompt_name = "conformance_generator"
    tool_name = "generate_conformance_items"
    items_key = "items"
    record_cls = ConformanceItemRecord
    summary_type = "conformance_summary"

    def load_context(self, run, step) -> dict:
        framework = resolve_framework(
            (run.workflow_config or {}).get("framework") or run.project.compliance_framework,
        )
        return {
            "framework": framework,
            "phases": FRAMEWORK_PHASES[framework],
            "hazards": project_hazards(run, step),
            "requirements": project_requirements(run, step),
            "elements": project_elements(run, step),
            "hazard_ids": uid_map(Hazard, run.project_id),
            "requirement_ids": uid_map(Requirement, run.project_id),
            "ce_ids": uid_map(CertifiableElement, run.project_id),
            "order": 0,
        }

    def prompt_variables(self, run, context: dict) -> dict:
        return {
            "framework": context["framework"],
            "framework_phases": "\n".join(f"- {p}" for p in context["phases"]),
            "hazards": format_entities(context["hazards"], ("uid", "title", "severity")),
            "requirements": format_entities(context["requirements"], ("uid", "title")),
            "certifiable_elements": format_entities(context["elements"], ("uid", "name", "type")),
        }

    def output_schema(self, run, context: dict) -> dict:
        return array_schema(
            "items",
            {
                "phase_id": enum_property(context["phases"]),
                "category": STRING,
                "title": STRING,
                "description": STRING,
                "verification_method": enum_property(VERIFICATION_METHODS),
                "priority": enum_property(CHECKLIST_PRIORITIES),
                "linked_hazard_uid": NULLABLE_STRING,
                "linked_requirement_uid": NULLABLE_STRING,
                "linked_ce_uid": NULLABLE_STRING,
            },
            ["phase_id", "category", "title", "description", "verification_method", "priority"],
        )

    def accept(self, record, context: dict) -> bool:
        return record.phase_id in context["phases"]

    def resolve(self, record, context: dict) -> dict:
        order = context["order"]
        context["order"] += 1
        return {
            "display_order": order,
            "linked_hazard_id": context["hazard_ids"].get(record.linked_hazard_uid or ""),
            "linked_requirement_id": context["requirement_ids"].get(record.linked_requirement_uid or ""),
            "linked_ce_id": context["ce_ids"].get(record.linked_ce_uid or ""),
        }

    def summarize(self, records: list, data: dict, context: dict) -> dict:
        return {
            "framework": context["framework"],
            "total_items": len(records),
            "by_phase": count_by(records, "phase_id"),
            "by_verification_method": count_by(records, "verification_method"),
            "phases_without_items": [p for p in context["phases"]
                                     if p not in {r.phase_id for r in records}],
        }
