"""Requirement extractor: safety requirements mitigating the identified hazards."""

from certflow.ai.executors.base import (
    NULLABLE_STRING,
    STRING,
    StepExecutor,
    array_schema,
    count_by,
    enum_property,
    format_entities,
    format_sections,
    project_hazards,
    project_requirements,
    uid_map,
    upstream_artifacts,
)
from certflow.ai.executors.schemas import RequirementRecord
from certflow.core.exceptions import PreconditionFailedError
from certflow.models.safety import Hazard, REQUIREMENT_PRIORITIES, VERIFICATION_METHODS

REQUIREMENT_ITEM_PROPERTIES = {
    "uid": STRING,
    "title": STRING,
    "description": STRING,
    "category": STRING,
    "priority": enum_property(sorted(REQUIREMENT_PRIORITIES)),
    "type": NULLABLE_STRING,
    "verification_method": enum_property(VERIFICATION_METHODS),
    "source_hazard_uid": NULLABLE_STRING,
}
REQUIREMENT_REQUIRED = ["uid", "title", "description", "category", "priority"]


class RequirementExtractor(StepExecutor):
    step_type = "requirement_extraction"
    prompt_name = "requirement_extractor"
    tool_name = "extract_requirements"
    items_key = "requirements"
    record_cls = RequirementRecord
    summary_type = "requirement_summary"

    def load_context(self, run, step) -> dict:
        sections = upstream_artifacts(run, step, "document_section")
        hazards = project_hazards(run, step)
        if not sections and not hazards:
            raise PreconditionFailedError(
                "Requirement extraction needs document sections or hazards",
            )
        return {
            "sections": sections,
            "hazards": hazards,
            "existing": project_requirements(run, step),
            "hazard_ids": uid_map(Hazard, run.project_id),
        }

    def prompt_variables(self, run, context: dict) -> dict:
        return {
            "document_sections": format_sections(context["sections"]),
            "hazards": format_entities(context["hazards"], ("uid", "title", "severity")),
            "existing_requirements": format_entities(context["existing"], ("uid", "title")),
        }

    def output_schema(self, run, context: dict) -> dict:
        return array_schema("requirements", REQUIREMENT_ITEM_PROPERTIES, REQUIREMENT_REQUIRED)

    def resolve(self, record, context: dict) -> dict:
        return {"source_hazard_id": context["hazard_ids"].get(record.source_hazard_uid or "")}

    def summarize(self, records: list, data: dict, context: dict) -> dict:
        summary = super().summarize(records, data, context)
        summary["by_priority"] = count_by(records, "priority")
        summary["by_category"] = count_by(records, "category")
        summary["hazards_addressed"] = len({r.source_hazard_uid for r in records if r.source_hazard_uid})
        return summary
