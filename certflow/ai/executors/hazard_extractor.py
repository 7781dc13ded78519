"""Hazard extractor: preliminary hazard analysis over the document sections."""

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
    upstream_artifacts,
)
from certflow.ai.executors.schemas import HazardRecord
from certflow.core.exceptions import PreconditionFailedError
from certflow.models.safety import HAZARD_LIKELIHOODS, HAZARD_SEVERITIES

HAZARD_ITEM_PROPERTIES = {
    "uid": STRING,
    "title": STRING,
    "description": STRING,
    "severity": enum_property(HAZARD_SEVERITIES),
    "likelihood": enum_property(HAZARD_LIKELIHOODS),
    "cause": NULLABLE_STRING,
    "consequence": NULLABLE_STRING,
    "mitigation": NULLABLE_STRING,
    "affected_components": {"type": "array", "items": STRING},
}
HAZARD_REQUIRED = ["uid", "title", "description", "severity", "likelihood"]


class HazardExtractor(StepExecutor):
    step_type = "hazard_extraction"
    prompt_name = "hazard_extractor"
    tool_name = "extract_hazards"
    items_key = "hazards"
    record_cls = HazardRecord
    summary_type = "hazard_summary"

    def load_context(self, run, step) -> dict:
        sections = upstream_artifacts(run, step, "document_section")
        description = (run.workflow_config or {}).get("system_description") or ""
        if not sections and not description.strip():
            raise PreconditionFailedError(
                "Hazard extraction needs document sections or a system description",
            )
        return {
            "sections": sections,
            "system_description": description,
            "existing": project_hazards(run, step),
        }

    def prompt_variables(self, run, context: dict) -> dict:
        return {
            "system_description": context["system_description"] or "(not provided)",
            "document_sections": format_sections(context["sections"]),
            "existing_hazards": format_entities(context["existing"], ("uid", "title")),
        }

    def output_schema(self, run, context: dict) -> dict:
        return array_schema("hazards", HAZARD_ITEM_PROPERTIES, HAZARD_REQUIRED)

    def summarize(self, records: list, data: dict, context: dict) -> dict:
        summary = super().summarize(records, data, context)
        summary["by_severity"] = count_by(records, "severity")
        summary["by_likelihood"] = count_by(records, "likelihood")
        return summary
