"""CE structure generator: decomposes the system into certifiable elements."""

from certflow.ai.executors.base import (
    NULLABLE_STRING,
    STRING,
    StepExecutor,
    array_schema,
    count_by,
    enum_property,
    format_entities,
    format_sections,
    project_elements,
    uid_map,
    upstream_artifacts,
)
from certflow.ai.executors.schemas import CertifiableElementRecord
from certflow.core.exceptions import PreconditionFailedError
from certflow.models.safety import CE_TYPES, SIL_TARGETS, CertifiableElement

CE_ITEM_PROPERTIES = {
    "uid": STRING,
    "name": STRING,
    "type": enum_property(CE_TYPES),
    "description": NULLABLE_STRING,
    "sil_target": {"type": ["string", "null"], "description": " | ".join(SIL_TARGETS)},
    "parent_uid": NULLABLE_STRING,
}
CE_REQUIRED = ["uid", "name", "type"]


class CEStructureGenerator(StepExecutor):
    step_type = "ce_structure_generation"
    prompt_name = "ce_generator"
    tool_name = "generate_certifiable_elements"
    items_key = "elements"
    record_cls = CertifiableElementRecord
    summary_type = "certifiable_element_summary"

    def load_context(self, run, step) -> dict:
        sections = upstream_artifacts(run, step, "document_section")
        description = (run.workflow_config or {}).get("system_description") or ""
        if not sections and not description.strip():
            raise PreconditionFailedError(
                "CE structure generation needs document sections or a system description",
            )
        return {
            "sections": sections,
            "system_description": description,
            "existing": project_elements(run, step),
            "ce_ids": uid_map(CertifiableElement, run.project_id),
        }

    def prompt_variables(self, run, context: dict) -> dict:
        return {
            "system_description": context["system_description"] or "(not provided)",
            "document_sections": format_sections(context["sections"]),
            "existing_elements": format_entities(context["existing"], ("uid", "name", "type")),
        }

    def output_schema(self, run, context: dict) -> dict:
        return array_schema("elements", CE_ITEM_PROPERTIES, CE_REQUIRED,
                            extra={"summary": NULLABLE_STRING})

    def resolve(self, record, context: dict) -> dict:
        return {"parent_id": context["ce_ids"].get(record.parent_uid or "")}

    def summarize(self, records: list, data: dict, context: dict) -> dict:
        summary = super().summarize(records, data, context)
        summary["by_type"] = count_by(records, "type")
        summary["top_level"] = sum(1 for r in records if not r.parent_uid)
        summary["summary"] = data.get("summary") or ""
        return summary
