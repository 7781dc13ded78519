"""
Traceability engine: builds hazard → requirement → CE links.

Two modes share one implementation:
    hazard_requirement   which requirement mitigates which hazard
                         (artifacts target ``hazards``)
    requirement_ce       which CE each mitigating requirement is allocated to
                         (artifacts target ``requirements``; needs CEs)

Hazards the model reports as unmitigated become ``unlinked_hazard``
informational artifacts.
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
from certflow.ai.executors.schemas import TraceabilityLinkRecord
from certflow.core.exceptions import PreconditionFailedError
from certflow.models.safety import CertifiableElement, Hazard, Requirement, VERIFICATION_METHODS

LINK_MODES = {
    "hazard_requirement": {
        "tool_name": "link_hazards_to_requirements",
        "target_table": "hazards",
        "instructions": (
            "Link every hazard to the requirement(s) that mitigate it. "
            "A requirement may mitigate several hazards."
        ),
    },
    "requirement_ce": {
        "tool_name": "link_requirements_to_ces",
        "target_table": "requirements",
        "instructions": (
            "For every hazard → requirement pair, allocate the requirement to the "
            "certifiable element (ce_uid, ce_name) responsible for implementing it."
        ),
    },
}


class TraceabilityEngine(StepExecutor):
    prompt_name = "traceability_engine"
    items_key = "links"
    record_cls = TraceabilityLinkRecord
    summary_type = "traceability_summary"
    mode = "hazard_requirement"

    @property
    def tool_name(self):
        return LINK_MODES[self.mode]["tool_name"]

    def load_context(self, run, step) -> dict:
        hazards = project_hazards(run, step)
        requirements = project_requirements(run, step)
        elements = project_elements(run, step)
        if not hazards or not requirements:
            raise PreconditionFailedError(
                "Traceability linking needs both hazards and requirements",
            )
        if self.mode == "requirement_ce" and not elements:
            raise PreconditionFailedError("Requirement-CE linking needs certifiable elements")
        return {
            "hazards": hazards,
            "requirements": requirements,
            "elements": elements,
            "hazard_ids": uid_map(Hazard, run.project_id),
            "requirement_ids": uid_map(Requirement, run.project_id),
            "ce_ids": uid_map(CertifiableElement, run.project_id),
        }

    def prompt_variables(self, run, context: dict) -> dict:
        return {
            "link_instructions": LINK_MODES[self.mode]["instructions"],
            "hazards": format_entities(context["hazards"], ("uid", "title", "severity")),
            "requirements": format_entities(context["requirements"], ("uid", "title")),
            "certifiable_elements": format_entities(context["elements"], ("uid", "name", "type")),
        }

    def output_schema(self, run, context: dict) -> dict:
        link_properties = {
            "hazard_uid": STRING,
            "hazard_title": STRING,
            "requirement_uid": STRING,
            "requirement_title": STRING,
            "ce_uid": NULLABLE_STRING,
            "ce_name": NULLABLE_STRING,
            "link_rationale": STRING,
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "verification_method": enum_property(VERIFICATION_METHODS),
        }
        required = ["hazard_uid", "hazard_title", "requirement_uid", "requirement_title",
                    "link_rationale", "confidence", "verification_method"]
        if self.mode == "requirement_ce":
            required.append("ce_uid")
        unlinked = {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"hazard_uid": STRING, "hazard_title": STRING, "reason": STRING},
                "required": ["hazard_uid"],
            },
        }
        return array_schema("links", link_properties, required, extra={"unlinked_hazards": unlinked})

    def accept(self, record, context: dict) -> bool:
        return self.mode != "requirement_ce" or bool(record.ce_uid)

    def target_table_for(self, record):
        return LINK_MODES[self.mode]["target_table"]

    def resolve(self, record, context: dict) -> dict:
        return {
            "hazard_id": context["hazard_ids"].get(record.hazard_uid),
            "requirement_id": context["requirement_ids"].get(record.requirement_uid),
            "ce_id": context["ce_ids"].get(record.ce_uid or ""),
            "link_type": self.mode,
        }

    def persist_extras(self, run, step, data: dict, context: dict):
        titles = {(h.get("uid") or "").upper(): h.get("title") for h in context["hazards"]}
        context["unlinked_count"] = 0
        for entry in data.get("unlinked_hazards") or []:
            if isinstance(entry, str):
                entry = {"hazard_uid": entry}
            if not isinstance(entry, dict) or not entry.get("hazard_uid"):
                continue
            uid = str(entry["hazard_uid"]).strip().upper()
            self.add_artifact(run, step, "unlinked_hazard", {
                "hazard_uid": uid,
                "hazard_title": entry.get("hazard_title") or titles.get(uid) or "",
                "hazard_id": context["hazard_ids"].get(uid),
                "reason": entry.get("reason") or "",
            })
            context["unlinked_count"] += 1

    def summarize(self, records: list, data: dict, context: dict) -> dict:
        confidences = [r.confidence for r in records]
        return {
            "link_type": self.mode,
            "total_links": len(records),
            "unlinked_hazards": context.get("unlinked_count", 0),
            "average_confidence": round(sum(confidences) / len(confidences), 2) if confidences else 0.0,
            "by_verification_method": count_by(records, "verification_method"),
        }


class HazardRequirementLinker(TraceabilityEngine):
    step_type = "hazard_requirement_linking"
    mode = "hazard_requirement"


class RequirementCELinker(TraceabilityEngine):
    step_type = "requirement_ce_linking"
    mode = "requirement_ce"
