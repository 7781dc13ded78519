"""
Validated artifact records.

Every generated item passes through one of these frozen dataclasses before
it is persisted as a WorkflowArtifact. ``from_dict`` normalizes case and
raises ArtifactValidationError naming the offending field; ``to_dict`` is
the JSON stored in ``artifact_data``.

Usage:
    records, dropped = parse_items(result["data"]["hazards"], HazardRecord)
"""

import logging
from dataclasses import asdict, dataclass, field

from certflow.models.safety import (
    CE_TYPES,
    HAZARD_LIKELIHOODS,
    HAZARD_SEVERITIES,
    REQUIREMENT_PRIORITIES,
    SIL_TARGETS,
    TEST_PRIORITIES,
    TEST_TYPES,
    VERIFICATION_METHODS,
)

logger = logging.getLogger(__name__)

SECTION_TYPES = ("scope", "system_description", "hazard", "requirement", "interface", "other")
CHECKLIST_PRIORITIES = ("high", "medium", "low")


class ArtifactValidationError(ValueError):
    """A generated item does not satisfy its artifact schema."""

    def __init__(self, artifact_type: str, field_name: str, message: str):
        self.artifact_type = artifact_type
        self.field = field_name
        super().__init__(f"{artifact_type}.{field_name}: {message}")


# ── Field coercion helpers ───────────────────────────────────────────────

def _text(data: dict, name: str, artifact_type: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ArtifactValidationError(artifact_type, name, "required non-empty string")
    return value.strip()


def _opt_text(data: dict, name: str) -> str | None:
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    return value.strip() or None


def _choice(data: dict, name: str, choices, artifact_type: str, *, required=True) -> str | None:
    value = data.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ArtifactValidationError(artifact_type, name, "required")
        return None
    normalized = str(value).strip().lower()
    if normalized not in choices:
        raise ArtifactValidationError(
            artifact_type, name, f"{value!r} not one of {', '.join(sorted(choices))}",
        )
    return normalized


def _sil(data: dict, artifact_type: str) -> str | None:
    value = data.get("sil_target")
    if value is None or value == "":
        return None
    normalized = str(value).upper().replace(" ", "").replace("-", "")
    if normalized.isdigit():
        normalized = f"SIL{normalized}"
    if normalized not in SIL_TARGETS:
        raise ArtifactValidationError(artifact_type, "sil_target", f"{value!r} is not SIL1..SIL4")
    return normalized


def _confidence(data: dict, artifact_type: str) -> float:
    value = data.get("confidence")
    if isinstance(value, bool) or value is None:
        raise ArtifactValidationError(artifact_type, "confidence", "required number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ArtifactValidationError(artifact_type, "confidence", f"{value!r} is not a number")
    if not 0.0 <= number <= 1.0:
        raise ArtifactValidationError(artifact_type, "confidence", f"{number} outside [0, 1]")
    return number


def _page(data: dict, artifact_type: str) -> int | None:
    value = data.get("page")
    if value is None or value == "":
        return None
    try:
        page = int(value)
    except (TypeError, ValueError):
        raise ArtifactValidationError(artifact_type, "page", f"{value!r} is not an integer")
    if page < 0:
        raise ArtifactValidationError(artifact_type, "page", "must not be negative")
    return page


class _Record:
    artifact_type = ""
    target_table = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        return data


# ── Records ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DocumentSectionRecord(_Record):
    artifact_type = "document_section"
    target_table = None

    heading: str
    content: str
    section_type: str | None = None
    page: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentSectionRecord":
        t = cls.artifact_type
        return cls(
            heading=_text(data, "heading", t),
            content=_text(data, "content", t),
            section_type=_choice(data, "section_type", SECTION_TYPES, t, required=False),
            page=_page(data, t),
        )


@dataclass(frozen=True)
class HazardRecord(_Record):
    artifact_type = "hazard"
    target_table = "hazards"

    uid: str
    title: str
    description: str
    severity: str
    likelihood: str
    cause: str | None = None
    consequence: str | None = None
    mitigation: str | None = None
    affected_components: tuple = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: dict) -> "HazardRecord":
        t = cls.artifact_type
        components = data.get("affected_components") or ()
        if isinstance(components, str):
            components = [components]
        return cls(
            uid=_text(data, "uid", t).upper(),
            title=_text(data, "title", t),
            description=_text(data, "description", t),
            severity=_choice(data, "severity", HAZARD_SEVERITIES, t),
            likelihood=_choice(data, "likelihood", HAZARD_LIKELIHOODS, t),
            cause=_opt_text(data, "cause"),
            consequence=_opt_text(data, "consequence"),
            mitigation=_opt_text(data, "mitigation"),
            affected_components=tuple(str(c).strip() for c in components if str(c).strip()),
        )


@dataclass(frozen=True)
class RequirementRecord(_Record):
    artifact_type = "requirement"
    target_table = "requirements"

    uid: str
    title: str
    description: str
    category: str
    priority: str
    type: str | None = None
    verification_method: str | None = None
    source_hazard_uid: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "RequirementRecord":
        t = cls.artifact_type
        source = _opt_text(data, "source_hazard_uid")
        req_type = _opt_text(data, "type")
        return cls(
            uid=_text(data, "uid", t).upper(),
            title=_text(data, "title", t),
            description=_text(data, "description", t),
            category=_text(data, "category", t).lower(),
            priority=_choice(data, "priority", REQUIREMENT_PRIORITIES, t),
            type=req_type.lower() if req_type else None,
            verification_method=_choice(data, "verification_method", VERIFICATION_METHODS, t,
                                        required=False),
            source_hazard_uid=source.upper() if source else None,
        )


@dataclass(frozen=True)
class CertifiableElementRecord(_Record):
    artifact_type = "certifiable_element"
    target_table = "certifiable_elements"

    uid: str
    name: str
    type: str
    description: str | None = None
    sil_target: str | None = None
    parent_uid: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "CertifiableElementRecord":
        t = cls.artifact_type
        parent = _opt_text(data, "parent_uid")
        return cls(
            uid=_text(data, "uid", t).upper(),
            name=_text(data, "name", t),
            type=_choice(data, "type", CE_TYPES, t),
            description=_opt_text(data, "description"),
            sil_target=_sil(data, t),
            parent_uid=parent.upper() if parent else None,
        )


@dataclass(frozen=True)
class TraceabilityLinkRecord(_Record):
    artifact_type = "traceability_link"
    target_table = "hazards"  # requirement→CE links are stored against "requirements"

    hazard_uid: str
    hazard_title: str
    requirement_uid: str
    requirement_title: str
    link_rationale: str
    confidence: float
    verification_method: str
    ce_uid: str | None = None
    ce_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "TraceabilityLinkRecord":
        t = cls.artifact_type
        ce_uid = _opt_text(data, "ce_uid")
        return cls(
            hazard_uid=_text(data, "hazard_uid", t).upper(),
            hazard_title=_text(data, "hazard_title", t),
            requirement_uid=_text(data, "requirement_uid", t).upper(),
            requirement_title=_text(data, "requirement_title", t),
            link_rationale=_text(data, "link_rationale", t),
            confidence=_confidence(data, t),
            verification_method=_choice(data, "verification_method", VERIFICATION_METHODS, t),
            ce_uid=ce_uid.upper() if ce_uid else None,
            ce_name=_opt_text(data, "ce_name"),
        )


@dataclass(frozen=True)
class ConformanceItemRecord(_Record):
    artifact_type = "conformance_item"
    target_table = "checklist_items"

    phase_id: str
    category: str
    title: str
    description: str
    verification_method: str
    priority: str
    linked_hazard_uid: str | None = None
    linked_requirement_uid: str | None = None
    linked_ce_uid: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ConformanceItemRecord":
        t = cls.artifact_type
        return cls(
            phase_id=_text(data, "phase_id", t).lower(),
            category=_text(data, "category", t),
            title=_text(data, "title", t),
            description=_text(data, "description", t),
            verification_method=_choice(data, "verification_method", VERIFICATION_METHODS, t),
            priority=_choice(data, "priority", CHECKLIST_PRIORITIES, t),
            **_linked_uids(data),
        )


@dataclass(frozen=True)
class TestCaseRecord(_Record):
    __test__ = False

    artifact_type = "test_case"
    target_table = "test_cases"

    title: str
    description: str
    test_type: str
    procedure: str
    expected_result: str
    priority: str
    verification_method: str
    uid: str | None = None
    linked_requirement_uid: str | None = None
    linked_hazard_uid: str | None = None
    linked_ce_uid: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "TestCaseRecord":
        t = cls.artifact_type
        uid = _opt_text(data, "uid")
        return cls(
            title=_text(data, "title", t),
            description=_text(data, "description", t),
            test_type=_choice(data, "test_type", TEST_TYPES, t),
            procedure=_text(data, "procedure", t),
            expected_result=_text(data, "expected_result", t),
            priority=_choice(data, "priority", TEST_PRIORITIES, t),
            verification_method=_choice(data, "verification_method", VERIFICATION_METHODS, t),
            uid=uid.upper() if uid else None,
            **_linked_uids(data),
        )


def _linked_uids(data: dict) -> dict:
    result = {}
    for name in ("linked_hazard_uid", "linked_requirement_uid", "linked_ce_uid"):
        value = _opt_text(data, name)
        result[name] = value.upper() if value else None
    return result


ARTIFACT_SCHEMAS = {
    cls.artifact_type: cls
    for cls in (
        DocumentSectionRecord,
        HazardRecord,
        RequirementRecord,
        CertifiableElementRecord,
        TraceabilityLinkRecord,
        ConformanceItemRecord,
        TestCaseRecord,
    )
}


def parse_items(items, record_cls) -> tuple[list, int]:
    """
    Validate raw generated items against ``record_cls``.

    Returns:
        (valid_records, dropped_count). Non-dict entries count as dropped.
    """
    valid = []
    dropped = 0
    for index, item in enumerate(items or []):
        if not isinstance(item, dict):
            dropped += 1
            logger.debug("Dropped %s #%d: not an object", record_cls.artifact_type, index)
            continue
        try:
            valid.append(record_cls.from_dict(item))
        except ArtifactValidationError as exc:
            dropped += 1
            logger.debug("Dropped %s #%d: %s", record_cls.artifact_type, index, exc)
    return valid, dropped
