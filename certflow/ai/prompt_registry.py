"""
Prompt templates for the generating workflow phases.

Each executor names one template (``prompt_name``); templates are YAML files
with ``name``, ``version``, ``system`` and ``user`` keys, loaded from
certflow/ai/prompts/ or from PROMPTS_DIR when configured. ``{{placeholder}}``
markers are filled at render time; a marker with no value is kept verbatim
and logged so a template/executor mismatch shows up in the logs.

Usage:
    registry = PromptRegistry()
    messages = registry.render("hazard_extractor",
                               system_description="Metro train control",
                               document_sections="...", existing_hazards="(none)")
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

BUNDLED_PROMPTS = Path(__file__).parent / "prompts"
PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass
class PromptTemplate:
    name: str
    version: str
    system: str = ""
    user: str = ""
    description: str = ""
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: dict, fallback_name: str) -> "PromptTemplate":
        return cls(
            name=str(data.get("name") or fallback_name),
            version=str(data.get("version") or "v1"),
            system=data.get("system") or "",
            user=data.get("user") or "",
            description=data.get("description") or "",
            metadata=data.get("metadata") or {},
        )

    @property
    def placeholders(self) -> set[str]:
        return set(PLACEHOLDER_RE.findall(self.system)) | set(PLACEHOLDER_RE.findall(self.user))

    def render(self, **variables) -> list[dict]:
        """Chat messages with placeholders filled; empty parts are omitted."""
        unfilled = sorted(self.placeholders - set(variables))
        if unfilled:
            logger.warning("Prompt %s/%s rendered without: %s", self.name, self.version, ", ".join(unfilled))

        def fill(match):
            key = match.group(1)
            return str(variables[key]) if key in variables else "{{" + key + "}}"

        messages = []
        for role, text in (("system", self.system), ("user", self.user)):
            content = PLACEHOLDER_RE.sub(fill, text)
            if content.strip():
                messages.append({"role": role, "content": content})
        return messages

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "placeholders": sorted(self.placeholders),
        }


SYSTEM_BASE = PromptTemplate(
    name="system_base",
    version="v1",
    description="Shared safety-engineer persona",
    system=(
        "You are a system safety engineer supporting safety certification of "
        "transit and rail systems (FTA, APTA and EN 50129 programmes). "
        "You know hazard analysis (PHA, SHA, FMEA), MIL-STD-882 risk matrices, "
        "safety integrity levels and requirements traceability.\n\n"
        "Rules:\n"
        "- Use only the supplied material; never invent system details\n"
        "- Prefer preventive, verifiable, human-independent safety requirements\n"
        "- Give every item a stable identifier so later phases can reference it\n"
        "- Answer exclusively through the requested tool"
    ),
    user="{{user_message}}",
)


class PromptRegistry:
    """Templates indexed by (name, version); files override the built-in persona."""

    def __init__(self, prompts_dir: str | None = None):
        self.prompts_dir = Path(prompts_dir) if prompts_dir else BUNDLED_PROMPTS
        self._templates: dict[tuple[str, str], PromptTemplate] = {}
        self.add(SYSTEM_BASE)
        self._load_dir()

    def add(self, template: PromptTemplate) -> None:
        self._templates[(template.name, template.version)] = template

    def _load_dir(self) -> None:
        if not self.prompts_dir.is_dir():
            logger.info("No prompts directory at %s; built-in templates only", self.prompts_dir)
            return
        for path in sorted(self.prompts_dir.glob("*.yaml")):
            try:
                data = yaml.safe_load(path.read_text(encoding="utf-8"))
            except (OSError, yaml.YAMLError) as exc:
                logger.error("Skipping prompt file %s: %s", path.name, exc)
                continue
            if not isinstance(data, dict):
                logger.warning("Skipping prompt file %s: not a mapping", path.name)
                continue
            template = PromptTemplate.from_mapping(data, path.stem)
            self.add(template)
            logger.debug("Prompt %s/%s loaded from %s", template.name, template.version, path.name)

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        return self._templates.get((name, version))

    def render(self, name: str, version: str = "v1", **variables) -> list[dict]:
        """Raises KeyError for an unknown name/version."""
        template = self.get(name, version)
        if template is None:
            raise KeyError(f"Prompt template not found: {name}/{version}")
        return template.render(**variables)

    def list_templates(self) -> list[dict]:
        return [t.to_dict() for _, t in sorted(self._templates.items())]

    def get_versions(self, name: str) -> list[str]:
        return sorted(v for n, v in self._templates if n == name)
