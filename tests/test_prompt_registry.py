"""
Tests: Prompt Registry.

Covers:
    - bundled YAML templates (one per generating phase + extractor)
    - {{variable}} substitution, unknown placeholders left intact
    - custom prompts directory overriding a bundled template
"""

import pytest

from certflow.ai.executors.base import StepExecutor
from certflow.ai.prompt_registry import PromptRegistry, PromptTemplate
from certflow.services.workflow_orchestrator import STEP_EXECUTORS


@pytest.fixture(scope="module")
def registry():
    return PromptRegistry()


class TestPromptRegistry:
    def test_bundled_templates(self, registry):
        names = {t["name"] for t in registry.list_templates()}
        assert {
            "system_base", "document_processor", "document_extractor", "hazard_extractor",
            "requirement_extractor", "ce_generator", "traceability_engine",
            "conformance_generator", "test_generator",
        } <= names

    def test_every_generating_executor_has_template(self, registry):
        for executor_cls in STEP_EXECUTORS.values():
            if executor_cls.prompt_name:
                assert registry.get(executor_cls.prompt_name) is not None, executor_cls.__name__
        assert StepExecutor.prompt_name == ""

    def test_render(self, registry):
        messages = registry.render("hazard_extractor", system_description="Metro train control",
                                   document_sections="## Braking\nBrakes may fail",
                                   existing_hazards="(none)")
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "Metro train control" in messages[1]["content"]
        assert "{{" not in messages[1]["content"]

    def test_placeholders(self, registry):
        tpl = registry.get("hazard_extractor")
        assert {"system_description", "document_sections"} <= tpl.placeholders
        assert "system_description" in tpl.to_dict()["placeholders"]

    def test_unknown_placeholder_left(self):
        tpl = PromptTemplate("t", "v1", system="", user="Hello {{name}} from {{ place }}")
        messages = tpl.render(name="Ada")
        assert messages == [{"role": "user", "content": "Hello Ada from {{place}}"}]

    def test_missing_template(self, registry):
        with pytest.raises(KeyError):
            registry.render("does_not_exist")
        assert registry.get("hazard_extractor", version="v9") is None

    def test_custom_directory(self, tmp_path):
        (tmp_path / "hazard_extractor.yaml").write_text(
            "name: hazard_extractor\nversion: v1\nsystem: Custom PHA\nuser: '{{system_description}}'\n",
            encoding="utf-8",
        )
        (tmp_path / "broken.yaml").write_text("name: [unclosed", encoding="utf-8")

        custom = PromptRegistry(str(tmp_path))
        messages = custom.render("hazard_extractor", system_description="Tram")
        assert messages[0]["content"] == "Custom PHA"
        assert messages[1]["content"] == "Tram"
        assert custom.get("system_base") is not None
        assert custom.get("test_generator") is None

    def test_missing_directory_uses_defaults(self, tmp_path):
        registry = PromptRegistry(str(tmp_path / "nope"))
        assert registry.get_versions("system_base") == ["v1"]
