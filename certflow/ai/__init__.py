"""
certflow: Safety-Certification Workflow Service
AI module.

Submodules:
    - gateway: LLM Gateway (provider routing, structured output, retry, cost tracking)
    - prompt_registry: YAML prompt template loading
    - executors: one StepExecutor per workflow phase
"""

from flask import current_app

from certflow.ai.gateway import LLMGateway
from certflow.ai.prompt_registry import PromptRegistry


def get_gateway() -> LLMGateway:
    """Return the per-app LLMGateway, creating it on first use."""
    gateway = getattr(current_app, "_llm_gateway", None)
    if gateway is None:
        gateway = LLMGateway(app=current_app)
        current_app._llm_gateway = gateway
    return gateway


def get_prompt_registry() -> PromptRegistry:
    """Return the per-app PromptRegistry (honours PROMPTS_DIR)."""
    registry = getattr(current_app, "_prompt_registry", None)
    if registry is None:
        registry = PromptRegistry(current_app.config.get("PROMPTS_DIR"))
        current_app._prompt_registry = registry
    return registry
