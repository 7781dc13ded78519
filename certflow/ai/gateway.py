"""
certflow: Safety-Certification Workflow Service
LLM Gateway.

Provider-agnostic generation-service router with:
    - Multi-provider support (OpenAI, Anthropic Claude, Gemini, local stub)
    - Structured output (forced tool / function calling, JSON mode for Gemini)
    - Typed failures: rate-limited (429), quota exhausted (402), timeout (504)
    - Bounded retry with exponential backoff for generic failures only
    - Token tracking, cost logging and audit logging

Usage:
    from certflow.ai import get_gateway
    gw = get_gateway()
    result = gw.generate_structured(
        messages, tool_name="extract_hazards", schema=HAZARD_SCHEMA,
        purpose="hazard_extraction", project_id=7,
    )
    hazards = result["data"]["hazards"]
"""

import hashlib
import json
import logging
import os
import re
import threading
import time
from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError

from certflow.core.exceptions import (
    GenerationServiceError,
    GenerationTimeoutError,
    QuotaExhaustedError,
    RateLimitedError,
)
from certflow.models import db
from certflow.models.ai import AIAuditLog, AIUsageLog, calculate_cost

logger = logging.getLogger(__name__)


class StructuredOutputError(GenerationServiceError):
    """The provider answered, but not with an object matching the requested tool."""


# ── Error classification ──────────────────────────────────────────────────────

_NON_RETRYABLE = (RateLimitedError, QuotaExhaustedError, GenerationTimeoutError)


def classify_provider_error(exc: Exception, provider: str | None = None) -> GenerationServiceError:
    """
    Map a provider SDK exception onto the service error taxonomy.

    The SDKs are imported lazily, so classification goes by HTTP status and
    class name rather than isinstance checks against SDK types.
    """
    if isinstance(exc, GenerationServiceError):
        return exc

    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    cls_name = type(exc).__name__.lower()
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "code", None)

    if isinstance(exc, TimeoutError) or "timeout" in cls_name:
        return GenerationTimeoutError(message, provider)
    if status == 402 or "insufficient_quota" in lowered or "credit balance" in lowered:
        return QuotaExhaustedError(message, provider)
    if status == 429 or "ratelimit" in cls_name or "resource_exhausted" in lowered:
        return RateLimitedError(message, provider)
    return GenerationServiceError(message, provider)


def parse_json_object(content: str) -> dict:
    """Parse a JSON object out of model text (tolerates ``` fences and surrounding prose)."""
    cleaned = (content or "").strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [ln for ln in lines if not ln.strip().startswith("```")]
        cleaned = "\n".join(lines)

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise StructuredOutputError("Model response contained no JSON object")
        try:
            parsed = json.loads(match.group())
        except json.JSONDecodeError as exc:
            raise StructuredOutputError(f"Model response is not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise StructuredOutputError("Model response JSON is not an object")
    return parsed


def _split_system(messages: list) -> tuple[str, list]:
    system_parts = []
    chat_messages = []
    for m in messages:
        if m["role"] == "system":
            system_parts.append(m["content"])
        else:
            chat_messages.append(m)
    return "\n\n".join(system_parts), chat_messages


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    def __init__(self, timeout: float = 120.0):
        self.timeout = timeout
        self._client = None

    @abstractmethod
    def chat_structured(self, messages: list, model: str, tool_name: str,
                        schema: dict, **kwargs) -> dict:
        """
        Request a single object matching ``schema``.

        Returns:
            dict with keys: data, content, prompt_tokens, completion_tokens, model
        """
        ...


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI GPT provider (structured output via forced function calling)."""

    def __init__(self, timeout: float = 120.0):
        super().__init__(timeout)
        self.api_key = os.getenv("OPENAI_API_KEY", "")

    def _get_client(self):
        if self._client is None:
            import openai
            # retries are owned by the gateway
            self._client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def chat_structured(self, messages: list, model: str, tool_name: str,
                        schema: dict, **kwargs) -> dict:
        client = self._get_client()
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", 8192),
            temperature=kwargs.get("temperature", 0.2),
            tools=[{
                "type": "function",
                "function": {
                    "name": tool_name,
                    "description": kwargs.get("tool_description", tool_name),
                    "parameters": schema,
                },
            }],
            tool_choice={"type": "function", "function": {"name": tool_name}},
        )
        message = response.choices[0].message
        calls = message.tool_calls or []
        if not calls:
            raise StructuredOutputError(f"No {tool_name} tool call in response", "openai")
        arguments = calls[0].function.arguments
        return {
            "data": parse_json_object(arguments),
            "content": arguments,
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider (structured output via forced tool use)."""

    def __init__(self, timeout: float = 120.0):
        super().__init__(timeout)
        self.api_key = os.getenv("ANTHROPIC_API_KEY", "")

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def _params(self, messages: list, model: str, **kwargs) -> dict:
        system_msg, chat_messages = _split_system(messages)
        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.3),
        }
        if system_msg:
            params["system"] = system_msg
        return params

    def chat_structured(self, messages: list, model: str, tool_name: str,
                        schema: dict, **kwargs) -> dict:
        client = self._get_client()
        params = self._params(messages, model, max_tokens=kwargs.get("max_tokens", 8192),
                              temperature=kwargs.get("temperature", 0.2))
        params["tools"] = [{
            "name": tool_name,
            "description": kwargs.get("tool_description", tool_name),
            "input_schema": schema,
        }]
        params["tool_choice"] = {"type": "tool", "name": tool_name}
        response = client.messages.create(**params)

        for block in response.content:
            if getattr(block, "type", "") == "tool_use" and block.name == tool_name:
                data = block.input
                if not isinstance(data, dict):
                    raise StructuredOutputError("Tool input is not an object", "anthropic")
                return {
                    "data": data,
                    "content": json.dumps(data),
                    "prompt_tokens": response.usage.input_tokens,
                    "completion_tokens": response.usage.output_tokens,
                    "model": model,
                }
        raise StructuredOutputError(f"No {tool_name} tool_use block in response", "anthropic")


# ── Google Gemini Provider ────────────────────────────────────────────────────

class GeminiProvider(LLMProvider):
    """
    Google Gemini API provider.

    Structured output uses JSON response mode; the schema is appended to
    the system instruction.

    Environment:
        GEMINI_API_KEY
    """

    def __init__(self, timeout: float = 120.0):
        super().__init__(timeout)
        self.api_key = os.getenv("GEMINI_API_KEY", "")

    def _get_client(self):
        if self._client is None:
            from google import genai
            from google.genai import types
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
        return self._client

    def _generate(self, messages: list, model: str, *, extra_system: str = "", **kwargs):
        client = self._get_client()
        from google.genai import types

        system_msg, chat_messages = _split_system(messages)
        contents = [
            types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in chat_messages
        ]
        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", 0.3),
            max_output_tokens=kwargs.get("max_tokens", 8192),
        )
        system = "\n\n".join(p for p in (system_msg, extra_system) if p)
        if system:
            config.system_instruction = system
        config.response_mime_type = "application/json"

        response = client.models.generate_content(model=model, contents=contents, config=config)
        usage = response.usage_metadata
        return (
            response.text or "",
            getattr(usage, "prompt_token_count", 0) or 0,
            getattr(usage, "candidates_token_count", 0) or 0,
        )

    def chat_structured(self, messages: list, model: str, tool_name: str,
                        schema: dict, **kwargs) -> dict:
        instruction = (
            f"Return the result of `{tool_name}` as a single JSON object matching this JSON schema:\n"
            + json.dumps(schema)
        )
        text, p_tok, c_tok = self._generate(
            messages, model, extra_system=instruction, **kwargs,
        )
        return {
            "data": parse_json_object(text),
            "content": text,
            "prompt_tokens": p_tok,
            "completion_tokens": c_tok,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic, schema-consistent responses.
    No API key required.

    The structured payloads reference each other by uid (HAZ-00n, REQ-00n,
    CE-001.n) so a full pipeline run links and materializes end to end.
    """

    def chat_structured(self, messages: list, model: str, tool_name: str,
                        schema: dict, **kwargs) -> dict:
        user_msg = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
        builder = _STUB_BUILDERS.get(tool_name)
        data = builder(schema) if builder else {}
        content = json.dumps(data)
        return {
            "data": data,
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }


def _stub_sections(schema):
    return {
        "sections": [
            {"heading": "System Overview", "section_type": "system_description", "page": 1,
             "content": "The train control system governs traction and braking for a metro fleet."},
            {"heading": "Braking Hazards", "section_type": "hazard", "page": 4,
             "content": "Loss of emergency braking could lead to collision with obstacles."},
            {"heading": "Door Interlocks", "section_type": "requirement", "page": 7,
             "content": "Doors shall not open while the train is in motion."},
        ],
        "summary": "Three sections extracted from the source documents.",
    }


def _stub_hazards(schema):
    return {
        "hazards": [
            {"uid": "HAZ-001", "title": "Loss of emergency braking",
             "description": "Emergency brake fails to apply on demand.",
             "severity": "catastrophic", "likelihood": "remote",
             "cause": "Brake valve failure", "consequence": "Collision",
             "mitigation": "Redundant brake circuits"},
            {"uid": "HAZ-002", "title": "Doors open while moving",
             "description": "Passenger doors open while the train is in motion.",
             "severity": "critical", "likelihood": "improbable"},
            {"uid": "HAZ-003", "title": "Overspeed on curve",
             "description": "Train exceeds civil speed limit on a curve.",
             "severity": "critical", "likelihood": "remote"},
        ],
    }


def _stub_requirements(schema):
    return {
        "requirements": [
            {"uid": "REQ-001", "title": "Emergency brake redundancy",
             "description": "The system shall apply emergency braking within 500 ms when a brake "
                            "command is issued, using redundant circuits.",
             "category": "safety", "priority": "critical", "type": "safety",
             "verification_method": "test", "source_hazard_uid": "HAZ-001"},
            {"uid": "REQ-002", "title": "Door interlock",
             "description": "The system shall prevent door opening when speed exceeds 3 km/h.",
             "category": "safety", "priority": "high", "type": "safety",
             "verification_method": "demonstration", "source_hazard_uid": "HAZ-002"},
            {"uid": "REQ-003", "title": "Overspeed protection",
             "description": "The system shall limit speed to the civil limit plus 5% during operation.",
             "category": "performance", "priority": "high",
             "verification_method": "analysis", "source_hazard_uid": "HAZ-003"},
        ],
    }


def _stub_ces(schema):
    return {
        "elements": [
            {"uid": "CE-001", "name": "Train Control System", "type": "system",
             "description": "Top-level train control", "sil_target": "SIL4", "parent_uid": None},
            {"uid": "CE-001.1", "name": "Braking Subsystem", "type": "subsystem",
             "description": "Service and emergency braking", "sil_target": "SIL4", "parent_uid": "CE-001"},
            {"uid": "CE-001.2", "name": "Door Controller Software", "type": "software",
             "description": "Door interlock logic", "sil_target": "SIL2", "parent_uid": "CE-001"},
        ],
        "summary": "Three certifiable elements in a two-level hierarchy.",
    }


_STUB_PAIRS = (
    ("HAZ-001", "Loss of emergency braking", "REQ-001", "Emergency brake redundancy",
     "CE-001.1", "Braking Subsystem", "test"),
    ("HAZ-002", "Doors open while moving", "REQ-002", "Door interlock",
     "CE-001.2", "Door Controller Software", "demonstration"),
    ("HAZ-003", "Overspeed on curve", "REQ-003", "Overspeed protection",
     "CE-001", "Train Control System", "analysis"),
)


def _stub_hazard_links(schema):
    return {
        "links": [
            {"hazard_uid": h, "hazard_title": ht, "requirement_uid": r, "requirement_title": rt,
             "link_rationale": f"{r} mitigates {h}", "confidence": 0.9, "verification_method": vm}
            for h, ht, r, rt, _c, _cn, vm in _STUB_PAIRS
        ],
        "unlinked_hazards": [],
    }


def _stub_ce_links(schema):
    return {
        "links": [
            {"hazard_uid": h, "hazard_title": ht, "requirement_uid": r, "requirement_title": rt,
             "ce_uid": c, "ce_name": cn, "link_rationale": f"{r} is allocated to {c}",
             "confidence": 0.85, "verification_method": vm}
            for h, ht, r, rt, c, cn, vm in _STUB_PAIRS
        ],
        "unlinked_hazards": [],
    }


def _stub_conformance(schema):
    try:
        phases = schema["properties"]["items"]["items"]["properties"]["phase_id"]["enum"]
    except (KeyError, TypeError):
        phases = ["general"]
    methods = ("inspection", "analysis", "test", "demonstration")
    return {
        "items": [
            {"phase_id": phase, "category": "evidence",
             "title": f"Provide {phase.replace('_', ' ')} evidence",
             "description": f"Collect and review objective evidence for the {phase} phase.",
             "verification_method": methods[i % len(methods)],
             "priority": "high" if i < 2 else "medium",
             "linked_requirement_uid": "REQ-001" if i == 0 else None}
            for i, phase in enumerate(phases)
        ],
    }


def _stub_test_cases(schema):
    return {
        "test_cases": [
            {"uid": f"TC-00{i}", "title": f"Verify {rt.lower()}",
             "description": f"Verifies {r} against hazard {h}.",
             "test_type": "safety" if i == 1 else "system",
             "procedure": "1. Configure test rig\n2. Inject stimulus\n3. Observe response",
             "expected_result": "System responds within specified limits",
             "priority": "critical" if i == 1 else "high", "verification_method": vm,
             "linked_requirement_uid": r, "linked_hazard_uid": h, "linked_ce_uid": c}
            for i, (h, _ht, r, rt, c, _cn, vm) in enumerate(_STUB_PAIRS, start=1)
        ],
    }


def _stub_extract_items(schema):
    props = schema.get("properties", {})
    if "hazards" in props:
        return _stub_hazards(schema)
    if "requirements" in props:
        return _stub_requirements(schema)
    return _stub_ces(schema)


_STUB_BUILDERS = {
    "extract_document_sections": _stub_sections,
    "extract_hazards": _stub_hazards,
    "extract_requirements": _stub_requirements,
    "generate_certifiable_elements": _stub_ces,
    "link_hazards_to_requirements": _stub_hazard_links,
    "link_requirements_to_ces": _stub_ce_links,
    "generate_conformance_items": _stub_conformance,
    "generate_test_cases": _stub_test_cases,
    "extract_document_items": _stub_extract_items,
}


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all generation-service calls.

    Features:
        - Provider routing based on model name
        - Retry with exponential backoff (generic failures only)
        - Typed rate-limit / quota / timeout errors, never retried
        - Token/cost tracking and audit logging (persisted to DB)

    Usage:
        gw = LLMGateway(app=flask_app)
        result = gw.generate_structured(
            messages=[...], tool_name="extract_hazards", schema={...},
            purpose="hazard_extraction",
        )
    """

    # Model → provider mapping
    PROVIDER_MAP = {
        # OpenAI
        "gpt-4o-mini": "openai",
        "gpt-4o": "openai",
        # Anthropic
        "claude-3-5-haiku-20241022": "anthropic",
        "claude-3-5-sonnet-20241022": "anthropic",
        # Google Gemini
        "gemini-2.5-flash": "gemini",
        "gemini-2.5-pro": "gemini",
        # Local stub (dev/test)
        "local-stub": "local",
    }

    def __init__(self, app=None, *, timeout=None, max_attempts=None, retry_base=None,
                 default_model=None):
        cfg = app.config if app is not None else {}
        self.timeout = timeout if timeout is not None else cfg.get("LLM_TIMEOUT_SECONDS", 120.0)
        self.max_attempts = max_attempts if max_attempts is not None else cfg.get("LLM_MAX_ATTEMPTS", 2)
        self.retry_base = retry_base if retry_base is not None else cfg.get("LLM_RETRY_BASE_SECONDS", 1.0)
        self.default_model = default_model or cfg.get("LLM_DEFAULT_CHAT_MODEL") or "gpt-4o-mini"
        self._providers = {}
        self._init_providers()

    def _init_providers(self):
        """Initialize available providers based on environment."""
        self._providers["local"] = LocalStubProvider(self.timeout)

        if os.getenv("OPENAI_API_KEY"):
            self._providers["openai"] = OpenAIProvider(self.timeout)
        if os.getenv("ANTHROPIC_API_KEY"):
            self._providers["anthropic"] = AnthropicProvider(self.timeout)
        if os.getenv("GEMINI_API_KEY"):
            self._providers["gemini"] = GeminiProvider(self.timeout)

    @property
    def available_providers(self) -> list[str]:
        return sorted(self._providers)

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """
        Resolve model to provider. Falls back to local stub if real provider unavailable.
        Returns (provider, provider_name).
        """
        provider_name = self.PROVIDER_MAP.get(model, "local")

        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        logger.warning(
            "Provider '%s' not available (no API key?). Falling back to local stub for model '%s'.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    # ── Public API ────────────────────────────────────────────────────────

    def generate_structured(
        self,
        messages: list,
        tool_name: str,
        schema: dict,
        model: str | None = None,
        *,
        purpose: str = "",
        user: str = "system",
        project_id: int | None = None,
        max_attempts: int | None = None,
        **kwargs,
    ) -> dict:
        """
        Request one JSON object matching ``schema`` from the generation service.

        Args:
            messages: Rendered chat messages (see PromptRegistry.render).
            tool_name: Function/tool name the model is forced to call.
            schema: JSON schema of the tool arguments.
            model: Model identifier (defaults to LLM_DEFAULT_CHAT_MODEL).
            purpose: What the call is for (usually the step type).
            max_attempts: Override of LLM_MAX_ATTEMPTS for this call.

        Returns:
            dict: {data, content, prompt_tokens, completion_tokens, model,
                   cost_usd, latency_ms, provider}

        Raises:
            RateLimitedError, QuotaExhaustedError, GenerationTimeoutError:
                surfaced immediately, never retried.
            GenerationServiceError: after all attempts failed.
        """
        model = model or self.default_model
        provider, provider_name = self._get_provider(model)
        return self._call(
            lambda: provider.chat_structured(messages, model, tool_name, schema, **kwargs),
            action="structured_call", model=model, provider_name=provider_name,
            messages=messages, purpose=purpose or tool_name, user=user, project_id=project_id,
            max_attempts=max_attempts,
        )

    # ── Retry loop ────────────────────────────────────────────────────────

    def _call(self, invoke, *, action, model, provider_name, messages, purpose, user,
              project_id, max_attempts):
        attempts = max(1, max_attempts if max_attempts is not None else self.max_attempts)
        prompt_hash = hashlib.sha256(json.dumps(messages, default=str).encode()).hexdigest()
        prompt_summary = messages[-1]["content"][:500] if messages else ""

        last_error = None
        last_cause = None
        for attempt in range(1, attempts + 1):
            start_time = time.time()
            try:
                result = invoke()
            except Exception as exc:
                last_cause = exc
                last_error = classify_provider_error(exc, provider_name)
                logger.warning(
                    "LLM call attempt %d/%d failed (%s): %s",
                    attempt, attempts, type(last_error).__name__, last_error,
                    extra={"provider": provider_name, "model": model},
                )
                if isinstance(last_error, _NON_RETRYABLE) or attempt >= attempts:
                    break
                backoff = self.retry_base * (2 ** (attempt - 1))
                if backoff > 0:
                    threading.Event().wait(backoff)
                continue

            latency_ms = int((time.time() - start_time) * 1000)
            cost = calculate_cost(model, result["prompt_tokens"], result["completion_tokens"])
            result["cost_usd"] = cost
            result["latency_ms"] = latency_ms
            result["provider"] = provider_name

            self._log_usage(
                provider=provider_name, model=model,
                prompt_tokens=result["prompt_tokens"], completion_tokens=result["completion_tokens"],
                cost_usd=cost, latency_ms=latency_ms,
                user=user, purpose=purpose, project_id=project_id, success=True,
            )
            self._log_audit(
                action=action, provider=provider_name, model=model,
                user=user, project_id=project_id,
                prompt_hash=prompt_hash, prompt_summary=prompt_summary,
                tokens_used=result["prompt_tokens"] + result["completion_tokens"],
                cost_usd=cost, latency_ms=latency_ms,
                response_summary=(result.get("content") or "")[:500], success=True,
            )
            return result

        self._log_usage(
            provider=provider_name, model=model,
            prompt_tokens=0, completion_tokens=0, cost_usd=0.0, latency_ms=0,
            user=user, purpose=purpose, project_id=project_id,
            success=False, error_message=str(last_error),
        )
        self._log_audit(
            action=action, provider=provider_name, model=model,
            user=user, project_id=project_id,
            prompt_hash=prompt_hash, prompt_summary=prompt_summary,
            tokens_used=0, cost_usd=0.0, latency_ms=0,
            response_summary="", success=False, error_message=str(last_error),
        )
        raise last_error from last_cause

    # ── Internal Logging ──────────────────────────────────────────────────

    @staticmethod
    def _log_usage(*, provider, model, prompt_tokens, completion_tokens,
                   cost_usd, latency_ms, user, purpose, project_id,
                   success, error_message=None):
        """Persist a usage log record inside a savepoint so the caller's transaction is untouched."""
        try:
            with db.session.begin_nested():
                db.session.add(AIUsageLog(
                    provider=provider, model=model,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                    cost_usd=cost_usd, latency_ms=latency_ms,
                    user=user, purpose=purpose, project_id=project_id,
                    success=success, error_message=error_message,
                ))
        except SQLAlchemyError as e:
            logger.error("Failed to log AI usage: %s", e)

    @staticmethod
    def _log_audit(*, action, provider, model, user, project_id,
                   prompt_hash, prompt_summary, tokens_used, cost_usd,
                   latency_ms, response_summary, success, error_message=None):
        """Persist an audit log record inside a savepoint."""
        try:
            with db.session.begin_nested():
                db.session.add(AIAuditLog(
                    action=action, provider=provider, model=model,
                    user=user, project_id=project_id,
                    prompt_hash=prompt_hash, prompt_summary=prompt_summary,
                    tokens_used=tokens_used, cost_usd=cost_usd,
                    latency_ms=latency_ms, response_summary=response_summary,
                    success=success, error_message=error_message,
                ))
        except SQLAlchemyError as e:
            logger.error("Failed to log AI audit: %s", e)
