"""
Tests: LLM Gateway.

Covers:
    - classify_provider_error: status codes, quota text, timeouts, passthrough
    - retry loop: generic failures retried, typed failures surfaced at once
    - provider routing with fallback to the local stub
    - usage + audit logging for success and failure
    - parse_json_object tolerance for fences and prose
    - LocalStubProvider structured payloads
"""

from unittest.mock import MagicMock

import pytest

from certflow.ai.gateway import (
    LLMGateway,
    LocalStubProvider,
    StructuredOutputError,
    classify_provider_error,
    parse_json_object,
)
from certflow.core.exceptions import (
    GenerationServiceError,
    GenerationTimeoutError,
    QuotaExhaustedError,
    RateLimitedError,
)
from certflow.models.ai import AIAuditLog, AIUsageLog, calculate_cost


MESSAGES = [
    {"role": "system", "content": "You are a safety engineer."},
    {"role": "user", "content": "List the hazards."},
]


class _StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class APITimeoutError(Exception):
    pass


def _gateway(app, provider, attempts=3):
    gw = LLMGateway(app, max_attempts=attempts, retry_base=0.0, default_model="local-stub")
    gw._providers["local"] = provider
    return gw


def _ok(data=None):
    return {"data": data or {"hazards": []}, "content": "{}", "prompt_tokens": 10,
            "completion_tokens": 5, "model": "local-stub"}


# ═════════════════════════════════════════════════════════════════════════════
# 1. ERROR CLASSIFICATION
# ═════════════════════════════════════════════════════════════════════════════

class TestClassifyProviderError:
    def test_rate_limited(self):
        err = classify_provider_error(_StatusError("Too Many Requests", 429), "openai")
        assert isinstance(err, RateLimitedError)
        assert err.status_code == 429
        assert err.provider == "openai"

    def test_quota_by_status(self):
        assert isinstance(classify_provider_error(_StatusError("Payment Required", 402)), QuotaExhaustedError)

    def test_quota_by_message(self):
        err = classify_provider_error(_StatusError("You exceeded your quota: insufficient_quota", 429))
        assert isinstance(err, QuotaExhaustedError)

    def test_gemini_resource_exhausted(self):
        assert isinstance(classify_provider_error(RuntimeError("RESOURCE_EXHAUSTED")), RateLimitedError)

    def test_timeouts(self):
        assert isinstance(classify_provider_error(TimeoutError("read timed out")), GenerationTimeoutError)
        assert isinstance(classify_provider_error(APITimeoutError("slow")), GenerationTimeoutError)

    def test_generic(self):
        err = classify_provider_error(_StatusError("Internal error", 500), "anthropic")
        assert type(err) is GenerationServiceError
        assert err.status_code == 502

    def test_passthrough(self):
        original = QuotaExhaustedError("out of credit")
        assert classify_provider_error(original) is original


# ═════════════════════════════════════════════════════════════════════════════
# 2. RETRY LOOP
# ═════════════════════════════════════════════════════════════════════════════

class TestRetry:
    def test_generic_failure_retried(self, app):
        provider = MagicMock()
        provider.chat_structured.side_effect = [RuntimeError("connection reset"), _ok()]
        gw = _gateway(app, provider)

        result = gw.generate_structured(MESSAGES, "extract_hazards", {})

        assert provider.chat_structured.call_count == 2
        assert result["provider"] == "local"
        assert result["data"] == {"hazards": []}

    def test_exhausted_attempts_raise_last_error(self, app):
        provider = MagicMock()
        provider.chat_structured.side_effect = RuntimeError("bad gateway")
        gw = _gateway(app, provider, attempts=3)

        with pytest.raises(GenerationServiceError) as exc:
            gw.generate_structured(MESSAGES, "extract_hazards", {})

        assert provider.chat_structured.call_count == 3
        assert str(exc.value) == "bad gateway"
        assert isinstance(exc.value.__cause__, RuntimeError)

    @pytest.mark.parametrize("error,expected", [
        (_StatusError("slow down", 429), RateLimitedError),
        (_StatusError("billing", 402), QuotaExhaustedError),
        (TimeoutError("timed out"), GenerationTimeoutError),
    ])
    def test_typed_failures_not_retried(self, app, error, expected):
        provider = MagicMock()
        provider.chat_structured.side_effect = error
        gw = _gateway(app, provider, attempts=5)

        with pytest.raises(expected):
            gw.generate_structured(MESSAGES, "extract_hazards", {})
        assert provider.chat_structured.call_count == 1

    def test_per_call_attempt_override(self, app):
        provider = MagicMock()
        provider.chat_structured.side_effect = RuntimeError("flaky")
        gw = _gateway(app, provider, attempts=4)

        with pytest.raises(GenerationServiceError):
            gw.generate_structured(MESSAGES, "extract_hazards", {}, max_attempts=1)
        assert provider.chat_structured.call_count == 1


# ═════════════════════════════════════════════════════════════════════════════
# 3. ROUTING & LOGGING
# ═════════════════════════════════════════════════════════════════════════════

class TestRoutingAndLogging:
    def test_missing_key_falls_back_to_stub(self, app, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        gw = LLMGateway(app)
        provider, name = gw._get_provider("gpt-4o")
        assert name == "local"
        assert isinstance(provider, LocalStubProvider)

    def test_unknown_model_routes_to_stub(self, app):
        _provider, name = LLMGateway(app)._get_provider("mystery-model")
        assert name == "local"

    def test_config_defaults(self, app):
        gw = LLMGateway(app)
        assert gw.default_model == "local-stub"
        assert gw.retry_base == 0.0
        assert "local" in gw.available_providers

    def test_success_logged(self, app, project):
        gw = LLMGateway(app)
        result = gw.generate_structured(MESSAGES, "extract_hazards", {}, purpose="hazard_extraction",
                                        user="tester", project_id=project.id)

        usage = AIUsageLog.query.one()
        assert usage.success is True
        assert usage.purpose == "hazard_extraction"
        assert usage.project_id == project.id
        assert usage.total_tokens == result["prompt_tokens"] + result["completion_tokens"]
        audit = AIAuditLog.query.one()
        assert audit.action == "structured_call"
        assert audit.user == "tester"
        assert len(audit.prompt_hash) == 64
        assert audit.prompt_summary == "List the hazards."

    def test_failure_logged(self, app):
        provider = MagicMock()
        provider.chat_structured.side_effect = _StatusError("slow down", 429)
        gw = _gateway(app, provider)

        with pytest.raises(RateLimitedError):
            gw.generate_structured(MESSAGES, "extract_hazards", {})

        usage = AIUsageLog.query.one()
        assert usage.success is False
        assert usage.error_message == "slow down"
        assert AIAuditLog.query.one().success is False

    def test_stub_call_audited(self, app):
        result = LLMGateway(app).generate_structured(MESSAGES, "extract_hazards", {}, purpose="smoke")
        assert result["model"] == "local-stub"
        audit = AIAuditLog.query.one()
        assert audit.action == "structured_call"
        assert audit.success is True
        assert AIUsageLog.query.one().purpose == "smoke"

    def test_calculate_cost(self):
        assert calculate_cost("gpt-4o", 1_000_000, 0) == pytest.approx(2.50)
        assert calculate_cost("local-stub", 5000, 5000) == 0.0


# ═════════════════════════════════════════════════════════════════════════════
# 4. JSON PARSING & STUB
# ═════════════════════════════════════════════════════════════════════════════

class TestParseJsonObject:
    def test_fenced(self):
        assert parse_json_object('```json\n{"hazards": []}\n```') == {"hazards": []}

    def test_surrounding_prose(self):
        assert parse_json_object('Here you go: {"a": 1} hope it helps') == {"a": 1}

    def test_not_json(self):
        with pytest.raises(StructuredOutputError):
            parse_json_object("no braces here")

    def test_array_rejected(self):
        with pytest.raises(StructuredOutputError):
            parse_json_object("[1, 2]")


class TestLocalStub:
    def test_hazards_reference_each_other(self):
        stub = LocalStubProvider()
        hazards = stub.chat_structured(MESSAGES, "local-stub", "extract_hazards", {})["data"]["hazards"]
        links = stub.chat_structured(MESSAGES, "local-stub", "link_hazards_to_requirements", {})["data"]["links"]

        assert [h["uid"] for h in hazards] == ["HAZ-001", "HAZ-002", "HAZ-003"]
        assert {link["hazard_uid"] for link in links} == {h["uid"] for h in hazards}

    def test_unknown_tool_returns_empty(self):
        result = LocalStubProvider().chat_structured(MESSAGES, "local-stub", "unknown_tool", {})
        assert result["data"] == {}
