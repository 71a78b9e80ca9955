"""Unit tests for AI provider adapters using mocked HTTP transports"""

import json
import pytest
import httpx
from datetime import date

from scrutix_engine.domain.exceptions import ConfigurationError
from scrutix_engine.domain.models import Severity
from scrutix_engine.infrastructure.ai.base import BaseAIProvider
from scrutix_engine.infrastructure.ai.claude import ClaudeProvider
from scrutix_engine.infrastructure.ai.factory import create_provider
from scrutix_engine.infrastructure.ai.mistral import MistralProvider
from scrutix_engine.infrastructure.ai.ollama import OllamaProvider
from scrutix_engine.infrastructure.ai.types import (
    AIDetectionType,
    AIErrorCode,
    AIMessage,
    AIProviderError,
    AIResponseParseError,
)


def claude_reply(text: str) -> dict:
    return {
        "model": "claude-sonnet-4-20250514",
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": 120, "output_tokens": 40},
    }


def claude_with(handler, **kwargs) -> ClaudeProvider:
    return ClaudeProvider(
        api_key="test-key",
        base_url="https://claude.test",
        transport=httpx.MockTransport(handler),
        backoff_base=0,
        **kwargs,
    )


async def test_claude_chat_request_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=claude_reply("Bonjour"))

    provider = claude_with(handler)
    response = await provider.chat([AIMessage("system", "Tu es auditeur"), AIMessage("user", "Salut")])

    assert response.content == "Bonjour"
    assert response.input_tokens == 120
    assert response.output_tokens == 40
    assert seen["url"] == "https://claude.test/v1/messages"
    assert seen["headers"]["x-api-key"] == "test-key"
    assert "anthropic-version" in seen["headers"]
    assert seen["body"]["system"] == "Tu es auditeur"
    assert seen["body"]["messages"] == [{"role": "user", "content": "Salut"}]


async def test_mistral_chat_uses_bearer_auth():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer secret"
        return httpx.Response(
            200,
            json={
                "model": "mistral-small-latest",
                "choices": [{"message": {"role": "assistant", "content": "ok"}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 2},
            },
        )

    provider = MistralProvider(api_key="secret", transport=httpx.MockTransport(handler))
    response = await provider.chat([AIMessage("user", "ping")])

    assert response.content == "ok"
    assert response.total_tokens == 12


async def test_ollama_chat_disables_streaming():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert request.url.path == "/api/chat"
        assert body["stream"] is False
        return httpx.Response(200, json={"model": "llama3.1", "message": {"content": "salut"}, "eval_count": 3})

    provider = OllamaProvider(transport=httpx.MockTransport(handler))
    response = await provider.chat([AIMessage("user", "ping")])

    assert response.content == "salut"
    assert response.output_tokens == 3


async def test_auth_error_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"error": "invalid key"})

    provider = claude_with(handler, max_retries=3)

    with pytest.raises(AIProviderError) as exc_info:
        await provider.chat([AIMessage("user", "ping")])

    assert exc_info.value.code == AIErrorCode.AUTH
    assert not exc_info.value.retryable
    assert len(calls) == 1


async def test_server_errors_retried_until_success():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=claude_reply("ok"))

    provider = claude_with(handler, max_retries=3)
    response = await provider.chat([AIMessage("user", "ping")])

    assert response.content == "ok"
    assert len(calls) == 3


async def test_rate_limit_exhausts_retries():
    provider = claude_with(lambda request: httpx.Response(429), max_retries=2)

    with pytest.raises(AIProviderError) as exc_info:
        await provider.chat([AIMessage("user", "ping")])

    assert exc_info.value.code == AIErrorCode.RATE_LIMIT
    assert exc_info.value.status_code == 429


async def test_network_failure_mapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = claude_with(handler, max_retries=1)

    with pytest.raises(AIProviderError) as exc_info:
        await provider.chat([AIMessage("user", "ping")])

    assert exc_info.value.code == AIErrorCode.NETWORK


async def test_connection_check_never_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    unreachable = claude_with(handler)
    rejected = claude_with(lambda request: httpx.Response(401))
    no_key = ClaudeProvider(api_key="", transport=httpx.MockTransport(lambda request: httpx.Response(200)))

    for provider in (unreachable, rejected, no_key):
        result = await provider.test_connection()
        assert result.valid is False
        assert result.error


async def test_connection_check_success():
    provider = claude_with(lambda request: httpx.Response(200, json=claude_reply("p")))

    result = await provider.test_connection()

    assert result.valid is True


async def test_ollama_connection_requires_installed_model():
    tags = {"models": [{"name": "mistral:latest"}]}
    provider = OllamaProvider(model="llama3.1", transport=httpx.MockTransport(lambda r: httpx.Response(200, json=tags)))

    result = await provider.test_connection()

    assert result.valid is False
    assert result.models == ["mistral:latest"]

    installed = OllamaProvider(model="mistral", transport=httpx.MockTransport(lambda r: httpx.Response(200, json=tags)))
    assert (await installed.test_connection()).valid is True


async def test_detect_parses_fenced_findings(make_txn):
    txn = make_txn(date(2024, 3, 1), -15000, "FRAIS DE TENUE DE COMPTE")
    findings = [
        {
            "transactionIds": [txn.id],
            "severity": "high",
            "confidence": 0.9,
            "amount": 15000,
            "description": "Frais prélevé deux fois",
            "recommendation": "Demander le remboursement",
            "evidence": ["même libellé"],
        }
    ]
    text = f"Voici l'analyse:\n```json\n{json.dumps(findings)}\n```"
    provider = claude_with(lambda request: httpx.Response(200, json=claude_reply(text)))

    output = await provider.detect(AIDetectionType.DUPLICATES, [txn])

    assert len(output.findings) == 1
    finding = output.findings[0]
    assert finding.transaction_ids == [txn.id]
    assert finding.evidence[0].description == "même libellé"
    assert output.response.input_tokens == 120


async def test_detect_raises_parse_error_on_prose(make_txn):
    txn = make_txn(date(2024, 3, 1), -15000, "FRAIS")
    provider = claude_with(lambda request: httpx.Response(200, json=claude_reply("Rien à signaler.")))

    with pytest.raises(AIResponseParseError) as exc_info:
        await provider.detect(AIDetectionType.DUPLICATES, [txn])

    assert exc_info.value.raw == "Rien à signaler."
    assert exc_info.value.input_tokens == 120


async def test_categorize_in_batches_of_fifty(make_txn):
    transactions = [make_txn(date(2024, 3, 1), -1000, "ACHAT") for _ in range(60)]
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        prompt = json.loads(request.content)["messages"][-1]["content"]
        ids = [t.id for t in transactions if f'"id": "{t.id}"' in prompt]
        payload = [{"transactionId": i, "category": "carte", "confidence": 0.8} for i in ids]
        return httpx.Response(200, json=claude_reply(json.dumps(payload)))

    provider = claude_with(handler)
    categories = await provider.categorize_transactions(transactions)

    assert len(calls) == 2
    assert len(categories) == 60
    assert categories[0].category == "carte"


def test_extract_json_variants():
    assert BaseAIProvider.extract_json('```json\n[{"a": 1}]\n```') == [{"a": 1}]
    assert BaseAIProvider.extract_json('Résultat : [1, 2] fin') == [1, 2]
    assert BaseAIProvider.extract_json('Analyse {"riskScore": 40} terminée') == {"riskScore": 40}
    with pytest.raises(ValueError):
        BaseAIProvider.extract_json("pas de json ici")


def test_parse_severity_defaults_to_medium():
    assert BaseAIProvider.parse_severity("high") == Severity.HIGH
    assert BaseAIProvider.parse_severity(" CRITICAL ") == Severity.CRITICAL
    assert BaseAIProvider.parse_severity("grave") == Severity.MEDIUM
    assert BaseAIProvider.parse_severity(None) == Severity.MEDIUM


def test_create_provider_by_tag():
    assert isinstance(create_provider("mistral", api_key="k"), MistralProvider)
    assert isinstance(create_provider("ollama"), OllamaProvider)
    with pytest.raises(ConfigurationError):
        create_provider("openai")


async def test_fraud_assessment_and_report(make_txn):
    txn = make_txn(date(2024, 3, 1), -15000, "FRAIS")
    assessment = claude_with(
        lambda request: httpx.Response(200, json=claude_reply('{"riskScore": 35, "indicators": [], "summary": "RAS"}'))
    )
    report = claude_with(lambda request: httpx.Response(200, json=claude_reply("Rapport d'audit")))

    assert (await assessment.analyze_fraud([txn]))["riskScore"] == 35
    assert await report.generate_report([], {"total_anomalies": 0}) == "Rapport d'audit"


async def test_fraud_assessment_rejects_arrays(make_txn):
    provider = claude_with(lambda request: httpx.Response(200, json=claude_reply("[1, 2]")))

    with pytest.raises(AIResponseParseError):
        await provider.analyze_fraud([make_txn(date(2024, 3, 1), -15000, "FRAIS")])
