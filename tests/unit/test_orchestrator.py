"""Unit tests for the AI detection orchestrator"""

import asyncio
import json
import pytest
from datetime import date, timedelta
from typing import Dict, List

import httpx

from scrutix_engine.domain.models import AnomalySource, AnomalyType, Severity
from scrutix_engine.infrastructure.ai.base import BaseAIProvider
from scrutix_engine.infrastructure.ai.orchestrator import (
    BEST_EFFORT_CONFIDENCE,
    CancellationToken,
    DetectionOrchestrator,
    OrchestrationOptions,
)
from scrutix_engine.infrastructure.ai.router import ModelRouter
from scrutix_engine.infrastructure.ai.types import (
    AI_DETECTION_DESCRIPTIONS,
    AIDetectionType,
    AIErrorCode,
    AIMessage,
    AIProviderError,
    AIResponse,
    ChatOptions,
    ConnectionResult,
)

HANG = "hang"


class ScriptedProvider(BaseAIProvider):
    """Answers each detection type with a canned reply, error or hang"""

    name = "scripted"

    def __init__(self, script: Dict[AIDetectionType, object] | None = None, delay: float = 0.0):
        super().__init__("http://scripted.local", "scripted-model", max_retries=1, backoff_base=0)
        self.script = script or {}
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.prompts: List[str] = []

    async def _send(self, client: httpx.AsyncClient, messages: List[AIMessage], options: ChatOptions) -> AIResponse:
        prompt = messages[-1].content
        self.prompts.append(prompt)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            for detection_type, action in self.script.items():
                if f"identifie les {AI_DETECTION_DESCRIPTIONS[detection_type]}.\n" not in prompt:
                    continue
                if isinstance(action, Exception):
                    raise action
                if action == HANG:
                    await asyncio.sleep(10)
                return AIResponse(content=action, model=self.model, input_tokens=100, output_tokens=50)
            return AIResponse(content="[]", model=self.model, input_tokens=100, output_tokens=10)
        finally:
            self.active -= 1

    async def _probe(self, client: httpx.AsyncClient) -> ConnectionResult:
        return ConnectionResult(valid=True)


def findings(*items: dict) -> str:
    return json.dumps(list(items))


@pytest.fixture
def transactions(make_txn):
    start = date(2024, 3, 1)
    return [make_txn(start + timedelta(days=i % 28), -15000, "FRAIS DE TENUE DE COMPTE") for i in range(10)]


def orchestrator_for(provider: BaseAIProvider) -> DetectionOrchestrator:
    return DetectionOrchestrator(ModelRouter(provider))


async def test_findings_become_ai_anomalies(transactions):
    provider = ScriptedProvider(
        {
            AIDetectionType.DUPLICATES: findings(
                {
                    "transactionIds": ["t1", "t2"],
                    "severity": "HIGH",
                    "confidence": 0.85,
                    "amount": -15000,
                    "description": "Frais prélevés deux fois",
                    "evidence": [{"type": "comparison", "expectedValue": 15000, "appliedValue": 30000}],
                }
            )
        }
    )

    result = await orchestrator_for(provider).run_detections(transactions, [AIDetectionType.DUPLICATES])

    assert result.success is True
    assert len(result.all_anomalies) == 1
    anomaly = result.all_anomalies[0]
    assert anomaly.type == AnomalyType.DUPLICATE_FEE
    assert anomaly.source == AnomalySource.AI
    assert anomaly.severity == Severity.HIGH
    assert anomaly.amount == 15000
    assert anomaly.transaction_ids == {"t1", "t2"}
    assert anomaly.evidence[0].expected_value == 15000
    assert result.tokens_used == 150
    assert result.summary.potential_savings == 15000


async def test_findings_with_unknown_ids_dropped(transactions):
    provider = ScriptedProvider(
        {AIDetectionType.DUPLICATES: findings({"transactionIds": ["nope"], "description": "Inventé"})}
    )

    result = await orchestrator_for(provider).run_detections(transactions, ["duplicates"])

    assert result.all_anomalies == []
    assert result.success is True


async def test_timed_out_module_reported_once(transactions):
    provider = ScriptedProvider(
        {
            AIDetectionType.DUPLICATES: findings({"transactionIds": ["t1"], "description": "Doublon"}),
            AIDetectionType.INTEREST_ERRORS: HANG,
        }
    )
    options = OrchestrationOptions(batch_size=5, timeout=0.05)

    result = await orchestrator_for(provider).run_detections(
        transactions, [AIDetectionType.DUPLICATES, AIDetectionType.INTEREST_ERRORS], options
    )

    assert result.success is True
    assert [e.module for e in result.errors] == ["interest_errors"]
    assert "timed out" in result.errors[0].error
    assert len(result.all_anomalies) == 1
    assert result.summary.modules_completed == 1
    assert result.summary.modules_failed == 1


async def test_provider_failure_isolated_to_module(transactions):
    provider = ScriptedProvider(
        {AIDetectionType.AML_LCB_FT: AIProviderError(AIErrorCode.AUTH, "bad key", "scripted")}
    )

    result = await orchestrator_for(provider).run_detections(
        transactions, [AIDetectionType.AML_LCB_FT, AIDetectionType.OHADA]
    )

    assert result.success is True
    assert len(result.errors) == 1
    assert result.errors[0].module == "aml_lcb_ft"
    failed = next(r for r in result.results if r.detection_type == AIDetectionType.AML_LCB_FT)
    assert failed.success is False


async def test_all_modules_failing_is_unsuccessful(transactions):
    provider = ScriptedProvider({AIDetectionType.OHADA: RuntimeError("boom")})

    result = await orchestrator_for(provider).run_detections(transactions, [AIDetectionType.OHADA])

    assert result.success is False
    assert result.errors[0].error == "boom"


async def test_unparsable_reply_degrades_to_best_effort(transactions):
    provider = ScriptedProvider({AIDetectionType.SUSPICIOUS: "Je n'ai rien trouvé de particulier."})

    result = await orchestrator_for(provider).run_detections(
        transactions, [AIDetectionType.SUSPICIOUS], OrchestrationOptions(batch_size=4)
    )

    assert result.errors == []
    assert len(result.all_anomalies) == 3
    first = result.all_anomalies[0]
    assert first.confidence == BEST_EFFORT_CONFIDENCE
    assert first.amount == 0.0
    assert first.severity == Severity.MEDIUM
    assert [t.id for t in first.transactions] == ["t1", "t2", "t3", "t4"]
    assert result.results[0].parse_failures == 3


async def test_batches_and_progress(transactions):
    provider = ScriptedProvider()
    updates = []
    options = OrchestrationOptions(batch_size=4, on_progress=updates.append)

    result = await orchestrator_for(provider).run_detections(
        transactions, [AIDetectionType.DUPLICATES, AIDetectionType.FEES], options
    )

    assert len(provider.prompts) == 6
    assert len(updates) == 6
    assert updates[-1].completed_batches == updates[-1].total_batches == 6
    assert updates[-1].completed_modules == 2
    assert all(r.batches_done == 3 for r in result.results)


async def test_concurrency_is_bounded(transactions):
    provider = ScriptedProvider(delay=0.01)

    await orchestrator_for(provider).run_detections(
        transactions, list(AIDetectionType), OrchestrationOptions(batch_size=5, max_concurrency=2)
    )

    assert len(provider.prompts) == 2 * len(AIDetectionType)
    assert provider.peak <= 2


async def test_anomaly_order_is_stable(transactions):
    reply = findings({"transactionIds": ["t1"], "description": "a"})
    script = {AIDetectionType.DUPLICATES: reply, AIDetectionType.FEES: reply}
    types = [AIDetectionType.FEES, AIDetectionType.DUPLICATES]

    result = await orchestrator_for(ScriptedProvider(script)).run_detections(transactions, types)

    assert [a.module for a in result.all_anomalies] == ["fees", "duplicates"]


async def test_pre_cancelled_run_makes_no_calls(transactions):
    provider = ScriptedProvider()
    token = CancellationToken()
    token.cancel()

    result = await orchestrator_for(provider).run_detections(
        transactions, None, OrchestrationOptions(cancel_token=token)
    )

    assert result.cancelled is True
    assert provider.prompts == []
    assert result.all_anomalies == []


async def test_cancel_mid_run_keeps_completed_batches(transactions):
    provider = ScriptedProvider(
        {
            AIDetectionType.DUPLICATES: findings({"transactionIds": ["t1"], "description": "Doublon"}),
            AIDetectionType.CASHFLOW: HANG,
        }
    )
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.1, token.cancel)
    options = OrchestrationOptions(timeout=30, cancel_token=token)

    result = await orchestrator_for(provider).run_detections(
        transactions, [AIDetectionType.DUPLICATES, AIDetectionType.CASHFLOW], options
    )

    assert result.cancelled is True
    assert len(result.all_anomalies) == 1
    assert result.errors == []
