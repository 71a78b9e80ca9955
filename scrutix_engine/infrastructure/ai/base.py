"""Common AI provider behaviour: retries, JSON extraction, prompts"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import httpx
from pydantic import ValidationError

from scrutix_engine.config import settings
from scrutix_engine.domain.models import Anomaly, Severity, Transaction
from scrutix_engine.infrastructure.ai.schemas import AIAnomalyPayload, CategoryPayload
from scrutix_engine.infrastructure.ai.types import (
    AI_DETECTION_DESCRIPTIONS,
    AIDetectionType,
    AIErrorCode,
    AIMessage,
    AIProviderError,
    AIResponse,
    AIResponseParseError,
    CategorizedTransaction,
    ChatOptions,
    ConnectionResult,
)
from scrutix_engine.infrastructure.observability.metrics import ai_call_latency_histogram, record_tokens

logger = logging.getLogger(__name__)

CATEGORIZE_BATCH_SIZE = 50

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

SYSTEM_PROMPT = (
    "Tu es un auditeur bancaire expert de la zone CEMAC/UEMOA. "
    "Tu analyses des relevés bancaires pour détecter les erreurs et abus de facturation. "
    "Réponds uniquement avec du JSON valide, sans texte autour."
)

DETECTION_SCHEMA = """[
  {
    "transactionIds": ["id de transaction"],
    "severity": "LOW | MEDIUM | HIGH | CRITICAL",
    "confidence": 0.0,
    "amount": 0,
    "description": "constat",
    "recommendation": "action recommandée",
    "evidence": [{"type": "...", "description": "...", "value": "..."}]
  }
]"""


@dataclass
class DetectionOutput:
    """Validated findings plus token usage of one detection call"""

    findings: List[AIAnomalyPayload]
    response: AIResponse


def serialize_transactions(transactions: Sequence[Transaction]) -> str:
    rows = [
        {
            "id": txn.id,
            "date": txn.date.isoformat(),
            "valueDate": txn.value_date.isoformat() if txn.value_date else None,
            "description": txn.description,
            "amount": txn.amount,
            "balance": txn.balance,
            "type": txn.type.value,
            "bankCode": txn.bank_code,
            "reference": txn.reference,
        }
        for txn in transactions
    ]
    return json.dumps(rows, ensure_ascii=False)


def map_http_error(provider: str, error: httpx.HTTPError) -> AIProviderError:
    """Translate an httpx failure into the provider error taxonomy"""
    if isinstance(error, httpx.TimeoutException):
        return AIProviderError(AIErrorCode.TIMEOUT, "Request timed out", provider)
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (401, 403):
            code = AIErrorCode.AUTH
        elif status == 429:
            code = AIErrorCode.RATE_LIMIT
        elif status >= 500:
            code = AIErrorCode.SERVER
        elif status in (400, 404, 413, 422):
            code = AIErrorCode.INVALID_REQUEST
        else:
            code = AIErrorCode.UNKNOWN
        return AIProviderError(code, f"HTTP {status}: {error.response.text[:200]}", provider, status)
    if isinstance(error, httpx.RequestError):
        return AIProviderError(AIErrorCode.NETWORK, str(error) or type(error).__name__, provider)
    return AIProviderError(AIErrorCode.UNKNOWN, str(error), provider)


class BaseAIProvider(ABC):
    """
    Shared implementation for HTTP-backed model providers.

    Subclasses implement `_send` (one chat round-trip) and `_probe`
    (a cheap connectivity check). Everything else, including retry with
    exponential backoff and structured-output parsing, lives here.
    """

    name = "base"

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.ai_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.ai_backoff_base
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @abstractmethod
    async def _send(
        self, client: httpx.AsyncClient, messages: List[AIMessage], options: ChatOptions
    ) -> AIResponse:
        """Perform one request; raise httpx errors or AIProviderError"""

    @abstractmethod
    async def _probe(self, client: httpx.AsyncClient) -> ConnectionResult:
        """Check credentials and reachability"""

    async def chat(self, messages: List[AIMessage], options: ChatOptions | None = None) -> AIResponse:
        """
        Send a conversation and return the reply.

        Retries retryable failures (network, timeout, rate limit, 5xx)
        with exponential backoff: base, 2*base, 4*base...

        Raises:
            AIProviderError: On non-retryable failure or when retries are exhausted
        """
        options = options or ChatOptions()
        attempt = 0
        async with self._client() as client:
            while True:
                try:
                    with ai_call_latency_histogram.labels(provider=self.name).time():
                        response = await self._send(client, messages, options)
                    record_tokens(self.name, response.input_tokens, response.output_tokens)
                    return response
                except httpx.HTTPError as e:
                    error = map_http_error(self.name, e)
                    cause: Exception = e
                except AIProviderError as e:
                    error = e
                    cause = e
                except (KeyError, IndexError, TypeError, ValueError) as e:
                    raise AIProviderError(
                        AIErrorCode.UNKNOWN, f"Unexpected response shape: {e}", self.name
                    ) from e

                attempt += 1
                if not error.retryable or attempt >= self.max_retries:
                    if error is cause:
                        raise error
                    raise error from cause

                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.debug(
                    "Retrying AI call",
                    extra={"provider": self.name, "attempt": attempt, "code": error.code.value, "backoff": backoff},
                )
                await asyncio.sleep(backoff)

    async def complete(self, prompt: str, system: str | None = None, options: ChatOptions | None = None) -> AIResponse:
        messages = [AIMessage("system", system or SYSTEM_PROMPT), AIMessage("user", prompt)]
        return await self.chat(messages, options)

    async def test_connection(self) -> ConnectionResult:
        """Never raises; failures are reported in the result"""
        try:
            async with self._client() as client:
                return await self._probe(client)
        except AIProviderError as e:
            return ConnectionResult(valid=False, error=e.message)
        except httpx.HTTPError as e:
            return ConnectionResult(valid=False, error=map_http_error(self.name, e).message)
        except (KeyError, TypeError, ValueError) as e:
            return ConnectionResult(valid=False, error=f"Unexpected response: {e}")

    async def detect(
        self,
        detection_type: AIDetectionType,
        transactions: Sequence[Transaction],
        context: Dict[str, Any] | None = None,
        options: ChatOptions | None = None,
    ) -> DetectionOutput:
        """
        Ask the model for anomalies of one type over a transaction batch.

        Raises:
            AIProviderError: When the call itself fails
            AIResponseParseError: When the reply is not a valid findings array
        """
        prompt = (
            f"Analyse les transactions suivantes et identifie les {AI_DETECTION_DESCRIPTIONS[detection_type]}.\n"
        )
        if context:
            prompt += f"Contexte: {json.dumps(context, ensure_ascii=False, default=str)}\n"
        prompt += (
            f"Transactions:\n{serialize_transactions(transactions)}\n\n"
            "Réponds avec un tableau JSON (vide si aucune anomalie) respectant ce schéma:\n"
            f"{DETECTION_SCHEMA}"
        )
        response = await self.complete(prompt, options=options)

        try:
            data = self.extract_json(response.content)
            if isinstance(data, dict):
                data = data.get("anomalies", [data])
            if not isinstance(data, list):
                raise ValueError("findings must be a JSON array")
            findings = [AIAnomalyPayload.model_validate(item) for item in data]
        except (ValueError, ValidationError) as e:
            raise AIResponseParseError(
                f"Invalid {detection_type.value} response: {e}",
                raw=response.content,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
            ) from e
        return DetectionOutput(findings=findings, response=response)

    async def categorize_transactions(self, transactions: Sequence[Transaction]) -> List[CategorizedTransaction]:
        """Categorize transactions in batches; unreadable batches are skipped"""
        results: List[CategorizedTransaction] = []
        for start in range(0, len(transactions), CATEGORIZE_BATCH_SIZE):
            batch = transactions[start:start + CATEGORIZE_BATCH_SIZE]
            response = await self.complete(
                "Catégorise chaque transaction (frais, agios, salaire, virement, retrait, carte, "
                "prélèvement, impôt, autre).\n"
                f"Transactions:\n{serialize_transactions(batch)}\n\n"
                'Réponds avec un tableau JSON: [{"transactionId": "...", "category": "...", "confidence": 0.9}]'
            )
            try:
                payloads = [CategoryPayload.model_validate(item) for item in self.extract_json(response.content)]
            except (ValueError, TypeError, ValidationError) as e:
                logger.warning("Unreadable categorization batch", extra={"batch_start": start, "error": str(e)})
                continue
            results.extend(
                CategorizedTransaction(item.transaction_id, item.category, item.confidence) for item in payloads
            )
        return results

    async def analyze_fraud(self, transactions: Sequence[Transaction]) -> Dict[str, Any]:
        """Return the model's fraud assessment: riskScore, indicators, summary"""
        response = await self.complete(
            "Évalue le risque de fraude sur ces transactions.\n"
            f"Transactions:\n{serialize_transactions(transactions)}\n\n"
            'Réponds en JSON: {"riskScore": 0-100, "indicators": ["..."], "summary": "..."}'
        )
        try:
            data = self.extract_json(response.content)
        except ValueError as e:
            raise AIResponseParseError(str(e), raw=response.content) from e
        if not isinstance(data, dict):
            raise AIResponseParseError("fraud assessment must be a JSON object", raw=response.content)
        return data

    async def generate_report(self, anomalies: Sequence[Anomaly], statistics: Dict[str, Any]) -> str:
        """Free-text audit report in French"""
        findings = [
            {
                "type": item.type.value,
                "severity": item.severity.value,
                "amount": item.amount,
                "description": item.description,
            }
            for item in anomalies
        ]
        response = await self.complete(
            "Rédige un rapport d'audit bancaire synthétique en français à partir de ces constats.\n"
            f"Statistiques: {json.dumps(statistics, ensure_ascii=False, default=str)}\n"
            f"Anomalies: {json.dumps(findings, ensure_ascii=False)}",
            system="Tu es un auditeur bancaire expert. Rédige en prose claire et structurée.",
        )
        return response.content

    @staticmethod
    def extract_json(text: str) -> Any:
        """
        Pull a JSON value out of model output.

        Tries a fenced ```json block first, then the first array, then the
        first object.

        Raises:
            ValueError: If no parsable JSON value is found
        """
        fenced = _FENCED_JSON.search(text)
        if fenced:
            return json.loads(fenced.group(1).strip())

        stripped = text.strip()
        if stripped.startswith(("[", "{")):
            try:
                return json.loads(stripped)
            except json.JSONDecodeError:
                pass

        for opener, closer in (("[", "]"), ("{", "}")):
            start = text.find(opener)
            end = text.rfind(closer)
            if start != -1 and end > start:
                try:
                    return json.loads(text[start:end + 1])
                except json.JSONDecodeError:
                    continue
        raise ValueError("No JSON found in response")

    @staticmethod
    def parse_severity(value: Any) -> Severity:
        try:
            return Severity(str(value).strip().upper())
        except ValueError:
            return Severity.MEDIUM
