"""AI detection orchestrator - batched, bounded-concurrency module runs"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence

from scrutix_engine.config import settings
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalySource,
    Evidence,
    ModuleError,
    Severity,
    Transaction,
)
from scrutix_engine.infrastructure.ai.base import BaseAIProvider, DetectionOutput
from scrutix_engine.infrastructure.ai.router import ModelRouter
from scrutix_engine.infrastructure.ai.schemas import AIAnomalyPayload
from scrutix_engine.infrastructure.ai.types import (
    AI_DETECTION_ANOMALY_TYPES,
    AI_DETECTION_LABELS,
    AIDetectionType,
    AIResponseParseError,
)
from scrutix_engine.infrastructure.observability.logging import log_ai_batch_failure
from scrutix_engine.infrastructure.observability.metrics import ai_batch_failure_counter

logger = logging.getLogger(__name__)

BEST_EFFORT_CONFIDENCE = 0.3


class CancellationToken:
    """Cooperative cancellation shared between a caller and a run"""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class OrchestrationProgress:
    completed_modules: int
    total_modules: int
    current_module_label: str
    completed_batches: int = 0
    total_batches: int = 0


ProgressCallback = Callable[[OrchestrationProgress], None]


@dataclass
class OrchestrationOptions:
    batch_size: int | None = None
    max_concurrency: int | None = None
    timeout: float | None = None  # seconds per call
    context: Dict[str, Any] | None = None
    on_progress: ProgressCallback | None = None
    cancel_token: CancellationToken | None = None


@dataclass
class ModuleResult:
    detection_type: AIDetectionType
    label: str
    anomalies: List[Anomaly] = field(default_factory=list)
    batches_total: int = 0
    batches_done: int = 0
    batches_failed: int = 0
    parse_failures: int = 0
    tokens_used: int = 0
    error: str | None = None

    @property
    def finished(self) -> bool:
        return self.batches_done >= self.batches_total

    @property
    def success(self) -> bool:
        return self.finished and self.batches_failed < self.batches_total


@dataclass
class OrchestrationSummary:
    total_anomalies: int
    by_type: Dict[str, int]
    by_severity: Dict[str, int]
    modules_completed: int
    modules_failed: int
    potential_savings: float


@dataclass
class OrchestrationResult:
    success: bool
    results: List[ModuleResult]
    all_anomalies: List[Anomaly]
    summary: OrchestrationSummary
    tokens_used: int
    processing_time_ms: float
    errors: List[ModuleError]
    cancelled: bool = False


@dataclass
class _BatchOutcome:
    detection_type: AIDetectionType
    index: int
    batch: Sequence[Transaction]
    output: DetectionOutput | None = None
    parse_error: AIResponseParseError | None = None
    error: Exception | None = None


def chunk(transactions: Sequence[Transaction], size: int) -> List[Sequence[Transaction]]:
    return [transactions[i:i + size] for i in range(0, len(transactions), size)]


def finding_to_anomaly(
    detection_type: AIDetectionType, finding: AIAnomalyPayload, batch: Sequence[Transaction]
) -> Anomaly | None:
    """Convert a validated finding; findings citing only unknown ids are dropped"""
    by_id = {txn.id: txn for txn in batch}
    transactions = [by_id[txn_id] for txn_id in dict.fromkeys(finding.transaction_ids) if txn_id in by_id]
    if finding.transaction_ids and not transactions:
        logger.debug(
            "Dropping AI finding with unknown transaction ids",
            extra={"module": detection_type.value, "transaction_ids": finding.transaction_ids},
        )
        return None

    evidence = [
        Evidence(
            type=item.type,
            description=item.description,
            value=item.value,
            expected_value=item.expected_value,
            applied_value=item.applied_value,
            source="ai",
        )
        for item in finding.evidence
    ]
    return Anomaly(
        type=AI_DETECTION_ANOMALY_TYPES[detection_type],
        severity=BaseAIProvider.parse_severity(finding.severity),
        amount=abs(finding.amount),
        description=finding.description,
        recommendation=finding.recommendation,
        confidence=finding.confidence,
        transactions=transactions,
        evidence=evidence,
        source=AnomalySource.AI,
        module=detection_type.value,
    )


def best_effort_anomaly(
    detection_type: AIDetectionType, index: int, batch: Sequence[Transaction], error: AIResponseParseError
) -> Anomaly:
    excerpt = " ".join(error.raw.split())[:300]
    return Anomaly(
        type=AI_DETECTION_ANOMALY_TYPES[detection_type],
        severity=Severity.MEDIUM,
        amount=0.0,
        description=f"Analyse {AI_DETECTION_LABELS[detection_type]} (lot {index + 1}) non structurée: {excerpt}",
        recommendation="Vérifier manuellement les transactions de ce lot",
        confidence=BEST_EFFORT_CONFIDENCE,
        transactions=list(batch),
        evidence=[Evidence(type="reason", description="Réponse IA non exploitable", value=str(error), source="ai")],
        source=AnomalySource.AI,
        module=detection_type.value,
    )


class DetectionOrchestrator:
    """Runs AI detection modules over transaction batches through the router"""

    def __init__(self, router: ModelRouter):
        self.router = router

    async def _run_batch(
        self,
        detection_type: AIDetectionType,
        index: int,
        batch: Sequence[Transaction],
        semaphore: asyncio.Semaphore,
        timeout: float,
        context: Dict[str, Any] | None,
    ) -> _BatchOutcome:
        outcome = _BatchOutcome(detection_type, index, batch)
        async with semaphore:
            try:
                outcome.output = await asyncio.wait_for(
                    self.router.detect(detection_type, batch, context), timeout=timeout
                )
            except AIResponseParseError as e:
                outcome.parse_error = e
            except asyncio.TimeoutError:
                outcome.error = TimeoutError(f"AI call timed out after {timeout}s")
            except Exception as e:
                # Module boundary: any provider failure is recorded, never propagated
                outcome.error = e
        return outcome

    def _apply(self, outcome: _BatchOutcome, module: ModuleResult, slots: Dict[int, List[Anomaly]]) -> None:
        dt = outcome.detection_type
        if outcome.output is not None:
            anomalies = [finding_to_anomaly(dt, f, outcome.batch) for f in outcome.output.findings]
            slots[outcome.index] = [a for a in anomalies if a is not None]
            module.tokens_used += outcome.output.response.total_tokens
        elif outcome.parse_error is not None:
            logger.warning(
                "Unparsable AI response, degrading to best-effort anomaly",
                extra={"module": dt.value, "batch_index": outcome.index, "error": str(outcome.parse_error)},
            )
            slots[outcome.index] = [best_effort_anomaly(dt, outcome.index, outcome.batch, outcome.parse_error)]
            module.tokens_used += outcome.parse_error.input_tokens + outcome.parse_error.output_tokens
            module.parse_failures += 1
        else:
            error = outcome.error
            module.batches_failed += 1
            if module.error is None:
                module.error = str(error) or type(error).__name__
            ai_batch_failure_counter.labels(module=dt.value).inc()
            log_ai_batch_failure(dt.value, outcome.index, error)
        module.batches_done += 1

    async def run_detections(
        self,
        transactions: Sequence[Transaction],
        detection_types: Sequence[AIDetectionType | str] | None = None,
        options: OrchestrationOptions | None = None,
    ) -> OrchestrationResult:
        """
        Run the selected AI modules over batched transactions.

        Each (module, batch) pair is one task bounded by the concurrency
        semaphore and the per-call timeout. A failing module is reported once
        in `errors` and leaves the others untouched. Cancelling the token stops
        awaiting outstanding batches and returns what has completed so far.
        """
        started = time.perf_counter()
        options = options or OrchestrationOptions()
        batch_size = options.batch_size or settings.ai_batch_size
        timeout = options.timeout or settings.ai_call_timeout_seconds
        semaphore = asyncio.Semaphore(options.max_concurrency or settings.ai_max_concurrency)
        token = options.cancel_token

        types = list(dict.fromkeys(AIDetectionType(t) for t in (detection_types or list(AIDetectionType))))
        batches = chunk(transactions, batch_size)
        modules = {
            dt: ModuleResult(detection_type=dt, label=AI_DETECTION_LABELS[dt], batches_total=len(batches))
            for dt in types
        }
        slots: Dict[AIDetectionType, Dict[int, List[Anomaly]]] = {dt: {} for dt in types}
        total_batches = len(types) * len(batches)
        completed_modules = sum(1 for m in modules.values() if m.finished)
        cancelled = token is not None and token.cancelled

        pending = set()
        if not cancelled:
            pending = {
                asyncio.create_task(self._run_batch(dt, i, batch, semaphore, timeout, options.context))
                for dt in types
                for i, batch in enumerate(batches)
            }
        cancel_waiter = asyncio.create_task(token.wait()) if token is not None and pending else None

        try:
            done_batches = 0
            while pending:
                wait_set = pending | {cancel_waiter} if cancel_waiter else pending
                done, _ = await asyncio.wait(wait_set, return_when=asyncio.FIRST_COMPLETED)

                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    outcome = task.result()
                    module = modules[outcome.detection_type]
                    self._apply(outcome, module, slots[outcome.detection_type])
                    done_batches += 1
                    if module.finished:
                        completed_modules += 1
                    if options.on_progress:
                        options.on_progress(
                            OrchestrationProgress(
                                completed_modules=completed_modules,
                                total_modules=len(types),
                                current_module_label=module.label,
                                completed_batches=done_batches,
                                total_batches=total_batches,
                            )
                        )

                if cancel_waiter is not None and cancel_waiter in done:
                    cancelled = True
                    break
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if cancelled:
            logger.info("AI detection run cancelled", extra={"pending_batches": len(pending)})

        results = [modules[dt] for dt in types]
        errors: List[ModuleError] = []
        for dt, module in zip(types, results):
            module.anomalies = [a for index in sorted(slots[dt]) for a in slots[dt][index]]
            if module.error is not None:
                errors.append(ModuleError(module=dt.value, error=module.error))

        all_anomalies = [a for module in results for a in module.anomalies]
        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for anomaly in all_anomalies:
            by_type[anomaly.type.value] = by_type.get(anomaly.type.value, 0) + 1
            by_severity[anomaly.severity.value] = by_severity.get(anomaly.severity.value, 0) + 1

        succeeded = [m for m in results if m.success]
        return OrchestrationResult(
            success=bool(succeeded),
            results=results,
            all_anomalies=all_anomalies,
            summary=OrchestrationSummary(
                total_anomalies=len(all_anomalies),
                by_type=by_type,
                by_severity=by_severity,
                modules_completed=len(succeeded),
                modules_failed=sum(1 for m in results if m.finished and not m.success),
                potential_savings=sum(a.amount for a in all_anomalies),
            ),
            tokens_used=sum(m.tokens_used for m in results),
            processing_time_ms=(time.perf_counter() - started) * 1000,
            errors=errors,
            cancelled=cancelled,
        )
