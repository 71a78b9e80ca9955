"""Analysis coordinator - runs detectors and AI modules, builds the report"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from scrutix_engine.domain.detectors.common import format_fcfa
from scrutix_engine.domain.detectors.registry import DetectorRegistry
from scrutix_engine.domain.exceptions import (
    ConfigurationError,
    EmptyTransactionSetError,
)
from scrutix_engine.domain.models import (
    AnalysisConfig,
    AnalysisMode,
    AnalysisResult,
    AnalysisStatistics,
    AnalysisStatus,
    AnalysisSummary,
    Anomaly,
    AnomalySource,
    AnomalyType,
    BankConditions,
    ConditionGrid,
    Evidence,
    ModuleError,
    Severity,
    SummaryStatus,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup, TariffResolver
from scrutix_engine.infrastructure.ai.orchestrator import (
    CancellationToken,
    DetectionOrchestrator,
    OrchestrationOptions,
    OrchestrationProgress,
)
from scrutix_engine.infrastructure.ai.types import AIDetectionType
from scrutix_engine.infrastructure.observability.logging import log_analysis_completed, log_detector_failure
from scrutix_engine.infrastructure.observability.metrics import detector_failure_counter, record_analysis

logger = logging.getLogger(__name__)

MAX_KEY_FINDINGS = 5
WARNING_ANOMALY_COUNT = 10

TYPE_LABELS: Dict[AnomalyType, str] = {
    AnomalyType.DUPLICATE_FEE: "Doublon",
    AnomalyType.GHOST_FEE: "Frais fantôme",
    AnomalyType.OVERCHARGE: "Surfacturation",
    AnomalyType.INTEREST_ERROR: "Erreur d'agios",
    AnomalyType.UNAUTHORIZED: "Frais non autorisé",
    AnomalyType.ROUNDING_ABUSE: "Arrondi abusif",
    AnomalyType.VALUE_DATE_ERROR: "Date de valeur",
    AnomalyType.SUSPICIOUS_TRANSACTION: "Opération suspecte",
    AnomalyType.COMPLIANCE_VIOLATION: "Non-conformité contractuelle",
    AnomalyType.CASHFLOW_ANOMALY: "Trésorerie",
    AnomalyType.RECONCILIATION_GAP: "Écart de rapprochement",
    AnomalyType.MULTI_BANK_ISSUE: "Multi-banques",
    AnomalyType.OHADA_NON_COMPLIANCE: "Non-conformité OHADA",
    AnomalyType.AML_ALERT: "Alerte LCB-FT",
    AnomalyType.FEE_ANOMALY: "Anomalie de frais",
}

RECOMMENDATIONS: Dict[AnomalyType, str] = {
    AnomalyType.DUPLICATE_FEE: "Demander le remboursement des prélèvements en double",
    AnomalyType.GHOST_FEE: "Exiger de la banque le justificatif des frais sans service associé",
    AnomalyType.OVERCHARGE: "Contester les frais facturés au-delà des conditions tarifaires",
    AnomalyType.INTEREST_ERROR: "Demander le détail du calcul des agios et la régularisation",
    AnomalyType.UNAUTHORIZED: "Contester les frais absents des conditions contractuelles",
    AnomalyType.ROUNDING_ABUSE: "Signaler les arrondis systématiquement défavorables",
    AnomalyType.VALUE_DATE_ERROR: "Exiger l'application des délais réglementaires de dates de valeur",
    AnomalyType.SUSPICIOUS_TRANSACTION: "Vérifier avec le client la légitimité des opérations signalées",
    AnomalyType.COMPLIANCE_VIOLATION: "Rappeler à la banque ses engagements contractuels",
    AnomalyType.CASHFLOW_ANOMALY: "Revoir la gestion de trésorerie pour limiter les périodes débitrices",
    AnomalyType.RECONCILIATION_GAP: "Effectuer un rapprochement bancaire détaillé des périodes concernées",
    AnomalyType.MULTI_BANK_ISSUE: "Comparer les conditions des différentes banques et renégocier",
    AnomalyType.OHADA_NON_COMPLIANCE: "Compléter les pièces justificatives conformément au SYSCOHADA",
    AnomalyType.AML_ALERT: "Examiner les alertes LCB-FT et documenter l'origine des fonds",
    AnomalyType.FEE_ANOMALY: "Vérifier la facturation des frais par catégorie de service au regard des conditions tarifaires",
}


@dataclass
class AnalysisProgress:
    progress: int  # 0-100
    current_module_label: str
    completed_modules: int
    total_modules: int


@dataclass
class AnalysisOptions:
    on_progress: Callable[[AnalysisProgress], None] | None = None
    cancel_token: CancellationToken | None = None
    orchestrator: DetectionOrchestrator | None = None
    orchestration: OrchestrationOptions | None = None
    registry: DetectorRegistry | None = None
    allow_default_conditions: bool = True


def filter_transactions(transactions: Iterable[Transaction], config: AnalysisConfig) -> List[Transaction]:
    bank_codes = set(config.bank_codes) if config.bank_codes else None
    return [
        txn
        for txn in transactions
        if (config.client_id is None or txn.client_id == config.client_id)
        and (config.date_from is None or txn.date >= config.date_from)
        and (config.date_to is None or txn.date <= config.date_to)
        and (bank_codes is None or txn.bank_code in bank_codes)
    ]


def build_lookup(
    bank_conditions: BankConditions | Sequence[BankConditions] | None,
    grids: Iterable[ConditionGrid] | None,
    allow_default: bool,
) -> ConditionLookup:
    if isinstance(bank_conditions, BankConditions):
        bank_conditions = [bank_conditions]
    return ConditionLookup(
        resolver=TariffResolver(grids or []),
        current_conditions=bank_conditions or [],
        allow_default=allow_default,
    )


def check_conditions(transactions: Sequence[Transaction], lookup: ConditionLookup) -> None:
    """Resolve once per bank so a missing tariff fails before any detector runs"""
    first_dates = {}
    for txn in transactions:
        if txn.bank_code not in first_dates or txn.date < first_dates[txn.bank_code]:
            first_dates[txn.bank_code] = txn.date
    for bank_code, first_date in sorted(first_dates.items()):
        lookup.for_bank(bank_code, first_date)


def merge_anomalies(rule_anomalies: List[Anomaly], ai_anomalies: List[Anomaly]) -> List[Anomaly]:
    """
    Fold AI findings into rule findings.

    An AI anomaly with the same type and transaction set as a rule anomaly is
    absorbed: the rule anomaly becomes `hybrid`, gains the AI evidence and
    keeps the higher confidence. Other AI anomalies are appended.
    """
    merged = list(rule_anomalies)
    index: Dict[Tuple[AnomalyType, frozenset], Anomaly] = {
        (a.type, a.transaction_ids): a for a in rule_anomalies if a.transactions
    }
    for ai_anomaly in ai_anomalies:
        match = index.get((ai_anomaly.type, ai_anomaly.transaction_ids)) if ai_anomaly.transactions else None
        if match is None:
            merged.append(ai_anomaly)
            continue
        match.source = AnomalySource.HYBRID
        match.evidence.extend(ai_anomaly.evidence)
        match.confidence = max(match.confidence, ai_anomaly.confidence)
    return merged


def allocate_recoverable(anomalies: Sequence[Anomaly]) -> None:
    """
    Cap recoverable amounts so no transaction is claimed beyond what it cost.

    Anomalies are visited in report order. Each claim draws on the remaining
    amount of its transactions, latest first, so a duplicate cluster draws on
    its repeats before its original. A capped anomaly gains an evidence entry
    holding the share already claimed elsewhere.
    """
    remaining: Dict[str, float] = {}
    for anomaly in anomalies:
        if anomaly.amount <= 0 or not anomaly.transactions:
            continue
        claim = anomaly.amount
        granted = 0.0
        for txn in reversed(anomaly.transactions):
            available = remaining.setdefault(txn.id, abs(txn.amount))
            taken = min(available, claim - granted)
            remaining[txn.id] = available - taken
            granted += taken
            if granted >= claim:
                break
        if granted < claim:
            anomaly.evidence.append(
                Evidence(
                    type="claim_cap",
                    description="Part déjà réclamée au titre d'une autre anomalie",
                    value=round(claim - granted, 2),
                    expected_value=round(granted, 2),
                    applied_value=claim,
                )
            )
            anomaly.amount = round(granted, 2)


def compute_statistics(
    total_transactions: int, analyzed: Sequence[Transaction], anomalies: Sequence[Anomaly]
) -> AnalysisStatistics:
    by_type: Dict[str, int] = {}
    by_severity: Dict[str, int] = {}
    for anomaly in anomalies:
        by_type[anomaly.type.value] = by_type.get(anomaly.type.value, 0) + 1
        by_severity[anomaly.severity.value] = by_severity.get(anomaly.severity.value, 0) + 1

    return AnalysisStatistics(
        total_transactions=total_transactions,
        analyzed_transactions=len(analyzed),
        total_anomalies=len(anomalies),
        anomalies_by_type=by_type,
        anomalies_by_severity=by_severity,
        total_amount_analyzed=sum(abs(t.amount) for t in analyzed),
        potential_savings=sum(a.amount for a in anomalies),
        anomaly_rate=len(anomalies) / len(analyzed) * 100 if analyzed else 0.0,
    )


def build_summary(anomalies: Sequence[Anomaly], statistics: AnalysisStatistics) -> AnalysisSummary:
    """
    Status: any CRITICAL -> CRITICAL; any HIGH or more than 10 anomalies
    -> WARNING; else OK.
    """
    severities = {a.severity for a in anomalies}
    if Severity.CRITICAL in severities:
        status = SummaryStatus.CRITICAL
    elif Severity.HIGH in severities or len(anomalies) > WARNING_ANOMALY_COUNT:
        status = SummaryStatus.WARNING
    else:
        status = SummaryStatus.OK

    ranked = sorted(anomalies, key=lambda a: (-a.severity.rank, -a.amount))
    key_findings = [f"{TYPE_LABELS[a.type]}: {a.description}" for a in ranked[:MAX_KEY_FINDINGS]]

    recommendations = list(dict.fromkeys(RECOMMENDATIONS[a.type] for a in ranked))
    if statistics.potential_savings > 0:
        recommendations.insert(
            0,
            f"Engager une réclamation auprès de la banque pour un montant récupérable de "
            f"{format_fcfa(statistics.potential_savings)}",
        )
    if not anomalies:
        key_findings = ["Aucune anomalie détectée sur la période analysée"]
    return AnalysisSummary(status=status, key_findings=key_findings, recommendations=recommendations)


def _failed_result(
    analysis_id: str, config: AnalysisConfig, started_at: datetime, total: int, error: Exception
) -> AnalysisResult:
    statistics = compute_statistics(total, [], [])
    return AnalysisResult(
        id=analysis_id,
        config=config,
        status=AnalysisStatus.FAILED,
        anomalies=[],
        statistics=statistics,
        summary=AnalysisSummary(
            status=SummaryStatus.CRITICAL,
            key_findings=[f"Analyse impossible : {error}"],
            recommendations=[],
        ),
        started_at=started_at,
        completed_at=datetime.utcnow(),
        error=str(error),
    )


async def analyze_transactions(
    transactions: Sequence[Transaction],
    bank_conditions: BankConditions | Sequence[BankConditions] | None,
    config: AnalysisConfig,
    options: AnalysisOptions | None = None,
    grids: Iterable[ConditionGrid] | None = None,
) -> AnalysisResult:
    """
    Run one audit over a statement set.

    Flow:
    1. Filter transactions by client, date range and banks
    2. Build the tariff lookup and check every bank resolves
    3. Run enabled rule detectors, each isolated from the others
    4. In ai/hybrid mode, also run the AI orchestrator and merge its findings
    5. Cap recoverable amounts per transaction, compute statistics and summary

    Configuration problems (no transactions, unresolvable conditions,
    overlapping grids, unknown AI module) give a `failed` result before any
    detector runs. A cancelled run returns its partial result with
    `cancelled=True`.
    """
    start_time = time.time()
    started_at = datetime.utcnow()
    analysis_id = str(uuid.uuid4())
    options = options or AnalysisOptions()
    registry = options.registry or DetectorRegistry()
    token = options.cancel_token

    def report(progress: float, label: str, completed: int, total: int) -> None:
        if options.on_progress:
            options.on_progress(AnalysisProgress(int(round(progress)), label, completed, total))

    # 1-2. Preconditions
    try:
        analyzed = filter_transactions(transactions, config)
        if not analyzed:
            raise EmptyTransactionSetError("No transactions to analyze")
        lookup = build_lookup(bank_conditions, grids, options.allow_default_conditions)
        check_conditions(analyzed, lookup)
        ai_types = [AIDetectionType(t) for t in config.ai_detections] if config.ai_detections else None
    except (ConfigurationError, ValueError) as e:
        logger.warning(f"Analysis not started: {e}", extra={"analysis_id": analysis_id})
        result = _failed_result(analysis_id, config, started_at, len(transactions), e)
        record_analysis(result.status.value, [], time.time() - start_time)
        log_analysis_completed(
            analysis_id, config.client_id, result.status.value, 0, 0.0, 0, (time.time() - start_time) * 1000
        )
        return result

    report(0, "Initialisation", 0, 0)

    use_ai = config.mode in (AnalysisMode.AI, AnalysisMode.HYBRID) and options.orchestrator is not None
    if config.mode != AnalysisMode.ALGORITHMIC and options.orchestrator is None:
        logger.warning(
            "No AI orchestrator configured, running rule detectors only",
            extra={"analysis_id": analysis_id, "mode": config.mode.value},
        )
    rules_share = 40.0 if use_ai else 100.0

    errors: List[ModuleError] = []
    rule_anomalies: List[Anomaly] = []
    cancelled = False

    # 3. Rule detectors
    detectors = registry.enabled(config)
    for position, item in enumerate(detectors):
        if token is not None and token.cancelled:
            cancelled = True
            break
        try:
            rule_anomalies.extend(item.detect(analyzed, lookup, config.thresholds))
        except Exception as e:
            # One detector never aborts the run
            detector_failure_counter.labels(detector=item.id).inc()
            log_detector_failure(analysis_id, item.id, e)
            errors.append(ModuleError(module=item.id, error=str(e)))
        report(rules_share * (position + 1) / len(detectors), item.label, position + 1, len(detectors))
        # Let a concurrent cancel request land between detectors
        await asyncio.sleep(0)

    # 4. AI modules
    ai_anomalies: List[Anomaly] = []
    if use_ai and not cancelled and not (token is not None and token.cancelled):
        base = OrchestrationOptions() if options.orchestration is None else options.orchestration
        ai_share = 100.0 - rules_share

        def on_ai_progress(progress: OrchestrationProgress) -> None:
            fraction = progress.completed_batches / progress.total_batches if progress.total_batches else 1.0
            report(
                rules_share + ai_share * fraction,
                progress.current_module_label,
                progress.completed_modules,
                progress.total_modules,
            )

        orchestration = await options.orchestrator.run_detections(
            analyzed,
            ai_types,
            OrchestrationOptions(
                batch_size=base.batch_size,
                max_concurrency=base.max_concurrency,
                timeout=base.timeout,
                context={"clientId": config.client_id, "bankCodes": lookup.bank_codes, **(base.context or {})},
                on_progress=on_ai_progress,
                cancel_token=token,
            ),
        )
        ai_anomalies = orchestration.all_anomalies
        errors.extend(orchestration.errors)
        cancelled = orchestration.cancelled
    elif token is not None and token.cancelled:
        cancelled = True

    # 5. Report
    anomalies = merge_anomalies(rule_anomalies, ai_anomalies)
    allocate_recoverable(anomalies)
    statistics = compute_statistics(len(transactions), analyzed, anomalies)
    summary = build_summary(anomalies, statistics)

    result = AnalysisResult(
        id=analysis_id,
        config=config,
        status=AnalysisStatus.COMPLETED,
        anomalies=anomalies,
        statistics=statistics,
        summary=summary,
        started_at=started_at,
        completed_at=datetime.utcnow(),
        errors=errors,
        cancelled=cancelled,
    )
    if not cancelled:
        report(100, "Terminé", len(detectors), len(detectors))

    duration = time.time() - start_time
    record_analysis("cancelled" if cancelled else result.status.value, anomalies, duration)
    log_analysis_completed(
        analysis_id,
        config.client_id,
        "cancelled" if cancelled else result.status.value,
        statistics.total_anomalies,
        statistics.potential_savings,
        len(errors),
        duration * 1000,
    )
    return result
