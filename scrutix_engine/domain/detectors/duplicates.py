"""Duplicate fee detection over a sliding time window"""

from typing import List

from scrutix_engine.domain.detectors.common import format_fcfa, sort_chronologically, total_abs
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup
from scrutix_engine.utils.similarity import (
    description_similarity,
    relative_amount_difference,
    transaction_similarity,
)


def duplicate_severity(amount: float, cluster_size: int) -> Severity:
    if amount > 50_000 or cluster_size >= 5:
        return Severity.CRITICAL
    if amount >= 10_000 or cluster_size >= 3:
        return Severity.HIGH
    if amount >= 2_000:
        return Severity.MEDIUM
    return Severity.LOW


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    """
    Cluster debits charged more than once within the time window.

    A candidate joins the cluster of an earlier transaction when the relative
    amount difference stays within amount_tolerance and the description
    similarity reaches similarity_threshold. Input order does not matter:
    debits are scanned sorted by (date, id).
    """
    config = thresholds.duplicates
    debits = sort_chronologically(t for t in transactions if t.is_debit)
    processed = set()
    anomalies = []

    for i, original in enumerate(debits):
        if original.id in processed:
            continue

        cluster = [original]
        scores = []
        for candidate in debits[i + 1:]:
            days = (candidate.date - original.date).days
            if days > config.time_window_days:
                break
            if candidate.id in processed:
                continue
            if relative_amount_difference(original.amount, candidate.amount) > config.amount_tolerance:
                continue
            if description_similarity(original.description, candidate.description) < config.similarity_threshold:
                continue
            cluster.append(candidate)
            scores.append(
                transaction_similarity(
                    original, candidate, config.time_window_days, config.amount_tolerance
                )
            )

        if len(cluster) < 2:
            continue

        processed.update(t.id for t in cluster)
        anomalies.append(_build_anomaly(cluster, scores))

    return anomalies


def _build_anomaly(cluster: List[Transaction], scores: List[float]) -> Anomaly:
    original, duplicates = cluster[0], cluster[1:]
    amount = total_abs(duplicates)
    confidence = round(min(sum(scores) / len(scores), 1.0), 4)
    span_days = (cluster[-1].date - original.date).days

    evidence = [
        Evidence(
            type="duplicate",
            description=f"Opération {t.id} du {t.date.isoformat()}",
            value=abs(t.amount),
            applied_value=abs(t.amount),
            expected_value=0.0,
        )
        for t in duplicates
    ]
    evidence.append(
        Evidence(
            type="reason",
            description="Occurrences rapprochées",
            value=f"{len(cluster)} prélèvements en {span_days} jour(s)",
        )
    )

    return Anomaly(
        type=AnomalyType.DUPLICATE_FEE,
        severity=duplicate_severity(amount, len(cluster)),
        amount=amount,
        description=(
            f"« {original.description} » prélevé {len(cluster)} fois "
            f"en {span_days} jour(s)"
        ),
        recommendation=(
            f"Demander le remboursement de {len(duplicates)} prélèvement(s) en double "
            f"pour un total de {format_fcfa(amount)}."
        ),
        confidence=confidence,
        transactions=list(cluster),
        evidence=evidence,
        module="duplicates",
    )
