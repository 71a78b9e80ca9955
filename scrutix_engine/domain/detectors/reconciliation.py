"""Statement self-reconciliation - running balance gaps and isolated operations"""

from typing import List

from scrutix_engine.domain.detectors.cashflow import balance_breaks, group_by_account
from scrutix_engine.domain.detectors.common import format_fcfa
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

ORPHAN_GAP_DAYS = 30


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    anomalies = []
    for account_txns in group_by_account(transactions).values():
        gaps = balance_breaks(account_txns)
        if gaps:
            anomalies.append(_gap_anomaly(gaps))
        anomalies.extend(_orphans(account_txns))
    return anomalies


def _gap_anomaly(gaps) -> Anomaly:
    total_gap = sum(abs(txn.balance - expected) for txn, expected in gaps)
    if total_gap > 100_000:
        severity = Severity.CRITICAL
    elif total_gap > 10_000:
        severity = Severity.HIGH
    else:
        severity = Severity.MEDIUM
    return Anomaly(
        type=AnomalyType.RECONCILIATION_GAP,
        severity=severity,
        amount=0.0,
        description=f"{len(gaps)} rupture(s) de solde pour un écart cumulé de {format_fcfa(total_gap)}",
        recommendation="Demander à la banque les opérations manquantes entre les soldes reportés.",
        confidence=0.85,
        transactions=[txn for txn, _ in gaps][:10],
        evidence=[
            Evidence(
                type="comparison",
                description=f"Solde attendu après {txn.id}",
                value=txn.balance,
                expected_value=round(expected, 2),
                applied_value=txn.balance,
            )
            for txn, expected in gaps[:5]
        ],
        module="reconciliation",
    )


def _orphans(account_txns: List[Transaction]) -> List[Anomaly]:
    anomalies = []
    for index, txn in enumerate(account_txns):
        previous = account_txns[index - 1] if index > 0 else None
        following = account_txns[index + 1] if index < len(account_txns) - 1 else None
        if previous is None or following is None:
            continue
        if (txn.date - previous.date).days > ORPHAN_GAP_DAYS and (following.date - txn.date).days > ORPHAN_GAP_DAYS:
            anomalies.append(
                Anomaly(
                    type=AnomalyType.RECONCILIATION_GAP,
                    severity=Severity.LOW,
                    amount=0.0,
                    description=f"Opération isolée de {format_fcfa(abs(txn.amount))} sans contexte",
                    recommendation="Vérifier la pièce justificative de cette opération isolée.",
                    confidence=0.6,
                    transactions=[txn],
                    evidence=[Evidence(type="isolation", description="Écart avec les opérations voisines (jours)", value=ORPHAN_GAP_DAYS)],
                    module="reconciliation",
                )
            )
    return anomalies
