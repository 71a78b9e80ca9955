"""Suspicious operation detection - spikes, bursts and unusual wording"""

import math
from collections import defaultdict
from typing import Dict, List

from scrutix_engine.domain.detectors.common import format_fcfa, total_abs
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

SPIKE_MULTIPLIER = 3
MAX_DAILY_FREQUENCY = 10
MIN_SAMPLE = 5
SUSPICIOUS_KEYWORDS = (
    "retrait urgent", "virement personnel", "cash", "especes",
    "pret", "avance", "compensation",
)


def percentile_95(amounts: List[float]) -> float:
    ordered = sorted(amounts)
    index = min(math.floor(len(ordered) * 0.95), len(ordered) - 1)
    return ordered[index]


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    if not transactions:
        return []
    anomalies = []
    anomalies.extend(_high_amounts(transactions))
    anomalies.extend(_high_frequency(transactions))
    anomalies.extend(_suspicious_wording(transactions))
    return anomalies


def _high_amounts(transactions: List[Transaction]) -> List[Anomaly]:
    if len(transactions) < MIN_SAMPLE:
        return []
    ceiling = percentile_95([abs(t.amount) for t in transactions]) * SPIKE_MULTIPLIER
    anomalies = []
    for txn in transactions:
        amount = abs(txn.amount)
        if ceiling > 0 and amount > ceiling:
            anomalies.append(
                Anomaly(
                    type=AnomalyType.SUSPICIOUS_TRANSACTION,
                    severity=Severity.HIGH if amount > 2 * ceiling else Severity.MEDIUM,
                    amount=0.0,
                    description=f"Montant atypique de {format_fcfa(amount)}",
                    recommendation="Vérifier la justification économique de cette opération.",
                    confidence=0.7,
                    transactions=[txn],
                    evidence=[
                        Evidence(
                            type="comparison",
                            description="Montant comparé au seuil statistique",
                            value=amount,
                            expected_value=round(ceiling, 2),
                            applied_value=amount,
                        )
                    ],
                    module="suspicious",
                )
            )
    return anomalies


def _high_frequency(transactions: List[Transaction]) -> List[Anomaly]:
    by_day: Dict = defaultdict(list)
    for txn in transactions:
        by_day[(txn.client_id, txn.date)].append(txn)

    anomalies = []
    for (_, day), day_txns in sorted(by_day.items(), key=lambda item: item[0][1]):
        if len(day_txns) <= MAX_DAILY_FREQUENCY:
            continue
        anomalies.append(
            Anomaly(
                type=AnomalyType.SUSPICIOUS_TRANSACTION,
                severity=Severity.MEDIUM,
                amount=0.0,
                description=f"{len(day_txns)} opérations le {day.strftime('%d/%m/%Y')}",
                recommendation="Contrôler la nature de ces opérations rapprochées.",
                confidence=0.65,
                transactions=day_txns,
                evidence=[
                    Evidence(type="frequency", description="Opérations dans la journée", value=len(day_txns), expected_value=MAX_DAILY_FREQUENCY),
                    Evidence(type="total", description="Montant cumulé", value=total_abs(day_txns)),
                ],
                module="suspicious",
            )
        )
    return anomalies


def _suspicious_wording(transactions: List[Transaction]) -> List[Anomaly]:
    flagged = [
        t for t in transactions if any(keyword in t.description.lower() for keyword in SUSPICIOUS_KEYWORDS)
    ]
    if not flagged:
        return []
    return [
        Anomaly(
            type=AnomalyType.SUSPICIOUS_TRANSACTION,
            severity=Severity.LOW if len(flagged) < 5 else Severity.MEDIUM,
            amount=0.0,
            description=f"{len(flagged)} opération(s) au libellé sensible",
            recommendation="Documenter l'objet de ces opérations.",
            confidence=0.6,
            transactions=flagged[:20],
            evidence=[Evidence(type="keyword", description="Libellés concernés", value=len(flagged))],
            module="suspicious",
        )
    ]
