"""Multi-bank consolidation - cross-bank duplicates and fee level comparison"""

from collections import defaultdict
from typing import Dict, List

from scrutix_engine.domain.detectors.common import format_fcfa, is_fee_like, sort_chronologically, total_abs
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup
from scrutix_engine.utils.similarity import description_similarity, relative_amount_difference

MIN_BANKS = 2
AMOUNT_TOLERANCE = 0.02
WINDOW_DAYS = 2  # 48 hours at day granularity
FEE_RATIO_ALERT = 2.0


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    by_bank: Dict[str, List[Transaction]] = defaultdict(list)
    for txn in transactions:
        by_bank[txn.bank_code or "UNKNOWN"].append(txn)
    if len(by_bank) < MIN_BANKS:
        return []

    anomalies = []
    anomalies.extend(_cross_bank_duplicates(transactions))
    anomalies.extend(_fee_comparison(by_bank))
    return anomalies


def _cross_bank_duplicates(transactions: List[Transaction]) -> List[Anomaly]:
    debits = sort_chronologically(t for t in transactions if t.is_debit)
    used = set()
    anomalies = []
    for i, first in enumerate(debits):
        if first.id in used:
            continue
        for second in debits[i + 1:]:
            if (second.date - first.date).days > WINDOW_DAYS:
                break
            if second.id in used or second.bank_code == first.bank_code:
                continue
            if relative_amount_difference(first.amount, second.amount) > AMOUNT_TOLERANCE:
                continue
            if description_similarity(first.description, second.description) < 0.8:
                continue
            used.update((first.id, second.id))
            amount = abs(second.amount)
            anomalies.append(
                Anomaly(
                    type=AnomalyType.MULTI_BANK_ISSUE,
                    severity=Severity.HIGH if amount > 50_000 else Severity.MEDIUM,
                    amount=amount,
                    description=(
                        f"« {first.description} » débité chez {first.bank_code} et {second.bank_code}"
                    ),
                    recommendation=f"Vérifier le double débit inter-banques de {format_fcfa(amount)}.",
                    confidence=0.75,
                    transactions=[first, second],
                    evidence=[
                        Evidence(type="duplicate", description="Banques concernées", value=f"{first.bank_code}, {second.bank_code}")
                    ],
                    module="multi_bank",
                )
            )
            break
    return anomalies


def _fee_comparison(by_bank: Dict[str, List[Transaction]]) -> List[Anomaly]:
    """Fee load per bank as share of debit volume, cheapest bank as reference"""
    ratios = {}
    fees_by_bank = {}
    for bank_code, txns in by_bank.items():
        debit_volume = total_abs(t for t in txns if t.is_debit)
        fees = [t for t in txns if is_fee_like(t)]
        if debit_volume > 0 and fees:
            ratios[bank_code] = total_abs(fees) / debit_volume
            fees_by_bank[bank_code] = fees
    if len(ratios) < MIN_BANKS:
        return []

    cheapest = min(ratios, key=lambda code: (ratios[code], code))
    anomalies = []
    for bank_code in sorted(ratios):
        if bank_code == cheapest or ratios[cheapest] == 0:
            continue
        factor = ratios[bank_code] / ratios[cheapest]
        if factor < FEE_RATIO_ALERT:
            continue
        anomalies.append(
            Anomaly(
                type=AnomalyType.MULTI_BANK_ISSUE,
                severity=Severity.LOW,
                amount=0.0,
                description=(
                    f"Frais chez {bank_code} {factor:.1f} fois plus élevés que chez {cheapest} "
                    f"rapportés au volume d'opérations"
                ),
                recommendation=f"Renégocier les conditions de {bank_code} ou transférer les flux vers {cheapest}.",
                confidence=0.7,
                transactions=fees_by_bank[bank_code][:10],
                evidence=[
                    Evidence(
                        type="comparison",
                        description="Part des frais dans les débits",
                        value=round(ratios[bank_code], 4),
                        expected_value=round(ratios[cheapest], 4),
                        applied_value=round(ratios[bank_code], 4),
                    )
                ],
                module="multi_bank",
            )
        )
    return anomalies
