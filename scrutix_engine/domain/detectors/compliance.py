"""Contractual compliance - fees absent from or above the fee schedule"""

from typing import List

from scrutix_engine.domain.detectors.common import format_fcfa, is_fee_like, is_interest_charge, match_contract_fee
from scrutix_engine.domain.detectors.overcharges import expected_amount
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    FeeSchedule,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

FEE_TOLERANCE = 0.02
REGULATION = "Règlement CEMAC n°01/20/CEMAC/UMAC/COBAC - transparence tarifaire"


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    """Fee-like debits checked against the published schedule of their bank"""
    anomalies = []
    for txn in transactions:
        if not is_fee_like(txn) or is_interest_charge(txn):
            continue
        bank_conditions = conditions.for_bank(txn.bank_code, txn.date)
        fee = match_contract_fee(txn, bank_conditions)
        if fee is None:
            anomalies.append(_unauthorized(txn, bank_conditions.bank_name or bank_conditions.bank_code))
            continue

        expected = expected_amount(fee)
        charged = abs(txn.amount)
        if expected is not None and charged > expected * (1 + FEE_TOLERANCE):
            anomalies.append(_above_schedule(txn, fee, expected, charged))
    return anomalies


def _unauthorized(txn: Transaction, bank_label: str) -> Anomaly:
    amount = abs(txn.amount)
    return Anomaly(
        type=AnomalyType.UNAUTHORIZED,
        severity=Severity.HIGH if amount > 10_000 else Severity.MEDIUM,
        amount=amount,
        description=f"Frais « {txn.description} » absent des conditions de {bank_label}",
        recommendation=(
            f"Exiger la base contractuelle de ce frais de {format_fcfa(amount)} "
            f"ou son remboursement."
        ),
        confidence=0.8,
        transactions=[txn],
        evidence=[
            Evidence(
                type="missing_justification",
                description="Ligne correspondante dans la grille tarifaire",
                value="aucune",
                regulatory_reference=REGULATION,
            )
        ],
        module="compliance",
    )


def _above_schedule(txn: Transaction, fee: FeeSchedule, expected: float, charged: float) -> Anomaly:
    # The excess itself is claimed by the overcharge detector
    excess = charged - expected
    return Anomaly(
        type=AnomalyType.COMPLIANCE_VIOLATION,
        severity=Severity.HIGH if excess > 10_000 else Severity.MEDIUM,
        amount=0.0,
        description=f"{fee.name} facturé {format_fcfa(charged)} pour un tarif de {format_fcfa(expected)}",
        recommendation=f"Rappeler à la banque le barème {fee.code}, dépassé de {format_fcfa(excess)}.",
        confidence=0.9,
        transactions=[txn],
        evidence=[
            Evidence(
                type="comparison",
                description="Montant facturé comparé au barème",
                value=charged,
                expected_value=expected,
                applied_value=charged,
                source=fee.code,
                regulatory_reference=REGULATION,
            )
        ],
        module="compliance",
    )
