"""Ghost fee detection - charges with no identifiable underlying service"""

from dataclasses import dataclass, field
from typing import List

from scrutix_engine.domain.detectors.common import (
    format_fcfa,
    is_fee_like,
    is_interest_charge,
    is_service_operation,
    match_contract_fee,
)
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    GhostFeeThresholds,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup
from scrutix_engine.utils.date_utils import is_month_end
from scrutix_engine.utils.entropy import fee_description_suspicion, is_round_amount, shannon_entropy
from scrutix_engine.utils.similarity import description_similarity, relative_amount_difference


@dataclass
class FeeAssessment:
    transaction: Transaction
    has_service: bool
    is_recurring: bool
    entropy: float
    score: float
    reasons: List[str] = field(default_factory=list)


def _has_associated_service(fee: Transaction, transactions: List[Transaction], window_days: int) -> bool:
    return any(
        other.id != fee.id
        and abs((other.date - fee.date).days) <= window_days
        and is_service_operation(other)
        for other in transactions
    )


def _is_recurring(fee: Transaction, transactions: List[Transaction]) -> bool:
    """Same wording and amount charged in at least two other months"""
    months = {
        (other.date.year, other.date.month)
        for other in transactions
        if other.id != fee.id
        and other.is_debit
        and (other.date.year, other.date.month) != (fee.date.year, fee.date.month)
        and relative_amount_difference(other.amount, fee.amount) <= 0.05
        and description_similarity(other.description, fee.description) >= 0.8
    }
    return len(months) >= 2


def assess_fee(
    fee: Transaction, transactions: List[Transaction], config: GhostFeeThresholds
) -> FeeAssessment:
    score = 0.0
    reasons = []

    suspicion = fee_description_suspicion(fee.description)
    if suspicion > 0.3:
        score += suspicion * 0.4
        reasons.append("Libellé vague ou générique")

    has_service = _has_associated_service(fee, transactions, config.orphan_window_days)
    if not has_service:
        score += 0.3
        reasons.append("Aucun service associé trouvé")

    if is_round_amount(fee.amount):
        score += 0.1
        reasons.append("Montant rond suspect")

    entropy = shannon_entropy(fee.description)
    if entropy < config.entropy_threshold:
        score += 0.15
        reasons.append("Description trop simple")
    elif entropy > 4.0:
        score += 0.1
        reasons.append("Description possiblement auto-générée")

    recurring = _is_recurring(fee, transactions)
    if recurring and not has_service:
        score += 0.15
        reasons.append("Frais récurrent sans service identifiable")

    if not (fee.reference or "").strip():
        score += 0.1
        reasons.append("Absence de référence")

    if is_month_end(fee.date):
        score += 0.05
        reasons.append("Frais en fin de mois")

    return FeeAssessment(
        transaction=fee,
        has_service=has_service,
        is_recurring=recurring,
        entropy=entropy,
        score=min(score, 1.0),
        reasons=reasons,
    )


def ghost_severity(amount: float, recurring: bool) -> Severity:
    if recurring and amount > 5_000:
        return Severity.CRITICAL
    if amount > 20_000:
        return Severity.HIGH
    if amount > 5_000 or recurring:
        return Severity.MEDIUM
    return Severity.LOW


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    """
    Flag fees that are absent from the contract and have no service
    operation within orphan_window_days, when either the wording entropy
    exceeds entropy_threshold or the suspicion score reaches min_confidence.
    """
    config = thresholds.ghost_fees
    anomalies = []

    for fee in transactions:
        if not is_fee_like(fee) or is_interest_charge(fee):
            continue
        if match_contract_fee(fee, conditions.for_bank(fee.bank_code, fee.date)) is not None:
            continue

        assessment = assess_fee(fee, transactions, config)
        if assessment.has_service:
            continue
        if assessment.entropy <= config.entropy_threshold and assessment.score < config.min_confidence:
            continue

        anomalies.append(_build_anomaly(assessment))

    return anomalies


def _build_anomaly(assessment: FeeAssessment) -> Anomaly:
    fee = assessment.transaction
    amount = abs(fee.amount)
    evidence = [
        Evidence(type="missing_justification", description="Service associé", value="aucun"),
        Evidence(type="entropy", description="Entropie du libellé", value=round(assessment.entropy, 3)),
    ]
    evidence.extend(Evidence(type="reason", description=reason, value=True) for reason in assessment.reasons)

    return Anomaly(
        type=AnomalyType.GHOST_FEE,
        severity=ghost_severity(amount, assessment.is_recurring),
        amount=amount,
        description=f"Frais « {fee.description} » sans service identifiable",
        recommendation=(
            f"Demander à la banque le justificatif du frais de {format_fcfa(amount)} "
            f"prélevé le {fee.date.strftime('%d/%m/%Y')}, à défaut son remboursement."
        ),
        confidence=round(assessment.score, 4),
        transactions=[fee],
        evidence=evidence,
        module="ghost_fees",
    )
