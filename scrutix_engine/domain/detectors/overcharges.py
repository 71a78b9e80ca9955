"""Overcharge detection - charged fees compared to the applicable tariff"""

import re
import statistics
from typing import Dict, List, Tuple

from scrutix_engine.domain.detectors.common import (
    format_fcfa,
    is_fee_like,
    is_interest_charge,
    match_contract_fee,
)
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    BankConditions,
    DetectionThresholds,
    Evidence,
    FeeSchedule,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

SERVICE_PATTERNS: Dict[str, List[re.Pattern]] = {
    "ACCOUNT_MAINTENANCE": [re.compile(p) for p in (r"tenue.*compte", r"frais.*compte", r"gestion.*compte")],
    "TRANSFER_INTERNATIONAL": [re.compile(p) for p in (r"virement.*international", r"swift", r"transfer.*étranger")],
    "TRANSFER_NATIONAL": [re.compile(p) for p in (r"virement", r"\bvir\b", r"transfer.*local")],
    "CARD_FEE": [re.compile(p) for p in (r"carte", r"\bcard\b", r"visa", r"mastercard")],
    "ATM": [re.compile(p) for p in (r"retrait.*dab", r"retrait.*gab", r"\batm\b", r"distributeur")],
    "SMS": [re.compile(p) for p in (r"\bsms\b", r"notification", r"alerte")],
    "STATEMENT": [re.compile(p) for p in (r"relevé", r"releve", r"extrait", r"statement")],
}

CODE_HINTS: Dict[str, Tuple[str, ...]] = {
    "ACCOUNT_MAINTENANCE": ("TDC", "TENUE"),
    "TRANSFER_NATIONAL": ("VIRN", "VIR_NAT"),
    "TRANSFER_INTERNATIONAL": ("VIRI", "SWIFT", "VIR_INT"),
    "CARD_FEE": ("CARTE", "CARD", "CB"),
    "ATM": ("DAB", "GAB", "ATM", "RET"),
    "SMS": ("SMS", "NOTIF"),
    "STATEMENT": ("RELEVE", "REL", "EXTRAIT"),
}

MIN_HISTORY = 3


def classify_service(description: str) -> str | None:
    lowered = description.lower()
    for service, patterns in SERVICE_PATTERNS.items():
        if any(pattern.search(lowered) for pattern in patterns):
            return service
    return None


def find_tariff(txn: Transaction, service: str | None, conditions: BankConditions) -> FeeSchedule | None:
    fee = match_contract_fee(txn, conditions)
    if fee is not None or service is None:
        return fee
    hints = CODE_HINTS.get(service, ())
    for fee in conditions.fees:
        code = fee.code.upper()
        if any(code == hint or code.startswith(hint) for hint in hints):
            return fee
    return None


def expected_amount(fee: FeeSchedule) -> float | None:
    """Contractual amount for a fee line, None when it depends on an unknown base"""
    if fee.type == "percentage":
        expected = fee.min_amount
    else:
        expected = fee.amount
    if expected is None:
        return None
    if fee.min_amount is not None:
        expected = max(expected, fee.min_amount)
    if fee.max_amount is not None:
        expected = min(expected, fee.max_amount)
    return expected


def overcharge_severity(excess: float, excess_ratio: float) -> Severity:
    if excess > 20_000 or excess_ratio > 0.5:
        return Severity.CRITICAL
    if excess > 10_000 or excess_ratio > 0.3:
        return Severity.HIGH
    if excess > 5_000 or excess_ratio > 0.2:
        return Severity.MEDIUM
    return Severity.LOW


def _historical_median(
    txn: Transaction, service: str, history: Dict[Tuple[str, str], List[Transaction]]
) -> float | None:
    prior = [abs(t.amount) for t in history.get((txn.client_id, service), []) if t.date < txn.date]
    if len(prior) < MIN_HISTORY:
        return None
    return statistics.median(prior)


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    """
    Flag fees charged above contractual amount x (1 + tolerance_percentage).

    Without a tariff line and with use_historical_baseline set, the client's
    own median for the same service class stands in for the contract.
    """
    config = thresholds.overcharges
    fees = [t for t in transactions if is_fee_like(t) and not is_interest_charge(t)]

    history: Dict[Tuple[str, str], List[Transaction]] = {}
    for fee in fees:
        service = classify_service(fee.description)
        if service is not None:
            history.setdefault((fee.client_id, service), []).append(fee)

    anomalies = []
    for fee in fees:
        service = classify_service(fee.description)
        bank_conditions = conditions.for_bank(fee.bank_code, fee.date)
        tariff = find_tariff(fee, service, bank_conditions)

        expected = expected_amount(tariff) if tariff is not None else None
        source = f"{bank_conditions.bank_name or bank_conditions.bank_code} ({tariff.code})" if tariff else None
        if expected is None and config.use_historical_baseline and service is not None:
            expected = _historical_median(fee, service, history)
            source = "Médiane historique du client" if expected is not None else None
        if expected is None or expected <= 0:
            continue

        charged = abs(fee.amount)
        if charged <= expected * (1 + config.tolerance_percentage):
            continue

        anomalies.append(_build_anomaly(fee, service, charged, expected, tariff is not None, source))

    return anomalies


def _build_anomaly(
    fee: Transaction,
    service: str | None,
    charged: float,
    expected: float,
    from_tariff: bool,
    source: str | None,
) -> Anomaly:
    excess = charged - expected
    excess_ratio = excess / expected
    reasons = [f"Montant supérieur de {excess_ratio:.0%} au tarif de référence"]
    if not from_tariff:
        reasons.append("Référence issue de l'historique du client")

    confidence = 0.6
    if from_tariff:
        confidence += 0.25
    if excess_ratio > 0.3:
        confidence += 0.1
    if len(reasons) > 1:
        confidence += 0.05

    evidence = [
        Evidence(
            type="comparison",
            description="Montant facturé comparé au tarif applicable",
            value=charged,
            expected_value=expected,
            applied_value=charged,
            source=source,
        ),
        Evidence(type="service_class", description="Catégorie de service", value=service or "inconnue"),
    ]
    evidence.extend(Evidence(type="reason", description=reason, value=True) for reason in reasons)

    return Anomaly(
        type=AnomalyType.OVERCHARGE,
        severity=overcharge_severity(excess, excess_ratio),
        amount=excess,
        description=(
            f"« {fee.description} » facturé {format_fcfa(charged)} "
            f"au lieu de {format_fcfa(expected)}"
        ),
        recommendation=(
            f"Contester l'écart de {format_fcfa(excess)} en citant les conditions tarifaires "
            f"applicables au {fee.date.strftime('%d/%m/%Y')}."
        ),
        confidence=round(min(confidence, 0.98), 4),
        transactions=[fee],
        evidence=evidence,
        module="overcharges",
    )
