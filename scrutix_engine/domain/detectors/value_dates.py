"""Value date control - delays between operation date and value date"""

from typing import List

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
from scrutix_engine.utils.date_utils import business_days_between

MAX_CREDIT_VALUE_DAYS = 2  # J+2
MAX_DEBIT_VALUE_DAYS = 1  # J+1
DEFAULT_RATE = 0.12
YEAR_BASIS = 360
REGULATION = "Règlement COBAC R-2019/01 sur les dates de valeur"


def financial_impact(amount: float, days: int, rate: float) -> float:
    return round(abs(amount) * rate * days / YEAR_BASIS, 2)


def value_date_severity(impact: float, excess_days: int) -> Severity:
    if impact > 50_000 or excess_days > 10:
        return Severity.CRITICAL
    if impact > 10_000 or excess_days > 5:
        return Severity.HIGH
    if impact > 1_000 or excess_days > 2:
        return Severity.MEDIUM
    return Severity.LOW


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    anomalies = []
    for txn in transactions:
        if txn.value_date is None:
            continue

        rate_entry = conditions.for_bank(txn.bank_code, txn.date).debit_rate()
        rate = rate_entry.rate if rate_entry is not None else DEFAULT_RATE
        gap = business_days_between(txn.date, txn.value_date)
        is_credit = txn.amount > 0
        allowed = MAX_CREDIT_VALUE_DAYS if is_credit else MAX_DEBIT_VALUE_DAYS

        if gap > allowed:
            excess = gap - allowed
            impact = financial_impact(txn.amount, excess, rate)
            if impact > 0:
                anomalies.append(_delay_anomaly(txn, gap, allowed, impact, is_credit))
        elif not is_credit and gap < 0:
            impact = financial_impact(txn.amount, -gap, rate)
            if impact > 0:
                anomalies.append(_retroactive_anomaly(txn, -gap, impact))

    return anomalies


def _delay_anomaly(txn: Transaction, gap: int, allowed: int, impact: float, is_credit: bool) -> Anomaly:
    excess = gap - allowed
    direction = "crédit" if is_credit else "débit"
    return Anomaly(
        type=AnomalyType.VALUE_DATE_ERROR,
        severity=value_date_severity(impact, excess),
        amount=impact,
        description=f"Date de valeur du {direction} décalée de {gap} jours ouvrés (autorisé: J+{allowed})",
        recommendation=(
            f"Demander la rectification de la date de valeur et le remboursement "
            f"de {format_fcfa(impact)} d'intérêts induits."
        ),
        confidence=0.95,
        transactions=[txn],
        evidence=[
            Evidence(type="comparison", description="Jours ouvrés de décalage", value=gap, expected_value=allowed, applied_value=gap),
            Evidence(type="financial_impact", description="Impact financier estimé", value=impact),
        ],
        module="value_dates",
    )


def _retroactive_anomaly(txn: Transaction, days: int, impact: float) -> Anomaly:
    return Anomaly(
        type=AnomalyType.VALUE_DATE_ERROR,
        severity=Severity.HIGH,
        amount=impact,
        description=f"Débit valorisé {days} jour(s) ouvré(s) avant l'opération",
        recommendation=(
            f"Contester la date de valeur antérieure à l'opération, "
            f"impact estimé {format_fcfa(impact)}."
        ),
        confidence=0.98,
        transactions=[txn],
        evidence=[
            Evidence(
                type="retroactive_value_date",
                description="Date de valeur antérieure à l'opération",
                value=f"{days} jours avant l'opération",
                regulatory_reference=REGULATION,
            ),
            Evidence(type="financial_impact", description="Impact financier estimé", value=impact),
        ],
        module="value_dates",
    )
