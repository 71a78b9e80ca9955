"""Interest (agios) verification - recomputes debit interest from balances"""

from datetime import date
from typing import List, Tuple

from scrutix_engine.domain.detectors.common import format_fcfa, is_interest_charge, sort_by_date
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    InterestRate,
    InterestThresholds,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup
from scrutix_engine.utils.date_utils import days_30_360, generate_date_range, month_bounds, previous_month_bounds


def year_basis(convention: str) -> int:
    return 365 if convention == "ACT/365" else 360


def daily_balances(history: List[Transaction], start: date, end: date) -> List[float]:
    """
    End-of-day balances from start to end, carrying the last known balance
    forward over days without operations. Days before the first known
    balance are left out.
    """
    closing = {}
    opening = None
    for txn in sort_by_date(history):
        if txn.date < start:
            opening = txn.balance
        elif txn.date <= end:
            closing[txn.date] = txn.balance

    balances = []
    last_known = opening
    for day in generate_date_range(start, end):
        if day in closing:
            last_known = closing[day]
        if last_known is not None:
            balances.append(last_known)
    return balances


def theoretical_interest(balances: List[float], rate: InterestRate, start: date, end: date) -> float:
    basis = year_basis(rate.day_count_convention)
    debit_days = [-b for b in balances if b < 0]
    if not debit_days:
        return 0.0

    if rate.calculation_method == "compound":
        accrued = 0.0
        for debit in debit_days:
            accrued += (debit + accrued) * rate.rate / basis
        interest = accrued
    else:
        interest = sum(debit * rate.rate / basis for debit in debit_days)

    if rate.day_count_convention == "30/360" and balances:
        # Rescale actual days to the 30/360 day count of the period
        actual_days = (end - start).days + 1
        interest *= (days_30_360(start, end) + 1) / actual_days
    return round(interest, 2)


def reference_period(charge: Transaction, history: List[Transaction]) -> Tuple[date, date, List[float]]:
    """Previous calendar month, or the charge's own month when no balance is known"""
    start, end = previous_month_bounds(charge.date)
    balances = daily_balances(history, start, end)
    if not balances:
        start, _ = month_bounds(charge.date)
        end = charge.date
        balances = daily_balances([t for t in history if t.id != charge.id], start, end)
    return start, end, balances


def interest_severity(difference: float) -> Severity:
    if difference > 10_000:
        return Severity.CRITICAL
    if difference > 5_000:
        return Severity.HIGH
    if difference > 1_000:
        return Severity.MEDIUM
    return Severity.LOW


def _tolerance(reference: float, config: InterestThresholds) -> float:
    return max(config.tolerance_amount, reference * config.tolerance_percentage)


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    """
    Check each interest charge against the contractual cap when the rate
    carries one, otherwise against interest recomputed from daily balances.
    """
    config = thresholds.interest
    anomalies = []

    for charge in transactions:
        if not is_interest_charge(charge):
            continue
        rate = conditions.for_bank(charge.bank_code, charge.date).debit_rate()
        if rate is None:
            continue

        charged = abs(charge.amount)
        if rate.max_amount is not None and charged > rate.max_amount + _tolerance(rate.max_amount, config):
            anomalies.append(_cap_anomaly(charge, rate, charged))
            continue

        history = [
            t
            for t in transactions
            if t.client_id == charge.client_id
            and t.bank_code == charge.bank_code
            and t.account_number == charge.account_number
        ]
        start, end, balances = reference_period(charge, history)
        if not balances:
            continue

        expected = theoretical_interest(balances, rate, start, end)
        if charged - expected > _tolerance(expected, config):
            anomalies.append(_recompute_anomaly(charge, rate, charged, expected, start, end))

    return anomalies


def _cap_anomaly(charge: Transaction, rate: InterestRate, charged: float) -> Anomaly:
    cap = rate.max_amount
    excess = charged - cap
    return Anomaly(
        type=AnomalyType.INTEREST_ERROR,
        severity=interest_severity(excess),
        amount=excess,
        description=f"Agios de {format_fcfa(charged)} au-delà du plafond contractuel de {format_fcfa(cap)}",
        recommendation=(
            f"Réclamer le remboursement de {format_fcfa(excess)} d'agios facturés "
            f"au-delà du plafond prévu au contrat (taux {rate.rate:.2%})."
        ),
        confidence=0.95,
        transactions=[charge],
        evidence=[
            Evidence(
                type="comparison",
                description="Agios facturés comparés au plafond contractuel",
                value=charged,
                expected_value=cap,
                applied_value=charged,
            ),
            Evidence(type="official_rate", description="Taux contractuel", value=rate.rate),
        ],
        module="interest",
    )


def _recompute_anomaly(
    charge: Transaction,
    rate: InterestRate,
    charged: float,
    expected: float,
    start: date,
    end: date,
) -> Anomaly:
    difference = round(charged - expected, 2)
    return Anomaly(
        type=AnomalyType.INTEREST_ERROR,
        severity=interest_severity(difference),
        amount=difference,
        description=(
            f"Agios facturés {format_fcfa(charged)} pour un montant recalculé de {format_fcfa(expected)}"
        ),
        recommendation=(
            f"Demander le détail du calcul des agios du {start.strftime('%d/%m/%Y')} au "
            f"{end.strftime('%d/%m/%Y')} et le remboursement de {format_fcfa(difference)}."
        ),
        confidence=0.9,
        transactions=[charge],
        evidence=[
            Evidence(
                type="comparison",
                description="Agios facturés comparés aux agios recalculés",
                value=charged,
                expected_value=expected,
                applied_value=charged,
            ),
            Evidence(type="official_rate", description="Taux contractuel", value=rate.rate),
            Evidence(
                type="calculation",
                description="Méthode de calcul",
                value=f"{rate.calculation_method} {rate.day_count_convention}",
            ),
        ],
        module="interest",
    )
