"""Cash-flow analysis - negative balance periods per account"""

from collections import defaultdict
from datetime import date
from typing import Dict, List, Tuple

from scrutix_engine.domain.detectors.common import format_fcfa, sort_by_date
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

CONSECUTIVE_NEGATIVE_DAYS = 3
BALANCE_TOLERANCE = 1.0


def _account_key(txn: Transaction) -> Tuple[str, str, str]:
    return (txn.client_id, txn.bank_code, txn.account_number or "")


def group_by_account(transactions: List[Transaction]) -> Dict[Tuple[str, str, str], List[Transaction]]:
    accounts = defaultdict(list)
    for txn in sort_by_date(transactions):
        accounts[_account_key(txn)].append(txn)
    return accounts


def balance_breaks(account_txns: List[Transaction]) -> List[Tuple[Transaction, float]]:
    """Operations whose reported balance differs from previous balance + amount"""
    breaks = []
    for previous, current in zip(account_txns, account_txns[1:]):
        expected = previous.balance + current.amount
        if abs(expected - current.balance) > BALANCE_TOLERANCE:
            breaks.append((current, expected))
    return breaks


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    anomalies = []
    for account_txns in group_by_account(transactions).values():
        anomalies.extend(_negative_periods(account_txns))
    return anomalies


def _negative_periods(account_txns: List[Transaction]) -> List[Anomaly]:
    closing: Dict[date, float] = {}
    for txn in account_txns:
        closing[txn.date] = txn.balance

    periods = []
    current: List[date] = []
    for day in sorted(closing):
        if closing[day] < 0:
            current.append(day)
        elif current:
            periods.append(current)
            current = []
    if current:
        periods.append(current)

    anomalies = []
    for days in periods:
        span = (days[-1] - days[0]).days + 1
        if span < CONSECUTIVE_NEGATIVE_DAYS:
            continue
        minimum = min(closing[d] for d in days)
        period_txns = [t for t in account_txns if days[0] <= t.date <= days[-1]]
        if abs(minimum) > 1_000_000:
            severity = Severity.CRITICAL
        elif span > 10:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM
        anomalies.append(
            Anomaly(
                type=AnomalyType.CASHFLOW_ANOMALY,
                severity=severity,
                amount=0.0,
                description=(
                    f"Solde négatif pendant {span} jours du {days[0].strftime('%d/%m/%Y')} "
                    f"au {days[-1].strftime('%d/%m/%Y')}"
                ),
                recommendation=(
                    f"Vérifier l'autorisation de découvert et les agios correspondants "
                    f"(solde minimum {format_fcfa(minimum)})."
                ),
                confidence=0.95,
                transactions=period_txns[:20],
                evidence=[
                    Evidence(type="negative_period", description="Durée en solde négatif", value=span),
                    Evidence(type="min_balance", description="Solde minimum atteint", value=minimum),
                ],
                module="cashflow",
            )
        )
    return anomalies
