"""Packages and insurance - bundled offers, payment and overdraft insurance premiums"""

from collections import defaultdict
from typing import Dict, List, Tuple

from scrutix_engine.domain.detectors.common import (
    folded,
    format_fcfa,
    is_fee_like,
    is_interest_charge,
    sort_chronologically,
    total_abs,
)
from scrutix_engine.domain.detectors.fee_audits import (
    ACCOUNT_FEE_KEYWORDS,
    CARD_FEE_KEYWORDS,
    alert,
    category_fees,
    category_overcharges,
    fee_anomaly,
    matches,
    repeated_in_period,
)
from scrutix_engine.domain.models import (
    Anomaly,
    BankConditions,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
    TransactionType,
)
from scrutix_engine.domain.tariffs import ConditionLookup

MODULE = "packages"
SIGNIFICANT_INCREASE = 0.15
MIN_SERIES = 3
CARD_INSURANCE_PREMIUMS = 50_000
CARD_OPERATIONS_PER_YEAR = 12
OVERDRAFT_INSURANCE_PREMIUMS = 20_000

PACKAGE_KEYWORDS = (
    "package", "forfait", "convention de compte", "tout compris", "premium",
    "integral", "essentiel", "confort", "privilege", "pack ",
)
INSURANCE_KEYWORDS = (
    "assurance", "protection carte", "garantie carte", "securite carte", "protection decouvert",
)
ALL_INCLUSIVE_HINTS = ("tout compris", "premium", "integral", "privilege")
CARD_USE_HINTS = ("carte", "cb ", "tpe", "paiement")


def package_kind(txn: Transaction) -> str:
    description = folded(txn.description)
    if any(hint in description for hint in INSURANCE_KEYWORDS):
        if "decouvert" in description or "facilite" in description:
            return "ASSURANCE_DECOUVERT"
        if "carte" in description or "cb" in description or "moyens de paiement" in description:
            return "ASSURANCE_CARTE"
        return "ASSURANCE"
    return "PACKAGE"


def _tariff(conditions: BankConditions, kind: str) -> float | None:
    if kind == "PACKAGE":
        return conditions.package_fee
    if kind == "ASSURANCE_CARTE":
        return conditions.card_insurance_fee
    return None


def _insurance_inside_package(fees: List[Transaction]) -> List[Anomaly]:
    """Insurance billed separately in a month already covered by an all-inclusive offer"""
    covered: Dict[Tuple, Transaction] = {}
    for fee in sort_chronologically(fees):
        if package_kind(fee) == "PACKAGE" and any(hint in folded(fee.description) for hint in ALL_INCLUSIVE_HINTS):
            covered.setdefault((fee.client_id, fee.bank_code, fee.date.year, fee.date.month), fee)

    billed: Dict[Tuple, List[Transaction]] = defaultdict(list)
    for fee in sort_chronologically(fees):
        key = (fee.client_id, fee.bank_code, fee.date.year, fee.date.month)
        if package_kind(fee) != "PACKAGE" and key in covered:
            billed[key].append(fee)

    anomalies = []
    for key in sorted(billed, key=str):
        insurance = billed[key]
        amount = total_abs(insurance)
        package = covered[key]
        anomalies.append(
            fee_anomaly(
                [package] + insurance,
                Severity.HIGH,
                amount,
                f"Assurance facturée {format_fcfa(amount)} en plus de l'offre « {package.description} »",
                "Demander le remboursement de l'assurance déjà incluse dans l'offre groupée.",
                [Evidence(type="comparison", description="Assurance hors offre", value=amount, expected_value=0.0, applied_value=amount)],
                MODULE,
                confidence=0.85,
            )
        )
    return anomalies


def _card_insurance_usage(transactions: List[Transaction], insurance: List[Transaction]) -> List[Anomaly]:
    premiums = total_abs(insurance)
    if premiums <= CARD_INSURANCE_PREMIUMS:
        return []
    card_operations = [
        t for t in transactions
        if not is_fee_like(t)
        and (t.type == TransactionType.CARD or any(hint in folded(t.description) for hint in CARD_USE_HINTS))
    ]
    if len(card_operations) >= CARD_OPERATIONS_PER_YEAR:
        return []
    return [
        alert(
            sort_chronologically(insurance),
            Severity.MEDIUM,
            f"Assurance moyens de paiement de {format_fcfa(premiums)} pour {len(card_operations)} opération(s) par carte",
            "Évaluer l'utilité de l'assurance au regard de l'usage réel de la carte.",
            [Evidence(type="count", description="Opérations par carte", value=len(card_operations), expected_value=CARD_OPERATIONS_PER_YEAR)],
            MODULE,
        )
    ]


def _overdraft_insurance_usage(transactions: List[Transaction], insurance: List[Transaction]) -> List[Anomaly]:
    premiums = total_abs(insurance)
    if premiums <= OVERDRAFT_INSURANCE_PREMIUMS or any(is_interest_charge(t) for t in transactions):
        return []
    return [
        alert(
            sort_chronologically(insurance),
            Severity.MEDIUM,
            f"Assurance découvert de {format_fcfa(premiums)} sans aucun agio sur la période",
            "Vérifier l'utilité de l'assurance découvert, le compte n'ayant pas été débiteur.",
            [Evidence(type="missing_justification", description="Agios sur la période", value="aucun")],
            MODULE,
            confidence=0.75,
        )
    ]


def _contribution_increases(fees: List[Transaction]) -> List[Anomaly]:
    """Recurring package or premium whose last charge exceeds the first by more than 15 %"""
    series: Dict[Tuple, List[Transaction]] = defaultdict(list)
    for fee in sort_chronologically(fees):
        series[(package_kind(fee), fee.client_id, fee.bank_code)].append(fee)

    anomalies = []
    for key in sorted(series, key=str):
        charges = series[key]
        if len(charges) < MIN_SERIES:
            continue
        first, last = abs(charges[0].amount), abs(charges[-1].amount)
        if first <= 0 or last <= first * (1 + SIGNIFICANT_INCREASE):
            continue
        increase = (last - first) / first
        anomalies.append(
            alert(
                [charges[0], charges[-1]],
                Severity.HIGH if increase > 0.3 else Severity.MEDIUM,
                f"Cotisation {key[0].lower().replace('_', ' ')} passée de {format_fcfa(first)} à "
                f"{format_fcfa(last)} (+{increase:.0%})",
                "Vérifier que la hausse a été notifiée et comparer avec les offres concurrentes.",
                [Evidence(type="comparison", description="Évolution de la cotisation", value=last, expected_value=first, applied_value=last)],
                MODULE,
                confidence=0.8,
            )
        )
    return anomalies


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    # Account maintenance and card subscriptions stay with the account and card audits
    fees = [
        t for t in category_fees(transactions, PACKAGE_KEYWORDS + INSURANCE_KEYWORDS)
        if not matches(t, ACCOUNT_FEE_KEYWORDS)
        and not (matches(t, CARD_FEE_KEYWORDS) and package_kind(t) == "PACKAGE")
    ]
    if not fees:
        return []

    def of_kind(kind: str) -> List[Transaction]:
        return [f for f in fees if package_kind(f) == kind]

    anomalies = _insurance_inside_package(fees)
    claimed = {t.id for a in anomalies for t in a.transactions[1:]}
    billable = [f for f in fees if f.id not in claimed]

    anomalies.extend(category_overcharges(billable, conditions, package_kind, _tariff, MODULE))
    anomalies.extend(
        repeated_in_period(
            of_kind("PACKAGE"), package_kind, lambda t: (t.date.year, t.date.month),
            thresholds.duplicates.time_window_days, "le même mois", MODULE,
        )
    )
    anomalies.extend(_card_insurance_usage(transactions, of_kind("ASSURANCE_CARTE")))
    anomalies.extend(_overdraft_insurance_usage(transactions, of_kind("ASSURANCE_DECOUVERT")))
    anomalies.extend(_contribution_increases(fees))
    return anomalies
