"""Payment-method fees - cheques, bills of exchange, transfers and direct debits"""

from collections import defaultdict
from typing import Dict, List, Tuple

from scrutix_engine.domain.detectors.common import folded, format_fcfa, sort_chronologically, total_abs
from scrutix_engine.domain.detectors.fee_audits import alert, category_fees, category_overcharges, outliers
from scrutix_engine.domain.models import (
    Anomaly,
    BankConditions,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

MODULE = "payment_methods"
HIGH_TRANSFER_FEE = 5_000
REJECTIONS_PER_MONTH = 2
DISCOUNT_OUTLIER_FACTOR = 2.0
DISCOUNT_MIN_COUNT = 3

PAYMENT_FEE_KEYWORDS = (
    "cheque", "chequier", "chq", "effet", "escompte", "traite", "lcr", "lettre de change",
    "virement", "vir ", "frais vir", "frais envoi", "frais reception",
    "prelevement", "prlv", "mandat", "rejet",
)
INTERNATIONAL_HINTS = ("international", "swift", "etranger", "hors zone", "devise")
REJECTION_HINTS = ("impaye", "rejet", "refuse")


def payment_fee_kind(txn: Transaction) -> str:
    description = folded(txn.description)
    if any(hint in description for hint in REJECTION_HINTS):
        return "IMPAYE"
    if "opposition" in description:
        return "OPPOSITION"
    if "chequier" in description or "carnet" in description:
        return "CHEQUIER"
    if "escompte" in description:
        return "ESCOMPTE"
    if "vir" in description:
        if any(hint in description for hint in INTERNATIONAL_HINTS):
            return "VIREMENT_INTERNATIONAL"
        return "VIREMENT"
    if "mandat" in description or "prelev" in description or "prlv" in description:
        return "PRELEVEMENT"
    return "AUTRE"


def _tariff(conditions: BankConditions, kind: str) -> float | None:
    return {
        "CHEQUIER": conditions.chequebook_fee,
        "OPPOSITION": conditions.cheque_opposition_fee,
        "IMPAYE": conditions.unpaid_item_fee,
        "VIREMENT": conditions.domestic_transfer_fee,
    }.get(kind)


def _repeated_rejections(fees: List[Transaction]) -> List[Anomaly]:
    """Several unpaid or rejected items in one month point to a recurring cause"""
    by_month: Dict[Tuple, List[Transaction]] = defaultdict(list)
    for fee in sort_chronologically(fees):
        if payment_fee_kind(fee) == "IMPAYE":
            by_month[(fee.client_id, fee.bank_code, fee.date.year, fee.date.month)].append(fee)

    anomalies = []
    for key in sorted(by_month, key=str):
        rejections = by_month[key]
        if len(rejections) < REJECTIONS_PER_MONTH:
            continue
        month = f"{key[3]:02d}/{key[2]}"
        anomalies.append(
            alert(
                rejections,
                Severity.HIGH,
                f"{len(rejections)} impayés ou rejets en {month} pour {format_fcfa(total_abs(rejections))} de frais",
                "Identifier la cause des rejets récurrents et négocier les frais s'ils relèvent de la banque.",
                [Evidence(type="count", description="Impayés dans le mois", value=len(rejections), expected_value=REJECTIONS_PER_MONTH - 1)],
                MODULE,
                confidence=0.85,
            )
        )
    return anomalies


def _expensive_transfers(fees: List[Transaction]) -> List[Anomaly]:
    anomalies = []
    for fee in sort_chronologically(fees):
        if payment_fee_kind(fee) != "VIREMENT" or abs(fee.amount) <= HIGH_TRANSFER_FEE:
            continue
        anomalies.append(
            alert(
                [fee],
                Severity.LOW,
                f"Frais de virement élevé : {format_fcfa(abs(fee.amount))}",
                "Vérifier le tarif du virement et l'intérêt d'une offre groupée.",
                [Evidence(type="threshold", description="Seuil de frais de virement", value=abs(fee.amount), expected_value=HIGH_TRANSFER_FEE)],
                MODULE,
            )
        )
    return anomalies


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    """
    Cheque, bill, transfer and direct-debit fees: category tariffs, repeated
    rejections, abnormal discount charges and expensive domestic transfers.
    International transfers are left to the international audit.
    """
    fees = [
        t for t in category_fees(transactions, PAYMENT_FEE_KEYWORDS)
        if payment_fee_kind(t) != "VIREMENT_INTERNATIONAL"
    ]
    if not fees:
        return []

    anomalies = category_overcharges(fees, conditions, payment_fee_kind, _tariff, MODULE)
    anomalies.extend(_repeated_rejections(fees))
    discounts = [f for f in fees if payment_fee_kind(f) == "ESCOMPTE"]
    anomalies.extend(outliers(discounts, DISCOUNT_OUTLIER_FACTOR, DISCOUNT_MIN_COUNT, "Frais d'escompte", MODULE))
    anomalies.extend(_expensive_transfers(fees))
    return anomalies
