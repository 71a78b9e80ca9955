"""Ancillary services - online banking, safe deposit, certificates, alerts and archives"""

from collections import defaultdict
from typing import Dict, List, Tuple

from scrutix_engine.domain.detectors.common import (
    folded,
    format_fcfa,
    is_fee_like,
    sort_chronologically,
    total_abs,
)
from scrutix_engine.domain.detectors.fee_audits import (
    alert,
    category_fees,
    category_overcharges,
    repeated_in_period,
)
from scrutix_engine.domain.models import (
    Anomaly,
    BankConditions,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

MODULE = "ancillary_services"
SAFE_DEPOSIT_PER_YEAR = 2
ARCHIVE_SEARCH_ALERT = 10_000
MESSAGING_SPIKE_FACTOR = 2.0
MESSAGING_MIN_MONTHS = 3

ANCILLARY_FEE_KEYWORDS = (
    "banque en ligne", "e-banking", "web banking", "mobile banking", "application mobile",
    "token", "digipass", "abonnement internet", "services en ligne",
    "coffre", "attestation", "certification", "edition rib", "copie conforme", "lettre de reference",
    "sms", "alerte", "notification", "messagerie", "archivage", "archive", "historique",
    "recherche documents",
)
ONLINE_OPERATION_HINTS = ("en ligne", "web", "mobile", "internet", "e-banking")


def ancillary_kind(txn: Transaction) -> str:
    description = folded(txn.description)
    if "coffre" in description:
        return "COFFRE"
    if any(hint in description for hint in ("archiv", "historique", "recherche")):
        return "ARCHIVE"
    if any(hint in description for hint in ("attestation", "certification", "edition rib", "copie conforme", "lettre de reference")):
        return "ATTESTATION"
    if any(hint in description for hint in ("sms", "alerte", "notification", "messagerie")):
        return "MESSAGERIE"
    return "BANQUE_EN_LIGNE"


def _tariff(conditions: BankConditions, kind: str) -> float | None:
    return {
        "BANQUE_EN_LIGNE": conditions.online_banking_fee,
        "COFFRE": conditions.safe_deposit_fee,
        "ATTESTATION": conditions.certificate_fee,
        "MESSAGERIE": conditions.sms_alert_fee,
    }.get(kind)


def _messaging_spikes(fees: List[Transaction]) -> List[Anomaly]:
    """Months whose alert charges exceed twice the monthly average"""
    by_month: Dict[Tuple, List[Transaction]] = defaultdict(list)
    for fee in sort_chronologically(fees):
        by_month[(fee.date.year, fee.date.month)].append(fee)
    if len(by_month) < MESSAGING_MIN_MONTHS:
        return []

    average = sum(total_abs(month) for month in by_month.values()) / len(by_month)
    anomalies = []
    for key in sorted(by_month):
        month_total = total_abs(by_month[key])
        if month_total <= average * MESSAGING_SPIKE_FACTOR:
            continue
        anomalies.append(
            alert(
                by_month[key],
                Severity.LOW,
                f"Frais d'alertes de {format_fcfa(month_total)} en {key[1]:02d}/{key[0]}, "
                f"pour une moyenne mensuelle de {format_fcfa(average)}",
                "Vérifier le nombre d'alertes facturées et le tarif unitaire.",
                [Evidence(type="comparison", description="Moyenne mensuelle des alertes", value=month_total, expected_value=round(average, 2), applied_value=month_total)],
                MODULE,
            )
        )
    return anomalies


def _archive_searches(fees: List[Transaction]) -> List[Anomaly]:
    anomalies = []
    for fee in sort_chronologically(fees):
        if abs(fee.amount) <= ARCHIVE_SEARCH_ALERT:
            continue
        anomalies.append(
            alert(
                [fee],
                Severity.MEDIUM,
                f"Frais de recherche d'archives de {format_fcfa(abs(fee.amount))}",
                "Demander le détail des documents recherchés et le barème appliqué.",
                [Evidence(type="threshold", description="Seuil de frais de recherche", value=abs(fee.amount), expected_value=ARCHIVE_SEARCH_ALERT)],
                MODULE,
                confidence=0.75,
            )
        )
    return anomalies


def _unused_online_banking(transactions: List[Transaction], fees: List[Transaction]) -> List[Anomaly]:
    """Online banking billed while no online operation shows on the statement"""
    used = any(
        not is_fee_like(t) and any(hint in folded(t.description) for hint in ONLINE_OPERATION_HINTS)
        for t in transactions
    )
    if used or not fees:
        return []
    total = total_abs(fees)
    return [
        alert(
            sort_chronologically(fees),
            Severity.MEDIUM,
            f"Banque en ligne facturée {len(fees)} fois ({format_fcfa(total)}) sans opération en ligne",
            "Vérifier l'utilisation du service et résilier l'abonnement s'il est inutile.",
            [Evidence(type="missing_justification", description="Opérations en ligne", value="aucune")],
            MODULE,
        )
    ]


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    fees = category_fees(transactions, ANCILLARY_FEE_KEYWORDS)
    if not fees:
        return []

    def of_kind(kind: str) -> List[Transaction]:
        return [f for f in fees if ancillary_kind(f) == kind]

    window = thresholds.duplicates.time_window_days
    anomalies = category_overcharges(fees, conditions, ancillary_kind, _tariff, MODULE)
    anomalies.extend(
        repeated_in_period(
            of_kind("BANQUE_EN_LIGNE"), ancillary_kind, lambda t: (t.date.year, t.date.month), window,
            "le même mois", MODULE,
        )
    )
    anomalies.extend(
        repeated_in_period(
            of_kind("COFFRE"), ancillary_kind, lambda t: (t.date.year,), window,
            "la même année", MODULE, allowed=SAFE_DEPOSIT_PER_YEAR,
        )
    )
    anomalies.extend(_messaging_spikes(of_kind("MESSAGERIE")))
    anomalies.extend(_archive_searches(of_kind("ARCHIVE")))
    anomalies.extend(_unused_online_banking(transactions, of_kind("BANQUE_EN_LIGNE")))
    return anomalies
