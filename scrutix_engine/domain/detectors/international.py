"""International operations - transfer and FX fees, exchange rates, intra-zone charges"""

import re
from collections import defaultdict
from datetime import date
from typing import Dict, List, Tuple

from scrutix_engine.domain.detectors.common import folded, format_fcfa, sort_chronologically, total_abs
from scrutix_engine.domain.detectors.fee_audits import (
    alert,
    category_fees,
    category_overcharges,
    fee_anomaly,
    matches,
    outliers,
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

MODULE = "international"
SWIFT_FEE_ALERT = 15_000
EXCHANGE_MARGIN = 0.03
EUR_PARITY = 655.957  # fixed XAF/EUR parity
CREDOC_OUTLIER_FACTOR = 2.5
CREDOC_MIN_COUNT = 3

INTERNATIONAL_FEE_KEYWORDS = (
    "virement international", "vir international", "vir etranger", "transfert international",
    "virement hors zone", "swift", "commission change", "frais change", "frais de change",
    "conversion", "credit documentaire", "credoc", "remise documentaire",
)
FX_FEE_HINTS = ("change", "conversion")
CREDOC_HINTS = ("credit documentaire", "credoc", "remise documentaire")

INTRA_ZONE = re.compile(
    r"\b(cemac|uemoa|zone franc|xaf|xof|cameroun|gabon|congo|tchad|centrafrique|guinee equatoriale|"
    r"senegal|cote d ?ivoire|mali|burkina|benin|togo|niger)\b"
)
EUR_MENTION = re.compile(r"\beur\b")
EUR_RATE = re.compile(r"(?:taux|@)\s*(\d{3}(?:[.,]\d+)?)")


def international_fee_kind(txn: Transaction) -> str:
    description = folded(txn.description)
    if any(hint in description for hint in CREDOC_HINTS):
        return "CREDOC"
    if any(hint in description for hint in FX_FEE_HINTS):
        return "CHANGE"
    return "VIREMENT_INTERNATIONAL"


def _tariff(conditions: BankConditions, kind: str) -> float | None:
    if kind == "VIREMENT_INTERNATIONAL":
        return conditions.international_transfer_fee
    if kind == "CHANGE":
        return conditions.fx_commission_fee
    return None


def _intra_zone_fx_fees(transactions: List[Transaction], fx_fees: List[Transaction]) -> List[Anomaly]:
    """FX charges on operations inside the franc zone, where the parity is fixed"""
    intra_days: Dict[Tuple[str, date], List[Transaction]] = defaultdict(list)
    for txn in transactions:
        if INTRA_ZONE.search(folded(txn.description)) and not matches(txn, FX_FEE_HINTS):
            intra_days[(txn.client_id, txn.date)].append(txn)

    charged: Dict[Tuple[str, date], List[Transaction]] = defaultdict(list)
    for fee in fx_fees:
        if (fee.client_id, fee.date) in intra_days:
            charged[(fee.client_id, fee.date)].append(fee)

    anomalies = []
    for key in sorted(charged, key=str):
        fees = charged[key]
        amount = total_abs(fees)
        anomalies.append(
            fee_anomaly(
                intra_days[key] + fees,
                Severity.HIGH,
                amount,
                f"Frais de change de {format_fcfa(amount)} sur une opération intra-zone du {key[1].strftime('%d/%m/%Y')}",
                "Contester les frais de change : la parité est fixe au sein de la zone franc.",
                [Evidence(type="comparison", description="Frais de change attendus en zone franc", value=amount, expected_value=0.0, applied_value=amount)],
                MODULE,
                confidence=0.85,
            )
        )
    return anomalies


def _eur_rate_margins(transactions: List[Transaction]) -> List[Anomaly]:
    """EUR conversions whose stated rate strays from the fixed parity"""
    anomalies = []
    for txn in sort_chronologically(transactions):
        description = folded(txn.description)
        if not EUR_MENTION.search(description):
            continue
        found = EUR_RATE.search(description)
        if found is None:
            continue
        rate = float(found.group(1).replace(",", "."))
        margin = abs(rate - EUR_PARITY) / EUR_PARITY
        if margin <= EXCHANGE_MARGIN:
            continue
        # Cost of the spread on the converted amount
        cost = abs(txn.amount) * margin
        anomalies.append(
            alert(
                [txn],
                Severity.HIGH if margin > 0.05 else Severity.MEDIUM,
                f"Taux EUR appliqué de {rate:g} pour une parité fixe de {EUR_PARITY} ({margin:.1%} d'écart)",
                f"Demander la justification du taux appliqué, soit environ {format_fcfa(cost)} d'écart.",
                [Evidence(type="official_rate", description="Parité XAF/EUR", value=rate, expected_value=EUR_PARITY, applied_value=rate)],
                MODULE,
            )
        )
    return anomalies


def _expensive_swift(fees: List[Transaction]) -> List[Anomaly]:
    anomalies = []
    for fee in sort_chronologically(fees):
        if international_fee_kind(fee) != "VIREMENT_INTERNATIONAL" or abs(fee.amount) <= SWIFT_FEE_ALERT:
            continue
        anomalies.append(
            alert(
                [fee],
                Severity.MEDIUM,
                f"Frais de virement international élevé : {format_fcfa(abs(fee.amount))}",
                "Vérifier la répartition des frais (OUR/SHA/BEN) et les frais des correspondants.",
                [Evidence(type="threshold", description="Seuil de frais SWIFT", value=abs(fee.amount), expected_value=SWIFT_FEE_ALERT)],
                MODULE,
                confidence=0.75,
            )
        )
    return anomalies


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    fees = category_fees(transactions, INTERNATIONAL_FEE_KEYWORDS)
    fx_fees = [f for f in fees if international_fee_kind(f) == "CHANGE"]

    anomalies = _intra_zone_fx_fees(transactions, fx_fees)
    claimed = {t.id for a in anomalies for t in a.transactions}
    billable = [f for f in fees if f.id not in claimed]

    anomalies.extend(category_overcharges(billable, conditions, international_fee_kind, _tariff, MODULE))
    anomalies.extend(_expensive_swift(billable))
    credocs = [f for f in billable if international_fee_kind(f) == "CREDOC"]
    anomalies.extend(outliers(credocs, CREDOC_OUTLIER_FACTOR, CREDOC_MIN_COUNT, "Frais de crédit documentaire", MODULE))
    anomalies.extend(_eur_rate_margins(transactions))
    return anomalies
