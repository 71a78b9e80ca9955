"""Per-category fee audits - account maintenance and card fees, plus shared helpers"""

from collections import defaultdict
from typing import Callable, Dict, List, Tuple

from scrutix_engine.domain.detectors.common import (
    folded,
    format_fcfa,
    is_fee_like,
    sort_chronologically,
    total_abs,
)
from scrutix_engine.domain.detectors.overcharges import classify_service, find_tariff
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    BankConditions,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

CATEGORY_TOLERANCE = 0.05
INCREASE_ALERT = 0.10

ACCOUNT_FEE_KEYWORDS = (
    "tenue de compte", "tenue compte", "frais gestion", "frais de gestion", "frais mensuels",
    "frais trimestriels", "frais de releve", "frais courrier", "commission de compte",
    "maintenance compte",
)
CARD_FEE_KEYWORDS = (
    "cotisation carte", "frais carte", "renouvellement carte", "carte visa", "carte gim",
    "commission retrait", "frais retrait",
)

KindFn = Callable[[Transaction], str]
TariffFn = Callable[[BankConditions, str], float | None]


def matches(txn: Transaction, keywords: Tuple[str, ...]) -> bool:
    """Debit whose accent-folded wording contains one of the keywords"""
    if not txn.is_debit:
        return False
    description = folded(txn.description)
    return any(keyword in description for keyword in keywords)


def category_fees(transactions: List[Transaction], keywords: Tuple[str, ...]) -> List[Transaction]:
    return [t for t in transactions if is_fee_like(t) and matches(t, keywords)]


def fee_anomaly(
    txn_list: List[Transaction],
    severity: Severity,
    amount: float,
    description: str,
    recommendation: str,
    evidence: List[Evidence],
    module: str,
    confidence: float = 0.85,
) -> Anomaly:
    return Anomaly(
        type=AnomalyType.FEE_ANOMALY,
        severity=severity,
        amount=amount,
        description=description,
        recommendation=recommendation,
        confidence=confidence,
        transactions=txn_list,
        evidence=evidence,
        module=module,
    )


def category_overcharges(
    fees: List[Transaction],
    conditions: ConditionLookup,
    kind_of: KindFn,
    tariff_of: TariffFn,
    module: str,
) -> List[Anomaly]:
    """Category tariff check for fees the detailed fee schedule does not cover"""
    anomalies = []
    for fee in fees:
        bank_conditions = conditions.for_bank(fee.bank_code, fee.date)
        if find_tariff(fee, classify_service(fee.description), bank_conditions) is not None:
            continue
        expected = tariff_of(bank_conditions, kind_of(fee))
        charged = abs(fee.amount)
        if expected is None or charged <= expected * (1 + CATEGORY_TOLERANCE):
            continue
        excess = charged - expected
        anomalies.append(
            fee_anomaly(
                [fee],
                Severity.HIGH if excess > 10_000 else Severity.MEDIUM,
                excess,
                f"« {fee.description} » facturé {format_fcfa(charged)} pour un tarif de {format_fcfa(expected)}",
                f"Réclamer l'écart de {format_fcfa(excess)}.",
                [Evidence(type="comparison", description="Tarif de la catégorie", value=charged, expected_value=expected, applied_value=charged)],
                module,
                confidence=0.9,
            )
        )
    return anomalies


def outside_duplicate_window(fees: List[Transaction], kind_of: KindFn, window_days: int) -> List[Transaction]:
    """
    Drop repeats the duplicate detector already claims: a fee charged within
    window_days of the last kept fee of the same kind is left out.
    """
    last_kept: Dict[Tuple, Transaction] = {}
    kept = []
    for fee in sort_chronologically(fees):
        key = (kind_of(fee), fee.client_id, fee.bank_code)
        previous = last_kept.get(key)
        if previous is not None and (fee.date - previous.date).days <= window_days:
            continue
        last_kept[key] = fee
        kept.append(fee)
    return kept


def repeated_in_period(
    fees: List[Transaction],
    kind_of: KindFn,
    period_of: Callable[[Transaction], Tuple],
    window_days: int,
    label: str,
    module: str,
    allowed: int = 1,
) -> List[Anomaly]:
    """Same fee kind charged more than `allowed` times in a billing period"""
    groups: Dict[Tuple, List[Transaction]] = defaultdict(list)
    for fee in outside_duplicate_window(fees, kind_of, window_days):
        groups[(kind_of(fee), fee.client_id, fee.bank_code) + period_of(fee)].append(fee)

    anomalies = []
    for key in sorted(groups, key=str):
        group = groups[key]
        if len(group) <= allowed:
            continue
        extra = total_abs(group[allowed:])
        anomalies.append(
            fee_anomaly(
                group,
                Severity.HIGH if extra > 10_000 else Severity.MEDIUM,
                extra,
                f"Frais {key[0].lower().replace('_', ' ')} prélevé {len(group)} fois sur {label}",
                f"Demander le remboursement de {format_fcfa(extra)} prélevés en trop.",
                [Evidence(type="count", description="Nombre de prélèvements", value=len(group), expected_value=allowed)],
                module,
                confidence=0.9,
            )
        )
    return anomalies


def outliers(fees: List[Transaction], factor: float, min_count: int, label: str, module: str) -> List[Anomaly]:
    """Fees above factor x the mean of their category; amount is the excess over the mean"""
    if len(fees) < min_count:
        return []
    average = total_abs(fees) / len(fees)
    anomalies = []
    for fee in sort_chronologically(fees):
        charged = abs(fee.amount)
        if charged <= average * factor:
            continue
        anomalies.append(
            fee_anomaly(
                [fee],
                Severity.MEDIUM,
                round(charged - average, 2),
                f"{label} de {format_fcfa(charged)}, soit {charged / average:.1f} fois la moyenne",
                "Demander le détail du calcul et le taux appliqué.",
                [Evidence(type="comparison", description=f"{label} moyen", value=charged, expected_value=round(average, 2), applied_value=charged)],
                module,
                confidence=0.75,
            )
        )
    return anomalies


def alert(
    txn_list: List[Transaction],
    severity: Severity,
    description: str,
    recommendation: str,
    evidence: List[Evidence],
    module: str,
    confidence: float = 0.7,
) -> Anomaly:
    """Finding to review with the bank, with no recoverable amount"""
    return fee_anomaly(txn_list, severity, 0.0, description, recommendation, evidence, module, confidence)


def _account_fee_kind(txn: Transaction) -> str:
    description = folded(txn.description)
    if "tenue" in description or "maintenance" in description:
        return "TENUE"
    if "relev" in description:
        return "RELEVE"
    return "AUTRE"


def _card_fee_kind(txn: Transaction) -> str:
    if "retrait" in folded(txn.description):
        return "RETRAIT"
    return "COTISATION"


def _increases(fees: List[Transaction], kind_of: KindFn, module: str) -> List[Anomaly]:
    """Unexplained increase of a recurring fee between consecutive charges"""
    by_kind: Dict[Tuple, List[Transaction]] = defaultdict(list)
    for fee in sort_chronologically(fees):
        by_kind[(kind_of(fee), fee.client_id, fee.bank_code)].append(fee)

    anomalies = []
    for key in sorted(by_kind, key=str):
        series = by_kind[key]
        for previous, current in zip(series, series[1:]):
            before, after = abs(previous.amount), abs(current.amount)
            if before > 0 and (after - before) / before > INCREASE_ALERT:
                anomalies.append(
                    alert(
                        [previous, current],
                        Severity.LOW,
                        f"Frais {key[0].lower()} passé de {format_fcfa(before)} à {format_fcfa(after)}",
                        "Vérifier que la hausse a été notifiée conformément aux conditions générales.",
                        [Evidence(type="comparison", description="Évolution du montant", value=after, expected_value=before, applied_value=after)],
                        module,
                    )
                )
    return anomalies


def _account_tariff(conditions: BankConditions, kind: str) -> float | None:
    if kind == "TENUE":
        return conditions.account_maintenance_fee
    if kind == "RELEVE":
        return conditions.statement_fee
    return None


def _card_tariff(conditions: BankConditions, kind: str) -> float | None:
    if kind == "RETRAIT":
        return conditions.atm_withdrawal_fee
    return conditions.card_annual_fee


def detect_account_fees(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    fees = [t for t in transactions if matches(t, ACCOUNT_FEE_KEYWORDS)]
    if not fees:
        return []
    anomalies = category_overcharges(fees, conditions, _account_fee_kind, _account_tariff, "account_fees")
    anomalies.extend(
        repeated_in_period(
            fees,
            _account_fee_kind,
            lambda t: (t.date.year, t.date.month),
            thresholds.duplicates.time_window_days,
            "le même mois",
            "account_fees",
        )
    )
    anomalies.extend(_increases(fees, _account_fee_kind, "account_fees"))
    return anomalies


def detect_card_fees(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    fees = [t for t in transactions if matches(t, CARD_FEE_KEYWORDS) and not matches(t, ("assurance",))]
    if not fees:
        return []
    anomalies = category_overcharges(fees, conditions, _card_fee_kind, _card_tariff, "card_fees")
    subscriptions = [f for f in fees if _card_fee_kind(f) == "COTISATION"]
    anomalies.extend(
        repeated_in_period(
            subscriptions,
            _card_fee_kind,
            lambda t: (t.date.year,),
            thresholds.duplicates.time_window_days,
            "la même année",
            "card_fees",
        )
    )
    return anomalies
