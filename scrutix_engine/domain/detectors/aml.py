"""Anti-money-laundering indicators (LCB-FT) under CEMAC/UEMOA thresholds"""

from collections import defaultdict
from datetime import timedelta
from typing import Dict, List

from scrutix_engine.domain.detectors.common import format_fcfa, sort_chronologically, total_abs
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

DECLARATION_THRESHOLD = 5_000_000
STRUCTURING_WINDOW_DAYS = 7
STRUCTURING_FLOOR = 0.6  # share of the threshold
PATTERN_THRESHOLD = 5
PATTERN_MIN_AMOUNT = 100_000
HIGH_RISK_COUNTRIES = (
    "IRAN", "COREE DU NORD", "AFGHANISTAN", "PAKISTAN",
    "YEMEN", "SYRIE", "IRAK", "LIBYE", "SOUDAN",
)
SUSPICIOUS_KEYWORDS = (
    "casino", "jeux", "gaming", "crypto", "bitcoin", "offshore", "shell",
    "nominee", "bearer", "hawala", "change manuel", "bureau de change",
)
GAFI_REFERENCE = "Recommandations GAFI / Règlement CEMAC 01/16 LCB-FT"


def _alert(
    severity: Severity,
    confidence: float,
    description: str,
    recommendation: str,
    transactions: List[Transaction],
    alert_type: str,
) -> Anomaly:
    return Anomaly(
        type=AnomalyType.AML_ALERT,
        severity=severity,
        amount=0.0,
        description=description,
        recommendation=recommendation,
        confidence=confidence,
        transactions=transactions,
        evidence=[
            Evidence(type="alert_type", description="Type d'alerte", value=alert_type, regulatory_reference=GAFI_REFERENCE),
            Evidence(type="total", description="Montant total concerné", value=total_abs(transactions)),
        ],
        module="aml",
    )


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    anomalies = []
    anomalies.extend(_structuring(transactions))
    anomalies.extend(_high_risk_countries(transactions))
    anomalies.extend(_repeated_amounts(transactions))
    anomalies.extend(_suspicious_keywords(transactions))
    anomalies.extend(_threshold_breaches(transactions))
    return anomalies


def _structuring(transactions: List[Transaction]) -> List[Anomaly]:
    floor = DECLARATION_THRESHOLD * STRUCTURING_FLOOR
    near = sort_chronologically(
        t for t in transactions if floor <= abs(t.amount) < DECLARATION_THRESHOLD
    )
    anomalies = []
    i = 0
    while i < len(near):
        window_end = near[i].date + timedelta(days=STRUCTURING_WINDOW_DAYS)
        window = [t for t in near[i:] if t.date <= window_end]
        if len(window) >= 2 and total_abs(window) >= DECLARATION_THRESHOLD:
            anomalies.append(
                _alert(
                    Severity.CRITICAL,
                    0.9,
                    (
                        f"{len(window)} opérations juste sous le seuil de déclaration "
                        f"totalisant {format_fcfa(total_abs(window))} en {STRUCTURING_WINDOW_DAYS} jours"
                    ),
                    "Signaler à la cellule LCB-FT pour déclaration de soupçon si confirmé.",
                    window,
                    "STRUCTURING",
                )
            )
            i += len(window)
        else:
            i += 1
    return anomalies


def _high_risk_countries(transactions: List[Transaction]) -> List[Anomaly]:
    flagged = [t for t in transactions if any(c in t.description.upper() for c in HIGH_RISK_COUNTRIES)]
    if not flagged:
        return []
    return [
        _alert(
            Severity.CRITICAL,
            0.85,
            f"{len(flagged)} opération(s) impliquant une juridiction à haut risque",
            "Renforcer la vigilance et documenter l'origine et la destination des fonds.",
            flagged,
            "HIGH_RISK_COUNTRY",
        )
    ]


def _repeated_amounts(transactions: List[Transaction]) -> List[Anomaly]:
    by_amount: Dict[float, List[Transaction]] = defaultdict(list)
    for txn in transactions:
        by_amount[abs(txn.amount)].append(txn)

    anomalies = []
    for amount in sorted(by_amount):
        group = by_amount[amount]
        if amount >= PATTERN_MIN_AMOUNT and len(group) >= PATTERN_THRESHOLD:
            anomalies.append(
                _alert(
                    Severity.HIGH,
                    0.8,
                    f"{len(group)} opérations identiques de {format_fcfa(amount)}",
                    "Vérifier la justification économique de cette répétition.",
                    group[:10],
                    "UNUSUAL_PATTERN",
                )
            )
    return anomalies


def _suspicious_keywords(transactions: List[Transaction]) -> List[Anomaly]:
    flagged = [t for t in transactions if any(k in t.description.lower() for k in SUSPICIOUS_KEYWORDS)]
    if not flagged:
        return []
    return [
        _alert(
            Severity.HIGH,
            0.75,
            f"{len(flagged)} opération(s) liée(s) à une activité à risque",
            "Identifier les contreparties et l'objet des opérations.",
            flagged[:20],
            "SUSPICIOUS_DESCRIPTION",
        )
    ]


def _threshold_breaches(transactions: List[Transaction]) -> List[Anomaly]:
    flagged = [t for t in transactions if abs(t.amount) >= DECLARATION_THRESHOLD]
    if not flagged:
        return []
    return [
        _alert(
            Severity.MEDIUM,
            1.0,
            f"{len(flagged)} opération(s) au-delà du seuil de déclaration de {format_fcfa(DECLARATION_THRESHOLD)}",
            "Vérifier que la déclaration réglementaire a été effectuée.",
            flagged,
            "THRESHOLD_BREACH",
        )
    ]
