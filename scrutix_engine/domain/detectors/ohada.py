"""OHADA accounting compliance - documentation and cash ceilings"""

from typing import List

from scrutix_engine.domain.detectors.common import format_fcfa, is_cash_operation, total_abs
from scrutix_engine.domain.models import (
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Evidence,
    Severity,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

DOCUMENT_THRESHOLD = 100_000
CASH_THRESHOLD = 500_000


def detect(
    transactions: List[Transaction],
    conditions: ConditionLookup,
    thresholds: DetectionThresholds,
) -> List[Anomaly]:
    anomalies = []

    undocumented = [
        t
        for t in transactions
        if abs(t.amount) >= DOCUMENT_THRESHOLD
        and len((t.reference or "").strip()) <= 3
        and len(t.description) <= 20
    ]
    if undocumented:
        total = total_abs(undocumented)
        anomalies.append(
            Anomaly(
                type=AnomalyType.OHADA_NON_COMPLIANCE,
                severity=Severity.HIGH if len(undocumented) > 10 else Severity.MEDIUM,
                amount=0.0,
                description=(
                    f"{len(undocumented)} opération(s) de plus de {format_fcfa(DOCUMENT_THRESHOLD)} "
                    f"sans justificatif apparent"
                ),
                recommendation="Rattacher une pièce justificative à chaque écriture concernée.",
                confidence=0.75,
                transactions=undocumented[:20],
                evidence=[
                    Evidence(
                        type="missing_justification",
                        description="Montant total sans justificatif",
                        value=total,
                        regulatory_reference="Acte uniforme OHADA relatif au droit comptable, art. 17",
                    )
                ],
                module="ohada",
            )
        )

    over_cash_limit = [t for t in transactions if is_cash_operation(t) and abs(t.amount) > CASH_THRESHOLD]
    if over_cash_limit:
        anomalies.append(
            Anomaly(
                type=AnomalyType.OHADA_NON_COMPLIANCE,
                severity=Severity.HIGH,
                amount=0.0,
                description=(
                    f"{len(over_cash_limit)} opération(s) en espèces au-delà de "
                    f"{format_fcfa(CASH_THRESHOLD)}"
                ),
                recommendation="Régler les montants supérieurs au plafond par virement ou chèque.",
                confidence=0.9,
                transactions=over_cash_limit[:10],
                evidence=[
                    Evidence(
                        type="threshold",
                        description="Plafond espèces",
                        value=total_abs(over_cash_limit),
                        expected_value=CASH_THRESHOLD,
                        regulatory_reference="Règlement CEMAC/UEMOA sur les paiements en espèces",
                    )
                ],
                module="ohada",
            )
        )

    return anomalies
