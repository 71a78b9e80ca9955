"""Detector registry - tagged descriptors iterated by the analysis coordinator"""

from dataclasses import dataclass
from typing import Callable, Dict, List

from scrutix_engine.domain.detectors import (
    aml,
    ancillary_services,
    cashflow,
    compliance,
    duplicates,
    fee_audits,
    ghost_fees,
    interest,
    international,
    multi_bank,
    ohada,
    overcharges,
    packages,
    payment_methods,
    reconciliation,
    suspicious,
    value_dates,
)
from scrutix_engine.domain.models import (
    AnalysisConfig,
    Anomaly,
    AnomalyType,
    DetectionThresholds,
    Transaction,
)
from scrutix_engine.domain.tariffs import ConditionLookup

DetectFn = Callable[[List[Transaction], ConditionLookup, DetectionThresholds], List[Anomaly]]


def _enabled_in_config(detector_id: str) -> Callable[[AnalysisConfig], bool]:
    def applies(config: AnalysisConfig) -> bool:
        return config.enabled_detectors is None or detector_id in config.enabled_detectors

    return applies


@dataclass(frozen=True)
class DetectorDescriptor:
    """One rule-based detector and the predicate that enables it"""

    id: str
    anomaly_type: AnomalyType
    label: str
    detect: DetectFn
    applies: Callable[[AnalysisConfig], bool]


def descriptor(detector_id: str, anomaly_type: AnomalyType, label: str, detect: DetectFn) -> DetectorDescriptor:
    return DetectorDescriptor(
        id=detector_id,
        anomaly_type=anomaly_type,
        label=label,
        detect=detect,
        applies=_enabled_in_config(detector_id),
    )


DEFAULT_DETECTORS: List[DetectorDescriptor] = [
    descriptor("duplicates", AnomalyType.DUPLICATE_FEE, "Doublons", duplicates.detect),
    descriptor("ghost_fees", AnomalyType.GHOST_FEE, "Frais fantômes", ghost_fees.detect),
    descriptor("overcharges", AnomalyType.OVERCHARGE, "Surfacturation", overcharges.detect),
    descriptor("interest", AnomalyType.INTEREST_ERROR, "Agios", interest.detect),
    descriptor("value_dates", AnomalyType.VALUE_DATE_ERROR, "Dates de valeur", value_dates.detect),
    descriptor("suspicious", AnomalyType.SUSPICIOUS_TRANSACTION, "Opérations suspectes", suspicious.detect),
    descriptor("compliance", AnomalyType.COMPLIANCE_VIOLATION, "Conformité contractuelle", compliance.detect),
    descriptor("ohada", AnomalyType.OHADA_NON_COMPLIANCE, "OHADA", ohada.detect),
    descriptor("aml", AnomalyType.AML_ALERT, "LCB-FT", aml.detect),
    descriptor("cashflow", AnomalyType.CASHFLOW_ANOMALY, "Trésorerie", cashflow.detect),
    descriptor("reconciliation", AnomalyType.RECONCILIATION_GAP, "Rapprochement", reconciliation.detect),
    descriptor("multi_bank", AnomalyType.MULTI_BANK_ISSUE, "Multi-banques", multi_bank.detect),
    descriptor("account_fees", AnomalyType.FEE_ANOMALY, "Frais de tenue de compte", fee_audits.detect_account_fees),
    descriptor("card_fees", AnomalyType.FEE_ANOMALY, "Frais de carte", fee_audits.detect_card_fees),
    descriptor("payment_methods", AnomalyType.FEE_ANOMALY, "Moyens de paiement", payment_methods.detect),
    descriptor("international", AnomalyType.FEE_ANOMALY, "Opérations internationales", international.detect),
    descriptor("ancillary_services", AnomalyType.FEE_ANOMALY, "Services annexes", ancillary_services.detect),
    descriptor("packages", AnomalyType.FEE_ANOMALY, "Packages et assurances", packages.detect),
]


class DetectorRegistry:
    """Ordered set of detectors; registration order is execution order"""

    def __init__(self, detectors: List[DetectorDescriptor] | None = None):
        self._detectors: Dict[str, DetectorDescriptor] = {}
        for item in detectors if detectors is not None else DEFAULT_DETECTORS:
            self.register(item)

    def register(self, item: DetectorDescriptor) -> None:
        if item.id in self._detectors:
            raise ValueError(f"Detector {item.id} already registered")
        self._detectors[item.id] = item

    def get(self, detector_id: str) -> DetectorDescriptor:
        return self._detectors[detector_id]

    def all(self) -> List[DetectorDescriptor]:
        return list(self._detectors.values())

    def enabled(self, config: AnalysisConfig) -> List[DetectorDescriptor]:
        return [item for item in self._detectors.values() if item.applies(config)]
