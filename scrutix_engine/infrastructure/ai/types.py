"""AI provider value types, error taxonomy and detection catalogue"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

from scrutix_engine.domain.models import AnomalyType


class AIErrorCode(str, Enum):
    NETWORK = "NETWORK"
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    INVALID_REQUEST = "INVALID_REQUEST"
    SERVER = "SERVER"
    UNKNOWN = "UNKNOWN"


RETRYABLE_CODES = frozenset(
    {AIErrorCode.NETWORK, AIErrorCode.RATE_LIMIT, AIErrorCode.TIMEOUT, AIErrorCode.SERVER}
)


class AIProviderError(Exception):
    """Provider call failed"""

    def __init__(self, code: AIErrorCode, message: str, provider: str, status_code: int | None = None):
        super().__init__(f"[{provider}] {code.value}: {message}")
        self.code = code
        self.message = message
        self.provider = provider
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


class AIResponseParseError(Exception):
    """Provider answered but the structured payload could not be read"""

    def __init__(self, message: str, raw: str, input_tokens: int = 0, output_tokens: int = 0):
        super().__init__(message)
        self.raw = raw
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens


class ProviderTag(str, Enum):
    CLAUDE = "claude"
    MISTRAL = "mistral"
    OLLAMA = "ollama"


@dataclass
class AIMessage:
    role: str  # "system" | "user" | "assistant"
    content: str


@dataclass
class ChatOptions:
    model: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.3


@dataclass
class AIResponse:
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ConnectionResult:
    valid: bool
    error: str | None = None
    models: List[str] = field(default_factory=list)


@dataclass
class CategorizedTransaction:
    transaction_id: str
    category: str
    confidence: float


class AIDetectionType(str, Enum):
    DUPLICATES = "duplicates"
    GHOST_FEES = "ghost_fees"
    OVERCHARGES = "overcharges"
    INTEREST_ERRORS = "interest_errors"
    VALUE_DATE = "value_date"
    SUSPICIOUS = "suspicious"
    COMPLIANCE = "compliance"
    CASHFLOW = "cashflow"
    RECONCILIATION = "reconciliation"
    MULTI_BANK = "multi_bank"
    OHADA = "ohada"
    AML_LCB_FT = "aml_lcb_ft"
    FEES = "fees"


AI_DETECTION_LABELS: Dict[AIDetectionType, str] = {
    AIDetectionType.DUPLICATES: "Doublons",
    AIDetectionType.GHOST_FEES: "Frais fantômes",
    AIDetectionType.OVERCHARGES: "Surfacturation",
    AIDetectionType.INTEREST_ERRORS: "Erreurs d'agios",
    AIDetectionType.VALUE_DATE: "Dates valeur",
    AIDetectionType.SUSPICIOUS: "Suspect",
    AIDetectionType.COMPLIANCE: "Conformité",
    AIDetectionType.CASHFLOW: "Trésorerie",
    AIDetectionType.RECONCILIATION: "Rapprochement",
    AIDetectionType.MULTI_BANK: "Multi-banques",
    AIDetectionType.OHADA: "OHADA",
    AIDetectionType.AML_LCB_FT: "LCB-FT",
    AIDetectionType.FEES: "Frais",
}

AI_DETECTION_DESCRIPTIONS: Dict[AIDetectionType, str] = {
    AIDetectionType.DUPLICATES: "transactions prélevées en double",
    AIDetectionType.GHOST_FEES: "frais sans service associé ni justification apparente",
    AIDetectionType.OVERCHARGES: "frais excessifs par rapport aux conditions tarifaires",
    AIDetectionType.INTEREST_ERRORS: "calculs d'intérêts débiteurs (agios) incorrects",
    AIDetectionType.VALUE_DATE: "dates de valeur abusives au regard de la réglementation CEMAC/UEMOA",
    AIDetectionType.SUSPICIOUS: "transactions suspectes ou inhabituelles",
    AIDetectionType.COMPLIANCE: "violations des conditions contractuelles",
    AIDetectionType.CASHFLOW: "anomalies de flux de trésorerie",
    AIDetectionType.RECONCILIATION: "écarts de rapprochement bancaire",
    AIDetectionType.MULTI_BANK: "incohérences entre plusieurs banques",
    AIDetectionType.OHADA: "non-conformités aux normes comptables OHADA",
    AIDetectionType.AML_LCB_FT: "indicateurs de blanchiment ou de financement du terrorisme",
    AIDetectionType.FEES: "anomalies sur l'ensemble des frais bancaires",
}

AI_DETECTION_ANOMALY_TYPES: Dict[AIDetectionType, AnomalyType] = {
    AIDetectionType.DUPLICATES: AnomalyType.DUPLICATE_FEE,
    AIDetectionType.GHOST_FEES: AnomalyType.GHOST_FEE,
    AIDetectionType.OVERCHARGES: AnomalyType.OVERCHARGE,
    AIDetectionType.INTEREST_ERRORS: AnomalyType.INTEREST_ERROR,
    AIDetectionType.VALUE_DATE: AnomalyType.VALUE_DATE_ERROR,
    AIDetectionType.SUSPICIOUS: AnomalyType.SUSPICIOUS_TRANSACTION,
    AIDetectionType.COMPLIANCE: AnomalyType.COMPLIANCE_VIOLATION,
    AIDetectionType.CASHFLOW: AnomalyType.CASHFLOW_ANOMALY,
    AIDetectionType.RECONCILIATION: AnomalyType.RECONCILIATION_GAP,
    AIDetectionType.MULTI_BANK: AnomalyType.MULTI_BANK_ISSUE,
    AIDetectionType.OHADA: AnomalyType.OHADA_NON_COMPLIANCE,
    AIDetectionType.AML_LCB_FT: AnomalyType.AML_ALERT,
    AIDetectionType.FEES: AnomalyType.FEE_ANOMALY,
}
