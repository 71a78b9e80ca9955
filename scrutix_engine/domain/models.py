"""Domain models - pure Python dataclasses representing audit entities"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Set


class TransactionType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"
    FEE = "fee"
    INTEREST = "interest"
    TRANSFER = "transfer"
    CARD = "card"
    ATM = "atm"
    CHECK = "check"
    OTHER = "other"


class AnomalyType(str, Enum):
    DUPLICATE_FEE = "DUPLICATE_FEE"
    GHOST_FEE = "GHOST_FEE"
    OVERCHARGE = "OVERCHARGE"
    INTEREST_ERROR = "INTEREST_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    ROUNDING_ABUSE = "ROUNDING_ABUSE"
    VALUE_DATE_ERROR = "VALUE_DATE_ERROR"
    SUSPICIOUS_TRANSACTION = "SUSPICIOUS_TRANSACTION"
    COMPLIANCE_VIOLATION = "COMPLIANCE_VIOLATION"
    CASHFLOW_ANOMALY = "CASHFLOW_ANOMALY"
    RECONCILIATION_GAP = "RECONCILIATION_GAP"
    MULTI_BANK_ISSUE = "MULTI_BANK_ISSUE"
    OHADA_NON_COMPLIANCE = "OHADA_NON_COMPLIANCE"
    AML_ALERT = "AML_ALERT"
    FEE_ANOMALY = "FEE_ANOMALY"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class AnomalyStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"
    CONTESTED = "contested"


class AnomalySource(str, Enum):
    RULES = "rules"
    AI = "ai"
    HYBRID = "hybrid"


class GridStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class AnalysisMode(str, Enum):
    ALGORITHMIC = "algorithmic"
    AI = "ai"
    HYBRID = "hybrid"


class AnalysisStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SummaryStatus(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class Transaction:
    """Normalized statement line produced by the import layer"""

    id: str
    date: date
    description: str
    amount: float  # signed FCFA, negative = money out
    balance: float  # balance after the operation
    type: TransactionType
    client_id: str
    bank_code: str
    reference: str | None = None
    account_number: str | None = None
    value_date: date | None = None

    @property
    def is_debit(self) -> bool:
        return self.amount < 0


@dataclass(frozen=True)
class FeeSchedule:
    """Contractual fee line"""

    code: str
    name: str
    amount: float
    type: str = "fixed"  # "fixed" | "percentage" | "tiered"
    min_amount: float | None = None
    max_amount: float | None = None
    percentage: float | None = None


@dataclass(frozen=True)
class InterestRate:
    """Contractual interest rate"""

    type: str  # "overdraft" | "authorized" | "unauthorized" | "savings"
    rate: float  # annual, decimal (0.12 = 12%)
    calculation_method: str = "simple"  # "simple" | "compound"
    day_count_convention: str = "ACT/360"  # "ACT/360" | "ACT/365" | "30/360"
    max_amount: float | None = None  # cap on a single interest charge


@dataclass(frozen=True)
class BankConditions:
    """Fee and interest schedule of one bank"""

    bank_code: str
    bank_name: str = ""
    fees: List[FeeSchedule] = field(default_factory=list)
    interest_rates: List[InterestRate] = field(default_factory=list)
    currency: str = "XAF"
    country: str = ""

    # Category tariffs used by the per-category fee audits
    account_maintenance_fee: float | None = None
    statement_fee: float | None = None
    card_annual_fee: float | None = None
    atm_withdrawal_fee: float | None = None
    chequebook_fee: float | None = None
    cheque_opposition_fee: float | None = None
    unpaid_item_fee: float | None = None
    domestic_transfer_fee: float | None = None
    international_transfer_fee: float | None = None
    fx_commission_fee: float | None = None
    online_banking_fee: float | None = None
    sms_alert_fee: float | None = None
    certificate_fee: float | None = None
    safe_deposit_fee: float | None = None
    package_fee: float | None = None
    card_insurance_fee: float | None = None

    def find_fee(self, code: str) -> FeeSchedule | None:
        for fee in self.fees:
            if fee.code == code:
                return fee
        return None

    def find_rate(self, rate_type: str) -> InterestRate | None:
        for rate in self.interest_rates:
            if rate.type == rate_type:
                return rate
        return None

    def debit_rate(self) -> InterestRate | None:
        """Rate applied to debit balances, overdraft first"""
        for rate_type in ("overdraft", "authorized", "unauthorized"):
            rate = self.find_rate(rate_type)
            if rate is not None:
                return rate
        return None


@dataclass(frozen=True)
class ConditionGrid:
    """Dated, versioned snapshot of a bank's conditions"""

    id: str
    bank_code: str
    name: str
    version: str
    effective_date: date
    conditions: BankConditions
    status: GridStatus = GridStatus.ACTIVE
    expiration_date: date | None = None

    def is_effective_on(self, on_date: date) -> bool:
        if self.effective_date > on_date:
            return False
        return self.expiration_date is None or self.expiration_date > on_date

    def overlaps(self, other: "ConditionGrid") -> bool:
        # Windows are [effective_date, expiration_date)
        self_end = self.expiration_date or date.max
        other_end = other.expiration_date or date.max
        return self.effective_date < other_end and other.effective_date < self_end


@dataclass(frozen=True)
class DuplicateThresholds:
    similarity_threshold: float = 0.85
    time_window_days: int = 5
    amount_tolerance: float = 0.01  # relative


@dataclass(frozen=True)
class GhostFeeThresholds:
    entropy_threshold: float = 2.5
    orphan_window_days: int = 1
    min_confidence: float = 0.7


@dataclass(frozen=True)
class OverchargeThresholds:
    tolerance_percentage: float = 0.02
    use_historical_baseline: bool = True


@dataclass(frozen=True)
class InterestThresholds:
    tolerance_amount: float = 1.0
    tolerance_percentage: float = 0.01


@dataclass(frozen=True)
class DetectionThresholds:
    """Per-detector tunables, read-only during a run"""

    duplicates: DuplicateThresholds = field(default_factory=DuplicateThresholds)
    ghost_fees: GhostFeeThresholds = field(default_factory=GhostFeeThresholds)
    overcharges: OverchargeThresholds = field(default_factory=OverchargeThresholds)
    interest: InterestThresholds = field(default_factory=InterestThresholds)


@dataclass
class Evidence:
    """Explanation attached to an anomaly"""

    type: str  # "duplicate" | "comparison" | "official_rate" | "reason" | ...
    description: str
    value: Any
    expected_value: float | None = None
    applied_value: float | None = None
    source: str | None = None
    regulatory_reference: str | None = None


@dataclass
class Anomaly:
    """Finding emitted by a detector or an AI module"""

    type: AnomalyType
    severity: Severity
    amount: float  # recoverable FCFA
    description: str
    recommendation: str
    confidence: float
    transactions: List[Transaction]
    evidence: List[Evidence] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    detected_at: datetime = field(default_factory=datetime.utcnow)
    status: AnomalyStatus = AnomalyStatus.PENDING
    notes: str | None = None
    source: AnomalySource = AnomalySource.RULES
    module: str | None = None

    @property
    def transaction_ids(self) -> FrozenSet[str]:
        return frozenset(t.id for t in self.transactions)


@dataclass
class AnalysisConfig:
    """Scope and tunables of one analysis run"""

    client_id: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    bank_codes: List[str] | None = None
    thresholds: DetectionThresholds = field(default_factory=DetectionThresholds)
    enabled_detectors: Set[str] | None = None  # None = every registered detector
    mode: AnalysisMode = AnalysisMode.ALGORITHMIC
    ai_detections: List[str] | None = None  # None = every AI detection type


@dataclass
class ModuleError:
    """Failure of one detector or AI module"""

    module: str
    error: str


@dataclass
class AnalysisStatistics:
    total_transactions: int
    analyzed_transactions: int
    total_anomalies: int
    anomalies_by_type: Dict[str, int]
    anomalies_by_severity: Dict[str, int]
    total_amount_analyzed: float
    potential_savings: float
    anomaly_rate: float  # percent of analyzed transactions


@dataclass
class AnalysisSummary:
    status: SummaryStatus
    key_findings: List[str]
    recommendations: List[str]


@dataclass
class AnalysisResult:
    """Sole output artifact of an analysis run"""

    id: str
    config: AnalysisConfig
    status: AnalysisStatus
    anomalies: List[Anomaly]
    statistics: AnalysisStatistics
    summary: AnalysisSummary
    started_at: datetime
    completed_at: datetime | None = None
    error: str | None = None
    errors: List[ModuleError] = field(default_factory=list)
    cancelled: bool = False
