"""Pydantic schemas validating structured AI output"""

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AIEvidencePayload(BaseModel):
    """Evidence item as returned by a model"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str = "ai_observation"
    description: str = ""
    value: Any = None
    expected_value: float | None = Field(default=None, alias="expectedValue")
    applied_value: float | None = Field(default=None, alias="appliedValue")


class AIAnomalyPayload(BaseModel):
    """One finding in an AI detection response"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    transaction_ids: List[str] = Field(default_factory=list, alias="transactionIds")
    severity: str = "MEDIUM"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    amount: float = 0.0
    description: str
    recommendation: str = ""
    evidence: List[AIEvidencePayload] = Field(default_factory=list)

    @field_validator("transaction_ids", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, (str, int)):
            return [str(value)]
        return [str(item) for item in value]

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> float:
        number = float(value)
        if number > 1.0:
            number = number / 100  # percentages
        return min(max(number, 0.0), 1.0)

    @field_validator("evidence", mode="before")
    @classmethod
    def wrap_plain_evidence(cls, value: Any) -> List[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            value = [value]
        return [item if isinstance(item, dict) else {"description": str(item), "value": item} for item in value]


class CategoryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    transaction_id: str = Field(alias="transactionId")
    category: str
    confidence: float = 0.5

    @field_validator("transaction_id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)
