"""
Pydantic models for HMRC MTD API payloads.

Upstream responses are validated at the boundary for the fields this
application relies on; anything else HMRC sends is kept as extra fields
and passed through untouched.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .endpoints import BUSINESS_TYPES
from .tax_years import parse_tax_year, period_within_tax_year

UPSTREAM_CONFIG = {"extra": "allow", "populate_by_name": True}

MAX_AMOUNT = 99999999999.99


class Business(BaseModel):
    """A business registered for MTD Income Tax."""

    business_id: str = Field(..., alias="businessId")
    type_of_business: str = Field(..., alias="typeOfBusiness")
    trading_name: Optional[str] = Field(None, alias="tradingName")

    model_config = UPSTREAM_CONFIG


class BusinessListResponse(BaseModel):
    list_of_businesses: List[Business] = Field(default_factory=list, alias="listOfBusinesses")

    model_config = UPSTREAM_CONFIG

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_key(cls, data: Any) -> Any:
        # Older API versions return the list under "businesses"
        if isinstance(data, dict) and "listOfBusinesses" not in data and "businesses" in data:
            data = dict(data)
            data["listOfBusinesses"] = data.pop("businesses")
        return data


class ObligationDetail(BaseModel):
    """One quarterly obligation window of a business."""

    period_start_date: date = Field(..., alias="periodStartDate")
    period_end_date: date = Field(..., alias="periodEndDate")
    due_date: date = Field(..., alias="dueDate")
    status: str
    received_date: Optional[date] = Field(None, alias="receivedDate")

    model_config = UPSTREAM_CONFIG


class BusinessObligations(BaseModel):
    type_of_business: str = Field(..., alias="typeOfBusiness")
    business_id: str = Field(..., alias="businessId")
    obligation_details: List[ObligationDetail] = Field(default_factory=list, alias="obligationDetails")

    model_config = UPSTREAM_CONFIG


class ObligationsResponse(BaseModel):
    obligations: List[BusinessObligations] = Field(default_factory=list)

    model_config = UPSTREAM_CONFIG


class Obligation(BaseModel):
    """An obligation flattened together with the business it belongs to."""

    business_id: str = Field(..., alias="businessId")
    type_of_business: str = Field(..., alias="typeOfBusiness")
    period_start_date: date = Field(..., alias="periodStartDate")
    period_end_date: date = Field(..., alias="periodEndDate")
    due_date: date = Field(..., alias="dueDate")
    status: str
    received_date: Optional[date] = Field(None, alias="receivedDate")

    model_config = {"populate_by_name": True}

    @classmethod
    def flatten(cls, response: ObligationsResponse) -> List["Obligation"]:
        return [
            cls(
                business_id=group.business_id,
                type_of_business=group.type_of_business,
                period_start_date=detail.period_start_date,
                period_end_date=detail.period_end_date,
                due_date=detail.due_date,
                status=detail.status,
                received_date=detail.received_date,
            )
            for group in response.obligations
            for detail in group.obligation_details
        ]


class CalculationMetadata(BaseModel):
    calculation_id: str = Field(..., alias="calculationId")
    tax_year: Optional[str] = Field(None, alias="taxYear")
    calculation_timestamp: Optional[str] = Field(None, alias="calculationTimestamp")
    calculation_type: Optional[str] = Field(None, alias="calculationType")

    model_config = UPSTREAM_CONFIG


class Calculation(BaseModel):
    """A self-assessment tax calculation. Sections are passed through as-is."""

    metadata: Optional[CalculationMetadata] = None
    inputs: Optional[Dict[str, Any]] = None
    calculation: Optional[Dict[str, Any]] = None
    messages: Optional[Dict[str, Any]] = None

    model_config = UPSTREAM_CONFIG

    @property
    def calculation_id(self) -> Optional[str]:
        return self.metadata.calculation_id if self.metadata else None


class CalculationTrigger(BaseModel):
    calculation_id: str = Field(..., alias="calculationId")
    correlation_id: Optional[str] = Field(None, alias="correlationId")

    model_config = {"populate_by_name": True}


def _check_amounts(values: Optional[Dict[str, Any]], path: str) -> None:
    if not values:
        return
    for key, value in values.items():
        if isinstance(value, dict):
            _check_amounts(value, f"{path}.{key}")
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{path}.{key} must be a number")
        if abs(value) > MAX_AMOUNT:
            raise ValueError(f"{path}.{key} is out of range")


class PeriodSubmission(BaseModel):
    """
    Quarterly update for one business.

    ``(business_id, tax_year, period_from, period_to)`` identifies the
    logical period; resubmitting the same key updates that period instead
    of creating another one.
    """

    business_id: str = Field(..., alias="businessId", min_length=1)
    business_type: str = Field("self-employment", alias="businessType")
    tax_year: str = Field(..., alias="taxYear")
    period_from: date = Field(..., alias="periodFrom")
    period_to: date = Field(..., alias="periodTo")
    incomes: Dict[str, Any] = Field(default_factory=dict)
    expenses: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True}

    @field_validator("tax_year")
    @classmethod
    def validate_tax_year(cls, v: str) -> str:
        parse_tax_year(v)
        return v

    @field_validator("business_type")
    @classmethod
    def validate_business_type(cls, v: str) -> str:
        if v not in BUSINESS_TYPES:
            raise ValueError(f"businessType must be one of {', '.join(BUSINESS_TYPES)}")
        return v

    @model_validator(mode="after")
    def validate_period(self) -> "PeriodSubmission":
        if self.period_from > self.period_to:
            raise ValueError("periodFrom must be on or before periodTo")
        if not period_within_tax_year(self.tax_year, self.period_from, self.period_to):
            raise ValueError(f"Period must fall within tax year {self.tax_year}")
        _check_amounts(self.incomes, "incomes")
        _check_amounts(self.expenses, "expenses")
        if self.expenses and "consolidatedExpenses" in self.expenses and len(self.expenses) > 1:
            raise ValueError("Submit either consolidatedExpenses or itemised expenses, not both")
        return self

    @property
    def natural_key(self) -> tuple:
        return (self.business_id, self.tax_year, self.period_from, self.period_to)


class PeriodSummary(BaseModel):
    """Existing period summary returned by the list endpoints (pre 2025-26)."""

    period_id: str
    period_from: date
    period_to: date

    @classmethod
    def from_upstream(cls, item: Dict[str, Any]) -> "PeriodSummary":
        # Self-employment and property list endpoints name these fields differently
        return cls(
            period_id=item.get("periodId") or item.get("submissionId"),
            period_from=item.get("periodStartDate") or item.get("fromDate"),
            period_to=item.get("periodEndDate") or item.get("toDate"),
        )


class SubmissionResult(BaseModel):
    """Outcome of a quarterly update."""

    correlation_id: Optional[str] = Field(None, alias="correlationId")
    period_id: Optional[str] = Field(None, alias="periodId")
    amended: bool = False
    cumulative: bool = False

    model_config = {"populate_by_name": True}
