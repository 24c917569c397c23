from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import EmailStr, Field, field_validator

from app.schemas.common import CamelModel, Money, Pagination, blank_to_none
from app.schemas.documents import DocumentOut
from app.schemas.workflow import StageStatus, WorkflowStageOut, WorkflowStatus


class ApplicationType(str, Enum):
    PF_LOAN = "pf_loan"
    FACILITY_LOAN = "facility_loan"
    OPERATING_LOAN = "operating_loan"
    OTHER = "other"


class LoanCreateRequest(CamelModel):
    company_name: str = Field(min_length=2, max_length=200)
    business_registration_number: str | None = Field(
        default=None, pattern=r"^[0-9]{3}-[0-9]{2}-[0-9]{5}$"
    )
    company_address: str | None = Field(default=None, max_length=500)
    company_phone: str | None = Field(default=None, max_length=50)
    company_established_year: int | None = Field(default=None, ge=1900)
    company_business_type: str | None = Field(default=None, max_length=200)
    company_annual_revenue: Money | None = Field(default=None, ge=0)
    company_employee_count: int | None = Field(default=None, ge=0)

    application_type: ApplicationType = ApplicationType.PF_LOAN
    requested_amount: Money = Field(ge=0)
    loan_duration_months: int | None = Field(default=None, ge=1, le=360)
    interest_rate_hope: Decimal | None = Field(default=None, ge=0, le=100)
    collateral_type: str | None = Field(default=None, max_length=200)
    collateral_value: Money | None = Field(default=None, ge=0)
    loan_purpose: str = Field(min_length=1, max_length=1000)

    applicant_name: str = Field(min_length=1, max_length=100)
    applicant_position: str | None = Field(default=None, max_length=100)
    applicant_birth_date: date | None = None
    applicant_contact: str = Field(min_length=1, max_length=50)
    applicant_email: EmailStr | None = None

    @field_validator(
        "business_registration_number",
        "company_address",
        "company_phone",
        "company_business_type",
        "collateral_type",
        "applicant_position",
        "applicant_birth_date",
        "applicant_email",
        mode="before",
    )
    @classmethod
    def _blank_optional(cls, value):
        return blank_to_none(value)

    @field_validator("company_established_year")
    @classmethod
    def _not_in_future(cls, value: int | None) -> int | None:
        if value is not None and value > date.today().year:
            raise ValueError("Established year cannot be in the future")
        return value


class LoanCreatedResponse(CamelModel):
    loan_id: str
    current_stage: int
    workflow_status: WorkflowStatus
    stages_initialized: bool


class LoanSummary(CamelModel):
    loan_id: str
    company_name: str
    business_registration_number: str | None = None
    company_address: str | None = None
    company_phone: str | None = None
    company_established_year: int | None = None
    company_business_type: str | None = None
    company_annual_revenue: Money | None = None
    company_employee_count: int | None = None
    application_type: str
    requested_amount: Money
    loan_duration_months: int | None = None
    interest_rate_hope: Money | None = None
    collateral_type: str | None = None
    collateral_value: Money | None = None
    loan_purpose: str
    applicant_name: str
    applicant_position: str | None = None
    applicant_birth_date: date | None = None
    applicant_contact: str
    applicant_email: str | None = None
    current_stage: int
    workflow_status: WorkflowStatus
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    document_count: int = 0
    completed_stages: int = 0


class LoanListResponse(CamelModel):
    loans: list[LoanSummary]
    pagination: Pagination


class LoanDetailResponse(CamelModel):
    loan: LoanSummary
    stages: list[WorkflowStageOut]
    documents: list[DocumentOut]


class LoanDeletedResponse(CamelModel):
    loan_id: str
    deleted_documents: int


class StageCount(CamelModel):
    stage: int
    count: int


class LoanStats(CamelModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    by_stage: list[StageCount] = Field(default_factory=list)


__all__ = [
    "ApplicationType",
    "LoanCreateRequest",
    "LoanCreatedResponse",
    "LoanDeletedResponse",
    "LoanDetailResponse",
    "LoanListResponse",
    "LoanStats",
    "LoanSummary",
    "StageCount",
    "StageStatus",
]
