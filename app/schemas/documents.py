from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, Field

from app.schemas.common import CamelModel


class DocumentType(str, Enum):
    BUSINESS_REGISTRATION = "business_registration"
    CORPORATE_REGISTRATION = "corporate_registration"
    FINANCIAL_STATEMENT = "financial_statement"
    CREDIT_REPORT = "credit_report"
    COLLATERAL_APPRAISAL = "collateral_appraisal"
    BUSINESS_PLAN = "business_plan"
    OTHER = "other"


class DocumentOut(CamelModel):
    id: int
    loan_id: str
    original_filename: str
    file_extension: str
    file_size: int
    mime_type: str | None = None
    document_type: str
    upload_status: str
    processing_status: str
    storage_provider: str
    storage_key: str
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("document_metadata", "metadata")
    )
    created_at: datetime | None = None


class UploadedFileResult(CamelModel):
    document_id: int
    filename: str
    storage_key: str
    url: str | None = None
    size: int
    type: str
    status: Literal["completed"] = "completed"


class FailedFileResult(CamelModel):
    filename: str
    status: Literal["failed"] = "failed"
    error: str


class UploadDocumentsResponse(CamelModel):
    loan_id: str
    uploaded_files: list[UploadedFileResult]
    failed_files: list[FailedFileResult]
    workflow_status: str | None = None


class DownloadUrlResponse(CamelModel):
    download_url: str
    filename: str
    expires_in: int
