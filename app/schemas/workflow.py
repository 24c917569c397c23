from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from app.schemas.common import CamelModel


class StageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StageUpdateRequest(CamelModel):
    stage_id: int = Field(ge=1, le=8, strict=True)
    status: StageStatus | None = None
    progress: int | None = Field(default=None, ge=0, le=100, strict=True)


class StageUpdateResponse(CamelModel):
    loan_id: str
    stage_id: int
    status: StageStatus
    progress: int
    current_stage: int
    workflow_status: WorkflowStatus


class StageAdvanceRequest(CamelModel):
    stage_data: dict[str, Any] | None = None


class StageAdvanceResponse(CamelModel):
    loan_id: str
    previous_stage: int
    current_stage: int
    status: StageStatus = StageStatus.PROCESSING
    stage_data: dict[str, Any] | None = None


class WorkflowStageOut(CamelModel):
    stage_id: int
    stage_name: str
    stage_title: str
    stage_description: str | None = None
    status: StageStatus
    progress: int = 0
    estimated_time: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    stage_data: dict[str, Any] | None = None


class WorkflowStatusResponse(CamelModel):
    loan_id: str
    company_name: str
    current_stage: int
    workflow_status: WorkflowStatus
    overall_progress: int
    completed_stages: int
    total_stages: int
    stages: list[WorkflowStageOut]
