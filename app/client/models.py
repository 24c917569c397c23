from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.core.stages import STAGE_DEFINITIONS

LOCAL_ID_PREFIX = "LOCAL-"

MutationKind = Literal["create_loan", "update_stage", "advance_stage", "upload_documents"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_local_id(loan_id: str | None) -> bool:
    return bool(loan_id) and loan_id.startswith(LOCAL_ID_PREFIX)


class ApiEnvelope(BaseModel):
    """The {code, message, data, details} wrapper every API response uses."""

    code: str
    message: str
    data: Any = None
    details: dict[str, Any] = Field(default_factory=dict)


class CachedTask(BaseModel):
    id: str
    name: str
    completed: bool = False


class CachedStage(BaseModel):
    stage_id: int
    name: str
    title: str
    status: str = "pending"
    progress: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    tasks: list[CachedTask] = Field(default_factory=list)


class CachedDocument(BaseModel):
    document_id: int | None = None
    local_id: str | None = None
    filename: str
    type: str = "other"
    size: int = 0
    storage_key: str | None = None
    url: str | None = None
    local_path: str | None = None
    server_synced: bool = False
    uploaded_at: datetime = Field(default_factory=utcnow)


class CachedWorkflow(BaseModel):
    loan_id: str
    company_name: str
    application_type: str = "pf_loan"
    current_stage: int = 1
    status: str = "pending"
    stages: list[CachedStage] = Field(default_factory=list)
    documents: list[CachedDocument] = Field(default_factory=list)
    server_synced: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def stage(self, stage_id: int) -> CachedStage | None:
        return next((stage for stage in self.stages if stage.stage_id == stage_id), None)

    def touch(self) -> None:
        self.updated_at = utcnow()


class PendingMutation(BaseModel):
    seq: int
    kind: MutationKind
    loan_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    attempts: int = 0
    last_error: str | None = None


class CacheState(BaseModel):
    records: dict[str, CachedWorkflow] = Field(default_factory=dict)
    current_loan_id: str | None = None
    pending: list[PendingMutation] = Field(default_factory=list)
    clock: int = 0


def fresh_stages() -> list[CachedStage]:
    return [
        CachedStage(
            stage_id=definition.id,
            name=definition.name,
            title=definition.title,
            tasks=[CachedTask(id=task.id, name=task.name) for task in definition.tasks],
        )
        for definition in STAGE_DEFINITIONS
    ]
