from __future__ import annotations

import json
import logging
import math
import secrets
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import (
    DatabaseError,
    DomainError,
    LoanNotFoundError,
    LoanValidationError,
    StorageError,
)
from app.core.settings import settings
from app.core.stages import FINAL_STAGE, FIRST_STAGE, WORKFLOW_STATUSES, server_overall_progress
from app.models.loan_application import LoanApplication
from app.models.uploaded_document import UploadedDocument
from app.models.workflow_stage import WorkflowStage
from app.schemas.common import Pagination
from app.schemas.documents import DocumentOut
from app.schemas.loan import (
    LoanCreatedResponse,
    LoanCreateRequest,
    LoanDeletedResponse,
    LoanDetailResponse,
    LoanListResponse,
    LoanSummary,
)
from app.schemas.workflow import WorkflowStageOut, WorkflowStatusResponse
from app.services import loan_workflow
from app.services.audit import model_snapshot, record_user_action
from app.services.storage import service as storage_service

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def generate_loan_id(now: datetime | None = None) -> str:
    """``CL-YYYYMMDD-NNNN`` with a UTC date and a random four-digit suffix."""
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")
    return f"CL-{stamp}-{secrets.randbelow(10000):04d}"


def _document_count_column():
    return (
        select(func.count(UploadedDocument.id))
        .where(UploadedDocument.loan_id == LoanApplication.loan_id)
        .correlate(LoanApplication)
        .scalar_subquery()
        .label("document_count")
    )


def _completed_stages_column():
    return (
        select(func.count(WorkflowStage.id))
        .where(
            WorkflowStage.loan_id == LoanApplication.loan_id,
            WorkflowStage.status == "completed",
        )
        .correlate(LoanApplication)
        .scalar_subquery()
        .label("completed_stages")
    )


def _summary(loan: LoanApplication, document_count: int | None, completed_stages: int | None) -> LoanSummary:
    return LoanSummary.model_validate(loan).model_copy(
        update={
            "document_count": int(document_count or 0),
            "completed_stages": int(completed_stages or 0),
        }
    )


def _parse_stage_data(value: Any) -> dict[str, Any] | None:
    if value is None or isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Ignoring unparseable stage_data payload")
            return None
        return parsed if isinstance(parsed, dict) else {"value": parsed}
    return {"value": value}


def stage_out(stage: WorkflowStage) -> WorkflowStageOut:
    return WorkflowStageOut(
        stage_id=stage.stage_id,
        stage_name=stage.stage_name,
        stage_title=stage.stage_title,
        stage_description=stage.stage_description,
        status=stage.status,
        progress=stage.progress or 0,
        estimated_time=stage.estimated_time,
        started_at=stage.started_at,
        completed_at=stage.completed_at,
        stage_data=_parse_stage_data(stage.stage_data),
    )


async def _get_loan_or_404(db: AsyncSession, loan_id: str) -> LoanApplication:
    result = await db.execute(select(LoanApplication).where(LoanApplication.loan_id == loan_id))
    loan = result.scalar_one_or_none()
    if loan is None:
        raise LoanNotFoundError(loan_id)
    return loan


async def list_stages(db: AsyncSession, loan_id: str) -> list[WorkflowStage]:
    result = await db.execute(
        select(WorkflowStage)
        .where(WorkflowStage.loan_id == loan_id)
        .order_by(WorkflowStage.stage_id)
    )
    return list(result.scalars().all())


async def list_loans(
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = 10,
    status: str | None = None,
    stage: int | None = None,
) -> LoanListResponse:
    if page < 1:
        raise LoanValidationError("Page must be at least 1", details={"page": page})
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise LoanValidationError(
            f"Limit must be between 1 and {MAX_PAGE_SIZE}", details={"limit": limit}
        )
    if status is not None and status not in WORKFLOW_STATUSES:
        raise LoanValidationError("Unknown workflow status", details={"status": status})
    if stage is not None and not FIRST_STAGE <= stage <= FINAL_STAGE:
        raise LoanValidationError("Stage must be between 1 and 8", details={"stage": stage})

    conditions = []
    if status is not None:
        conditions.append(LoanApplication.workflow_status == status)
    if stage is not None:
        conditions.append(LoanApplication.current_stage == stage)

    count_stmt = select(func.count()).select_from(LoanApplication).where(*conditions)
    count_result = await db.execute(count_stmt)
    total = int(count_result.scalar_one() or 0)

    stmt = (
        select(LoanApplication, _document_count_column(), _completed_stages_column())
        .where(*conditions)
        .order_by(LoanApplication.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    result = await db.execute(stmt)
    loans = [_summary(loan, docs, done) for loan, docs, done in result.all()]

    return LoanListResponse(
        loans=loans,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        ),
    )


async def get_loan(db: AsyncSession, loan_id: str) -> LoanDetailResponse:
    stmt = select(
        LoanApplication, _document_count_column(), _completed_stages_column()
    ).where(LoanApplication.loan_id == loan_id)
    result = await db.execute(stmt)
    row = result.first()
    if row is None:
        raise LoanNotFoundError(loan_id)
    loan, document_count, completed_stages = row

    stages = await list_stages(db, loan_id)
    documents_result = await db.execute(
        select(UploadedDocument)
        .where(UploadedDocument.loan_id == loan_id)
        .order_by(UploadedDocument.created_at.desc(), UploadedDocument.id.desc())
    )
    documents = documents_result.scalars().all()

    return LoanDetailResponse(
        loan=_summary(loan, document_count, completed_stages),
        stages=[stage_out(stage) for stage in stages],
        documents=[DocumentOut.model_validate(document) for document in documents],
    )


async def _insert_loan(
    db: AsyncSession, values: dict[str, Any], principal: deps.Principal
) -> str:
    for attempt in range(1, settings.loan_id_max_attempts + 1):
        loan_id = generate_loan_id()
        db.add(
            LoanApplication(
                loan_id=loan_id,
                current_stage=FIRST_STAGE,
                workflow_status="pending",
                created_by=principal.subject,
                **values,
            )
        )
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.warning(
                "Loan id collision on attempt %s", attempt, extra={"loan_id": loan_id}
            )
            continue
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Loan insert failed", exc_info=True)
            raise DatabaseError("Failed to create loan application") from exc
        return loan_id
    raise DatabaseError(
        "Could not allocate a unique loan id",
        details={"attempts": settings.loan_id_max_attempts},
    )


async def create_loan(
    db: AsyncSession,
    payload: LoanCreateRequest,
    *,
    principal: deps.Principal,
    ip_address: str | None = None,
) -> LoanCreatedResponse:
    values = payload.model_dump()
    values["application_type"] = payload.application_type.value
    loan_id = await _insert_loan(db, values, principal)
    logger.info("Loan application created", extra={"loan_id": loan_id})

    stages_initialized = True
    try:
        await loan_workflow.initialize_stages(db, loan_id)
    except DatabaseError:
        # The loan row stays; missing stage rows are rebuilt on first stage mutation
        stages_initialized = False

    record_user_action(
        db,
        principal,
        action_type="create",
        loan_id=loan_id,
        description=f"Created loan application for {payload.company_name}",
        after_data={"loan_id": loan_id, "current_stage": FIRST_STAGE, "workflow_status": "pending", **values},
        ip_address=ip_address,
    )
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.error("Failed to record create action", extra={"loan_id": loan_id}, exc_info=True)

    return LoanCreatedResponse(
        loan_id=loan_id,
        current_stage=FIRST_STAGE,
        workflow_status="pending",
        stages_initialized=stages_initialized,
    )


async def _delete_stored_objects(loan_id: str, storage_keys: list[str]) -> None:
    if not storage_keys:
        return
    try:
        adapter = storage_service.get_storage_adapter()
    except StorageError:
        logger.warning("Storage unavailable; leaving objects behind", extra={"loan_id": loan_id})
        return
    for key in storage_keys:
        try:
            await storage_service.delete_object(adapter, key)
        except StorageError:
            logger.warning(
                "Failed to delete stored object",
                extra={"loan_id": loan_id, "storage_key": key},
                exc_info=True,
            )


async def delete_loan(
    db: AsyncSession,
    loan_id: str,
    *,
    principal: deps.Principal | None = None,
    ip_address: str | None = None,
) -> LoanDeletedResponse:
    """Remove documents, stages and the loan in one transaction, then stored objects."""
    try:
        result = await db.execute(
            select(LoanApplication).where(LoanApplication.loan_id == loan_id).with_for_update()
        )
        loan = result.scalar_one_or_none()
        if loan is None:
            raise LoanNotFoundError(loan_id)

        documents_result = await db.execute(
            select(UploadedDocument).where(UploadedDocument.loan_id == loan_id)
        )
        storage_keys = [document.storage_key for document in documents_result.scalars().all()]
        snapshot = model_snapshot(loan)

        await db.execute(delete(UploadedDocument).where(UploadedDocument.loan_id == loan_id))
        await db.execute(delete(WorkflowStage).where(WorkflowStage.loan_id == loan_id))
        await db.execute(delete(LoanApplication).where(LoanApplication.loan_id == loan_id))
        record_user_action(
            db,
            principal,
            action_type="delete",
            loan_id=loan_id,
            description=f"Deleted loan application {loan_id}",
            before_data={"loan": snapshot, "document_count": len(storage_keys)},
            ip_address=ip_address,
        )
        await db.commit()
    except DomainError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Loan deletion failed", extra={"loan_id": loan_id}, exc_info=True)
        raise DatabaseError("Failed to delete loan application", details={"loan_id": loan_id}) from exc

    logger.info("Loan application deleted", extra={"loan_id": loan_id})
    await _delete_stored_objects(loan_id, storage_keys)
    return LoanDeletedResponse(loan_id=loan_id, deleted_documents=len(storage_keys))


async def get_workflow_status(db: AsyncSession, loan_id: str) -> WorkflowStatusResponse:
    loan = await _get_loan_or_404(db, loan_id)
    stages = await list_stages(db, loan_id)
    completed = sum(1 for stage in stages if stage.status == "completed")
    return WorkflowStatusResponse(
        loan_id=loan.loan_id,
        company_name=loan.company_name,
        current_stage=loan.current_stage,
        workflow_status=loan.workflow_status,
        overall_progress=server_overall_progress(completed, len(stages)),
        completed_stages=completed,
        total_stages=len(stages),
        stages=[stage_out(stage) for stage in stages],
    )
