from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import (
    DatabaseError,
    DomainError,
    InvalidStateError,
    LoanNotFoundError,
    LoanValidationError,
)
from app.core.stages import (
    FINAL_STAGE,
    STAGE_DEFINITIONS,
    STAGE_STATUSES,
    get_stage_definition,
    is_valid_stage_id,
)
from app.models.loan_application import LoanApplication
from app.models.workflow_stage import WorkflowStage
from app.schemas.workflow import StageAdvanceResponse, StageUpdateResponse
from app.services.audit import record_user_action

logger = logging.getLogger(__name__)


def build_stage_row(loan_id: str, stage_id: int) -> WorkflowStage:
    definition = get_stage_definition(stage_id)
    return WorkflowStage(
        loan_id=loan_id,
        stage_id=definition.id,
        stage_name=definition.name,
        stage_title=definition.title,
        stage_description=definition.description,
        estimated_time=definition.estimated_time,
        status="pending",
        progress=0,
        stage_data=None,
    )


def _stage_snapshot(stage: WorkflowStage) -> dict[str, Any]:
    return {
        "stage_id": stage.stage_id,
        "status": stage.status,
        "progress": stage.progress,
    }


async def _lock_loan(db: AsyncSession, loan_id: str) -> LoanApplication:
    stmt = select(LoanApplication).where(LoanApplication.loan_id == loan_id).with_for_update()
    result = await db.execute(stmt)
    loan = result.scalar_one_or_none()
    if loan is None:
        raise LoanNotFoundError(loan_id)
    return loan


async def _lock_stages(
    db: AsyncSession, loan_id: str, stage_ids: list[int]
) -> dict[int, WorkflowStage]:
    stmt = (
        select(WorkflowStage)
        .where(WorkflowStage.loan_id == loan_id, WorkflowStage.stage_id.in_(stage_ids))
        .with_for_update()
    )
    result = await db.execute(stmt)
    stages = {stage.stage_id: stage for stage in result.scalars().all()}
    # Rows can be missing when best-effort initialization failed at creation time
    for stage_id in stage_ids:
        if stage_id not in stages:
            logger.warning(
                "Recreating missing workflow stage row",
                extra={"loan_id": loan_id, "stage_id": stage_id},
            )
            stage = build_stage_row(loan_id, stage_id)
            db.add(stage)
            stages[stage_id] = stage
    return stages


async def initialize_stages(db: AsyncSession, loan_id: str) -> list[WorkflowStage]:
    """Insert all eight stage rows for ``loan_id`` in one transaction."""
    stages = [build_stage_row(loan_id, definition.id) for definition in STAGE_DEFINITIONS]
    try:
        db.add_all(stages)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Workflow stage initialization failed", extra={"loan_id": loan_id}, exc_info=True)
        raise DatabaseError(
            "Failed to initialize workflow stages", details={"loan_id": loan_id}
        ) from exc
    return stages


async def advance_stage(
    db: AsyncSession,
    loan_id: str,
    *,
    stage_data: dict[str, Any] | None = None,
    principal: deps.Principal | None = None,
    ip_address: str | None = None,
) -> StageAdvanceResponse:
    """Complete the current stage and open the next one under a row lock."""
    try:
        loan = await _lock_loan(db, loan_id)
        previous_stage = loan.current_stage
        if previous_stage >= FINAL_STAGE:
            raise InvalidStateError(
                "Loan is already at the final stage",
                details={"loan_id": loan_id, "current_stage": previous_stage},
            )
        next_stage = previous_stage + 1
        stages = await _lock_stages(db, loan_id, [previous_stage, next_stage])
        completed, opened = stages[previous_stage], stages[next_stage]
        before = {
            "current_stage": previous_stage,
            "workflow_status": loan.workflow_status,
            "stages": [_stage_snapshot(completed), _stage_snapshot(opened)],
        }

        now = datetime.now(timezone.utc)
        completed.status = "completed"
        completed.progress = 100
        completed.completed_at = now
        if stage_data:
            completed.stage_data = {**(completed.stage_data or {}), **stage_data}

        opened.status = "processing"
        opened.progress = 0
        opened.started_at = now

        loan.current_stage = next_stage
        loan.workflow_status = "processing"

        record_user_action(
            db,
            principal,
            action_type="advance",
            loan_id=loan_id,
            description=f"Advanced from stage {previous_stage} to stage {next_stage}",
            before_data=before,
            after_data={
                "current_stage": next_stage,
                "workflow_status": "processing",
                "stages": [_stage_snapshot(completed), _stage_snapshot(opened)],
            },
            ip_address=ip_address,
        )
        await db.commit()
    except DomainError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Stage advance failed", extra={"loan_id": loan_id}, exc_info=True)
        raise DatabaseError("Failed to advance workflow stage", details={"loan_id": loan_id}) from exc

    logger.info(
        "Loan advanced to stage %s",
        next_stage,
        extra={"loan_id": loan_id, "stage_id": next_stage},
    )
    return StageAdvanceResponse(
        loan_id=loan_id,
        previous_stage=previous_stage,
        current_stage=next_stage,
        status="processing",
        stage_data=stage_data or None,
    )


def _validate_stage_update(stage_id: Any, status: str | None, progress: Any) -> None:
    if not is_valid_stage_id(stage_id):
        raise LoanValidationError(
            "Stage id must be an integer between 1 and 8", details={"stage_id": stage_id}
        )
    if status is not None and status not in STAGE_STATUSES:
        raise LoanValidationError(
            f"Status must be one of {', '.join(STAGE_STATUSES)}", details={"status": status}
        )
    if progress is not None and (
        not isinstance(progress, int) or isinstance(progress, bool) or not 0 <= progress <= 100
    ):
        raise LoanValidationError(
            "Progress must be an integer between 0 and 100", details={"progress": progress}
        )


async def update_stage(
    db: AsyncSession,
    loan_id: str,
    stage_id: int,
    *,
    status: str | None = None,
    progress: int | None = None,
    principal: deps.Principal | None = None,
    ip_address: str | None = None,
) -> StageUpdateResponse:
    """Overwrite one stage and point the loan at it; may move the loan backward."""
    if status is not None and hasattr(status, "value"):
        status = status.value
    _validate_stage_update(stage_id, status, progress)

    try:
        loan = await _lock_loan(db, loan_id)
        stage = (await _lock_stages(db, loan_id, [stage_id]))[stage_id]
        before = {
            "current_stage": loan.current_stage,
            "workflow_status": loan.workflow_status,
            "stage": _stage_snapshot(stage),
        }

        now = datetime.now(timezone.utc)
        if status is not None:
            stage.status = status
            if status == "processing":
                stage.started_at = now
            elif status == "completed":
                stage.completed_at = now
        if progress is not None:
            stage.progress = progress

        loan.current_stage = stage_id
        loan.workflow_status = (
            "completed" if stage_id == FINAL_STAGE and status == "completed" else "processing"
        )

        record_user_action(
            db,
            principal,
            action_type="stage_update",
            loan_id=loan_id,
            description=f"Updated stage {stage_id}",
            before_data=before,
            after_data={
                "current_stage": loan.current_stage,
                "workflow_status": loan.workflow_status,
                "stage": _stage_snapshot(stage),
            },
            ip_address=ip_address,
        )
        await db.commit()
    except DomainError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error(
            "Stage update failed", extra={"loan_id": loan_id, "stage_id": stage_id}, exc_info=True
        )
        raise DatabaseError("Failed to update workflow stage", details={"loan_id": loan_id}) from exc

    return StageUpdateResponse(
        loan_id=loan_id,
        stage_id=stage_id,
        status=stage.status,
        progress=stage.progress,
        current_stage=loan.current_stage,
        workflow_status=loan.workflow_status,
    )
