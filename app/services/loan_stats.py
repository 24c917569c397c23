from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.loan_application import LoanApplication
from app.schemas.loan import LoanStats, StageCount


async def get_stats(db: AsyncSession) -> LoanStats:
    """Aggregate loan counts by workflow status and current stage, recomputed per call."""
    total_result = await db.execute(select(func.count()).select_from(LoanApplication))
    total = int(total_result.scalar_one() or 0)

    status_result = await db.execute(
        select(LoanApplication.workflow_status, func.count())
        .group_by(LoanApplication.workflow_status)
    )
    by_status = {status: int(count) for status, count in status_result.all()}

    stage_result = await db.execute(
        select(LoanApplication.current_stage, func.count())
        .group_by(LoanApplication.current_stage)
        .order_by(LoanApplication.current_stage)
    )
    by_stage = [StageCount(stage=stage, count=int(count)) for stage, count in stage_result.all()]

    return LoanStats(
        total=total,
        pending=by_status.get("pending", 0),
        processing=by_status.get("processing", 0),
        completed=by_status.get("completed", 0),
        failed=by_status.get("failed", 0),
        by_stage=by_stage,
    )
