from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.logging import get_audit_logger
from app.models.user_action import ACTION_TYPES, UserAction

audit_logger = get_audit_logger()


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
        },
    )


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    if model is None:
        return {}
    excluded = set(exclude or [])
    data: dict[str, Any] = {}
    for attr in model.__mapper__.column_attrs:
        if attr.key in excluded:
            continue
        data[attr.key] = getattr(model, attr.key)
    return serialize_for_audit(data)


def record_user_action(
    db: AsyncSession,
    principal: deps.Principal | None,
    *,
    action_type: str,
    loan_id: str | None,
    description: str | None = None,
    before_data: Any | None = None,
    after_data: Any | None = None,
    ip_address: str | None = None,
) -> UserAction:
    """Stage a user_actions row on ``db``; the caller owns the commit."""
    if action_type not in ACTION_TYPES:
        raise ValueError(f"Unknown action type: {action_type}")
    entry = UserAction(
        loan_id=loan_id,
        user_id=principal.subject if principal else None,
        user_role=principal.role if principal else None,
        action_type=action_type,
        action_description=description,
        before_data=serialize_for_audit(before_data) if before_data is not None else None,
        after_data=serialize_for_audit(after_data) if after_data is not None else None,
        ip_address=ip_address,
    )
    db.add(entry)
    audit_logger.info(
        description or action_type,
        extra={"loan_id": loan_id, "action_type": action_type},
    )
    return entry
