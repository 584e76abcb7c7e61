# routers/audit_logs.py — Read access to the active tenant's audit trail
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_permission, CurrentUser, PERM_AUDIT_VIEW
from database import get_db_session
from errors import ValidationError
from models import AuditLog, AuditEventType, AuditStatus
from pagination import PageParams, page_params, paginate

router = APIRouter(prefix="/api/audit-logs", tags=["Audit Logs"])

MAX_HISTORY = 500


def audit_log_out(log: AuditLog) -> dict:
    return {
        "id": log.id,
        "timestamp": log.timestamp.isoformat() if log.timestamp else None,
        "action": log.event_type.value if log.event_type else None,
        "status": log.status.value if log.status else None,
        "userId": log.user_id,
        "tenantId": log.tenant_id,
        "module": log.module,
        "resourceType": log.resource_type,
        "resourceId": log.resource_id,
        "previousState": log.previous_state,
        "newState": log.new_state,
        "details": log.details,
        "ipAddress": log.ip_address,
        "requestId": log.request_id,
    }


def _as_utc(value: datetime) -> datetime:
    # Naive bounds are taken as UTC, matching how timestamps are written
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@router.get("")
async def query_audit_logs(
    module: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = Query(default=None, alias="resourceType"),
    resource_id: Optional[str] = Query(default=None, alias="resourceId"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    status: Optional[str] = None,
    params: PageParams = Depends(page_params),
    user: CurrentUser = Depends(require_permission(PERM_AUDIT_VIEW)),
    db: AsyncSession = Depends(get_db_session),
):
    """Audit entries of the caller's tenant, newest first"""
    stmt = select(AuditLog).where(AuditLog.tenant_id == user.tenant_id)

    if action:
        try:
            stmt = stmt.where(AuditLog.event_type == AuditEventType(action))
        except ValueError:
            raise ValidationError(f"Invalid action: {action}")
    if status:
        try:
            stmt = stmt.where(AuditLog.status == AuditStatus(status))
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")
    if module:
        stmt = stmt.where(AuditLog.module == module)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
    if resource_id:
        stmt = stmt.where(AuditLog.resource_id == resource_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if start_date:
        stmt = stmt.where(AuditLog.timestamp >= _as_utc(start_date))
    if end_date:
        stmt = stmt.where(AuditLog.timestamp <= _as_utc(end_date))

    stmt = stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id)
    logs, pagination = await paginate(db, stmt, params)
    return {"data": [audit_log_out(log) for log in logs], "pagination": pagination}


@router.get("/resource/{resource_type}/{resource_id}")
async def resource_history(
    resource_type: str,
    resource_id: str,
    limit: int = Query(default=100, ge=1, le=MAX_HISTORY),
    user: CurrentUser = Depends(require_permission(PERM_AUDIT_VIEW)),
    db: AsyncSession = Depends(get_db_session),
):
    """History of one resource within the caller's tenant"""
    stmt = (
        select(AuditLog)
        .where(
            AuditLog.tenant_id == user.tenant_id,
            AuditLog.resource_type == resource_type,
            AuditLog.resource_id == resource_id,
        )
        .order_by(AuditLog.timestamp.desc(), AuditLog.id)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return {
        "data": [audit_log_out(log) for log in result.scalars().all()],
        "resourceType": resource_type,
        "resourceId": resource_id,
    }
