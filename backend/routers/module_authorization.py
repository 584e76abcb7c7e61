# routers/module_authorization.py — Per-tenant module enablement
#
# All reads and writes are scoped to the caller's active tenant.
# Writes are a single upsert on (moduleId, tenantId); see module_gate.
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    get_current_user, require_permission, CurrentUser,
    PERM_MODULE_VIEW, PERM_MODULE_MANAGE,
)
from database import get_db_session
from errors import NotFoundError, ValidationError
from logging_system import log_audit
from models import ModuleAuthorization, ModuleRegistry, AuditLog, AuditEventType
from module_gate import get_authorized_modules, upsert_module_authorization
from pagination import PageParams, page_params, paginate

router = APIRouter(prefix="/api/system/module-authorization", tags=["Module Authorization"])


# --- Schemas ---

class AuthorizationUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    module_id: StrictStr = Field(..., alias="moduleId", min_length=1, max_length=255)
    module_name: StrictStr = Field(..., alias="moduleName", min_length=1, max_length=255)
    is_enabled: StrictBool = Field(..., alias="isEnabled")


class AuthorizationToggle(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    module_name: StrictStr = Field(..., alias="moduleName", min_length=1, max_length=255)
    is_enabled: StrictBool = Field(..., alias="isEnabled")


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def authorization_out(record: ModuleAuthorization) -> dict:
    return {
        "id": record.id,
        "moduleId": record.module_id,
        "moduleName": record.module_name,
        "tenantId": record.tenant_id,
        "isEnabled": record.is_enabled,
        "enabledBy": record.enabled_by,
        "enabledAt": _iso(record.enabled_at),
        "createdAt": _iso(record.created_at),
        "updatedAt": _iso(record.updated_at),
    }


async def _apply(
    db: AsyncSession,
    request: Request,
    user: CurrentUser,
    module_id: str,
    module_name: str,
    is_enabled: bool,
) -> ModuleAuthorization:
    registered = await db.execute(
        select(ModuleRegistry.id).where(ModuleRegistry.module_id == module_id)
    )
    if registered.first() is None:
        raise ValidationError(f"Unknown module: {module_id}", moduleId=module_id)

    record = await upsert_module_authorization(
        db,
        module_id=module_id,
        module_name=module_name,
        tenant_id=user.tenant_id,
        is_enabled=is_enabled,
        actor=user.email,
    )

    event = AuditEventType.MODULE_ENABLED if is_enabled else AuditEventType.MODULE_DISABLED
    db.add(AuditLog(
        event_type=event,
        user_id=user.id,
        tenant_id=user.tenant_id,
        module="system",
        resource_type="module_authorization",
        resource_id=record.id,
        new_state="enabled" if is_enabled else "disabled",
        details={"module_id": module_id, "module_name": module_name},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        request_id=getattr(request.state, "request_id", None),
    ))
    await db.commit()

    log_audit(
        event.value, "module_authorization",
        metadata={"module_id": module_id, "tenant_id": user.tenant_id, "is_enabled": is_enabled},
    )
    return record


# ============================================================
# READ
# ============================================================

@router.get("")
async def list_authorizations(
    params: PageParams = Depends(page_params),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Authorization records of the active tenant, newest first"""
    query = (
        select(ModuleAuthorization)
        .where(ModuleAuthorization.tenant_id == user.tenant_id)
        .order_by(ModuleAuthorization.created_at.desc(), ModuleAuthorization.module_id)
    )
    records, pagination = await paginate(db, query, params)
    return {"data": [authorization_out(r) for r in records], "pagination": pagination}


@router.get("/authorized")
async def list_authorized_module_ids(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Module ids enabled for the active tenant"""
    return {
        "tenantId": user.tenant_id,
        "moduleIds": await get_authorized_modules(db, user.tenant_id),
    }


@router.get("/registered-modules")
async def list_registered_modules_for_tenant(
    user: CurrentUser = Depends(require_permission(PERM_MODULE_VIEW)),
    db: AsyncSession = Depends(get_db_session),
):
    """Active registry entries annotated with whether the active tenant has them enabled"""
    stmt = (
        select(ModuleRegistry, ModuleAuthorization.is_enabled)
        .outerjoin(
            ModuleAuthorization,
            and_(
                ModuleAuthorization.module_id == ModuleRegistry.module_id,
                ModuleAuthorization.tenant_id == user.tenant_id,
            ),
        )
        .where(ModuleRegistry.is_active == True)
        .order_by(ModuleRegistry.created_at.desc(), ModuleRegistry.module_id)
    )
    result = await db.execute(stmt)
    return [
        {
            "moduleId": module.module_id,
            "moduleName": module.module_name,
            "description": module.description,
            "version": module.version,
            "category": module.category,
            "isAuthorized": bool(is_enabled),
        }
        for module, is_enabled in result.all()
    ]


@router.get("/{authorization_id}")
async def get_authorization(
    authorization_id: str,
    user: CurrentUser = Depends(require_permission(PERM_MODULE_VIEW)),
    db: AsyncSession = Depends(get_db_session),
):
    record = await db.get(ModuleAuthorization, authorization_id)
    if not record or record.tenant_id != user.tenant_id:
        raise NotFoundError("Module authorization not found")
    return authorization_out(record)


# ============================================================
# WRITE
# ============================================================

@router.post("", status_code=201)
async def upsert_authorization(
    body: AuthorizationUpsert,
    request: Request,
    user: CurrentUser = Depends(require_permission(PERM_MODULE_MANAGE)),
    db: AsyncSession = Depends(get_db_session),
):
    """Create or update the active tenant's record for body.moduleId"""
    record = await _apply(db, request, user, body.module_id, body.module_name, body.is_enabled)
    return authorization_out(record)


@router.patch("/toggle/{module_id}")
async def toggle_authorization(
    module_id: str,
    body: AuthorizationToggle,
    request: Request,
    user: CurrentUser = Depends(require_permission(PERM_MODULE_MANAGE)),
    db: AsyncSession = Depends(get_db_session),
):
    record = await _apply(db, request, user, module_id, body.module_name, body.is_enabled)
    return authorization_out(record)
