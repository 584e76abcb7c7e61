# routers/module_registry.py — Catalog of modules installed in the deployment
#
# Requires system.registry.manage (sysadmin only). Entries are never hard-deleted; deactivate with isActive=false.
# Registry writes never touch per-tenant authorization records.
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr
from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_permission, CurrentUser, PERM_REGISTRY_MANAGE
from database import get_db_session
from errors import NotFoundError, ConflictError, ValidationError
from logging_system import log_audit
from models import ModuleRegistry, AuditLog, AuditEventType, utcnow
from pagination import PageParams, page_params, paginate

router = APIRouter(prefix="/api/system/module-registry", tags=["Module Registry"])

DUPLICATE_MODULE_MESSAGE = "Module ID already exists"

# isActive query values; "all" (or an empty value) lists active and inactive entries
_ACTIVE_FILTERS = {"true": True, "false": False, "all": None, "": None}


# --- Schemas ---

class RegistryEntryIn(BaseModel):
    """Body of both create and full replace"""
    model_config = ConfigDict(populate_by_name=True)

    module_id: StrictStr = Field(..., alias="moduleId", min_length=1, max_length=255)
    module_name: StrictStr = Field(..., alias="moduleName", min_length=1, max_length=255)
    version: StrictStr = Field(..., min_length=1, max_length=50)
    category: StrictStr = Field(..., min_length=1, max_length=100)
    description: Optional[StrictStr] = None
    is_active: StrictBool = Field(default=True, alias="isActive")
    repository_url: Optional[StrictStr] = Field(default=None, alias="repositoryUrl", max_length=500)
    documentation_url: Optional[StrictStr] = Field(default=None, alias="documentationUrl", max_length=500)


def registry_entry_out(m: ModuleRegistry) -> dict:
    return {
        "id": m.id,
        "moduleId": m.module_id,
        "moduleName": m.module_name,
        "description": m.description,
        "version": m.version,
        "category": m.category,
        "isActive": m.is_active,
        "repositoryUrl": m.repository_url,
        "documentationUrl": m.documentation_url,
        "createdAt": m.created_at.isoformat() if m.created_at else None,
        "updatedAt": m.updated_at.isoformat() if m.updated_at else None,
    }


async def _module_id_taken(db: AsyncSession, module_id: str, exclude_id: Optional[str] = None) -> bool:
    stmt = select(ModuleRegistry.id).where(ModuleRegistry.module_id == module_id)
    if exclude_id:
        stmt = stmt.where(ModuleRegistry.id != exclude_id)
    return (await db.execute(stmt)).first() is not None


def _audit(request: Request, user: CurrentUser, event: AuditEventType, entry: ModuleRegistry, previous=None) -> AuditLog:
    return AuditLog(
        event_type=event,
        user_id=user.id,
        tenant_id=user.tenant_id,
        module="system",
        resource_type="module_registry",
        resource_id=entry.id,
        previous_state=previous,
        new_state=entry.module_id,
        details={"version": entry.version, "category": entry.category, "is_active": entry.is_active},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        request_id=getattr(request.state, "request_id", None),
    )


# ============================================================
# ENDPOINTS
# ============================================================

@router.get("")
async def list_registered_modules(
    search: Optional[str] = Query(default=None, max_length=255),
    category: Optional[str] = None,
    is_active: str = Query(default="true", alias="isActive"),
    params: PageParams = Depends(page_params),
    user: CurrentUser = Depends(require_permission(PERM_REGISTRY_MANAGE)),
    db: AsyncSession = Depends(get_db_session),
):
    """List registry entries, newest first"""
    try:
        active = _ACTIVE_FILTERS[is_active.lower()]
    except KeyError:
        raise ValidationError("isActive must be true, false or all", isActive=is_active)

    query = select(ModuleRegistry)
    if active is not None:
        query = query.where(ModuleRegistry.is_active == active)
    if search:
        term = f"%{search}%"
        query = query.where(or_(
            ModuleRegistry.module_name.ilike(term),
            ModuleRegistry.description.ilike(term),
            ModuleRegistry.module_id.ilike(term),
        ))
    if category:
        query = query.where(ModuleRegistry.category == category)
    query = query.order_by(ModuleRegistry.created_at.desc(), ModuleRegistry.module_id)

    entries, pagination = await paginate(db, query, params)
    return {"data": [registry_entry_out(m) for m in entries], "pagination": pagination}


@router.get("/{entry_id}")
async def get_registered_module(
    entry_id: str,
    user: CurrentUser = Depends(require_permission(PERM_REGISTRY_MANAGE)),
    db: AsyncSession = Depends(get_db_session),
):
    entry = await db.get(ModuleRegistry, entry_id)
    if not entry:
        raise NotFoundError("Registered module not found")
    return registry_entry_out(entry)


@router.post("", status_code=201)
async def create_registered_module(
    body: RegistryEntryIn,
    request: Request,
    user: CurrentUser = Depends(require_permission(PERM_REGISTRY_MANAGE)),
    db: AsyncSession = Depends(get_db_session),
):
    """Register a module. An existing moduleId is left untouched and yields 409."""
    if await _module_id_taken(db, body.module_id):
        raise ConflictError(DUPLICATE_MODULE_MESSAGE)

    entry = ModuleRegistry(
        module_id=body.module_id,
        module_name=body.module_name,
        description=body.description,
        version=body.version,
        category=body.category,
        is_active=body.is_active,
        repository_url=body.repository_url,
        documentation_url=body.documentation_url,
    )
    db.add(entry)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race with a concurrent insert of the same moduleId
        await db.rollback()
        raise ConflictError(DUPLICATE_MODULE_MESSAGE)

    db.add(_audit(request, user, AuditEventType.MODULE_REGISTERED, entry))
    await db.commit()
    await db.refresh(entry)

    log_audit("module.registry.created", "module_registry", metadata={"module_id": entry.module_id, "id": entry.id})
    return registry_entry_out(entry)


@router.put("/{entry_id}")
async def replace_registered_module(
    entry_id: str,
    body: RegistryEntryIn,
    request: Request,
    user: CurrentUser = Depends(require_permission(PERM_REGISTRY_MANAGE)),
    db: AsyncSession = Depends(get_db_session),
):
    """Replace every field of a registry entry. Omitted optional fields fall back to their defaults."""
    entry = await db.get(ModuleRegistry, entry_id)
    if not entry:
        raise NotFoundError("Registered module not found")

    previous_module_id = entry.module_id
    if body.module_id != previous_module_id and await _module_id_taken(db, body.module_id, exclude_id=entry.id):
        raise ConflictError(DUPLICATE_MODULE_MESSAGE)

    entry.module_id = body.module_id
    entry.module_name = body.module_name
    entry.description = body.description
    entry.version = body.version
    entry.category = body.category
    entry.is_active = body.is_active
    entry.repository_url = body.repository_url
    entry.documentation_url = body.documentation_url
    entry.updated_at = utcnow()
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(DUPLICATE_MODULE_MESSAGE)

    db.add(_audit(request, user, AuditEventType.MODULE_UPDATED, entry, previous=previous_module_id))
    await db.commit()
    await db.refresh(entry)

    log_audit("module.registry.updated", "module_registry", metadata={"module_id": entry.module_id, "id": entry.id})
    return registry_entry_out(entry)
