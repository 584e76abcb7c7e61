# module_gate.py — Tenant-scoped module authorization
#
# A module is usable by a tenant only when an enabled sys_module_auth row
# exists for (module_id, tenant_id). No row means not authorized.
# Every gated request performs a fresh lookup; nothing is cached.

from typing import List, Optional

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import ForbiddenError
from logging_system import log_security
from models import ModuleAuthorization, new_uuid, utcnow

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def is_module_authorized(db: AsyncSession, module_id: str, tenant_id: str) -> bool:
    stmt = (
        select(ModuleAuthorization.id)
        .where(
            ModuleAuthorization.module_id == module_id,
            ModuleAuthorization.tenant_id == tenant_id,
            ModuleAuthorization.is_enabled == True,
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.first() is not None


async def get_authorized_modules(db: AsyncSession, tenant_id: str) -> List[str]:
    stmt = (
        select(ModuleAuthorization.module_id)
        .where(
            ModuleAuthorization.tenant_id == tenant_id,
            ModuleAuthorization.is_enabled == True,
        )
        .order_by(ModuleAuthorization.module_id)
    )
    result = await db.execute(stmt)
    return [row[0] for row in result.all()]


async def get_authorization(
    db: AsyncSession, module_id: str, tenant_id: str,
) -> Optional[ModuleAuthorization]:
    stmt = (
        select(ModuleAuthorization)
        .where(
            ModuleAuthorization.module_id == module_id,
            ModuleAuthorization.tenant_id == tenant_id,
        )
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_module_authorization(
    db: AsyncSession,
    *,
    module_id: str,
    module_name: str,
    tenant_id: str,
    is_enabled: bool,
    actor: str,
) -> ModuleAuthorization:
    """Create or update the (module_id, tenant_id) record in one statement.

    Enabling stamps enabled_by/enabled_at with the actor and the current time;
    disabling clears both. The write is a single INSERT ... ON CONFLICT DO
    UPDATE keyed on the natural pair, so concurrent toggles for the same pair
    never produce a second row. The caller commits.
    """
    dialect = db.bind.dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Module authorization upsert is not supported on {dialect}")

    now = utcnow()
    stmt = insert(ModuleAuthorization).values(
        id=new_uuid(),
        module_id=module_id,
        module_name=module_name,
        tenant_id=tenant_id,
        is_enabled=is_enabled,
        enabled_at=now if is_enabled else None,
        enabled_by=actor if is_enabled else None,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["module_id", "tenant_id"],
        set_={
            "is_enabled": stmt.excluded.is_enabled,
            "enabled_at": stmt.excluded.enabled_at,
            "enabled_by": stmt.excluded.enabled_by,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)
    return await get_authorization(db, module_id, tenant_id)


def require_module(module_id: str):
    """Dependency factory: reject the request unless module_id is enabled for the caller's tenant"""
    async def _gate(
        user: CurrentUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
    ) -> CurrentUser:
        if not await is_module_authorized(db, module_id, user.tenant_id):
            log_security(
                "module_access_denied",
                metadata={"module_id": module_id, "tenant_id": user.tenant_id, "user_id": user.id},
            )
            raise ForbiddenError(
                "Access denied. This module is not authorized for your tenant.",
                moduleId=module_id,
                tenantId=user.tenant_id,
            )
        return user
    return _gate
