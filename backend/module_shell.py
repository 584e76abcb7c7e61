"""
ERP Console — Module Shell

Composes the installed modules into the application:

- every module router is mounted under ``/api/modules/{module_id}`` with the
  module gate as a router-level dependency, so no module route can skip it;
- ``sync_module_registry`` registers installed modules in the catalog
  without overwriting metadata an administrator has edited;
- ``menus_for`` builds the sidebar entries a caller may see.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from fastapi import APIRouter, Depends, FastAPI
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from logging_system import get_logger, LogCategory
from models import ModuleRegistry, new_uuid, utcnow
from module_gate import require_module, get_authorized_modules
from routers import sample_module

MODULE_API_PREFIX = "/api/modules"


@dataclass(frozen=True)
class ModuleMenuItem:
    id: str
    title: str
    url: str
    permission: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "title": self.title, "url": self.url, "permission": self.permission}


@dataclass(frozen=True)
class ModuleDefinition:
    """An installable module: catalog metadata, API router and sidebar entries"""
    module_id: str
    module_name: str
    version: str
    category: str
    router: APIRouter
    description: Optional[str] = None
    repository_url: Optional[str] = None
    documentation_url: Optional[str] = None
    menu_icon: Optional[str] = None
    menu_permission: Optional[str] = None
    menu_items: Sequence[ModuleMenuItem] = field(default_factory=tuple)

    @property
    def api_prefix(self) -> str:
        return f"{MODULE_API_PREFIX}/{self.module_id}"

    @property
    def console_url(self) -> str:
        return f"/console/modules/{self.module_id}"


MODULES: List[ModuleDefinition] = [
    ModuleDefinition(
        module_id="sample-module",
        module_name="Sample Module",
        description="Sample module for demonstrating the modular architecture with CRUD operations",
        version="1.0.0",
        category="Sample",
        repository_url="https://github.com/sample/sample-module",
        documentation_url="https://docs.sample.com/sample-module",
        router=sample_module.router,
        menu_icon="puzzle",
        menu_permission="sample.item.view",
        menu_items=(
            ModuleMenuItem(
                id="list",
                title="Item List",
                url="/console/modules/sample-module",
                permission="sample.item.view",
            ),
        ),
    ),
]


def include_modules(app: FastAPI, modules: Iterable[ModuleDefinition] = None) -> None:
    """Mount each module's router behind its module gate"""
    for module in MODULES if modules is None else modules:
        app.include_router(
            module.router,
            prefix=module.api_prefix,
            dependencies=[Depends(require_module(module.module_id))],
        )
        get_logger().debug(
            f"Mounted module {module.module_id} at {module.api_prefix}",
            category=LogCategory.MODULE,
        )


async def sync_module_registry(db: AsyncSession, modules: Iterable[ModuleDefinition] = None) -> List[str]:
    """Insert catalog rows for modules not yet registered; returns the newly registered ids.

    Existing rows are left untouched (ON CONFLICT DO NOTHING on module_id).
    """
    dialect = db.bind.dialect.name
    if dialect not in ("postgresql", "sqlite"):
        raise RuntimeError(f"Module registry sync is not supported on {dialect}")
    insert = pg_insert if dialect == "postgresql" else sqlite_insert

    registered = []
    for module in MODULES if modules is None else modules:
        now = utcnow()
        stmt = insert(ModuleRegistry).values(
            id=new_uuid(),
            module_id=module.module_id,
            module_name=module.module_name,
            description=module.description,
            version=module.version,
            category=module.category,
            is_active=True,
            repository_url=module.repository_url,
            documentation_url=module.documentation_url,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["module_id"])
        result = await db.execute(stmt)
        if result.rowcount:
            registered.append(module.module_id)
    await db.commit()

    if registered:
        get_logger().info(
            f"Registered modules: {', '.join(registered)}",
            category=LogCategory.MODULE,
            metadata={"module_ids": registered},
        )
    return registered


def _menu_entry(module: ModuleDefinition, permissions: Sequence[str]) -> Optional[dict]:
    if module.menu_permission and module.menu_permission not in permissions:
        return None
    return {
        "id": module.module_id,
        "title": module.module_name,
        "url": module.console_url,
        "icon": module.menu_icon,
        "items": [
            item.to_dict() for item in module.menu_items
            if not item.permission or item.permission in permissions
        ],
    }


async def menus_for(
    db: AsyncSession,
    tenant_id: str,
    permissions: Sequence[str],
    modules: Iterable[ModuleDefinition] = None,
) -> List[dict]:
    """Sidebar entries of modules enabled for the tenant and visible with the given permissions"""
    authorized = set(await get_authorized_modules(db, tenant_id))
    menus = []
    for module in MODULES if modules is None else modules:
        if module.module_id not in authorized:
            continue
        entry = _menu_entry(module, permissions)
        if entry is not None:
            menus.append(entry)
    return menus
