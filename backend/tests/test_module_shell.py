"""Tests for module composition, registry sync and sidebar menus."""
import re

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from main import app
from models import ModuleRegistry
from module_shell import MODULES, MODULE_API_PREFIX, sync_module_registry
from tests.conftest import get_auth_headers, authorize_module


def _module_routes():
    """(method, path) of every mounted module operation, read from the served OpenAPI document"""
    for path, operations in app.openapi()["paths"].items():
        if not path.startswith(MODULE_API_PREFIX + "/"):
            continue
        for method in operations:
            yield method.upper(), re.sub(r"\{[^}]+\}", "placeholder", path)


def test_every_installed_module_is_mounted():
    routes = set(_module_routes())
    for module in MODULES:
        assert any(path.startswith(module.api_prefix + "/") for _, path in routes)

    items = f"{MODULE_API_PREFIX}/sample-module/items"
    assert {
        ("GET", items), ("POST", items),
        ("GET", f"{items}/placeholder"), ("PUT", f"{items}/placeholder"), ("DELETE", f"{items}/placeholder"),
    } <= routes


@pytest.mark.asyncio
async def test_no_module_route_bypasses_gate(client: AsyncClient, tenant_admin):
    headers = get_auth_headers(tenant_admin)
    routes = list(_module_routes())
    assert routes
    for method, path in routes:
        res = await client.request(method, path, headers=headers, json={"name": "x"})
        assert res.status_code == 403, f"{method} {path} returned {res.status_code}"


@pytest.mark.asyncio
class TestRegistrySync:
    async def test_sync_registers_installed_modules(self, db_session):
        registered = await sync_module_registry(db_session)
        assert registered == [m.module_id for m in MODULES]

        result = await db_session.execute(select(ModuleRegistry).where(ModuleRegistry.module_id == "sample-module"))
        entry = result.scalar_one()
        assert entry.module_name == "Sample Module"
        assert entry.category == "Sample"
        assert entry.is_active is True

    async def test_sync_does_not_overwrite_existing_metadata(self, db_session):
        await sync_module_registry(db_session)
        result = await db_session.execute(select(ModuleRegistry).where(ModuleRegistry.module_id == "sample-module"))
        entry = result.scalar_one()
        entry.version = "9.9.9"
        await db_session.commit()

        assert await sync_module_registry(db_session) == []

        result = await db_session.execute(
            select(ModuleRegistry)
            .where(ModuleRegistry.module_id == "sample-module")
            .execution_options(populate_existing=True)
        )
        assert result.scalar_one().version == "9.9.9"


@pytest.mark.asyncio
class TestMenus:
    async def test_menus_hidden_until_authorized(self, client: AsyncClient, tenant_admin, public_tenant, db_session):
        headers = get_auth_headers(tenant_admin)
        res = await client.get("/api/system/module-shell/menus", headers=headers)
        assert res.status_code == 200
        assert res.json() == {"tenantId": public_tenant.id, "menus": []}

        await authorize_module(db_session, "sample-module", public_tenant)
        res = await client.get("/api/system/module-shell/menus", headers=headers)
        menus = res.json()["menus"]
        assert [m["id"] for m in menus] == ["sample-module"]
        assert menus[0]["url"] == "/console/modules/sample-module"
        assert menus[0]["items"][0]["title"] == "Item List"

    async def test_menus_respect_permissions(self, client: AsyncClient, sysadmin, system_tenant, db_session):
        await authorize_module(db_session, "sample-module", system_tenant)
        res = await client.get("/api/system/module-shell/menus", headers=get_auth_headers(sysadmin))
        assert [m["id"] for m in res.json()["menus"]] == ["sample-module"]

    async def test_menus_require_authentication(self, client: AsyncClient):
        res = await client.get("/api/system/module-shell/menus")
        assert res.status_code == 401
