# tests/test_module_gate.py — Server-side module gate
import asyncio

import pytest
import pytest_asyncio
from fastapi import APIRouter, FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database import get_db_session
from errors import register_exception_handlers
from models import ModuleAuthorization
from module_gate import (
    is_module_authorized, get_authorized_modules, upsert_module_authorization,
)
from module_shell import ModuleDefinition, include_modules
from routers import module_authorization
from tests.conftest import get_auth_headers, register_module, authorize_module

SAMPLE_ITEMS = "/api/modules/sample-module/items"

inventory_router = APIRouter()


@inventory_router.get("/items")
async def list_inventory_items():
    return {"data": [{"sku": "SKU-1", "quantity": 4}]}


INVENTORY_MODULE = ModuleDefinition(
    module_id="inventory-items",
    module_name="Inventory Items",
    version="1.0.0",
    category="Inventory",
    router=inventory_router,
)


@pytest_asyncio.fixture
async def inventory_client(db_engine):
    """App with the authorization router and an inventory module behind its gate"""
    gated_app = FastAPI()
    register_exception_handlers(gated_app)
    gated_app.include_router(module_authorization.router)
    include_modules(gated_app, [INVENTORY_MODULE])

    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    gated_app.dependency_overrides[get_db_session] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=gated_app), base_url="http://test") as ac:
        yield ac


# ============================================================
# QUERIES
# ============================================================

@pytest.mark.asyncio
class TestQueries:
    async def test_no_record_means_not_authorized(self, db_session, public_tenant):
        assert await is_module_authorized(db_session, "inventory-items", public_tenant.id) is False

    async def test_disabled_record_means_not_authorized(self, db_session, public_tenant):
        await authorize_module(db_session, "inventory-items", public_tenant, enabled=False)
        assert await is_module_authorized(db_session, "inventory-items", public_tenant.id) is False

    async def test_enabled_record_is_tenant_scoped(self, db_session, public_tenant, system_tenant):
        await authorize_module(db_session, "inventory-items", public_tenant)
        assert await is_module_authorized(db_session, "inventory-items", public_tenant.id) is True
        assert await is_module_authorized(db_session, "inventory-items", system_tenant.id) is False

    async def test_authorized_modules(self, db_session, public_tenant):
        await authorize_module(db_session, "reports", public_tenant)
        await authorize_module(db_session, "inventory-items", public_tenant)
        await authorize_module(db_session, "purchase-order", public_tenant, enabled=False)
        assert await get_authorized_modules(db_session, public_tenant.id) == ["inventory-items", "reports"]


@pytest.mark.asyncio
class TestUpsert:
    async def test_enable_then_disable(self, db_session, public_tenant):
        record = await upsert_module_authorization(
            db_session, module_id="inventory-items", module_name="Inventory Items",
            tenant_id=public_tenant.id, is_enabled=True, actor="admin@erp-console.dev",
        )
        await db_session.commit()
        assert record.is_enabled is True
        assert record.enabled_by == "admin@erp-console.dev"
        assert record.enabled_at is not None
        record_id = record.id

        record = await upsert_module_authorization(
            db_session, module_id="inventory-items", module_name="Inventory Items",
            tenant_id=public_tenant.id, is_enabled=False, actor="admin@erp-console.dev",
        )
        await db_session.commit()
        assert record.id == record_id
        assert record.is_enabled is False
        assert record.enabled_by is None
        assert record.enabled_at is None

    async def test_concurrent_toggles_leave_one_record(self, db_engine, db_session, public_tenant):
        session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

        async def toggle(enabled: bool):
            async with session_factory() as session:
                await upsert_module_authorization(
                    session, module_id="inventory-items", module_name="Inventory Items",
                    tenant_id=public_tenant.id, is_enabled=enabled, actor="admin@erp-console.dev",
                )
                await session.commit()

        await asyncio.gather(*(toggle(i % 2 == 0) for i in range(6)))

        result = await db_session.execute(
            select(func.count()).select_from(ModuleAuthorization).where(
                ModuleAuthorization.module_id == "inventory-items",
                ModuleAuthorization.tenant_id == public_tenant.id,
            )
        )
        assert result.scalar() == 1


# ============================================================
# GATE ON MODULE ROUTES
# ============================================================

@pytest.mark.asyncio
class TestGate:
    async def test_default_deny(self, client: AsyncClient, tenant_admin, public_tenant):
        res = await client.get(SAMPLE_ITEMS, headers=get_auth_headers(tenant_admin))
        assert res.status_code == 403
        body = res.json()
        assert body["success"] is False
        assert body["message"] == "Access denied. This module is not authorized for your tenant."
        assert body["moduleId"] == "sample-module"
        assert body["tenantId"] == public_tenant.id

    async def test_enabled_module_passes(self, client: AsyncClient, tenant_admin, public_tenant, db_session):
        await authorize_module(db_session, "sample-module", public_tenant)
        res = await client.get(SAMPLE_ITEMS, headers=get_auth_headers(tenant_admin))
        assert res.status_code == 200

    async def test_disabled_module_denied(self, client: AsyncClient, tenant_admin, public_tenant, db_session):
        await authorize_module(db_session, "sample-module", public_tenant, enabled=False)
        res = await client.get(SAMPLE_ITEMS, headers=get_auth_headers(tenant_admin))
        assert res.status_code == 403

    async def test_gate_runs_before_handler_writes(self, client: AsyncClient, tenant_admin, public_tenant, db_session):
        res = await client.post(SAMPLE_ITEMS, json={"name": "Should not exist"}, headers=get_auth_headers(tenant_admin))
        assert res.status_code == 403

        await authorize_module(db_session, "sample-module", public_tenant)
        res = await client.get(SAMPLE_ITEMS, headers=get_auth_headers(tenant_admin))
        assert res.json()["pagination"]["total"] == 0

    async def test_gate_follows_active_tenant(self, client: AsyncClient, sysadmin, system_tenant, public_tenant, db_session):
        await authorize_module(db_session, "sample-module", public_tenant)
        headers = get_auth_headers(sysadmin)

        res = await client.get(SAMPLE_ITEMS, headers=headers)
        assert res.status_code == 403
        assert res.json()["tenantId"] == system_tenant.id

        sysadmin.active_tenant_id = public_tenant.id
        await db_session.commit()
        res = await client.get(SAMPLE_ITEMS, headers=headers)
        assert res.status_code == 200

    async def test_no_cache_between_requests(self, client: AsyncClient, tenant_admin, public_tenant, db_session):
        record = await authorize_module(db_session, "sample-module", public_tenant)
        headers = get_auth_headers(tenant_admin)
        assert (await client.get(SAMPLE_ITEMS, headers=headers)).status_code == 200

        record.is_enabled = False
        await db_session.commit()
        assert (await client.get(SAMPLE_ITEMS, headers=headers)).status_code == 403

    async def test_unauthenticated(self, client: AsyncClient):
        res = await client.get(SAMPLE_ITEMS)
        assert res.status_code == 401


@pytest.mark.asyncio
async def test_inventory_items_enable_flow(inventory_client, tenant_admin, db_session):
    """Registered but unauthorized module becomes usable once enabled for the tenant"""
    await register_module(db_session, "inventory-items", "Inventory Items", category="Inventory")
    headers = get_auth_headers(tenant_admin)

    res = await inventory_client.get("/api/system/module-authorization/registered-modules", headers=headers)
    listing = {m["moduleId"]: m for m in res.json()}
    assert listing["inventory-items"]["isAuthorized"] is False
    assert (await inventory_client.get("/api/modules/inventory-items/items", headers=headers)).status_code == 403

    res = await inventory_client.post("/api/system/module-authorization", json={
        "moduleId": "inventory-items", "moduleName": "Inventory Items", "isEnabled": True,
    }, headers=headers)
    assert res.status_code == 201

    res = await inventory_client.get("/api/system/module-authorization/registered-modules", headers=headers)
    listing = {m["moduleId"]: m for m in res.json()}
    assert listing["inventory-items"]["isAuthorized"] is True

    res = await inventory_client.get("/api/modules/inventory-items/items", headers=headers)
    assert res.status_code == 200
    assert res.json()["data"][0]["sku"] == "SKU-1"
