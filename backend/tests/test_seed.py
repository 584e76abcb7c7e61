# tests/test_seed.py — Initial data
import pytest
from sqlalchemy import select

from models import Tenant, User, UserTenant, UserRole, ModuleRegistry
from module_gate import get_authorized_modules
from seed import seed, DEFAULT_ADMIN_EMAIL


@pytest.mark.asyncio
async def test_seed_empty_database(db_session):
    password = await seed(db_session, admin_password="Sysadmin-Password-1")
    assert password == "Sysadmin-Password-1"

    tenants = (await db_session.execute(select(Tenant).order_by(Tenant.code))).scalars().all()
    assert [t.code for t in tenants] == ["PUBLIC", "SYSTEM"]

    admin = (await db_session.execute(select(User).where(User.email == DEFAULT_ADMIN_EMAIL))).scalar_one()
    roles = (await db_session.execute(select(UserTenant.role).where(UserTenant.user_id == admin.id))).scalars().all()
    assert roles == [UserRole.SYSADMIN, UserRole.SYSADMIN]

    registry = (await db_session.execute(select(ModuleRegistry.module_id))).scalars().all()
    assert registry == ["sample-module"]

    # Registered, not authorized
    for tenant in tenants:
        assert await get_authorized_modules(db_session, tenant.id) == []


@pytest.mark.asyncio
async def test_seed_generates_password(db_session):
    password = await seed(db_session)
    assert password


@pytest.mark.asyncio
async def test_seed_enable_modules(db_session):
    await seed(db_session, admin_password="Sysadmin-Password-1", enable_modules=True)
    tenants = (await db_session.execute(select(Tenant))).scalars().all()
    for tenant in tenants:
        assert await get_authorized_modules(db_session, tenant.id) == ["sample-module"]


@pytest.mark.asyncio
async def test_seed_refuses_populated_database(db_session, system_tenant):
    assert await seed(db_session) is None
    assert len((await db_session.execute(select(Tenant))).scalars().all()) == 1
