# tests/conftest.py — Shared test fixtures
import os
import uuid
from typing import Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["MODULE_REGISTRY_SYNC"] = "false"

import auth as auth_module
from models import (
    Base, Tenant, User, UserTenant, UserRole, ModuleRegistry, ModuleAuthorization, utcnow,
)
from auth import AuthService
from database import get_db_session
from main import app

TEST_PASSWORD = "TestPassword123!"


@pytest.fixture(autouse=True)
def reset_login_attempts():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================
# TENANTS & USERS
# ============================================================

@pytest_asyncio.fixture
async def system_tenant(db_session):
    tenant = Tenant(code="SYSTEM", name="System", description="System Tenant")
    db_session.add(tenant)
    await db_session.commit()
    await db_session.refresh(tenant)
    return tenant


@pytest_asyncio.fixture
async def public_tenant(db_session):
    tenant = Tenant(code="PUBLIC", name="Public", description="Public Tenant")
    db_session.add(tenant)
    await db_session.commit()
    await db_session.refresh(tenant)
    return tenant


async def create_user(db_session, email: str, memberships, active_tenant=None, password: str = TEST_PASSWORD) -> User:
    """Create a user with (tenant, role) memberships; the first tenant is active by default"""
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        display_name=email.split("@")[0].title(),
        password_hash=AuthService.hash_password(password),
        active_tenant_id=(active_tenant or memberships[0][0]).id,
        is_active=True,
    )
    db_session.add(user)
    await db_session.flush()
    for tenant, role in memberships:
        db_session.add(UserTenant(user_id=user.id, tenant_id=tenant.id, role=role))
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def sysadmin(db_session, system_tenant, public_tenant):
    """Sysadmin of both tenants, SYSTEM active"""
    return await create_user(
        db_session, "sysadmin@erp-console.dev",
        [(system_tenant, UserRole.SYSADMIN), (public_tenant, UserRole.SYSADMIN)],
    )


@pytest_asyncio.fixture
async def tenant_admin(db_session, public_tenant):
    return await create_user(db_session, "admin@erp-console.dev", [(public_tenant, UserRole.TENANT_ADMIN)])


@pytest_asyncio.fixture
async def test_user(db_session, public_tenant):
    return await create_user(db_session, "testuser@erp-console.dev", [(public_tenant, UserRole.USER)])


# ============================================================
# MODULES
# ============================================================

async def register_module(
    db_session,
    module_id: str,
    module_name: Optional[str] = None,
    version: str = "1.0.0",
    category: str = "General",
    description: Optional[str] = None,
    is_active: bool = True,
) -> ModuleRegistry:
    entry = ModuleRegistry(
        module_id=module_id,
        module_name=module_name or module_id.replace("-", " ").title(),
        version=version,
        category=category,
        description=description,
        is_active=is_active,
    )
    db_session.add(entry)
    await db_session.commit()
    await db_session.refresh(entry)
    return entry


async def authorize_module(db_session, module_id: str, tenant, enabled: bool = True, actor: str = "seed") -> ModuleAuthorization:
    record = ModuleAuthorization(
        module_id=module_id,
        module_name=module_id.replace("-", " ").title(),
        tenant_id=tenant.id,
        is_enabled=enabled,
        enabled_by=actor if enabled else None,
        enabled_at=utcnow() if enabled else None,
    )
    db_session.add(record)
    await db_session.commit()
    await db_session.refresh(record)
    return record


@pytest_asyncio.fixture
async def sample_module(db_session):
    """Registry entry of the sample module"""
    return await register_module(db_session, "sample-module", "Sample Module", category="Sample")


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user; the active tenant is read from the database per request"""
    token_data = {"sub": user.id, "email": user.email}
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}
