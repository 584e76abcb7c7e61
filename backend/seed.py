#!/usr/bin/env python3
"""
ERP Console — Initial data

Creates the SYSTEM and PUBLIC tenants, a sysadmin user belonging to both,
and registers the installed modules in the module registry. Refuses to run
against a database that already holds tenants.

Usage:
    python seed.py
    python seed.py --admin-email ops@example.com --admin-password '...'
    python seed.py --enable-modules
"""

import os
import asyncio
import argparse
import logging
import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService
from database import init_db, close_db, async_session_maker
from models import Tenant, User, UserTenant, UserRole
from module_gate import upsert_module_authorization
from module_shell import MODULES, sync_module_registry

logger = logging.getLogger("erp-console.seed")

DEFAULT_ADMIN_EMAIL = "sysadmin@erp-console.dev"

TENANTS = [
    {"code": "SYSTEM", "name": "System", "description": "System Tenant"},
    {"code": "PUBLIC", "name": "Public", "description": "Public Tenant"},
]


async def seed(
    db: AsyncSession,
    admin_email: str = DEFAULT_ADMIN_EMAIL,
    admin_password: Optional[str] = None,
    enable_modules: bool = False,
) -> Optional[str]:
    """Seed an empty database. Returns the admin password, or None if tenants already exist."""
    existing = await db.execute(select(Tenant.id).limit(1))
    if existing.first() is not None:
        logger.warning("Database already contains tenants; seed skipped to preserve existing data")
        return None

    tenants = [Tenant(**t) for t in TENANTS]
    db.add_all(tenants)
    await db.flush()

    password = admin_password or secrets.token_urlsafe(12)
    admin = User(
        email=admin_email,
        display_name="System Admin",
        password_hash=AuthService.hash_password(password),
        active_tenant_id=tenants[0].id,
        is_active=True,
    )
    db.add(admin)
    await db.flush()

    for tenant in tenants:
        db.add(UserTenant(user_id=admin.id, tenant_id=tenant.id, role=UserRole.SYSADMIN))
    await db.commit()
    logger.info(f"Seeded tenants {', '.join(t.code for t in tenants)} and user {admin_email}")

    await sync_module_registry(db)

    if enable_modules:
        for tenant in tenants:
            for module in MODULES:
                await upsert_module_authorization(
                    db,
                    module_id=module.module_id,
                    module_name=module.module_name,
                    tenant_id=tenant.id,
                    is_enabled=True,
                    actor=admin_email,
                )
        await db.commit()
        logger.info(f"Enabled {len(MODULES)} module(s) for every seeded tenant")

    return password


async def _run(args) -> int:
    await init_db()
    try:
        async with async_session_maker() as db:
            password = await seed(
                db,
                admin_email=args.admin_email,
                admin_password=args.admin_password,
                enable_modules=args.enable_modules,
            )
    finally:
        await close_db()

    if password is None:
        print("Seed aborted: database already contains tenants.")
        return 1
    print(f"Seed completed. Sign in as {args.admin_email}")
    if not args.admin_password:
        print(f"Generated password: {password}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="ERP Console initial data")
    parser.add_argument("--admin-email", default=os.getenv("SEED_ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL))
    parser.add_argument("--admin-password", default=os.getenv("SEED_ADMIN_PASSWORD"),
                        help="Generated and printed when omitted")
    parser.add_argument("--enable-modules", action="store_true",
                        help="Authorize every installed module for the seeded tenants")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s %(message)s")
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
