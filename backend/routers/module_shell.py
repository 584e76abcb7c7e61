# routers/module_shell.py — Sidebar menus for the console shell
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from module_shell import menus_for

router = APIRouter(prefix="/api/system/module-shell", tags=["Module Shell"])


@router.get("/menus")
async def get_menus(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Sidebar entries of the modules enabled for the active tenant"""
    return {
        "tenantId": user.tenant_id,
        "menus": await menus_for(db, user.tenant_id, user.permissions),
    }
