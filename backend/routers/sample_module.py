# routers/sample_module.py — Sample module: tenant-scoped items
#
# Mounted by module_shell under /api/modules/sample-module, behind the
# module gate. Items never cross tenants.
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_permission, CurrentUser, PERM_SAMPLE_VIEW, PERM_SAMPLE_MANAGE
from database import get_db_session
from errors import NotFoundError
from models import SampleItem, SampleItemStatus, utcnow
from pagination import PageParams, page_params, paginate

router = APIRouter(tags=["Sample Module"])


# --- Schemas ---

class SampleItemIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    status: SampleItemStatus = SampleItemStatus.ACTIVE
    is_public: bool = Field(default=False, alias="isPublic")

    model_config = {"populate_by_name": True}


def _item_out(item: SampleItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "status": item.status.value if isinstance(item.status, SampleItemStatus) else item.status,
        "isPublic": item.is_public,
        "tenantId": item.tenant_id,
        "createdBy": item.created_by,
        "createdAt": item.created_at.isoformat() if item.created_at else None,
        "updatedAt": item.updated_at.isoformat() if item.updated_at else None,
    }


async def _get_item(db: AsyncSession, item_id: str, tenant_id: str) -> SampleItem:
    item = await db.get(SampleItem, item_id)
    if not item or item.tenant_id != tenant_id:
        raise NotFoundError("Item not found")
    return item


@router.get("/items")
async def list_items(
    params: PageParams = Depends(page_params),
    user: CurrentUser = Depends(require_permission(PERM_SAMPLE_VIEW)),
    db: AsyncSession = Depends(get_db_session),
):
    query = (
        select(SampleItem)
        .where(SampleItem.tenant_id == user.tenant_id)
        .order_by(SampleItem.created_at.desc(), SampleItem.id)
    )
    items, pagination = await paginate(db, query, params)
    return {"data": [_item_out(i) for i in items], "pagination": pagination}


@router.post("/items", status_code=201)
async def create_item(
    body: SampleItemIn,
    user: CurrentUser = Depends(require_permission(PERM_SAMPLE_MANAGE)),
    db: AsyncSession = Depends(get_db_session),
):
    item = SampleItem(
        tenant_id=user.tenant_id,
        name=body.name,
        description=body.description,
        status=body.status,
        is_public=body.is_public,
        created_by=user.id,
    )
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return _item_out(item)


@router.get("/items/{item_id}")
async def get_item(
    item_id: str,
    user: CurrentUser = Depends(require_permission(PERM_SAMPLE_VIEW)),
    db: AsyncSession = Depends(get_db_session),
):
    return _item_out(await _get_item(db, item_id, user.tenant_id))


@router.put("/items/{item_id}")
async def update_item(
    item_id: str,
    body: SampleItemIn,
    user: CurrentUser = Depends(require_permission(PERM_SAMPLE_MANAGE)),
    db: AsyncSession = Depends(get_db_session),
):
    item = await _get_item(db, item_id, user.tenant_id)
    item.name = body.name
    item.description = body.description
    item.status = body.status
    item.is_public = body.is_public
    item.updated_at = utcnow()
    await db.commit()
    await db.refresh(item)
    return _item_out(item)


@router.delete("/items/{item_id}", status_code=204)
async def delete_item(
    item_id: str,
    user: CurrentUser = Depends(require_permission(PERM_SAMPLE_MANAGE)),
    db: AsyncSession = Depends(get_db_session),
):
    item = await _get_item(db, item_id, user.tenant_id)
    await db.delete(item)
    await db.commit()
