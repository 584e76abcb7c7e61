# tests/test_pagination.py — Pagination metadata and list endpoints
import math

import pytest
from httpx import AsyncClient

from pagination import pagination_meta, MAX_PAGE, MAX_LIMIT
from tests.conftest import get_auth_headers, authorize_module


@pytest.mark.parametrize("page,limit,total", [
    (1, 10, 0),
    (1, 10, 10),
    (1, 10, 11),
    (2, 10, 11),
    (3, 5, 11),
    (4, 5, 11),
    (1, 1, 1),
])
def test_pagination_meta_invariants(page, limit, total):
    meta = pagination_meta(page, limit, total)
    assert meta["totalPages"] == math.ceil(total / limit)
    assert meta["hasNext"] == (page < meta["totalPages"])
    assert meta["hasPrev"] == (page > 1)
    assert meta["total"] == total


def test_empty_result_has_no_pages():
    assert pagination_meta(1, 10, 0) == {
        "page": 1, "limit": 10, "total": 0, "totalPages": 0, "hasNext": False, "hasPrev": False,
    }


@pytest.mark.asyncio
class TestListEndpoints:
    async def test_pages_never_exceed_limit(self, client: AsyncClient, tenant_admin, public_tenant, db_session):
        await authorize_module(db_session, "sample-module", public_tenant)
        headers = get_auth_headers(tenant_admin)
        for i in range(7):
            res = await client.post("/api/modules/sample-module/items", json={"name": f"Item {i}"}, headers=headers)
            assert res.status_code == 201

        seen = []
        for page in (1, 2, 3):
            res = await client.get(f"/api/modules/sample-module/items?page={page}&limit=3", headers=headers)
            body = res.json()
            assert len(body["data"]) <= 3
            assert body["pagination"]["totalPages"] == 3
            assert body["pagination"]["hasNext"] == (page < 3)
            assert body["pagination"]["hasPrev"] == (page > 1)
            seen.extend(item["id"] for item in body["data"])
        assert len(set(seen)) == 7

    async def test_page_past_the_end_is_empty(self, client: AsyncClient, tenant_admin):
        res = await client.get("/api/system/module-authorization?page=5", headers=get_auth_headers(tenant_admin))
        assert res.status_code == 200
        body = res.json()
        assert body["data"] == []
        assert body["pagination"]["hasNext"] is False
        assert body["pagination"]["hasPrev"] is True

    @pytest.mark.parametrize("query", [
        "page=0", "limit=0", "limit=101", "page=abc", "page=1000001", "page=99999999999999999999",
    ])
    async def test_invalid_paging_params(self, client: AsyncClient, tenant_admin, query):
        res = await client.get(f"/api/system/module-authorization?{query}", headers=get_auth_headers(tenant_admin))
        assert res.status_code == 400

    async def test_last_allowed_page(self, client: AsyncClient, tenant_admin):
        res = await client.get(
            f"/api/system/module-authorization?page={MAX_PAGE}&limit={MAX_LIMIT}",
            headers=get_auth_headers(tenant_admin),
        )
        assert res.status_code == 200
        assert res.json()["data"] == []
