"""
ERP Console — Client Gate

Async client for the console API plus the client-side module guard.

The guard is advisory: it decides what a console front end should render
(a loading state, the module, or a "Module Access Restricted" notice) from an
authorization snapshot fetched once per session. The server-side module gate
stays authoritative for every API call.

Snapshot lifecycle:
- fetched when the session is established (login),
- invalidated and refetched when the active tenant changes,
- discarded on logout.
"""

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

import httpx

logger = logging.getLogger("erp-console.client")

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_SAFE_ROUTE = "/console/dashboard"


class ConsoleClientError(Exception):
    """Non-2xx response or transport failure talking to the console API"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(message)


# ============================================================
# SNAPSHOT
# ============================================================

@dataclass(frozen=True)
class AuthorizationSnapshot:
    """Read-only view of the modules enabled for one tenant"""
    tenant_id: str
    module_ids: FrozenSet[str]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AuthorizationSnapshot":
        return cls(
            tenant_id=payload["tenantId"],
            module_ids=frozenset(payload.get("moduleIds") or ()),
        )

    def is_module_authorized(self, module_id: str) -> bool:
        return module_id in self.module_ids


# ============================================================
# HTTP CLIENT
# ============================================================

class ConsoleClient:
    """Async HTTP client for the console API"""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "ConsoleClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    async def _request(self, method: str, endpoint: str, token: Optional[str] = None, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._get_http_client().request(method, endpoint, headers=headers, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Request to {self.base_url}{endpoint} failed: {e}")
            raise ConsoleClientError(f"Request to console API failed: {e}") from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(f"{method} {endpoint} → {response.status_code}")
            raise ConsoleClientError(
                message or f"HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # --- Auth ---

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        return await self._request("POST", "/api/v1/auth/login", json={"email": email, "password": password})

    async def logout(self, token: str) -> None:
        await self._request("POST", "/api/v1/auth/logout", token=token)

    async def switch_tenant(self, token: str, tenant_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/api/v1/auth/switch-tenant", token=token, json={"tenant_id": tenant_id},
        )

    # --- Module authorization ---

    async def fetch_authorization_snapshot(self, token: str) -> AuthorizationSnapshot:
        payload = await self._request("GET", "/api/system/module-authorization/authorized", token=token)
        return AuthorizationSnapshot.from_payload(payload)

    async def fetch_menus(self, token: str) -> List[Dict[str, Any]]:
        payload = await self._request("GET", "/api/system/module-shell/menus", token=token)
        return payload["menus"]


# ============================================================
# SESSION
# ============================================================

class ConsoleSession:
    """Tokens and authorization snapshot of one signed-in console user.

    ``snapshot`` is None until the snapshot has been fetched; guards treat
    that as loading.
    """

    def __init__(self, client: ConsoleClient):
        self.client = client
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.user: Optional[Dict[str, Any]] = None
        self._snapshot: Optional[AuthorizationSnapshot] = None

    @property
    def snapshot(self) -> Optional[AuthorizationSnapshot]:
        return self._snapshot

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    @property
    def tenant_id(self) -> Optional[str]:
        return self.user.get("tenant_id") if self.user else None

    def _apply_tokens(self, tokens: Dict[str, Any]) -> None:
        self.access_token = tokens["access_token"]
        self.refresh_token = tokens.get("refresh_token")
        self.user = tokens.get("user")

    def _clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user = None
        self._snapshot = None

    async def login(self, email: str, password: str) -> AuthorizationSnapshot:
        self._clear()
        self._apply_tokens(await self.client.login(email, password))
        return await self.refresh_snapshot()

    async def refresh_snapshot(self) -> AuthorizationSnapshot:
        if not self.is_authenticated:
            raise ConsoleClientError("Not signed in")
        self._snapshot = None
        self._snapshot = await self.client.fetch_authorization_snapshot(self.access_token)
        return self._snapshot

    async def switch_tenant(self, tenant_id: str) -> AuthorizationSnapshot:
        if not self.is_authenticated:
            raise ConsoleClientError("Not signed in")
        # A failed switch keeps the current tenant and its snapshot
        tokens = await self.client.switch_tenant(self.access_token, tenant_id)
        self._snapshot = None
        self._apply_tokens(tokens)
        return await self.refresh_snapshot()

    async def logout(self) -> None:
        token = self.access_token
        self._clear()
        if token:
            try:
                await self.client.logout(token)
            except ConsoleClientError as e:
                logger.warning(f"Logout request failed, session cleared locally: {e.message}")


# ============================================================
# ROUTE GUARD
# ============================================================

class GuardStatus(str, Enum):
    LOADING = "loading"
    ALLOWED = "allowed"
    RESTRICTED = "restricted"


@dataclass(frozen=True)
class RestrictedNotice:
    title: str
    message: str
    hint: str
    action_label: str
    action_route: str


@dataclass(frozen=True)
class GuardDecision:
    status: GuardStatus
    module_id: str
    notice: Optional[RestrictedNotice] = None
    fallback: Any = None

    @property
    def allowed(self) -> bool:
        return self.status == GuardStatus.ALLOWED


def restricted_notice(module_name: str, safe_route: str = DEFAULT_SAFE_ROUTE) -> RestrictedNotice:
    return RestrictedNotice(
        title="Module Access Restricted",
        message=f"The {module_name} module is not authorized for your tenant.",
        hint="Please contact your administrator to request access to this module.",
        action_label="Return to Dashboard",
        action_route=safe_route,
    )


class ModuleRouteGuard:
    """Decides whether a module screen may render for a session"""

    def __init__(
        self,
        module_id: str,
        module_name: str,
        fallback: Any = None,
        safe_route: str = DEFAULT_SAFE_ROUTE,
    ):
        self.module_id = module_id
        self.module_name = module_name
        self.fallback = fallback
        self.safe_route = safe_route

    def resolve(self, session: ConsoleSession) -> GuardDecision:
        snapshot = session.snapshot
        if snapshot is None:
            return GuardDecision(GuardStatus.LOADING, self.module_id)
        if snapshot.is_module_authorized(self.module_id):
            return GuardDecision(GuardStatus.ALLOWED, self.module_id)
        if self.fallback is not None:
            return GuardDecision(GuardStatus.RESTRICTED, self.module_id, fallback=self.fallback)
        return GuardDecision(
            GuardStatus.RESTRICTED,
            self.module_id,
            notice=restricted_notice(self.module_name, self.safe_route),
        )


def with_module_authorization(module_id: str, module_name: str, fallback: Any = None):
    """Decorator for async screen handlers taking the session as first argument.

    The handler runs only when the guard allows it; otherwise the
    GuardDecision is returned in its place.
    """
    guard = ModuleRouteGuard(module_id, module_name, fallback=fallback)

    def decorator(view: Callable[..., Awaitable[Any]]):
        @functools.wraps(view)
        async def wrapper(session: ConsoleSession, *args, **kwargs):
            decision = guard.resolve(session)
            if not decision.allowed:
                return decision
            return await view(session, *args, **kwargs)
        wrapper.guard = guard
        return wrapper

    return decorator


def filter_menus(
    menus: Iterable[Dict[str, Any]],
    snapshot: Optional[AuthorizationSnapshot],
) -> List[Dict[str, Any]]:
    """Drop sidebar entries of modules the snapshot does not authorize (all of them while loading)"""
    if snapshot is None:
        return []
    return [menu for menu in menus if snapshot.is_module_authorized(menu["id"])]
