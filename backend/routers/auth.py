# routers/auth.py — Authentication endpoints with token revocation and tenant switching
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserLogin, TokenResponse, RefreshRequest, SwitchTenantRequest,
    get_current_user, CurrentUser, ACCESS_TOKEN_EXPIRE_MINUTES,
)
from database import get_db_session
from errors import UnauthorizedError, ForbiddenError
from models import AuditLog, AuditEventType, Tenant, User, utcnow

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


async def _build_token_response(user_obj: User, db: AsyncSession) -> TokenResponse:
    """Issue tokens for the user's active tenant"""
    if not user_obj.active_tenant_id:
        raise ForbiddenError("No active tenant selected")
    membership = await AuthService.get_membership(user_obj.id, user_obj.active_tenant_id, db)
    if not membership:
        raise ForbiddenError("You are not a member of the active tenant")

    role = membership.role.value
    token_data = {
        "sub": user_obj.id,
        "email": user_obj.email,
        "tenant_id": user_obj.active_tenant_id,
        "role": role,
    }
    return TokenResponse(
        access_token=AuthService.create_access_token(token_data),
        refresh_token=AuthService.create_refresh_token(token_data),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user={
            "id": user_obj.id,
            "email": user_obj.email,
            "display_name": user_obj.display_name or "",
            "tenant_id": user_obj.active_tenant_id,
            "role": role,
            "permissions": AuthService.get_role_permissions(membership.role),
        },
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive tokens for the active tenant"""
    user = await AuthService.authenticate_user(
        credentials.email, credentials.password, db, request
    )
    if not user:
        raise UnauthorizedError("Invalid credentials")
    return await _build_token_response(user, db)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    refresh_req: RefreshRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Refresh access token using a refresh token"""
    payload = AuthService.verify_token(refresh_req.refresh_token)

    if payload.get("type") != "refresh":
        raise UnauthorizedError("Invalid token type. Expected refresh token.")

    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise UnauthorizedError("Refresh token has been revoked")

    user = await db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise UnauthorizedError("User not found or inactive")

    return await _build_token_response(user, db)


@router.post("/logout")
async def logout(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Revoke the presented access token"""
    db.add(AuditLog(
        event_type=AuditEventType.USER_LOGOUT,
        user_id=user.id,
        tenant_id=user.tenant_id,
        module="system",
        request_id=getattr(request.state, "request_id", None),
    ))
    if user.token_jti:
        await AuthService.revoke_token(
            user.token_jti, user.id, user.token_expires_at or utcnow(), db,
        )
    else:
        await db.commit()

    return {"status": "logged_out", "message": "Session terminated"}


@router.get("/me")
async def get_current_user_info(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Current user, active tenant, role and permissions"""
    tenant = await db.get(Tenant, user.tenant_id)
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "tenant": {
            "id": tenant.id,
            "code": tenant.code,
            "name": tenant.name,
        } if tenant else None,
        "role": user.role,
        "is_active": user.is_active,
        "permissions": user.permissions,
    }


@router.post("/switch-tenant", response_model=TokenResponse)
async def switch_tenant(
    body: SwitchTenantRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Make another of the user's tenants active; returns tokens for it"""
    user_obj = await AuthService.switch_tenant(user.id, body.tenant_id, db)
    return await _build_token_response(user_obj, db)
