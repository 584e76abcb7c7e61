# auth.py — Authentication, tenant resolution & permissions for the ERP console
# Features:
# - JWT access/refresh tokens with JTI for revocation
# - Active tenant per user, role held per tenant membership
# - Permission codes derived from the tenant role
# - Brute force protection on login

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
from collections import defaultdict

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from errors import UnauthorizedError, ForbiddenError, RateLimitedError
from logging_system import bind_identity, log_security
from models import (
    User, UserTenant, Tenant, AuditLog, AuditEventType, AuditStatus, UserRole,
    RevokedToken, utcnow,
)

logger = logging.getLogger("erp-console.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set. Generated ephemeral key; "
        "tokens will not survive a restart. Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15

security = HTTPBearer(auto_error=False)

# In-memory brute force tracker, per process
_login_attempts: Dict[str, list] = defaultdict(list)


# ============================================================
# ROLES & PERMISSIONS
# ============================================================

PERM_MODULE_VIEW = "system.module.view"
PERM_MODULE_MANAGE = "system.module.manage"
PERM_REGISTRY_MANAGE = "system.registry.manage"
PERM_AUDIT_VIEW = "system.audit.view"
PERM_SAMPLE_VIEW = "sample.item.view"
PERM_SAMPLE_MANAGE = "sample.item.manage"

ROLE_PERMISSIONS = {
    UserRole.SYSADMIN: [
        PERM_MODULE_VIEW, PERM_MODULE_MANAGE, PERM_REGISTRY_MANAGE, PERM_AUDIT_VIEW,
        PERM_SAMPLE_VIEW, PERM_SAMPLE_MANAGE,
    ],
    UserRole.TENANT_ADMIN: [
        PERM_MODULE_VIEW, PERM_MODULE_MANAGE, PERM_AUDIT_VIEW,
        PERM_SAMPLE_VIEW, PERM_SAMPLE_MANAGE,
    ],
    UserRole.USER: [
        PERM_SAMPLE_VIEW,
    ],
}


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class RefreshRequest(BaseModel):
    refresh_token: str


class SwitchTenantRequest(BaseModel):
    tenant_id: str


class CurrentUser(BaseModel):
    id: str
    email: str
    display_name: str
    tenant_id: str
    role: str
    is_active: bool
    permissions: List[str] = []
    token_jti: Optional[str] = None
    token_expires_at: Optional[datetime] = None


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password, token and tenant membership handling"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def _create_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type,
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        return AuthService._create_token(data, "access", delta)

    @staticmethod
    def create_refresh_token(data: Dict[str, Any]) -> str:
        return AuthService._create_token(data, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise UnauthorizedError("Token expired")
        except JWTError:
            raise UnauthorizedError("Invalid token")

    @staticmethod
    def _check_brute_force(email: str) -> None:
        """Reject logins once the recent failure count reaches the threshold"""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        _login_attempts[email] = [t for t in _login_attempts[email] if t > cutoff]
        if len(_login_attempts[email]) >= MAX_LOGIN_ATTEMPTS:
            log_security("login_locked_out", metadata={"email": email})
            raise RateLimitedError(
                f"Too many login attempts. Try again in {LOGIN_LOCKOUT_MINUTES} minutes."
            )

    @staticmethod
    def _record_failed_attempt(email: str) -> None:
        _login_attempts[email].append(datetime.now(timezone.utc))

    @staticmethod
    def _clear_attempts(email: str) -> None:
        _login_attempts.pop(email, None)

    @staticmethod
    async def get_membership(user_id: str, tenant_id: str, db: AsyncSession) -> Optional[UserTenant]:
        stmt = select(UserTenant).where(
            UserTenant.user_id == user_id,
            UserTenant.tenant_id == tenant_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _login_audit(user: User, request: Optional[Request], status: AuditStatus) -> AuditLog:
        return AuditLog(
            event_type=AuditEventType.USER_LOGIN,
            status=status,
            user_id=user.id,
            tenant_id=user.active_tenant_id,
            module="system",
            ip_address=request.client.host if request and request.client else None,
            user_agent=request.headers.get("user-agent") if request else None,
            request_id=getattr(request.state, "request_id", None) if request else None,
        )

    @staticmethod
    async def authenticate_user(
        email: str, password: str, db: AsyncSession, request: Optional[Request] = None,
    ) -> Optional[User]:
        AuthService._check_brute_force(email)

        stmt = select(User).where(User.email == email)
        result = await db.execute(stmt)
        user = result.scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            AuthService._record_failed_attempt(email)
            if user:
                db.add(AuthService._login_audit(user, request, AuditStatus.FAILURE))
                await db.commit()
            return None

        if not user.is_active:
            return None

        AuthService._clear_attempts(email)
        user.last_login_at = utcnow()

        db.add(AuthService._login_audit(user, request, AuditStatus.SUCCESS))
        await db.commit()
        await db.refresh(user)

        return user

    @staticmethod
    async def switch_tenant(user_id: str, tenant_id: str, db: AsyncSession) -> User:
        membership = await AuthService.get_membership(user_id, tenant_id, db)
        if not membership:
            raise ForbiddenError("You are not a member of this tenant")

        tenant = await db.get(Tenant, tenant_id)
        if not tenant or not tenant.is_active:
            raise ForbiddenError("Tenant is not active")

        user = await db.get(User, user_id)
        previous = user.active_tenant_id
        user.active_tenant_id = tenant_id
        db.add(AuditLog(
            event_type=AuditEventType.TENANT_SWITCHED,
            user_id=user_id,
            tenant_id=tenant_id,
            module="system",
            resource_type="tenant",
            resource_id=tenant_id,
            previous_state=previous,
            new_state=tenant_id,
        ))
        await db.commit()
        await db.refresh(user)
        return user

    @staticmethod
    async def is_token_revoked(jti: str, db: AsyncSession) -> bool:
        stmt = select(RevokedToken).where(RevokedToken.jti == jti)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def revoke_token(jti: str, user_id: str, expires_at: datetime, db: AsyncSession) -> None:
        db.add(RevokedToken(jti=jti, user_id=user_id, expires_at=expires_at))
        await db.commit()

    @staticmethod
    def get_role_permissions(role) -> List[str]:
        try:
            return list(ROLE_PERMISSIONS[UserRole(role)])
        except (ValueError, KeyError):
            return list(ROLE_PERMISSIONS[UserRole.USER])


def _role_value(role) -> str:
    return role.value if isinstance(role, UserRole) else str(role)


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    """Resolve the bearer token to a user and their active tenant"""
    if credentials is None:
        raise UnauthorizedError("Not authenticated")

    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise UnauthorizedError("Invalid token type")

    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise UnauthorizedError("Token has been revoked")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token")

    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise UnauthorizedError("User not found or inactive")

    if not user.active_tenant_id:
        raise ForbiddenError("No active tenant selected")

    membership = await AuthService.get_membership(user.id, user.active_tenant_id, db)
    if not membership:
        raise ForbiddenError("You are not a member of the active tenant")

    bind_identity(user.id, user.active_tenant_id)

    exp = payload.get("exp")
    return CurrentUser(
        id=user.id,
        email=user.email,
        display_name=user.display_name or "",
        tenant_id=user.active_tenant_id,
        role=_role_value(membership.role),
        is_active=user.is_active,
        permissions=AuthService.get_role_permissions(membership.role),
        token_jti=jti,
        token_expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )


def require_permission(*codes: str):
    """Dependency factory: require the active-tenant role to grant every code"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        for code in codes:
            if code not in user.permissions:
                raise ForbiddenError(f"Missing required permission: {code}")
        return user
    return _check

