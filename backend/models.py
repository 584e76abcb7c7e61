# models.py — Database models for the ERP console
# - String UUID primary keys everywhere
# - Tenants, users and per-tenant role membership
# - Module registry + per-tenant module authorization (default-deny)
# - Audit trail and token revocation
# - Sample module data

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    SYSADMIN = "sysadmin"
    TENANT_ADMIN = "tenant_admin"
    USER = "user"


class AuditEventType(str, PyEnum):
    # Auth events
    USER_LOGIN = "auth.user.login"
    USER_LOGOUT = "auth.user.logout"
    TENANT_SWITCHED = "auth.tenant.switched"
    # Module registry events
    MODULE_REGISTERED = "module.registry.created"
    MODULE_UPDATED = "module.registry.updated"
    # Module authorization events
    MODULE_ENABLED = "module.auth.enabled"
    MODULE_DISABLED = "module.auth.disabled"


class AuditStatus(str, PyEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class SampleItemStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


# ============================================================
# TENANTS
# ============================================================

class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String, primary_key=True, default=new_uuid)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    memberships = relationship("UserTenant", back_populates="tenant")
    module_authorizations = relationship("ModuleAuthorization", back_populates="tenant")


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False, default="")
    password_hash = Column(String, nullable=False)
    active_tenant_id = Column(String, ForeignKey("tenants.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    memberships = relationship("UserTenant", back_populates="user")
    audit_logs = relationship("AuditLog", back_populates="user", foreign_keys="AuditLog.user_id")


class UserTenant(Base):
    """A user's membership in a tenant, with the role held there."""
    __tablename__ = "user_tenants"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="memberships")
    tenant = relationship("Tenant", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", name="uq_user_tenant"),
    )


# ============================================================
# TOKEN REVOCATION
# ============================================================

class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    jti = Column(String, unique=True, nullable=False, index=True)  # JWT ID
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    revoked_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)


# ============================================================
# AUDIT LOG
# ============================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    event_type = Column(SQLEnum(AuditEventType), nullable=False, index=True)
    status = Column(SQLEnum(AuditStatus), default=AuditStatus.SUCCESS, nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    tenant_id = Column(String, nullable=True, index=True)
    module = Column(String, nullable=True)  # e.g. "system", "sample-module"
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    previous_state = Column(String, nullable=True)
    new_state = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    request_id = Column(String, index=True)

    user = relationship("User", back_populates="audit_logs", foreign_keys=[user_id])

    __table_args__ = (
        Index("idx_audit_tenant_timestamp", "tenant_id", "timestamp"),
        Index("idx_audit_event_timestamp", "event_type", "timestamp"),
        Index("idx_audit_resource", "tenant_id", "resource_type", "resource_id"),
    )


# ============================================================
# MODULE REGISTRY
# ============================================================

class ModuleRegistry(Base):
    """Catalog of modules installed in this deployment. Never hard-deleted."""
    __tablename__ = "sys_module_registry"

    id = Column(String, primary_key=True, default=new_uuid)
    module_id = Column(String(255), unique=True, nullable=False, index=True)  # slug, e.g. "inventory-items"
    module_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    version = Column(String(50), nullable=False)
    category = Column(String(100), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    repository_url = Column(String(500), nullable=True)
    documentation_url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ============================================================
# MODULE AUTHORIZATION (per tenant)
# ============================================================

class ModuleAuthorization(Base):
    """Enablement of one module for one tenant.

    At most one row exists per (module_id, tenant_id). A missing row means the
    module is not authorized. Only the current state is kept: disabling clears
    enabled_by/enabled_at.
    """
    __tablename__ = "sys_module_auth"

    id = Column(String, primary_key=True, default=new_uuid)
    module_id = Column(String(255), nullable=False, index=True)
    module_name = Column(String(255), nullable=False)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    is_enabled = Column(Boolean, nullable=False, default=False)
    enabled_at = Column(DateTime(timezone=True), nullable=True)
    enabled_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="module_authorizations")

    __table_args__ = (
        UniqueConstraint("module_id", "tenant_id", name="uq_module_auth_module_tenant"),
        Index("idx_module_auth_tenant_enabled", "tenant_id", "is_enabled"),
    )


# ============================================================
# SAMPLE MODULE
# ============================================================

class SampleItem(Base):
    __tablename__ = "sample_items"

    id = Column(String, primary_key=True, default=new_uuid)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(String(500), nullable=True)
    status = Column(SQLEnum(SampleItemStatus), default=SampleItemStatus.ACTIVE, nullable=False)
    is_public = Column(Boolean, default=False)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
