# main.py — ERP Console API
# Features:
# - Request correlation IDs and structured request/response logging
# - Security headers
# - Uniform JSON error bodies
# - Module shell: every module router mounted behind the module gate
# - Health check with DB verification

import os
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from database import init_db, close_db, get_db_session, async_session_maker
from errors import register_exception_handlers
from logging_system import (
    RequestContext, set_current_context, reset_current_context,
    log_request, log_response,
)
from module_shell import include_modules, sync_module_registry
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("erp-console")

APP_VERSION = "1.0.0"
MODULE_REGISTRY_SYNC = os.getenv("MODULE_REGISTRY_SYNC", "true").lower() == "true"


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append(
            "JWT_SECRET_KEY is not set or shorter than 32 characters. Generate one with "
            "secrets.token_urlsafe(48)"
        )

    if os.getenv("ENVIRONMENT") == "production" and os.getenv("DEBUG"):
        warnings.append("DEBUG is set in production")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting ERP Console API v{APP_VERSION}...")
    await init_db()
    if MODULE_REGISTRY_SYNC:
        async with async_session_maker() as db:
            registered = await sync_module_registry(db)
        logger.info(f"Module registry synced ({len(registered)} new)")
    _check_startup_config()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app)
    yield
    logger.info("Shutting down ERP Console API...")
    await close_db()


app = FastAPI(
    title="ERP Console",
    description="Multi-tenant ERP console with tenant-scoped module authorization",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

register_exception_handlers(app)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    context = RequestContext.create(
        request_id=request.headers.get("X-Request-ID"),
        correlation_id=request.headers.get("X-Correlation-ID"),
    )
    request.state.request_id = context.request_id
    request.state.correlation_id = context.correlation_id
    token = set_current_context(context)

    try:
        log_request(request.method, request.url.path)
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = context.request_id
        response.headers["X-Correlation-ID"] = context.correlation_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"

        log_response(response.status_code, round(duration * 1000, 2), metadata={"path": request.url.path})
        return response
    finally:
        reset_current_context(token)


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# ROUTERS
# ============================================================

from routers import auth, audit_logs, module_registry, module_authorization, module_shell as shell_menus

app.include_router(auth.router)
app.include_router(module_registry.router)
app.include_router(module_authorization.router)
app.include_router(shell_menus.router)
app.include_router(audit_logs.router)

# Module routers, each behind its module gate
include_modules(app)


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": APP_VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
    }


@app.get("/")
async def root():
    return {
        "name": "ERP Console",
        "version": APP_VERSION,
        "docs": "/docs",
        "health": "/health",
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
        workers=int(os.getenv("WORKERS", 1)),
    )
