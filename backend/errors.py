# errors.py — Error taxonomy and JSON error responses
#
# Every failure leaving a handler is translated into
#   {"success": false, "message": "...", "request_id": "..."}
# with the status code of its class.

import json
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("erp-console.errors")


class AppError(Exception):
    """Base class for errors that map onto an HTTP status"""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Unauthorized. Please log in."


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class RateLimitedError(AppError):
    status_code = 429
    default_message = "Too many requests"


def error_body(request: Request, message: str, **extra: Any) -> Dict[str, Any]:
    return {
        "success": False,
        "message": message,
        **extra,
        "request_id": getattr(request.state, "request_id", None),
    }


def _clean_validation_errors(exc: RequestValidationError) -> list:
    # Pydantic error payloads may hold non-JSON values (e.g. exceptions in ctx)
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": [str(part) for part in err.get("loc", [])],
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)
    return errors


def _summarise(errors: list) -> str:
    fields = []
    for err in errors:
        loc = [part for part in err["loc"] if part not in ("body", "query", "path")]
        fields.append(".".join(loc) or "body")
    if not fields:
        return "Invalid request"
    return f"Invalid or missing fields: {', '.join(dict.fromkeys(fields))}"


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.message, **exc.extra),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, message),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = _clean_validation_errors(exc)
    return JSONResponse(
        status_code=400,
        content=error_body(request, _summarise(errors), errors=errors),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=error_body(request, "Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
