"""
ERP Console — Structured Logging

JSON log entries carrying request correlation (request id, correlation id,
user, tenant) taken from the current request context. Used for request
tracing, security events (denied module access) and audit events (module
registry and authorization writes).
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from enum import Enum
import contextvars
import json
import uuid
import traceback
import sys
import os

class LogLevel(str, Enum):
    """Log severity levels"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def numeric(self) -> int:
        levels = {"debug": 10, "info": 20, "warning": 30, "error": 40, "critical": 50}
        return levels.get(self.value, 20)


class LogCategory(str, Enum):
    """Log categories for filtering"""
    REQUEST = "request"
    RESPONSE = "response"
    DATABASE = "database"
    AUTH = "auth"
    SYSTEM = "system"
    SECURITY = "security"
    AUDIT = "audit"
    MODULE = "module"


@dataclass
class LogEntry:
    """A structured log entry"""
    id: str
    timestamp: str
    level: LogLevel
    category: LogCategory
    message: str
    service: str
    tenant_id: Optional[str] = None
    correlation_id: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    stack_trace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "service": self.service,
            "tenant_id": self.tenant_id,
            "correlation_id": self.correlation_id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "duration_ms": self.duration_ms,
            "metadata": self.metadata,
            "tags": self.tags,
            "error": self.error,
            "stack_trace": self.stack_trace,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class RequestContext:
    """Context for request tracing"""
    request_id: str
    correlation_id: str
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None

    @staticmethod
    def create(
        request_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> "RequestContext":
        request_id = request_id or str(uuid.uuid4())
        return RequestContext(
            request_id=request_id,
            correlation_id=correlation_id or request_id,
            user_id=user_id,
            tenant_id=tenant_id,
        )


# Async-safe context var (one value per request task)
_context_var: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "request_context", default=None
)


def get_current_context() -> Optional[RequestContext]:
    return _context_var.get()


def set_current_context(context: RequestContext) -> contextvars.Token:
    return _context_var.set(context)


def reset_current_context(token: contextvars.Token) -> None:
    _context_var.reset(token)


def bind_identity(user_id: Optional[str], tenant_id: Optional[str]) -> None:
    """Attach the authenticated identity to the current request context"""
    context = get_current_context()
    if context is not None:
        context.user_id = user_id
        context.tenant_id = tenant_id


class StructuredLogger:
    """Structured JSON logger for the ERP console"""

    def __init__(
        self,
        service_name: str = "erp-console",
        min_level: LogLevel = LogLevel.INFO,
        stream_output: bool = True,
    ):
        self.service_name = service_name
        self.min_level = min_level
        self.stream_output = stream_output

    def _create_entry(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        duration_ms: Optional[float] = None,
    ) -> LogEntry:
        context = get_current_context()

        entry = LogEntry(
            id=str(uuid.uuid4())[:12],
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            category=category,
            message=message,
            service=self.service_name,
            tenant_id=context.tenant_id if context else None,
            correlation_id=context.correlation_id if context else None,
            request_id=context.request_id if context else None,
            user_id=context.user_id if context else None,
            duration_ms=duration_ms,
            metadata=metadata or {},
            tags=tags or [],
        )

        if error:
            entry.error = {
                "type": type(error).__name__,
                "message": str(error),
            }
            entry.stack_trace = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        return entry

    def _log(self, level: LogLevel, category: LogCategory, message: str, **kwargs) -> Optional[LogEntry]:
        if level.numeric < self.min_level.numeric:
            return None

        entry = self._create_entry(level, category, message, **kwargs)
        if self.stream_output:
            # JSON output to stderr for errors, stdout otherwise
            out = sys.stderr if level.numeric >= LogLevel.ERROR.numeric else sys.stdout
            print(entry.to_json(), file=out)

        return entry

    def debug(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.DEBUG, category, message, **kwargs)

    def info(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.INFO, category, message, **kwargs)

    def warning(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.WARNING, category, message, **kwargs)

    def error(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.ERROR, category, message, **kwargs)

    # Convenience methods
    def request(self, method: str, path: str, **kwargs) -> Optional[LogEntry]:
        return self.info(
            f"{method} {path}",
            category=LogCategory.REQUEST,
            metadata={"method": method, "path": path, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def response(self, status_code: int, duration_ms: float, **kwargs) -> Optional[LogEntry]:
        level = LogLevel.INFO if status_code < 400 else LogLevel.WARNING if status_code < 500 else LogLevel.ERROR
        return self._log(
            level,
            LogCategory.RESPONSE,
            f"Response {status_code}",
            duration_ms=duration_ms,
            metadata={"status_code": status_code, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def security_event(self, event_type: str, **kwargs) -> Optional[LogEntry]:
        return self.warning(
            f"Security event: {event_type}",
            category=LogCategory.SECURITY,
            tags=["security", event_type],
            **kwargs,
        )

    def audit(self, action: str, resource: str, **kwargs) -> Optional[LogEntry]:
        return self.info(
            f"Audit: {action} on {resource}",
            category=LogCategory.AUDIT,
            tags=["audit"],
            metadata={"action": action, "resource": resource, **kwargs.pop("metadata", {})},
            **kwargs,
        )


# Global singleton
_logger: Optional[StructuredLogger] = None


def get_logger() -> StructuredLogger:
    """Get or create the global console logger"""
    global _logger
    if _logger is None:
        _logger = StructuredLogger(
            service_name=os.getenv("OTEL_SERVICE_NAME", "erp-console"),
            min_level=LogLevel.DEBUG if os.getenv("DEBUG") else LogLevel.INFO,
            stream_output=os.getenv("ENVIRONMENT") != "test",
        )
    return _logger


# Convenience functions
def log_request(method: str, path: str, **kwargs) -> Optional[LogEntry]:
    return get_logger().request(method, path, **kwargs)


def log_response(status_code: int, duration_ms: float, **kwargs) -> Optional[LogEntry]:
    return get_logger().response(status_code, duration_ms, **kwargs)


def log_security(event_type: str, **kwargs) -> Optional[LogEntry]:
    return get_logger().security_event(event_type, **kwargs)


def log_audit(action: str, resource: str, **kwargs) -> Optional[LogEntry]:
    return get_logger().audit(action, resource, **kwargs)
