"""
Structured Security Audit Logging for Proxy Gatekeeper.

Every gate decision is recorded as a JSON-structured event: credential
resolution success or failure, permissive bypasses, and product
authorization allow/deny.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

from proxy_gatekeeper.core.correlation import get_correlation_id
from proxy_gatekeeper.core.identity import Identity


class AuditEventType(str, Enum):
    """Types of security audit events."""

    AUTH_SUCCESS = "auth.success"
    AUTH_FAILURE = "auth.failure"
    AUTH_BYPASS = "auth.bypass"
    AUTHZ_ALLOWED = "authz.allowed"
    AUTHZ_DENIED = "authz.denied"


@dataclass
class AuditEvent:
    """Structured audit event."""

    event_type: AuditEventType
    timestamp: float = field(default_factory=time.time)
    principal_id: str | None = None
    proxy: str | None = None
    resource: str | None = None
    result: str = "unknown"
    ip_address: str | None = None
    correlation_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["event_type"] = self.event_type.value
        data["timestamp_iso"] = datetime.fromtimestamp(self.timestamp).isoformat()
        return data

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class SecurityAuditor:
    """
    Gate decision auditor.

    Logs events to:
    1. Python logging (WARNING for failures and denials, INFO otherwise)
    2. Optional JSONL file for compliance

    Usage:
        auditor = SecurityAuditor(log_path=Path("gatekeeper_audit.jsonl"))

        auditor.log_authz_denied(
            identity,
            proxy="edgemicro_weather",
            resource="/weather/forecast",
            reason="No entitled product grants edgemicro_weather",
        )
    """

    def __init__(
        self,
        *,
        log_path: Path | None = None,
        log_level: int = logging.INFO,
        logger_name: str = "proxy_gatekeeper.audit",
    ) -> None:
        """
        Initialize security auditor.

        Args:
            log_path: Path to JSONL audit log file (optional)
            log_level: Python logging level
            logger_name: Name for the Python logger
        """
        self._logger = logging.getLogger(logger_name)
        self._logger.setLevel(log_level)
        self._log_file: TextIO | None = None

        if log_path:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_file = open(log_path, "a", encoding="utf-8")

    def close(self) -> None:
        """Close the audit log file."""
        if self._log_file:
            self._log_file.close()
            self._log_file = None

    def _emit(self, event: AuditEvent) -> str:
        if event.correlation_id is None:
            event.correlation_id = get_correlation_id()

        json_line = event.to_json()
        level = logging.WARNING if event.result in ("failure", "denied") else logging.INFO
        self._logger.log(level, json_line)

        if self._log_file:
            self._log_file.write(json_line + "\n")
            self._log_file.flush()

        return json_line

    def log_auth_success(
        self,
        identity: Identity,
        *,
        source: str,
        resource: str,
        proxy: str | None = None,
        cache_hit: bool = False,
        ip_address: str | None = None,
    ) -> str:
        """
        Log a resolved identity.

        Args:
            identity: Verified identity
            source: Credential source (bearer, api_key)
            resource: Request path
            proxy: Target proxy name
            cache_hit: Identity served from the identity cache
            ip_address: Client IP

        Returns:
            Event JSON
        """
        event = AuditEvent(
            event_type=AuditEventType.AUTH_SUCCESS,
            principal_id=identity.principal_id,
            proxy=proxy,
            resource=resource,
            result="success",
            ip_address=ip_address,
            details={
                "source": source,
                "application_name": identity.application_name,
                "cache_hit": cache_hit,
            },
        )
        return self._emit(event)

    def log_auth_failure(
        self,
        *,
        code: str,
        source: str,
        resource: str,
        proxy: str | None = None,
        ip_address: str | None = None,
    ) -> str:
        """Log a failed resolution."""
        event = AuditEvent(
            event_type=AuditEventType.AUTH_FAILURE,
            proxy=proxy,
            resource=resource,
            result="failure",
            ip_address=ip_address,
            details={"code": code, "source": source},
        )
        return self._emit(event)

    def log_auth_bypass(
        self,
        *,
        mode: str,
        resource: str,
        proxy: str | None = None,
        ip_address: str | None = None,
    ) -> str:
        """Log a request admitted without identity by a pass-through mode."""
        event = AuditEvent(
            event_type=AuditEventType.AUTH_BYPASS,
            proxy=proxy,
            resource=resource,
            result="bypass",
            ip_address=ip_address,
            details={"mode": mode},
        )
        return self._emit(event)

    def log_authz_allowed(
        self,
        identity: Identity,
        *,
        proxy: str,
        resource: str,
        product: str | None = None,
        pattern: str | None = None,
    ) -> str:
        """Log an admitted request."""
        event = AuditEvent(
            event_type=AuditEventType.AUTHZ_ALLOWED,
            principal_id=identity.principal_id,
            proxy=proxy,
            resource=resource,
            result="allowed",
            details={"product": product, "pattern": pattern},
        )
        return self._emit(event)

    def log_authz_denied(
        self,
        identity: Identity,
        *,
        proxy: str,
        resource: str,
        reason: str,
    ) -> str:
        """Log a denied request."""
        event = AuditEvent(
            event_type=AuditEventType.AUTHZ_DENIED,
            principal_id=identity.principal_id,
            proxy=proxy,
            resource=resource,
            result="denied",
            details={"products": identity.products, "reason": reason},
        )
        return self._emit(event)
