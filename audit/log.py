"""
audit/log.py -- Best-effort audit writer and request-context helpers.

AuditLog.record() is the only write path the rest of the app uses. It never
raises: a failed write is logged locally and dropped, because the audit trail
must not be able to break the request that produced it. Route handlers queue
entries with defer(); audit/middleware.py schedules them as a response
background task so they run after the body has been sent.

build_entry() fills an AuditEntry from whatever the request can tell us. The
identity comes from request.state.user (set by auth.dependencies) unless the
caller passes one explicitly; anonymous requests produce null identity fields.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request

from audit.models import AuditAction, AuditEntry, ResourceType
from audit.store import AuditStore
from auth.models import User

logger = logging.getLogger("healthportal.audit")


class AuditLog:
    """Fire-and-forget front end to AuditStore."""

    def __init__(self, store: AuditStore) -> None:
        self.store = store

    def record(self, entry: AuditEntry) -> int | None:
        """Append entry; return its ID, or None if the write failed."""
        try:
            return self.store.append(entry)
        except Exception:
            logger.exception("Audit write failed (action=%s endpoint=%s)", entry.action, entry.endpoint)
            return None


def defer(request: Request, entry: AuditEntry) -> None:
    """Queue an entry on the request; audit_requests writes it after the response is sent.

    Works on error paths too, since request.state outlives the exception
    handler that renders the response.
    """
    pending = getattr(request.state, "audit_entries", None)
    if pending is None:
        pending = []
        request.state.audit_entries = pending
    pending.append(entry)


def client_ip(request: Request) -> str:
    """Best guess at the caller's address: first proxy hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def request_endpoint(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def build_entry(
    request: Request,
    action: AuditAction,
    *,
    user: User | None = None,
    email: str | None = None,
    resource_type: ResourceType | None = None,
    resource_id: int | None = None,
    success: bool = True,
    error_message: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditEntry:
    """Build an entry attributed to `user`, else to the authenticated caller, else to nobody."""
    if user is None:
        user = getattr(request.state, "user", None)
    return AuditEntry(
        action=action.value,
        user_id=user.id if user else None,
        user_email=user.email if user else email,
        user_role=user.role if user else None,
        resource_type=resource_type.value if resource_type else None,
        resource_id=resource_id,
        method=request.method,
        endpoint=request_endpoint(request),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details=details,
        success=success,
        error_message=error_message,
    )
