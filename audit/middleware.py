"""
audit/middleware.py -- HTTP middleware that records PHI-relevant requests.

Routes listed in _ROUTE_ACTIONS are recorded automatically; everything else
passes through unless its handler queued entries with audit.log.defer(). Keys
are "METHOD /path" and match exactly, or by prefix when the key ends with
"/" (routes with an id segment).

Entries are attached to the response as a background task, so Starlette runs
them after the last body chunk has gone out. The write goes through
AuditLog.record(), which swallows persistence failures. When the handler
raises, the entries are written before the exception propagates.
"""

from __future__ import annotations

import re
import time

from fastapi import Request
from starlette.background import BackgroundTasks
from starlette.concurrency import run_in_threadpool

from audit.log import AuditLog, build_entry
from audit.models import AuditAction, AuditEntry, ResourceType

_ROUTE_ACTIONS: dict[str, AuditAction] = {
    "GET /api/v1/patients/me": AuditAction.PROFILE_VIEW,
    "PUT /api/v1/patients/me": AuditAction.PROFILE_UPDATE,
    "GET /api/v1/providers/patients": AuditAction.PATIENT_VIEW,
    "GET /api/v1/providers/patients/": AuditAction.PATIENT_VIEW,
    "POST /api/v1/consents": AuditAction.CONSENT_GIVEN,
    "DELETE /api/v1/consents/": AuditAction.CONSENT_REVOKED,
}

_NUMERIC_SEGMENT = re.compile(r"/(\d+)(?:/|$)")


def resolve_action(method: str, path: str) -> AuditAction | None:
    """Map a request to its audit action, or None when the route is not tracked."""
    key = f"{method.upper()} {path}"
    action = _ROUTE_ACTIONS.get(key)
    if action is not None:
        return action
    for pattern, candidate in _ROUTE_ACTIONS.items():
        if pattern.endswith("/") and key.startswith(pattern):
            return candidate
    return None


def resource_type_for(path: str) -> ResourceType:
    # Order matters: /providers/patients/{id} is a patient record.
    if "/patients" in path:
        return ResourceType.PATIENT_PROFILE
    if "/providers" in path:
        return ResourceType.PROVIDER
    if "/appointments" in path:
        return ResourceType.APPOINTMENT
    if "/wellness" in path:
        return ResourceType.WELLNESS_LOG
    if "/consents" in path:
        return ResourceType.CONSENT
    if "/auth" in path:
        return ResourceType.USER
    return ResourceType.SYSTEM


def resource_id_for(path: str) -> int | None:
    match = _NUMERIC_SEGMENT.search(path)
    return int(match.group(1)) if match else None


def _collect_entries(request: Request, status: int, start: float) -> list[AuditEntry]:
    """Deferred entries plus the route-table entry for this request, if any."""
    path = request.url.path
    entries = list(getattr(request.state, "audit_entries", None) or [])

    action = resolve_action(request.method, path)
    if action is not None:
        details: dict = {
            "response_time_ms": round((time.perf_counter() - start) * 1000, 1),
            "status_code": status,
        }
        if request.query_params:
            details["query"] = dict(request.query_params)
        entries.append(
            build_entry(
                request,
                action,
                resource_type=resource_type_for(path),
                resource_id=resource_id_for(path),
                success=200 <= status < 400,
                error_message=f"HTTP {status}" if status >= 400 else None,
                details=details,
            )
        )
    return entries


async def audit_requests(request: Request, call_next):
    """Write deferred and route-table entries after the response has been sent.

    An unhandled exception leaves no response to attach them to, so they are
    written as a failed (500) request before the exception propagates.
    """
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        audit_log: AuditLog = request.app.state.audit_log
        for entry in _collect_entries(request, 500, start):
            await run_in_threadpool(audit_log.record, entry)
        raise

    entries = _collect_entries(request, response.status_code, start)
    if not entries:
        return response

    audit_log = request.app.state.audit_log
    tasks = BackgroundTasks()
    if response.background is not None:
        tasks.add_task(response.background)
    for entry in entries:
        tasks.add_task(audit_log.record, entry)
    response.background = tasks
    return response
