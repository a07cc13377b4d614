# @even rygh
"""
Security administration API.

Operator actions (scan, resolve, isolate, unblock) and read access to
scans, issues, attack events and active blocks.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from exceptions import NotFoundError, QuarantineError, ScanInProgressError, SchemaError
from models import EventStatus
from security_service import SecurityService

logger = logging.getLogger(__name__)


async def _require_admin_access(request: Request) -> None:
    # Optional token gate
    token = request.app.state.settings.admin_token
    if token and request.headers.get("x-admin-token") != token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access denied",
        )


def get_service(request: Request) -> SecurityService:
    return request.app.state.service


router = APIRouter(
    prefix="/security",
    tags=["Security"],
    dependencies=[Depends(_require_admin_access)],
    responses={
        403: {"description": "Admin token missing or invalid"},
        404: {"description": "Not found"},
    },
)


class ScanRequest(BaseModel):
    deadline_seconds: Optional[float] = Field(default=None, gt=0)


class LoginFailure(BaseModel):
    source: str = Field(..., min_length=1, max_length=64)
    username: str = Field(default="", max_length=256)


class EventStatusUpdate(BaseModel):
    status: EventStatus


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.post("/scans", status_code=status.HTTP_201_CREATED)
def run_scan(body: Optional[ScanRequest] = None, service: SecurityService = Depends(get_service)) -> Dict[str, Any]:
    """
    Run a full scan and return its result.

    Runs in the threadpool; the response is sent once the scan is finished.
    """
    try:
        result = service.run_full_scan(deadline_seconds=body.deadline_seconds if body else None)
    except ScanInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except SchemaError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return result.to_dict()


@router.get("/scans")
def list_scans(limit: int = 10, service: SecurityService = Depends(get_service)) -> Dict[str, Any]:
    scans = service.list_scans(limit)
    return {"count": len(scans), "scans": [s.to_dict() for s in scans]}


@router.get("/scans/progress")
def scan_progress(service: SecurityService = Depends(get_service)) -> Dict[str, Any]:
    current = service.orchestrator.progress()
    return {"running": current is not None, "scan": current}


@router.get("/scans/{scan_id}")
def get_scan(scan_id: int, service: SecurityService = Depends(get_service)) -> Dict[str, Any]:
    try:
        return service.get_scan(scan_id).to_dict()
    except NotFoundError as e:
        raise _not_found(e)


@router.get("/scans/{scan_id}/issues")
def get_scan_issues(scan_id: int, service: SecurityService = Depends(get_service)) -> Dict[str, Any]:
    try:
        issues = service.scan_issues(scan_id)
    except NotFoundError as e:
        raise _not_found(e)
    by_severity: Dict[str, int] = {}
    for issue in issues:
        by_severity[issue.severity.value] = by_severity.get(issue.severity.value, 0) + 1
    return {
        "scan_id": scan_id,
        "summary": {"total_issues": len(issues), "by_severity": by_severity},
        "issues": [i.to_dict() for i in issues],
    }


@router.post("/issues/{issue_id}/resolve")
def resolve_issue(issue_id: int, service: SecurityService = Depends(get_service)) -> Dict[str, Any]:
    try:
        return service.resolve_issue(issue_id).to_dict()
    except NotFoundError as e:
        raise _not_found(e)


@router.post("/issues/{issue_id}/isolate")
def isolate_issue(issue_id: int, service: SecurityService = Depends(get_service)) -> Dict[str, Any]:
    try:
        return service.isolate_issue(issue_id).to_dict()
    except NotFoundError as e:
        raise _not_found(e)
    except QuarantineError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)


@router.get("/blocked")
def list_blocked(service: SecurityService = Depends(get_service)) -> Dict[str, Any]:
    entries = service.mitigation.list_blocked()
    return {"count": len(entries), "blocked": [e.to_dict() for e in entries]}


@router.delete("/blocked/{source}")
def unblock(source: str, service: SecurityService = Depends(get_service)) -> Dict[str, Any]:
    return {"source": source, "unblocked": service.unblock(source)}


@router.get("/events")
def list_events(
    limit: int = 100,
    status_filter: Optional[EventStatus] = None,
    service: SecurityService = Depends(get_service),
) -> Dict[str, Any]:
    events = service.list_events(limit=limit, status=status_filter)
    return {"count": len(events), "events": [e.to_dict() for e in events]}


@router.post("/events/{event_id}/status")
def update_event_status(
    event_id: int, body: EventStatusUpdate, service: SecurityService = Depends(get_service)
) -> Dict[str, Any]:
    try:
        return service.mark_event(event_id, body.status).to_dict()
    except NotFoundError as e:
        raise _not_found(e)


@router.post("/events/login-failed", status_code=status.HTTP_202_ACCEPTED)
def login_failed(body: LoginFailure, request: Request) -> Dict[str, Any]:
    """Report a failed login from the hosting application's auth layer."""
    alerts = request.app.state.detector.record_failed_login(body.source, body.username)
    return {
        "source": body.source,
        "alerts": [a.to_dict() for a in alerts],
        "blocked": request.app.state.mitigation.is_blocked(body.source),
    }


@router.get("/status")
def attack_status(request: Request) -> Dict[str, Any]:
    return request.app.state.detector.attack_status()


@router.get("/stats")
def attack_stats(request: Request, period_hours: int = 24) -> Dict[str, Any]:
    return {"period_hours": period_hours, "stats": request.app.state.detector.attack_stats(period_hours * 3600)}


@router.post("/uploads/sweep")
def sweep_uploads(request: Request) -> Dict[str, Any]:
    """Run the dropped-PHP sweep over the uploads tree now."""
    events = request.app.state.upload_monitor.sweep_uploads()
    return {"count": len(events), "events": [e.to_dict() for e in events]}
