# @even rygh
"""
Storage boundary for scans, issues and attack events.

The core only talks to ScanRepository. InMemoryRepository is the bundled
implementation: data lives in process memory and is lost on restart.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from exceptions import NotFoundError
from models import (
    AttackEvent,
    AttackEventType,
    EventStatus,
    Issue,
    IssueType,
    ScanMode,
    ScanResult,
    Severity,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanRepository(ABC):
    """Collaborator contract used by the orchestrator, detector and operator actions."""

    @abstractmethod
    def validate_schema(self) -> bool: ...

    @abstractmethod
    def migrate(self) -> bool: ...

    @abstractmethod
    def insert_scan(self, mode: ScanMode, started_at: datetime) -> ScanResult: ...

    @abstractmethod
    def update_scan(self, scan: ScanResult) -> None: ...

    @abstractmethod
    def get_scan(self, scan_id: int) -> ScanResult: ...

    @abstractmethod
    def list_scans(self, limit: int = 10) -> List[ScanResult]: ...

    @abstractmethod
    def insert_issue(
        self,
        scan_id: int,
        file_path: str,
        issue_type: IssueType,
        severity: Severity,
        description: str,
        recommendation: str,
        context: str,
    ) -> Issue: ...

    @abstractmethod
    def get_issue(self, issue_id: int) -> Issue: ...

    @abstractmethod
    def issues_for_scan(self, scan_id: int) -> List[Issue]: ...

    @abstractmethod
    def resolve_issue(self, issue_id: int) -> Issue: ...

    @abstractmethod
    def isolate_issue(self, issue_id: int, new_path: str) -> Issue: ...

    @abstractmethod
    def insert_event(
        self,
        event_type: AttackEventType,
        source: str,
        description: str,
        severity: Severity,
        extra: Optional[Dict[str, Any]] = None,
    ) -> AttackEvent: ...

    @abstractmethod
    def list_events(
        self,
        event_type: Optional[AttackEventType] = None,
        status: Optional[EventStatus] = None,
        since: Optional[datetime] = None,
        severities: Optional[Iterable[Severity]] = None,
        limit: Optional[int] = None,
    ) -> List[AttackEvent]: ...

    @abstractmethod
    def update_event_status(self, event_id: int, status: EventStatus) -> AttackEvent: ...


class InMemoryRepository(ScanRepository):
    """
    Thread-safe in-memory repository.

    Returned objects are copies; callers never hold a reference into storage.
    """

    def __init__(self, schema_version: int = SCHEMA_VERSION, clock=_utcnow):
        self.schema_version = schema_version
        self._clock = clock
        self._lock = Lock()
        self._scans: Dict[int, ScanResult] = {}
        self._issues: Dict[int, Issue] = {}
        self._events: Dict[int, AttackEvent] = {}
        self._next_id = {"scan": 1, "issue": 1, "event": 1}

    def _allocate(self, kind: str) -> int:
        # Caller holds the lock
        value = self._next_id[kind]
        self._next_id[kind] = value + 1
        return value

    # Schema

    def validate_schema(self) -> bool:
        valid = self.schema_version == SCHEMA_VERSION
        if not valid:
            logger.warning(
                f"Schema validation failed | found={self.schema_version} required={SCHEMA_VERSION}"
            )
        return valid

    def migrate(self) -> bool:
        if self.schema_version > SCHEMA_VERSION:
            # Written by a newer release; refuse to downgrade
            logger.error(f"Cannot migrate schema backwards | found={self.schema_version}")
            return False
        logger.info(f"Schema migrated | from={self.schema_version} to={SCHEMA_VERSION}")
        self.schema_version = SCHEMA_VERSION
        return True

    # Scans

    def insert_scan(self, mode: ScanMode, started_at: datetime) -> ScanResult:
        with self._lock:
            scan = ScanResult(id=self._allocate("scan"), started_at=started_at, mode=mode)
            self._scans[scan.id] = replace(scan)
        return scan

    def update_scan(self, scan: ScanResult) -> None:
        with self._lock:
            if scan.id not in self._scans:
                raise NotFoundError(f"Scan {scan.id} not found")
            self._scans[scan.id] = replace(scan)

    def get_scan(self, scan_id: int) -> ScanResult:
        with self._lock:
            scan = self._scans.get(scan_id)
            if scan is None:
                raise NotFoundError(f"Scan {scan_id} not found")
            return replace(scan)

    def list_scans(self, limit: int = 10) -> List[ScanResult]:
        with self._lock:
            scans = sorted(self._scans.values(), key=lambda s: s.id, reverse=True)
            return [replace(s) for s in scans[: max(0, limit)]]

    # Issues

    def insert_issue(self, scan_id, file_path, issue_type, severity, description, recommendation, context) -> Issue:
        with self._lock:
            if scan_id not in self._scans:
                # Issues never exist without their scan
                raise NotFoundError(f"Scan {scan_id} not found")
            issue = Issue(
                id=self._allocate("issue"),
                scan_id=scan_id,
                file_path=file_path,
                issue_type=issue_type,
                severity=severity,
                description=description,
                recommendation=recommendation,
                context=context,
                created_at=self._clock(),
            )
            self._issues[issue.id] = issue
            return replace(issue)

    def get_issue(self, issue_id: int) -> Issue:
        with self._lock:
            issue = self._issues.get(issue_id)
            if issue is None:
                raise NotFoundError(f"Issue {issue_id} not found")
            return replace(issue)

    def issues_for_scan(self, scan_id: int) -> List[Issue]:
        with self._lock:
            return [replace(i) for i in self._issues.values() if i.scan_id == scan_id]

    def resolve_issue(self, issue_id: int) -> Issue:
        with self._lock:
            issue = self._issues.get(issue_id)
            if issue is None:
                raise NotFoundError(f"Issue {issue_id} not found")
            issue.resolved = True
            return replace(issue)

    def isolate_issue(self, issue_id: int, new_path: str) -> Issue:
        with self._lock:
            issue = self._issues.get(issue_id)
            if issue is None:
                raise NotFoundError(f"Issue {issue_id} not found")
            issue.isolated = True
            issue.file_path = new_path
            return replace(issue)

    # Attack events

    def insert_event(self, event_type, source, description, severity, extra=None) -> AttackEvent:
        now = self._clock()
        with self._lock:
            event = AttackEvent(
                id=self._allocate("event"),
                event_type=event_type,
                source=source,
                description=description,
                severity=severity,
                created_at=now,
                updated_at=now,
                extra=dict(extra or {}),
            )
            self._events[event.id] = event
            return replace(event)

    def list_events(self, event_type=None, status=None, since=None, severities=None, limit=None) -> List[AttackEvent]:
        wanted = set(severities) if severities is not None else None
        with self._lock:
            events = [
                e for e in self._events.values()
                if (event_type is None or e.event_type == event_type)
                and (status is None or e.status == status)
                and (since is None or e.created_at >= since)
                and (wanted is None or e.severity in wanted)
            ]
        events.sort(key=lambda e: e.id, reverse=True)
        if limit is not None:
            events = events[: max(0, limit)]
        return [replace(e) for e in events]

    def update_event_status(self, event_id: int, status: EventStatus) -> AttackEvent:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise NotFoundError(f"Event {event_id} not found")
            event.status = status
            event.updated_at = self._clock()
            return replace(event)
