# @even rygh
"""
Operator actions: run scans, resolve and isolate issues, unblock sources.

Every action is safe to repeat: resolving a resolved issue, isolating an
isolated one or unblocking an unblocked source is a no-op.
"""
import logging
import threading
from typing import List, Optional

from exceptions import QuarantineError
from mitigation import MitigationController
from models import AttackEvent, EventStatus, Issue, ScanResult
from quarantine import QuarantineManager
from repository import ScanRepository
from scanner import ScanOrchestrator

logger = logging.getLogger(__name__)


class SecurityService:
    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        repository: ScanRepository,
        quarantine: QuarantineManager,
        mitigation: MitigationController,
    ):
        self.orchestrator = orchestrator
        self.repository = repository
        self.quarantine = quarantine
        self.mitigation = mitigation

    def run_full_scan(
        self,
        deadline_seconds: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScanResult:
        return self.orchestrator.run_full_scan(deadline_seconds=deadline_seconds, cancel_event=cancel_event)

    def list_scans(self, limit: int = 10) -> List[ScanResult]:
        return self.repository.list_scans(limit)

    def get_scan(self, scan_id: int) -> ScanResult:
        return self.repository.get_scan(scan_id)

    def scan_issues(self, scan_id: int) -> List[Issue]:
        self.repository.get_scan(scan_id)
        return self.repository.issues_for_scan(scan_id)

    def resolve_issue(self, issue_id: int) -> Issue:
        issue = self.repository.resolve_issue(issue_id)
        logger.info(f"Issue resolved: {issue_id} | file={issue.file_path}")
        return issue

    def isolate_issue(self, issue_id: int) -> Issue:
        """
        Quarantine the issue's file and mark the issue isolated.

        Raises QuarantineError (issue left untouched) when the move fails.
        """
        issue = self.repository.get_issue(issue_id)
        if issue.isolated:
            return issue
        try:
            new_path = self.quarantine.quarantine(issue.file_path)
        except QuarantineError:
            logger.error(f"Issue isolation failed: {issue_id} | file={issue.file_path}")
            raise
        isolated = self.repository.isolate_issue(issue_id, str(new_path))
        logger.info(f"Issue isolated: {issue_id} | {issue.file_path} -> {new_path}")
        return isolated

    def unblock(self, source: str) -> bool:
        return self.mitigation.unblock(source)

    def list_events(self, limit: int = 100, status: Optional[EventStatus] = None) -> List[AttackEvent]:
        return self.repository.list_events(status=status, limit=limit)

    def mark_event(self, event_id: int, status: EventStatus) -> AttackEvent:
        return self.repository.update_event_status(event_id, status)
