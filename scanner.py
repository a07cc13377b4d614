# @even rygh
"""
Scan orchestrator.

Walks the configured site trees, classifies every file and aggregates the
findings into a single ScanResult.

Order of work:
1. Validate repository schema (one migration attempt)
2. Create the ScanResult in 'running' state
3. Core tree (content directory excluded) + core integrity check
4. Extensions, themes, uploads, then the remaining content root
5. Static configuration checks
6. Finalize: critical (> 5 issues), warning (> 0), safe

Design Principles:
- Report only: scanning never modifies or deletes a scanned file
- Per-file errors are logged and skipped; setup errors end the scan as 'error'
- One scan at a time per orchestrator
- Workers classify in parallel; findings fan in to the calling thread,
  so counts match a sequential run
"""
import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from config import Settings
from config_checks import check_site_configuration
from exceptions import ConfigurationError, ExternalServiceError, ScanCancelledError, ScanInProgressError, SchemaError
from external_av import ExternalAVAdapter
from file_classifier import FileClassifier
from integrity_checker import IntegrityChecker, detect_platform_version
from models import (
    CONTEXT_CONFIGURATION,
    CONTEXT_CONTENT,
    CONTEXT_CORE,
    CONTEXT_EXTENSIONS,
    CONTEXT_THEMES,
    CONTEXT_UPLOADS,
    FileDescriptor,
    Finding,
    IssueType,
    ScanMode,
    ScanResult,
    ScanStatus,
    Severity,
    recommendation_for,
    status_for_issue_count,
)
from notifications import NotificationDispatcher
from repository import ScanRepository

logger = logging.getLogger(__name__)


def iter_files(
    root: Path,
    context: str,
    exclude: Iterable[str] = (),
    skip_dirs: Iterable[Path] = (),
) -> Iterator[FileDescriptor]:
    """
    Lazily yield every regular file under root.

    exclude holds names of top-level subdirectories of root to skip;
    skip_dirs holds absolute directories skipped wherever they appear.
    Symlinked directories are not followed.
    """
    excluded = set(exclude)
    skipped = {os.path.abspath(p) for p in skip_dirs}

    def _on_error(error: OSError) -> None:
        logger.warning(f"Directory unreadable, skipped: {error.filename} | {type(error).__name__}: {error.strerror}")

    root_abs = os.path.abspath(root)
    for dirpath, dirnames, filenames in os.walk(root_abs, onerror=_on_error):
        if dirpath == root_abs:
            dirnames[:] = [d for d in dirnames if d not in excluded]
        dirnames[:] = [d for d in dirnames if os.path.join(dirpath, d) not in skipped]
        dirnames.sort()
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if path.is_file():
                yield FileDescriptor(path=path, context=context)


class ScanOrchestrator:
    """
    Runs full scans against one installation.

    All collaborators are injected; nothing here reaches for globals.
    """

    def __init__(
        self,
        settings: Settings,
        repository: ScanRepository,
        classifier: FileClassifier,
        integrity_checker: IntegrityChecker,
        av_adapter: ExternalAVAdapter,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.repository = repository
        self.classifier = classifier
        self.integrity_checker = integrity_checker
        self.av_adapter = av_adapter
        self.dispatcher = dispatcher
        self._clock = clock
        self._run_lock = threading.Lock()
        self._current: Optional[ScanResult] = None

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def progress(self) -> Optional[dict]:
        """Snapshot of the running scan, None when idle."""
        current = self._current
        return current.to_dict() if current is not None else None

    def run_full_scan(
        self,
        deadline_seconds: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScanResult:
        """
        Run one complete scan and return its finalized ScanResult.

        Raises:
            ScanInProgressError: another scan is running
            SchemaError: repository schema incompatible after one migration attempt
        """
        if not self._run_lock.acquire(blocking=False):
            raise ScanInProgressError("A scan is already running")
        try:
            return self._run(deadline_seconds, cancel_event)
        finally:
            self._current = None
            self._run_lock.release()

    def _ensure_schema(self) -> None:
        if self.repository.validate_schema():
            return
        logger.error("Schema validation failed - attempting migration")
        if not self.repository.migrate():
            raise SchemaError("Repository schema is not compatible and migration failed")
        if not self.repository.validate_schema():
            raise SchemaError("Repository schema still invalid after migration")
        logger.info("Schema migration successful - proceeding with scan")

    def _run(self, deadline_seconds: Optional[float], cancel_event: Optional[threading.Event]) -> ScanResult:
        self._ensure_schema()

        if deadline_seconds is None:
            deadline_seconds = self.settings.scan_deadline_seconds
        started = self._clock()
        deadline = started + deadline_seconds if deadline_seconds is not None else None
        mode = ScanMode(self.settings.scan_mode)

        scan = self.repository.insert_scan(mode, datetime.now(timezone.utc))
        self._current = scan
        run = _ScanRun(self, scan, deadline, cancel_event)
        logger.info(f"Scan started: {scan.id} | mode={mode.value} root={self.settings.site_root}")

        try:
            run.execute()
        except (ConfigurationError, ScanCancelledError) as e:
            scan.finalize(ScanStatus.ERROR, self._clock() - started, error=e.message)
            logger.error(f"Scan aborted: {scan.id} | {type(e).__name__}: {e.message}")
        except Exception as e:
            scan.finalize(ScanStatus.ERROR, self._clock() - started, error=f"{type(e).__name__}: {str(e)}")
            logger.exception(f"Scan failed: {scan.id} | {type(e).__name__}: {str(e)}")
        else:
            scan.finalize(status_for_issue_count(scan.issues_found), self._clock() - started)
            logger.info(
                f"Scan completed: {scan.id} | status={scan.status.value} files={scan.files_scanned} "
                f"issues={scan.issues_found} duration={scan.duration_seconds}s"
            )

        self.repository.update_scan(scan)
        self.dispatcher.scan_completed(scan)
        return scan


class _ScanRun:
    """State of one scan. Only the orchestrator thread touches the ScanResult."""

    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        scan: ScanResult,
        deadline: Optional[float],
        cancel_event: Optional[threading.Event],
    ):
        self.o = orchestrator
        self.settings = orchestrator.settings
        self.scan = scan
        self.deadline = deadline
        self.cancel_event = cancel_event
        self._av_seen: Set[Tuple[str, str]] = set()

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ScanCancelledError("Scan cancelled")
        if self.deadline is not None and self.o._clock() > self.deadline:
            raise ScanCancelledError("Scan deadline exceeded")

    def record(self, findings: Iterable[Finding], context: str) -> None:
        for finding in findings:
            path = str(finding.path) if finding.path is not None else ""
            self.o.repository.insert_issue(
                scan_id=self.scan.id,
                file_path=path,
                issue_type=finding.issue_type,
                severity=finding.severity,
                description=finding.description,
                recommendation=recommendation_for(finding.issue_type),
                context=context,
            )
            self.scan.issues_found += 1

    def phases(self) -> List[Tuple[str, Path, Sequence[str]]]:
        s = self.settings
        return [
            (CONTEXT_CORE, s.site_root, [s.content_dir]),
            (CONTEXT_EXTENSIONS, s.extensions_root, []),
            (CONTEXT_THEMES, s.themes_root, []),
            (CONTEXT_UPLOADS, s.uploads_root, []),
            (CONTEXT_CONTENT, s.content_root, [s.extensions_dir, s.themes_dir, s.uploads_dir]),
        ]

    def execute(self) -> None:
        if not self.settings.site_root.is_dir():
            raise ConfigurationError(f"Site root does not exist: {self.settings.site_root}")

        for context, root, exclude in self.phases():
            self.check_cancelled()
            if not root.is_dir():
                logger.info(f"Scan phase skipped, directory missing: {context} | path={root}")
                continue
            if self.scan.mode is ScanMode.EXTERNAL_AV:
                self.external_av_phase(context, root)
            else:
                self.heuristic_phase(context, root, exclude)
                if context == CONTEXT_CORE:
                    self.integrity_phase()

        self.check_cancelled()
        self.record(
            check_site_configuration(
                self.settings.site_root, self.settings.secrets_file, self.settings.xmlrpc_enabled
            ),
            CONTEXT_CONFIGURATION,
        )

    def integrity_phase(self) -> None:
        version = self.settings.platform_version or detect_platform_version(
            self.settings.site_root, self.settings.version_file
        )
        self.record(self.o.integrity_checker.check_integrity(version), CONTEXT_CORE)

    def external_av_phase(self, context: str, root: Path) -> None:
        try:
            detections = self.o.av_adapter.scan(root)
        except ExternalServiceError as e:
            logger.warning(f"External AV skipped: {context} | {e.message}")
            return
        findings = []
        for file_path, signature in detections:
            # The core tree contains the others; report each detection once
            if (file_path, signature) in self._av_seen:
                continue
            self._av_seen.add((file_path, signature))
            findings.append(Finding(
                issue_type=IssueType.MALWARE_DETECTED,
                severity=Severity.HIGH,
                description=f"External AV detected: {signature}",
                evidence={"signature": signature},
                path=Path(file_path),
            ))
        self.record(findings, context)

    def heuristic_phase(self, context: str, root: Path, exclude: Sequence[str]) -> None:
        files = iter_files(root, context, exclude, skip_dirs=[self.settings.quarantine_root])
        max_in_flight = self.settings.scan_workers * 4
        pending: Set[Future] = set()

        with ThreadPoolExecutor(max_workers=self.settings.scan_workers, thread_name_prefix="scan") as pool:
            try:
                for descriptor in files:
                    self.check_cancelled()
                    if len(pending) >= max_in_flight:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        self._collect(done, context)
                    pending.add(pool.submit(self.classify_file, descriptor))
                while pending:
                    self.check_cancelled()
                    done, pending = wait(pending, timeout=1.0, return_when=FIRST_COMPLETED)
                    self._collect(done, context)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

    def _collect(self, done: Iterable[Future], context: str) -> None:
        for future in done:
            self.scan.files_scanned += 1
            try:
                findings = future.result()
            except Exception as e:
                logger.error(f"File classification failed, skipped | {type(e).__name__}: {str(e)}")
                continue
            self.record(findings, context)

    def classify_file(self, descriptor: FileDescriptor) -> List[Finding]:
        """Worker body: location checks for every file, content checks for scannable ones."""
        classifier = self.o.classifier
        path = descriptor.path
        findings = classifier.check_location(path, descriptor.context)
        if not classifier.is_scannable(path):
            return findings

        limit = self.settings.max_content_bytes
        try:
            size = path.stat().st_size
            with path.open("rb") as handle:
                content = handle.read(limit)
        except OSError as e:
            logger.warning(f"File unreadable, skipped: {path} | {type(e).__name__}: {e.strerror}")
            return findings

        if size > limit:
            logger.info(f"File truncated for content scan: {path} | size={size} limit={limit}")
        findings.extend(classifier.check_content(path, content, size=size))
        return findings
