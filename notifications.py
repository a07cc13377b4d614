# @even rygh
"""
Notification boundary.

Formatting and delivery (email, chat) belong to Notifier implementations.
The core hands results to NotificationDispatcher, which never blocks on
delivery and never lets a delivery failure reach the caller.
"""
import json
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from threading import Lock
from typing import List, Optional

from models import AttackEvent, ScanResult

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    def notify_scan(self, result: ScanResult) -> None: ...

    @abstractmethod
    def notify_attack(self, event: AttackEvent) -> None: ...


class LoggingNotifier(Notifier):
    """Default notifier: writes a summary line to the service log."""

    def notify_scan(self, result: ScanResult) -> None:
        logger.info(
            f"Scan report: {result.id} | status={result.status.value} "
            f"files={result.files_scanned} issues={result.issues_found} "
            f"duration={result.duration_seconds}s"
        )

    def notify_attack(self, event: AttackEvent) -> None:
        logger.warning(
            f"Attack report: {event.event_type.value} | source={event.source} "
            f"severity={event.severity.value} | {event.description}"
        )


class AttackLogNotifier(Notifier):
    """Appends high/critical attack events as JSON lines to a dedicated file."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = Lock()

    def notify_scan(self, result: ScanResult) -> None:
        return None

    def notify_attack(self, event: AttackEvent) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(event.to_dict()) + "\n"
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)


class NotificationDispatcher:
    """
    Fans results out to notifiers on a single background worker.

    Order of delivery per notifier is preserved. Failures are logged.
    """

    def __init__(self, notifiers: Optional[List[Notifier]] = None, max_workers: int = 1):
        self.notifiers = list(notifiers) if notifiers is not None else [LoggingNotifier()]
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def _deliver(self, notifier: Notifier, method: str, payload) -> None:
        try:
            getattr(notifier, method)(payload)
        except Exception as e:
            logger.error(
                f"Notification failed: {type(notifier).__name__}.{method} | "
                f"{type(e).__name__}: {str(e)}"
            )

    def _submit(self, method: str, payload) -> List[Future]:
        return [self._executor.submit(self._deliver, n, method, payload) for n in self.notifiers]

    def scan_completed(self, result: ScanResult) -> List[Future]:
        return self._submit("notify_scan", result)

    def attack_detected(self, event: AttackEvent) -> List[Future]:
        return self._submit("notify_attack", event)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
