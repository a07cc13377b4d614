# @even rygh
"""
Upload monitoring.

Unlike request inspection, these detections alert immediately, without a
threshold. Executable uploads and freshly dropped PHP files in the uploads
tree are the only cases that quarantine automatically.
"""
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from exceptions import QuarantineError
from models import AttackEvent, AttackEventType, Severity
from patterns import (
    DANGEROUS_UPLOAD_EXTENSIONS,
    DIRECT_CREATION_EXTENSIONS,
    SUSPICIOUS_ATTACHMENT_EXTENSIONS,
    extension_of,
)
from quarantine import QuarantineManager
from scanner import iter_files
from threshold_detector import ThresholdDetector

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "unknown"


class UploadMonitor:
    def __init__(
        self,
        detector: ThresholdDetector,
        quarantine: QuarantineManager,
        uploads_root: Path,
        max_age_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.detector = detector
        self.quarantine = quarantine
        self.uploads_root = uploads_root
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def _quarantine(self, path: Path) -> Optional[str]:
        try:
            return str(self.quarantine.quarantine(path))
        except QuarantineError as e:
            logger.error(f"Automatic quarantine failed: {path} | {e.message}")
            return None

    def inspect_upload(self, file_path: Union[str, Path], source: str) -> Optional[AttackEvent]:
        """Check a just-uploaded file; executable types are alerted and quarantined."""
        path = Path(file_path)
        extension = extension_of(path.name)
        if extension not in DANGEROUS_UPLOAD_EXTENSIONS:
            return None

        try:
            size = path.stat().st_size
        except OSError:
            size = None
        quarantined_to = self._quarantine(path)
        return self.detector.raise_alert(
            AttackEventType.MALICIOUS_UPLOAD,
            source,
            f"Suspicious file upload detected: {path.name}",
            Severity.HIGH,
            {
                "file_path": str(path),
                "file_extension": extension,
                "file_size": size,
                "quarantine_path": quarantined_to,
            },
        )

    def inspect_attachment(
        self, file_path: Union[str, Path], source: str, attachment_id: Optional[int] = None
    ) -> Optional[AttackEvent]:
        path = Path(file_path)
        extension = extension_of(path.name)
        if extension not in SUSPICIOUS_ATTACHMENT_EXTENSIONS:
            return None
        return self.detector.raise_alert(
            AttackEventType.SUSPICIOUS_ATTACHMENT,
            source,
            f"Suspicious attachment uploaded: {path.name} (ID: {attachment_id})",
            Severity.MEDIUM,
            {"attachment_id": attachment_id, "file_path": str(path), "file_extension": extension},
        )

    def sweep_uploads(self) -> List[AttackEvent]:
        """
        Find PHP files created in the uploads tree within max_age_seconds.

        Such files were not written by the upload handler; each one is
        alerted as critical and quarantined.
        """
        if not self.uploads_root.is_dir():
            return []

        now = self._clock()
        events: List[AttackEvent] = []
        for descriptor in iter_files(self.uploads_root, "uploads", skip_dirs=[self.quarantine.quarantine_dir]):
            path = descriptor.path
            if extension_of(path.name) not in DIRECT_CREATION_EXTENSIONS:
                continue
            try:
                info = path.stat()
            except OSError:
                continue
            age = now - info.st_mtime
            if age >= self.max_age_seconds:
                continue

            quarantined_to = self._quarantine(path)
            events.append(self.detector.raise_alert(
                AttackEventType.DIRECT_PHP_CREATION,
                UNKNOWN_SOURCE,
                f"PHP file directly created in uploads directory: {path.name}",
                Severity.CRITICAL,
                {
                    "file_path": str(path),
                    "file_age": int(age),
                    "file_size": info.st_size,
                    "quarantine_path": quarantined_to,
                },
            ))
        if events:
            logger.warning(f"Uploads sweep: {len(events)} dropped PHP files found | root={self.uploads_root}")
        return events
