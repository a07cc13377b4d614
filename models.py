# @even rygh
"""
Data model shared by the scanner and the IDS/IPS engine.

Architecture:
- Finding: single (type, severity, evidence) tuple from one detector
- ScanResult / Issue: output of a file-tree scan
- AttackEvent: one observed or detected attack, keyed by source address
- BlockEntry: an active block, only ever stored in the expiring store
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class Severity(Enum):
    """Finding / event severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class IssueType(Enum):
    MALWARE_DETECTED = "malware_detected"
    SUSPICIOUS_CODE = "suspicious_code"
    DANGEROUS_FUNCTION = "dangerous_function"
    OBFUSCATED_CODE = "obfuscated_code"
    SUSPICIOUS_LOCATION = "suspicious_location"
    SUSPICIOUS_FILENAME = "suspicious_filename"
    HIDDEN_FILE = "hidden_file"
    SIZE_ANOMALY = "size_anomaly"
    MODIFIED_CORE_FILE = "modified_core_file"
    MISSING_CORE_FILE = "missing_core_file"
    FILE_PERMISSIONS = "file_permissions"
    XMLRPC_ENABLED = "xmlrpc_enabled"
    FILE_EDITING_ENABLED = "file_editing_enabled"
    DEBUG_MODE_PUBLIC = "debug_mode_public"


class AttackEventType(Enum):
    BRUTE_FORCE_ATTEMPT = "brute_force_attempt"
    BRUTE_FORCE_DETECTED = "brute_force_detected"
    XMLRPC_REQUEST = "xmlrpc_request"
    XMLRPC_ABUSE = "xmlrpc_abuse"
    MALICIOUS_UPLOAD = "malicious_upload"
    SUSPICIOUS_ATTACHMENT = "suspicious_attachment"
    DIRECT_PHP_CREATION = "direct_php_creation"
    SQL_INJECTION = "sql_injection"
    XSS_ATTEMPT = "xss_attempt"


class EventStatus(Enum):
    NEW = "new"
    READ = "read"
    RESOLVED = "resolved"


class ScanMode(Enum):
    HEURISTIC = "heuristic"
    EXTERNAL_AV = "external-av"


class ScanStatus(Enum):
    RUNNING = "running"
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"
    ERROR = "error"


# Scan contexts: which tree a file was found in
CONTEXT_CORE = "core"
CONTEXT_EXTENSIONS = "extensions"
CONTEXT_THEMES = "themes"
CONTEXT_UPLOADS = "uploads"
CONTEXT_CONTENT = "content"
CONTEXT_CONFIGURATION = "configuration"


RECOMMENDATIONS: Dict[IssueType, str] = {
    IssueType.MALWARE_DETECTED: "Remove or quarantine this file immediately.",
    IssueType.SUSPICIOUS_CODE: "Review and remove suspicious code patterns.",
    IssueType.DANGEROUS_FUNCTION: "Verify if dangerous function usage is legitimate.",
    IssueType.OBFUSCATED_CODE: "Decode and analyze obfuscated content.",
    IssueType.SIZE_ANOMALY: "Check if large file size is expected.",
    IssueType.SUSPICIOUS_LOCATION: "Executable files should not exist in the uploads directory. Remove or investigate.",
    IssueType.SUSPICIOUS_FILENAME: "Investigate file contents and remove if malicious.",
    IssueType.HIDDEN_FILE: "Review hidden file necessity and contents.",
    IssueType.MODIFIED_CORE_FILE: "Restore the original core file or investigate modifications.",
    IssueType.MISSING_CORE_FILE: "Restore the missing core file.",
    IssueType.FILE_PERMISSIONS: "Set secrets file permissions to 600.",
    IssueType.XMLRPC_ENABLED: "Disable XML-RPC if not needed.",
    IssueType.FILE_EDITING_ENABLED: "Add define('DISALLOW_FILE_EDIT', true); to the secrets file.",
    IssueType.DEBUG_MODE_PUBLIC: "Disable debug mode or enable debug logging.",
}


def recommendation_for(issue_type: IssueType) -> str:
    return RECOMMENDATIONS.get(issue_type, "Investigate and take appropriate action.")


@dataclass(frozen=True)
class Finding:
    """
    Single detection produced for one file or one request.

    Detectors return findings; only the orchestrator turns them into Issues.
    """
    issue_type: Any                    # IssueType for files, AttackEventType for requests
    severity: Severity
    description: str
    evidence: Dict[str, Any] = field(default_factory=dict)
    path: Optional[Path] = None


@dataclass
class FileDescriptor:
    """One file yielded by the tree walk."""
    path: Path
    context: str


@dataclass
class ScanResult:
    """
    Outcome of one full scan.

    Mutated only by the orchestrator that created it and frozen by finalize().
    """
    id: int
    started_at: datetime
    mode: ScanMode
    status: ScanStatus = ScanStatus.RUNNING
    duration_seconds: float = 0.0
    files_scanned: int = 0
    issues_found: int = 0
    error: Optional[str] = None
    _finalized: bool = field(default=False, repr=False, compare=False)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def finalize(self, status: ScanStatus, duration_seconds: float, error: Optional[str] = None) -> None:
        if self._finalized:
            raise RuntimeError(f"Scan {self.id} already finalized with status={self.status.value}")
        self.status = status
        self.duration_seconds = round(duration_seconds, 2)
        self.error = error
        self._finalized = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "started_at": self.started_at.isoformat(),
            "mode": self.mode.value,
            "status": self.status.value,
            "duration_seconds": self.duration_seconds,
            "files_scanned": self.files_scanned,
            "issues_found": self.issues_found,
            "error": self.error,
        }


def status_for_issue_count(issues_found: int) -> ScanStatus:
    if issues_found > 5:
        return ScanStatus.CRITICAL
    if issues_found > 0:
        return ScanStatus.WARNING
    return ScanStatus.SAFE


@dataclass
class Issue:
    id: int
    scan_id: int
    file_path: str
    issue_type: IssueType
    severity: Severity
    description: str
    recommendation: str
    context: str
    created_at: datetime
    resolved: bool = False
    isolated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["issue_type"] = self.issue_type.value
        result["severity"] = self.severity.value
        result["created_at"] = self.created_at.isoformat()
        return result


@dataclass
class AttackEvent:
    id: int
    event_type: AttackEventType
    source: str
    description: str
    severity: Severity
    created_at: datetime
    updated_at: datetime
    status: EventStatus = EventStatus.NEW
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type.value,
            "source": self.source,
            "description": self.description,
            "severity": self.severity.value,
            "status": self.status.value,
            "extra": self.extra,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class BlockEntry:
    source: str
    reason: str
    blocked_at: datetime
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "reason": self.reason,
            "blocked_at": self.blocked_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
