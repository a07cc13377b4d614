# @even rygh
"""
Heuristic file classifier.

Applies the pattern library to one file and returns findings. Rules are
independent: a hit from one rule never suppresses another.

Content rules (scannable extensions only):
- suspicious_code: one finding per matching pattern family
- dangerous_function: one finding per matching call name
- obfuscated_code: base64 blob that decodes to a dangerous keyword (first hit only)
- size_anomaly: large text/script file

Location rules (every file):
- suspicious_location: executable file under the uploads tree
- suspicious_filename: random-looking name with an executable extension
- hidden_file: dotfile other than the access-control file
"""
import base64
import binascii
import math
from pathlib import Path
from typing import Iterable, List, Optional

from models import CONTEXT_UPLOADS, Finding, IssueType, Severity
from patterns import (
    BASE64_CANDIDATE,
    DANGEROUS_FUNCTION_PATTERNS,
    DECODED_PAYLOAD_KEYWORDS,
    EXECUTABLE_EXTENSIONS,
    HEX_NAME,
    RANDOM_ALNUM_NAME,
    SIZE_CHECKED_EXTENSIONS,
    SUSPICIOUS_CODE_PATTERNS,
    extension_of,
)

DEFAULT_SCANNABLE_EXTENSIONS = frozenset({"php", "js", "html", "htm", "css", "txt", "htaccess"})


def format_file_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    size = max(size, 0)
    power = int(math.log(size, 1024)) if size else 0
    power = min(power, len(units) - 1)
    return f"{round(size / (1024 ** power), 2)} {units[power]}"


def decode_base64_candidate(blob: bytes) -> Optional[bytes]:
    """Strict decode; returns None when blob is not valid base64."""
    padded = blob.rstrip(b"=")
    padded += b"=" * (-len(padded) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        return None


def contains_payload_keyword(decoded: bytes) -> bool:
    text = decoded.decode("latin-1").lower()
    return any(keyword in text for keyword in DECODED_PAYLOAD_KEYWORDS)


class FileClassifier:
    """Stateless; safe to share between scan worker threads."""

    def __init__(
        self,
        scannable_extensions: Optional[Iterable[str]] = None,
        size_anomaly_bytes: int = 1024 * 1024,
        access_control_file: str = ".htaccess",
    ):
        self.scannable_extensions = frozenset(
            scannable_extensions if scannable_extensions is not None else DEFAULT_SCANNABLE_EXTENSIONS
        )
        self.size_anomaly_bytes = size_anomaly_bytes
        self.access_control_file = access_control_file

    def is_scannable(self, path: Path) -> bool:
        return extension_of(path.name) in self.scannable_extensions

    def classify(self, path: Path, content: bytes, context: str, size: Optional[int] = None) -> List[Finding]:
        """Content and location findings for one file."""
        findings = self.check_content(path, content, size=size)
        findings.extend(self.check_location(path, context))
        return findings

    def check_content(self, path: Path, content: bytes, size: Optional[int] = None) -> List[Finding]:
        text = content.decode("utf-8", errors="replace")
        findings: List[Finding] = []

        for family, pattern in SUSPICIOUS_CODE_PATTERNS.items():
            if pattern.search(text):
                findings.append(Finding(
                    issue_type=IssueType.SUSPICIOUS_CODE,
                    severity=Severity.MEDIUM,
                    description=f"Suspicious code pattern detected: {family}",
                    evidence={"pattern_family": family},
                    path=path,
                ))

        for name, pattern in DANGEROUS_FUNCTION_PATTERNS.items():
            if pattern.search(text):
                findings.append(Finding(
                    issue_type=IssueType.DANGEROUS_FUNCTION,
                    severity=Severity.MEDIUM,
                    description=f"Dangerous function detected: {name}",
                    evidence={"function": name},
                    path=path,
                ))

        obfuscated = self._find_obfuscated_payload(content)
        if obfuscated is not None:
            findings.append(Finding(
                issue_type=IssueType.OBFUSCATED_CODE,
                severity=Severity.HIGH,
                description="Base64 encoded suspicious content detected",
                evidence={"encoded_sample": obfuscated[:64].decode("ascii")},
                path=path,
            ))

        file_size = size if size is not None else len(content)
        if file_size > self.size_anomaly_bytes and extension_of(path.name) in SIZE_CHECKED_EXTENSIONS:
            findings.append(Finding(
                issue_type=IssueType.SIZE_ANOMALY,
                severity=Severity.LOW,
                description=f"Unusually large file size: {format_file_size(file_size)}",
                evidence={"size_bytes": file_size},
                path=path,
            ))

        return findings

    def _find_obfuscated_payload(self, content: bytes) -> Optional[bytes]:
        # First hit wins: decoding every blob in a large bundle is expensive
        for match in BASE64_CANDIDATE.finditer(content):
            blob = match.group(0)
            decoded = decode_base64_candidate(blob)
            if decoded is not None and contains_payload_keyword(decoded):
                return blob
        return None

    def check_location(self, path: Path, context: str) -> List[Finding]:
        name = path.name
        extension = extension_of(name)
        findings: List[Finding] = []

        if context == CONTEXT_UPLOADS and extension in EXECUTABLE_EXTENSIONS:
            findings.append(Finding(
                issue_type=IssueType.SUSPICIOUS_LOCATION,
                severity=Severity.HIGH,
                description=f"Executable .{extension} file found in uploads directory",
                evidence={"extension": extension},
                path=path,
            ))

        stem = name[: -(len(extension) + 1)] if extension else name
        if extension in EXECUTABLE_EXTENSIONS and (HEX_NAME.match(stem) or RANDOM_ALNUM_NAME.match(stem)):
            findings.append(Finding(
                issue_type=IssueType.SUSPICIOUS_FILENAME,
                severity=Severity.MEDIUM,
                description="File has suspicious random-looking name",
                evidence={"filename": name},
                path=path,
            ))

        if name.startswith(".") and name != self.access_control_file:
            findings.append(Finding(
                issue_type=IssueType.HIDDEN_FILE,
                severity=Severity.LOW,
                description="Hidden file detected",
                evidence={"filename": name},
                path=path,
            ))

        return findings
