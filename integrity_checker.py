# @even rygh
"""
Core integrity checker.

Compares on-disk core files against the checksum manifest published for the
installed platform version. A manifest that cannot be fetched skips the
check; it never fails the scan.
"""
import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from exceptions import ExternalServiceError
from models import Finding, IssueType, Severity
from patterns import PLATFORM_VERSION

logger = logging.getLogger(__name__)


class ManifestSource(ABC):
    @abstractmethod
    def fetch(self, version: str) -> Dict[str, str]:
        """Return relative path -> md5 hex digest, or raise ExternalServiceError."""


class HttpManifestSource(ManifestSource):
    """
    Checksum API client.

    Expects the WordPress checksum API shape: {"checksums": {path: md5}}.
    Some versions nest one more level keyed by version; both are accepted.
    """

    def __init__(self, url_template: str, timeout: float = 30.0, transport: Optional[httpx.BaseTransport] = None):
        self.url_template = url_template
        self.timeout = timeout
        self._transport = transport

    def fetch(self, version: str) -> Dict[str, str]:
        url = self.url_template.format(version=version)
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(url)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"Checksum manifest request timed out after {self.timeout}s", {"url": url}) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Checksum manifest request failed: {type(e).__name__}", {"url": url}) from e
        except ValueError as e:
            raise ExternalServiceError("Checksum manifest is not valid JSON", {"url": url}) from e

        checksums = data.get("checksums") if isinstance(data, dict) else None
        if isinstance(checksums, dict) and version in checksums and isinstance(checksums[version], dict):
            checksums = checksums[version]
        if not isinstance(checksums, dict) or not checksums:
            raise ExternalServiceError(f"No checksums published for version {version}", {"url": url})
        return {str(path): str(digest) for path, digest in checksums.items()}


def md5_file(path: Path, chunk_size: int = 65536) -> str:
    digest = hashlib.md5()
    with path.open("rb") as handle:
        while chunk := handle.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def detect_platform_version(site_root: Path, version_file: str) -> Optional[str]:
    """Read the installed version from the platform's version file."""
    path = site_root / version_file
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    match = PLATFORM_VERSION.search(text)
    return match.group("version") if match else None


class IntegrityChecker:
    def __init__(self, site_root: Path, source: ManifestSource):
        self.site_root = site_root
        self.source = source

    def check_integrity(self, version: Optional[str]) -> List[Finding]:
        if not version:
            logger.warning("Integrity check skipped: platform version unknown")
            return []

        try:
            manifest = self.source.fetch(version)
        except ExternalServiceError as e:
            logger.warning(f"Integrity check skipped: {e.message} | version={version}")
            return []

        findings: List[Finding] = []
        for relative, expected in manifest.items():
            path = self.site_root / relative
            if not path.is_file():
                findings.append(Finding(
                    issue_type=IssueType.MISSING_CORE_FILE,
                    severity=Severity.MEDIUM,
                    description="Core file is missing",
                    evidence={"relative_path": relative},
                    path=path,
                ))
                continue
            try:
                actual = md5_file(path)
            except OSError as e:
                logger.warning(f"Integrity check could not read file: {path} | {type(e).__name__}: {str(e)}")
                continue
            if actual.lower() != expected.lower():
                findings.append(Finding(
                    issue_type=IssueType.MODIFIED_CORE_FILE,
                    severity=Severity.HIGH,
                    description="Core file has been modified",
                    evidence={"relative_path": relative, "expected_md5": expected, "actual_md5": actual},
                    path=path,
                ))

        logger.info(
            f"Integrity check completed | version={version} "
            f"manifest_files={len(manifest)} findings={len(findings)}"
        )
        return findings
