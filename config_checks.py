# @even rygh
"""
Static site configuration checks run at the end of every scan.

Reads constant definitions from the secrets file instead of executing it.
"""
import logging
import stat
from pathlib import Path
from typing import Dict, List

from models import Finding, IssueType, Severity
from patterns import DEFINE_STATEMENT

logger = logging.getLogger(__name__)

# Permission bits compared as a number: 0o400 and 0o500 pass, 0o640 does not
MAX_SECRETS_MODE = 0o600


def _is_truthy(raw: str) -> bool:
    value = raw.strip().strip("'\"").lower()
    return value not in {"false", "0", "", "null"}


def read_defines(path: Path) -> Dict[str, bool]:
    """Map of constant name -> truthiness for every define() in path."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Cannot read secrets file: {path} | {type(e).__name__}: {str(e)}")
        return {}
    return {m.group("name").upper(): _is_truthy(m.group("value")) for m in DEFINE_STATEMENT.finditer(text)}


def check_site_configuration(site_root: Path, secrets_file: str, xmlrpc_enabled: bool) -> List[Finding]:
    findings: List[Finding] = []
    secrets_path = site_root / secrets_file
    defines: Dict[str, bool] = {}

    try:
        info = secrets_path.stat()
    except FileNotFoundError:
        info = None
    except OSError as e:
        logger.warning(f"Cannot stat secrets file: {secrets_path} | {type(e).__name__}: {str(e)}")
        info = None

    if info is not None and stat.S_ISREG(info.st_mode):
        mode = stat.S_IMODE(info.st_mode) & 0o777
        if mode > MAX_SECRETS_MODE:
            findings.append(Finding(
                issue_type=IssueType.FILE_PERMISSIONS,
                severity=Severity.MEDIUM,
                description=f"{secrets_file} has insecure permissions: {mode:o}",
                evidence={"mode": f"{mode:o}"},
                path=secrets_path,
            ))
        defines = read_defines(secrets_path)

    if xmlrpc_enabled:
        findings.append(Finding(
            issue_type=IssueType.XMLRPC_ENABLED,
            severity=Severity.LOW,
            description="XML-RPC is enabled and may pose security risk",
            path=site_root / "xmlrpc.php",
        ))

    if not defines.get("DISALLOW_FILE_EDIT", False):
        findings.append(Finding(
            issue_type=IssueType.FILE_EDITING_ENABLED,
            severity=Severity.MEDIUM,
            description="File editing is enabled in admin",
            path=secrets_path,
        ))

    if defines.get("WP_DEBUG", False) and not defines.get("WP_DEBUG_LOG", False):
        findings.append(Finding(
            issue_type=IssueType.DEBUG_MODE_PUBLIC,
            severity=Severity.LOW,
            description="Debug mode is enabled without log file",
            path=secrets_path,
        ))

    return findings
