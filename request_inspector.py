# @even rygh
"""
Request inspector: coarse injection filter for decoded request parameters.

A single match in any field flags the whole request. False positives are
tolerated here because the threshold detector needs repeated hits before
any source is blocked.
"""
import logging
from typing import Any, Iterator, List, Mapping, Optional, Pattern, Sequence, Tuple
from urllib.parse import unquote_plus

from models import AttackEventType, Finding, Severity
from patterns import SQL_INJECTION_PATTERNS, XSS_PATTERNS

logger = logging.getLogger(__name__)

# Inspected values longer than this are cut before matching
MAX_FIELD_LENGTH = 8192
# Per-request budget: fields past either limit are not inspected
MAX_FIELDS = 200
MAX_TOTAL_LENGTH = 64 * 1024


def _string_values(params: Mapping[str, Any]) -> Iterator[Tuple[str, str]]:
    for key, value in params.items():
        if isinstance(value, str):
            yield str(key), value
        elif isinstance(value, (list, tuple)):
            for item in value:
                if isinstance(item, str):
                    yield str(key), item


def _first_match(patterns: Sequence[Pattern[str]], fields: List[Tuple[str, str]]) -> Optional[Tuple[str, str]]:
    for field_name, value in fields:
        for pattern in patterns:
            if pattern.search(value):
                return field_name, pattern.pattern
    return None


class RequestInspector:
    CATEGORIES = (
        (AttackEventType.SQL_INJECTION, SQL_INJECTION_PATTERNS, "Suspicious SQL patterns detected"),
        (AttackEventType.XSS_ATTEMPT, XSS_PATTERNS, "Suspicious XSS patterns detected"),
    )

    def inspect(self, params: Mapping[str, Any], uri: str = "") -> List[Finding]:
        """
        Test every string parameter plus the URI against each category.

        The URI is always checked. Parameters are checked up to MAX_FIELDS
        values and MAX_TOTAL_LENGTH characters. Returns at most one finding
        per category.
        """
        decoded_uri = unquote_plus(uri)[:MAX_FIELD_LENGTH] if uri else ""
        budget = MAX_TOTAL_LENGTH - len(decoded_uri)
        fields: List[Tuple[str, str]] = []
        for name, value in _string_values(params):
            if len(fields) >= MAX_FIELDS or budget <= 0:
                logger.debug(f"Inspection budget exhausted at field: {name}")
                break
            value = value[:min(MAX_FIELD_LENGTH, budget)]
            budget -= len(value)
            fields.append((name, value))
        if decoded_uri:
            fields.append(("uri", decoded_uri))

        findings: List[Finding] = []
        for event_type, patterns, label in self.CATEGORIES:
            hit = _first_match(patterns, fields)
            if hit is None:
                continue
            field_name, pattern = hit
            findings.append(Finding(
                issue_type=event_type,
                severity=Severity.LOW,
                description=f"{label} in: {uri or field_name}",
                evidence={"field": field_name, "pattern": pattern},
            ))
        return findings
