# @even rygh
"""
Threshold-based attack detection.

Every observation is recorded as a low-severity event and increments a
per-(rule, source) counter in the expiring store. The event that moves a
counter to exactly the rule's threshold fires once: a high-severity alert,
a notification and, for mitigating rules, a block.

Window semantics:
- Each observation renews the counter TTL to the full window length
  (fixed window, not a rolling log)
- A counter whose TTL elapses reads as zero again
- Bursts straddling a window boundary can be counted in either window

Default rules:
- brute_force: 10 failed logins / 60s -> brute_force_detected, block
- xmlrpc_abuse: 50 XML-RPC requests / 60s -> xmlrpc_abuse, alert only
- xmlrpc_flood: 10 XML-RPC requests / 60s -> xmlrpc_abuse, block
- sql_injection / xss: 3 inspector hits / 60s -> alert, block
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from config import Settings
from counter_store import ExpiringStore
from mitigation import MitigationController
from models import AttackEvent, AttackEventType, Finding, Severity
from notifications import NotificationDispatcher
from repository import ScanRepository

logger = logging.getLogger(__name__)

NOTIFY_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)


@dataclass(frozen=True)
class ThresholdRule:
    rule_id: str
    observed_event: AttackEventType
    alert_event: AttackEventType
    threshold: int
    window_seconds: int
    severity: Severity = Severity.HIGH
    mitigate: bool = True
    title: str = "Attack"


def default_rules(settings: Settings) -> List[ThresholdRule]:
    return [
        ThresholdRule(
            rule_id="brute_force",
            observed_event=AttackEventType.BRUTE_FORCE_ATTEMPT,
            alert_event=AttackEventType.BRUTE_FORCE_DETECTED,
            threshold=settings.brute_force_threshold,
            window_seconds=settings.brute_force_window_seconds,
            title="Brute force attack",
        ),
        ThresholdRule(
            rule_id="xmlrpc_abuse",
            observed_event=AttackEventType.XMLRPC_REQUEST,
            alert_event=AttackEventType.XMLRPC_ABUSE,
            threshold=settings.xmlrpc_abuse_threshold,
            window_seconds=settings.xmlrpc_abuse_window_seconds,
            mitigate=False,
            title="XML-RPC abuse",
        ),
        ThresholdRule(
            rule_id="xmlrpc_flood",
            observed_event=AttackEventType.XMLRPC_REQUEST,
            alert_event=AttackEventType.XMLRPC_ABUSE,
            threshold=settings.xmlrpc_flood_threshold,
            window_seconds=settings.xmlrpc_flood_window_seconds,
            title="XML-RPC flooding",
        ),
        ThresholdRule(
            rule_id="sql_injection",
            observed_event=AttackEventType.SQL_INJECTION,
            alert_event=AttackEventType.SQL_INJECTION,
            threshold=settings.injection_threshold,
            window_seconds=settings.injection_window_seconds,
            title="SQL injection attack",
        ),
        ThresholdRule(
            rule_id="xss",
            observed_event=AttackEventType.XSS_ATTEMPT,
            alert_event=AttackEventType.XSS_ATTEMPT,
            threshold=settings.injection_threshold,
            window_seconds=settings.injection_window_seconds,
            title="Cross-site scripting attack",
        ),
    ]


def counter_key(rule: ThresholdRule, source: str) -> str:
    return f"count:{rule.rule_id}:{source}"


class ThresholdDetector:
    """
    Consumes security events keyed by source address.

    Never raises for unknown sources or missing counters.
    """

    def __init__(
        self,
        store: ExpiringStore,
        mitigation: MitigationController,
        repository: ScanRepository,
        dispatcher: NotificationDispatcher,
        rules: Iterable[ThresholdRule],
        enabled: bool = True,
        mitigation_enabled: bool = True,
        block_duration_seconds: int = 600,
    ):
        self.store = store
        self.mitigation = mitigation
        self.repository = repository
        self.dispatcher = dispatcher
        self.rules = list(rules)
        self.enabled = enabled
        self.mitigation_enabled = mitigation_enabled
        self.block_duration_seconds = block_duration_seconds

    def rules_for(self, event_type: AttackEventType) -> List[ThresholdRule]:
        return [r for r in self.rules if r.observed_event == event_type]

    def count(self, rule_id: str, source: str) -> int:
        """Current window count; zero once the window has expired."""
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return self.store.get(counter_key(rule, source), 0)
        return 0

    def observe(
        self,
        event_type: AttackEventType,
        source: str,
        description: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> List[AttackEvent]:
        """
        Record one observation and return the alerts it triggered (usually none).
        """
        if not self.enabled:
            return []

        self.repository.insert_event(event_type, source, description, Severity.LOW, extra)

        alerts: List[AttackEvent] = []
        for rule in self.rules_for(event_type):
            count = self.store.increment(counter_key(rule, source), rule.window_seconds)
            if count == rule.threshold:
                alerts.append(self._fire(rule, source, count, extra))
        return alerts

    def _fire(self, rule: ThresholdRule, source: str, count: int, extra: Optional[Dict[str, Any]]) -> AttackEvent:
        data = dict(extra or {})
        data.update({
            "rule_id": rule.rule_id,
            "count": count,
            "threshold": rule.threshold,
            "window_seconds": rule.window_seconds,
        })
        return self.raise_alert(
            rule.alert_event,
            source,
            f"{rule.title} detected: {count} events in {rule.window_seconds} seconds",
            rule.severity,
            data,
            block_reason=rule.rule_id if rule.mitigate else None,
        )

    def raise_alert(
        self,
        event_type: AttackEventType,
        source: str,
        description: str,
        severity: Severity,
        extra: Optional[Dict[str, Any]] = None,
        block_reason: Optional[str] = None,
    ) -> AttackEvent:
        """
        Record -> notify -> mitigate for one detected attack.

        block_reason set means the source is blocked when mitigation is on.
        """
        event = self.repository.insert_event(event_type, source, description, severity, extra)
        logger.warning(
            f"Attack detected: {event_type.value} | source={source} severity={severity.value} | {description}"
        )

        if severity in NOTIFY_SEVERITIES:
            self.dispatcher.attack_detected(event)

        if block_reason is not None and self.mitigation_enabled:
            self.mitigation.block(source, block_reason, self.block_duration_seconds)
        return event

    # Event sources

    def record_failed_login(self, source: str, username: str = "") -> List[AttackEvent]:
        return self.observe(
            AttackEventType.BRUTE_FORCE_ATTEMPT,
            source,
            f"Failed login attempt for username: {username}",
            {"username": username},
        )

    def record_xmlrpc_request(self, source: str) -> List[AttackEvent]:
        return self.observe(AttackEventType.XMLRPC_REQUEST, source, "XML-RPC request detected")

    def record_request_findings(self, source: str, findings: Iterable[Finding], uri: str = "") -> List[AttackEvent]:
        alerts: List[AttackEvent] = []
        for finding in findings:
            extra = dict(finding.evidence)
            extra["uri"] = uri
            alerts.extend(self.observe(finding.issue_type, source, finding.description, extra))
        return alerts

    # Reporting

    def attack_status(self, window_minutes: int = 5) -> Dict[str, Any]:
        """High/critical attacks of the last few minutes, grouped by type and source."""
        since = datetime.now(timezone.utc) - timedelta(minutes=window_minutes)
        events = self.repository.list_events(since=since, severities=NOTIFY_SEVERITIES)

        grouped: Dict[tuple, int] = {}
        for event in events:
            key = (event.event_type.value, event.source)
            grouped[key] = grouped.get(key, 0) + 1
        attacks = [
            {"event_type": event_type, "source": source, "count": count}
            for (event_type, source), count in sorted(grouped.items(), key=lambda kv: kv[1], reverse=True)
        ]

        if not attacks:
            return {"under_attack": False, "attacks": [], "message": "No recent attacks detected"}
        return {"under_attack": True, "attacks": attacks, "message": _status_message(attacks[0])}

    def attack_stats(self, period_seconds: int = 24 * 3600) -> List[Dict[str, Any]]:
        since = datetime.now(timezone.utc) - timedelta(seconds=period_seconds)
        buckets: Dict[tuple, Dict[str, Any]] = {}
        for event in self.repository.list_events(since=since):
            key = (event.event_type.value, event.severity.value)
            bucket = buckets.setdefault(key, {"count": 0, "sources": set()})
            bucket["count"] += 1
            bucket["sources"].add(event.source)
        stats = [
            {"event_type": event_type, "severity": severity, "count": b["count"], "unique_sources": len(b["sources"])}
            for (event_type, severity), b in buckets.items()
        ]
        stats.sort(key=lambda s: s["count"], reverse=True)
        return stats


def _status_message(attack: Dict[str, Any]) -> str:
    source = attack["source"]
    messages = {
        AttackEventType.BRUTE_FORCE_DETECTED.value: f"Brute force attack detected from {source}",
        AttackEventType.XMLRPC_ABUSE.value: f"XML-RPC abuse detected from {source}",
        AttackEventType.MALICIOUS_UPLOAD.value: f"Malicious file upload attempt from {source}",
    }
    return messages.get(attack["event_type"], f"Security threat detected from {source}")
