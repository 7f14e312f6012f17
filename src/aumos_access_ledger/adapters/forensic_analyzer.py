"""Forensic analysis primitives for aumos-access-ledger.

Pure functions over time-ordered audit entries: breakdown statistics,
anomaly heuristics, timelines, key findings and chain of custody. The
investigator service composes these; nothing here reads or writes storage.
"""

from collections import Counter
from typing import Any

import numpy as np

from aumos_access_ledger.core.entities import Anomaly, AuditEntry, CustodyLink, Severity

# Severities reported as security findings
_SECURITY_FINDING_SEVERITIES: frozenset[Severity] = frozenset({Severity.SECURITY, Severity.CRITICAL})

_DOCUMENT_ACCESS_VERBS: tuple[str, ...] = ("READ", "ACCESS", "VIEW")
_DOCUMENT_ACCESS_THRESHOLD = 10
_TOP_ACCESSORS = 5


def compute_statistics(entries: list[AuditEntry]) -> dict[str, dict[str, int]]:
    """Break entries down by event type, severity, actor, resource, hour and day.

    Args:
        entries: Entries in time order.

    Returns:
        Mapping of breakdown name to value counts. Hours are UTC ``HH``, days ISO dates.
    """
    by_event_type: Counter[str] = Counter()
    by_severity: Counter[str] = Counter()
    by_actor: Counter[str] = Counter()
    by_resource: Counter[str] = Counter()
    by_hour: Counter[str] = Counter()
    by_day: Counter[str] = Counter()
    for entry in entries:
        by_event_type[entry.event_type.value] += 1
        by_severity[entry.severity.value] += 1
        by_actor[entry.actor.display_id] += 1
        by_resource[entry.resource_type] += 1
        by_hour[f"{entry.timestamp.hour:02d}"] += 1
        by_day[entry.timestamp.date().isoformat()] += 1
    return {
        "by_event_type": dict(by_event_type),
        "by_severity": dict(by_severity),
        "by_actor": dict(by_actor),
        "by_resource": dict(by_resource),
        "by_hour": dict(sorted(by_hour.items())),
        "by_day": dict(sorted(by_day.items())),
    }


def detect_anomalies(
    entries: list[AuditEntry],
    unusual_hours: list[int],
    unusual_hour_threshold: int = 10,
    rapid_window_seconds: float = 1.0,
    rapid_threshold: int = 10,
) -> list[Anomaly]:
    """Flag unusual-hour volume and rapid-succession activity.

    Args:
        entries: Entries in time order.
        unusual_hours: Hours of day (UTC) where activity is unexpected.
        unusual_hour_threshold: Events in a single unusual hour above which it is flagged.
        rapid_window_seconds: Gap below which two consecutive events are "rapid".
        rapid_threshold: Number of rapid gaps above which the set is flagged.

    Returns:
        Detected anomalies, unusual hours first in hour order.
    """
    anomalies: list[Anomaly] = []
    hour_counts = Counter(entry.timestamp.hour for entry in entries)
    for hour in sorted(unusual_hours):
        count = hour_counts.get(hour, 0)
        if count > unusual_hour_threshold:
            anomalies.append(
                Anomaly(
                    kind="UNUSUAL_HOUR_ACTIVITY",
                    description=f"Unusually high activity at {hour:02d}:00",
                    severity="WARNING",
                    count=count,
                    detail={"hour": hour},
                )
            )

    if len(entries) > 1:
        seconds = np.array([entry.timestamp.timestamp() for entry in entries], dtype=np.float64)
        gaps = np.diff(seconds)
        rapid = int(np.count_nonzero(gaps < rapid_window_seconds))
        if rapid > rapid_threshold:
            anomalies.append(
                Anomaly(
                    kind="RAPID_SUCCESSION_EVENTS",
                    description=(
                        f"{rapid} events occurred less than {rapid_window_seconds:g}s after the previous one"
                    ),
                    severity="WARNING",
                    count=rapid,
                    detail={
                        "window_seconds": rapid_window_seconds,
                        "min_gap_seconds": float(gaps.min()),
                    },
                )
            )
    return anomalies


def build_timeline(entries: list[AuditEntry]) -> list[dict[str, Any]]:
    return [
        {
            "timestamp": entry.timestamp.isoformat(),
            "event_type": entry.event_type.value,
            "action": entry.action,
            "actor": entry.actor.display_id,
            "resource": entry.resource_type,
            "severity": entry.severity.value,
            "integrity_hash": entry.integrity_hash,
        }
        for entry in entries
    ]


def extract_findings(entries: list[AuditEntry]) -> list[dict[str, Any]]:
    """Summarize security-critical events and high-volume document access."""
    findings: list[dict[str, Any]] = []

    security_events = [e for e in entries if e.severity in _SECURITY_FINDING_SEVERITIES]
    if security_events:
        findings.append({
            "category": "SECURITY",
            "count": len(security_events),
            "description": f"{len(security_events)} security-critical events detected",
            "events": [
                {
                    "timestamp": e.timestamp.isoformat(),
                    "action": e.action,
                    "actor": e.actor.display_id,
                    "ip_address": e.network.ip_address,
                }
                for e in security_events
            ],
        })

    document_access = [
        e for e in entries
        if e.resource_type == "DOCUMENT" and any(verb in e.action.upper() for verb in _DOCUMENT_ACCESS_VERBS)
    ]
    if len(document_access) > _DOCUMENT_ACCESS_THRESHOLD:
        accessors = Counter(e.actor.display_id for e in document_access)
        findings.append({
            "category": "DATA_ACCESS",
            "count": len(document_access),
            "description": f"High volume of document access events ({len(document_access)})",
            "top_accessors": [
                {"actor": actor, "count": count} for actor, count in accessors.most_common(_TOP_ACCESSORS)
            ],
        })
    return findings


def chain_of_custody(entries: list[AuditEntry]) -> list[CustodyLink]:
    return [
        CustodyLink(
            audit_id=entry.audit_id,
            timestamp=entry.timestamp,
            action=entry.action,
            actor=entry.actor.display_id,
            resource=f"{entry.resource_type}:{entry.resource_id or 'NO_RESOURCE'}",
            integrity_hash=entry.integrity_hash,
        )
        for entry in entries
    ]


def summarize_bundle(entries: list[AuditEntry]) -> dict[str, Any]:
    """Summary block of a discovery bundle."""
    stats = compute_statistics(entries)
    return {
        "total_records": len(entries),
        "event_breakdown": stats["by_event_type"],
        "user_activity": stats["by_actor"],
        "resource_activity": stats["by_resource"],
        "time_range": {
            "first": entries[0].timestamp.isoformat() if entries else None,
            "last": entries[-1].timestamp.isoformat() if entries else None,
        },
    }
