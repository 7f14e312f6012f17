"""Alert fan-out for aumos-access-ledger.

Wraps an IEventPublisher with typed methods for each alert this service
produces. Every publish runs as a tracked background task: the audit write
path never waits on, or fails because of, a subscriber channel.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any

from aumos_access_ledger.adapters.publishers import Topics
from aumos_access_ledger.core.entities import AuditEntry
from aumos_access_ledger.core.interfaces import IEventPublisher
from aumos_access_ledger.observability import get_logger

logger = get_logger(__name__)


class AlertDispatcher:
    """Fire-and-forget publisher of audit and security alerts.

    Args:
        publisher: Underlying pub/sub publisher.
    """

    def __init__(self, publisher: IEventPublisher) -> None:
        self._publisher = publisher
        self._pending: set[asyncio.Task[None]] = set()

    def dispatch_entry_alert(self, entry: AuditEntry) -> None:
        """Publish a high-severity ledger write to ``alerts.audit``.

        Args:
            entry: The committed entry.
        """
        message = {
            "entry_id": entry.audit_id,
            "tenant_id": entry.tenant_id,
            "severity": entry.severity.value,
            "event_type": entry.event_type.value,
            "actor": entry.actor.display_id,
            "summary": entry.description or f"{entry.action} on {entry.resource_type}",
            "timestamp": entry.timestamp.isoformat(),
        }
        self._spawn(Topics.AUDIT_ALERT, message)

    def dispatch_cross_tenant_attempt(
        self,
        subject_id: str,
        subject_tenant_id: str,
        target_tenant_id: str,
        permission: str,
        resource_id: str | None,
    ) -> None:
        """Publish a tenant-isolation violation, regardless of severity thresholds."""
        message = {
            "type": "CROSS_TENANT_ACCESS_ATTEMPT",
            "subject_id": subject_id,
            "subject_tenant_id": subject_tenant_id,
            "target_tenant_id": target_tenant_id,
            "permission": permission,
            "resource_id": resource_id,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        }
        self._spawn(Topics.CROSS_TENANT_ATTEMPT, message)

    def dispatch_persistence_failure(
        self, tenant_id: str, audit_id: str, emergency_id: str | None, error: str
    ) -> None:
        """Page operators: an audit entry missed the primary store."""
        message = {
            "type": "AUDIT_PERSISTENCE_FAILURE",
            "tenant_id": tenant_id,
            "audit_id": audit_id,
            "emergency_id": emergency_id,
            "error": error,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        }
        self._spawn(Topics.AUDIT_FAILURE, message)

    async def publish_metrics(self, snapshot: dict[str, Any]) -> None:
        """Publish a dashboard snapshot. Awaited by the background flusher."""
        await self._publisher.publish(Topics.DASHBOARD_METRICS, snapshot)

    async def drain(self) -> None:
        """Wait for in-flight publishes; used at shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _spawn(self, topic: str, message: dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._publish(topic, message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, topic: str, message: dict[str, Any]) -> None:
        try:
            await self._publisher.publish(topic, message)
        except Exception:
            logger.exception("Alert publish failed", topic=topic, tenant_id=message.get("tenant_id"))
