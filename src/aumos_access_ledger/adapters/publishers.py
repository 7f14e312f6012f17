"""Pub/sub publishers for aumos-access-ledger.

Alert and security messages are published to named topics. Subscribers
(SIEM forwarders, dashboards, on-call paging) are outside this service.
"""

import json
from collections import defaultdict
from typing import Any

import redis.asyncio as redis

from aumos_access_ledger.observability import get_logger

logger = get_logger(__name__)


class Topics:
    """Topic names published by aumos-access-ledger."""

    AUDIT_ALERT = "alerts.audit"
    AUDIT_FAILURE = "alerts.audit_failure"
    CROSS_TENANT_ATTEMPT = "security.cross_tenant_attempt"
    DASHBOARD_METRICS = "audit.dashboard.metrics"


class InMemoryPublisher:
    """Collects published messages per topic. Used in tests and development."""

    def __init__(self) -> None:
        self.messages: dict[str, list[dict[str, Any]]] = defaultdict(list)

    async def publish(self, topic: str, message: dict[str, Any]) -> None:
        self.messages[topic].append(message)
        logger.debug("Published message", topic=topic)


class RedisPublisher:
    """Publishes JSON messages to Redis pub/sub channels.

    Args:
        client: Redis client instance.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def publish(self, topic: str, message: dict[str, Any]) -> None:
        payload = json.dumps(message, default=str, sort_keys=True)
        receivers = await self._client.publish(topic, payload)
        logger.debug("Published message", topic=topic, receivers=receivers)
