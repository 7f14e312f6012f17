"""Decision cache for aumos-access-ledger.

Memoizes access decisions in a key-value store with a TTL. Keys embed the
tenant and subject so that administrative purges can target one user or a
whole tenant with a single pattern:

    rbac:decision:{tenant_id}:{subject_id}:{sha256(subject:permission:resource_id:attributes)}

The fingerprint covers every resource attribute, so requests that differ in
owner, client, purpose or data category never share a cached decision.

Store failures never deny access: they are logged and treated as a miss.
"""

import hashlib
import json
from dataclasses import asdict

from aumos_access_ledger.core.entities import AccessDecision, ResourceContext
from aumos_access_ledger.core.interfaces import IKeyValueStore
from aumos_access_ledger.errors import CacheUnavailableError
from aumos_access_ledger.observability import get_logger

logger = get_logger(__name__)

_KEY_PREFIX = "rbac:decision"


def decision_fingerprint(subject_id: str, permission: str, resource: ResourceContext | None) -> str:
    """Deterministic fingerprint of a (subject, permission, resource) request."""
    resource = resource or ResourceContext()
    attributes = json.dumps(asdict(resource), sort_keys=True, separators=(",", ":"))
    data = f"{subject_id}:{permission}:{resource.resource_id or ''}:{attributes}"
    return hashlib.sha256(data.encode()).hexdigest()


class DecisionCache:
    """TTL memo store for AccessDecision values.

    Args:
        store: Key-value store implementation.
        default_ttl_seconds: TTL applied when the caller does not pass one.
    """

    def __init__(self, store: IKeyValueStore, default_ttl_seconds: int = 300) -> None:
        self._store = store
        self.default_ttl_seconds = default_ttl_seconds

    @staticmethod
    def key_for(tenant_id: str, subject_id: str, permission: str, resource: ResourceContext | None) -> str:
        fingerprint = decision_fingerprint(subject_id, permission, resource)
        return f"{_KEY_PREFIX}:{tenant_id}:{subject_id}:{fingerprint}"

    async def get(
        self, tenant_id: str, subject_id: str, permission: str, resource: ResourceContext | None
    ) -> AccessDecision | None:
        """Return the cached decision, or None on miss or store failure."""
        key = self.key_for(tenant_id, subject_id, permission, resource)
        try:
            raw = await self._store.get(key)
        except CacheUnavailableError as e:
            logger.warning("Decision cache unavailable on read", error=str(e))
            return None
        if raw is None:
            return None
        try:
            return AccessDecision.from_record(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable cached decision", key=key)
            return None

    async def put(self, decision: AccessDecision, resource: ResourceContext | None) -> None:
        """Write a decision through to the store; failures are logged only.

        Args:
            decision: Decision to memoize.
            resource: The full resource context the decision was made for.
        """
        key = self.key_for(decision.tenant_id, decision.subject_id, decision.permission, resource)
        try:
            await self._store.set_with_ttl(
                key, json.dumps(decision.to_record(), sort_keys=True), decision.ttl_seconds
            )
        except CacheUnavailableError as e:
            logger.warning("Decision cache unavailable on write", error=str(e))

    async def purge_subject(self, tenant_id: str, subject_id: str) -> int:
        return await self._purge(f"{_KEY_PREFIX}:{tenant_id}:{subject_id}:*")

    async def purge_tenant(self, tenant_id: str) -> int:
        return await self._purge(f"{_KEY_PREFIX}:{tenant_id}:*")

    async def purge_all(self) -> int:
        return await self._purge(f"{_KEY_PREFIX}:*")

    async def _purge(self, pattern: str) -> int:
        try:
            removed = await self._store.delete_matching(pattern)
        except CacheUnavailableError as e:
            logger.error("Decision cache purge failed", pattern=pattern, error=str(e))
            raise
        logger.info("Purged cached decisions", pattern=pattern, removed=removed)
        return removed
