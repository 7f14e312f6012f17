"""Abstract interfaces (Protocol classes) for aumos-access-ledger.

Services depend on interfaces, not concrete implementations,
enabling dependency injection and easy test mocking.
"""

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from aumos_access_ledger.core.entities import (
    AuditEntry,
    AuditEvent,
    Decision,
    QueryFilters,
    ResourceContext,
    Subject,
)


@runtime_checkable
class IKeyValueStore(Protocol):
    """Key-value store backing the decision cache and artifact storage."""

    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete_matching(self, pattern: str) -> int: ...


@runtime_checkable
class IAuditRepository(Protocol):
    """Append-only audit entry store.

    There is deliberately no update or delete of an existing entry; the only
    state change is ``set_legal_hold``, which touches no hashed field.
    """

    async def insert(self, entry: AuditEntry) -> None: ...

    async def get(self, tenant_id: str, audit_id: str) -> AuditEntry | None: ...

    async def latest(self, tenant_id: str) -> AuditEntry | None: ...

    async def query(self, tenant_id: str, filters: QueryFilters) -> list[AuditEntry]: ...

    async def set_legal_hold(self, tenant_id: str, audit_id: str) -> AuditEntry | None: ...

    async def record_anchor(self, audit_id: str, reference: str, anchored_at: datetime) -> None: ...

    async def get_anchor(self, audit_id: str) -> str | None: ...


@runtime_checkable
class IEventPublisher(Protocol):
    """Pub/sub channel; subscribers live outside this service."""

    async def publish(self, topic: str, message: dict[str, Any]) -> None: ...


@runtime_checkable
class IAnchorService(Protocol):
    """External tamper-evidence service. Best effort; never required for validity."""

    async def anchor(self, audit_id: str, integrity_hash: str) -> str: ...


@runtime_checkable
class IEmergencyStore(Protocol):
    """Durable fallback for entries the primary repository rejected."""

    async def write(self, record: dict[str, Any]) -> str: ...

    async def pending(self) -> list[dict[str, Any]]: ...


@runtime_checkable
class IContextResolver(Protocol):
    """Resolves the owning tenant of a resource the caller did not describe."""

    async def resolve_tenant(self, resource: ResourceContext) -> str | None: ...


@runtime_checkable
class IAuditSink(Protocol):
    """Where the decision engine hands every outcome."""

    async def record(self, event: AuditEvent) -> str: ...


@runtime_checkable
class IOverridePredicate(Protocol):
    """Domain rule that may veto an otherwise-allowed decision.

    Returns None to abstain, or a denying Decision.
    """

    name: str

    def check(self, subject: Subject, permission: str, resource: ResourceContext) -> Decision | None: ...
