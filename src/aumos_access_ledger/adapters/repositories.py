"""Audit repository implementations for aumos-access-ledger.

Both repositories are append-only: ``insert`` refuses an existing audit id
or tenant sequence, and nothing rewrites a stored entry. ``set_legal_hold``
is the single permitted state change; it touches no hashed field.

- InMemoryAuditRepository: tests and development.
- SqlAuditRepository: SQLAlchemy 2 async sessions (PostgreSQL in production).
"""

from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from aumos_access_ledger.core.entities import (
    Actor,
    ApplicationContext,
    AuditEntry,
    ComplianceStandard,
    ComplianceStatus,
    ComplianceTag,
    EventCategory,
    EventType,
    LegalContext,
    NetworkContext,
    QueryFilters,
    RetentionPolicy,
    Severity,
    StorageTier,
)
from aumos_access_ledger.core.models import AnchorReceiptRecord, AuditEntryRecord, Base, ComplianceTagRecord
from aumos_access_ledger.errors import ImmutabilityViolationError
from aumos_access_ledger.observability import get_logger

logger = get_logger(__name__)


def _with_legal_hold(entry: AuditEntry) -> AuditEntry:
    retention = replace(entry.retention, legal_hold=True, expires_at=None)
    return replace(entry, retention=retention)


class InMemoryAuditRepository:
    """Process-local append-only ledger store."""

    def __init__(self) -> None:
        self._by_tenant: dict[str, list[AuditEntry]] = {}
        self._by_id: dict[str, AuditEntry] = {}
        self._anchors: dict[str, tuple[str, datetime]] = {}

    async def insert(self, entry: AuditEntry) -> None:
        if entry.audit_id in self._by_id:
            raise ImmutabilityViolationError("Audit entry already exists", audit_id=entry.audit_id)
        entries = self._by_tenant.setdefault(entry.tenant_id, [])
        if entries and entries[-1].sequence >= entry.sequence:
            raise ImmutabilityViolationError("Sequence is not monotonic for tenant", audit_id=entry.audit_id)
        entries.append(entry)
        self._by_id[entry.audit_id] = entry

    async def get(self, tenant_id: str, audit_id: str) -> AuditEntry | None:
        entry = self._by_id.get(audit_id)
        if entry is None or entry.tenant_id != tenant_id:
            return None
        return entry

    async def latest(self, tenant_id: str) -> AuditEntry | None:
        entries = self._by_tenant.get(tenant_id)
        return entries[-1] if entries else None

    async def query(self, tenant_id: str, filters: QueryFilters) -> list[AuditEntry]:
        matched = [e for e in self._by_tenant.get(tenant_id, []) if filters.matches(e)]
        matched.sort(key=lambda e: (e.timestamp, e.sequence))
        if filters.limit is not None:
            matched = matched[: filters.limit]
        return matched

    async def set_legal_hold(self, tenant_id: str, audit_id: str) -> AuditEntry | None:
        entry = await self.get(tenant_id, audit_id)
        if entry is None:
            return None
        held = _with_legal_hold(entry)
        entries = self._by_tenant[tenant_id]
        entries[entries.index(entry)] = held
        self._by_id[audit_id] = held
        return held

    async def record_anchor(self, audit_id: str, reference: str, anchored_at: datetime) -> None:
        self._anchors[audit_id] = (reference, anchored_at)

    async def get_anchor(self, audit_id: str) -> str | None:
        anchor = self._anchors.get(audit_id)
        return anchor[0] if anchor else None


def entry_to_record(entry: AuditEntry) -> AuditEntryRecord:
    """Map a domain entry to its ORM row."""
    data = entry.to_record()
    record = AuditEntryRecord(
        audit_id=entry.audit_id,
        tenant_id=entry.tenant_id,
        sequence=entry.sequence,
        timestamp=entry.timestamp,
        event_type=entry.event_type.value,
        event_category=entry.event_category.value,
        action=entry.action,
        severity=entry.severity.value,
        actor_id=entry.actor.id,
        actor_role=entry.actor.role,
        actor_type=entry.actor.actor_type,
        resource_type=entry.resource_type,
        resource_id=entry.resource_id,
        description=entry.description,
        case_number=entry.legal.case_number,
        network=data["network"],
        application=data["application"],
        legal=data["legal"],
        changes=data["changes"],
        entry_metadata=data["metadata"],
        retention_policy=entry.retention.name,
        retention_days=entry.retention.duration_days,
        storage_tier=entry.retention.storage_tier.value,
        compression=entry.retention.compression,
        legal_hold=entry.retention.legal_hold,
        immutable=entry.retention.immutable,
        expires_at=entry.retention.expires_at,
        integrity_hash=entry.integrity_hash,
        signature=entry.signature,
        previous_hash=entry.previous_hash,
        chain_hash=entry.chain_hash,
    )
    record.tags = [
        ComplianceTagRecord(
            tenant_id=entry.tenant_id,
            standard=tag.standard.value,
            requirement=tag.requirement,
            article=tag.article,
            status=tag.status.value,
        )
        for tag in entry.compliance_tags
    ]
    return record


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def record_to_entry(record: AuditEntryRecord) -> AuditEntry:
    """Map an ORM row back to the domain entry."""
    return AuditEntry(
        audit_id=record.audit_id,
        tenant_id=record.tenant_id,
        timestamp=_aware(record.timestamp),
        event_type=EventType(record.event_type),
        event_category=EventCategory(record.event_category),
        action=record.action,
        severity=Severity(record.severity),
        actor=Actor(id=record.actor_id, role=record.actor_role, actor_type=record.actor_type),
        resource_type=record.resource_type,
        resource_id=record.resource_id,
        integrity_hash=record.integrity_hash,
        signature=record.signature,
        retention=RetentionPolicy(
            name=record.retention_policy,
            duration_days=record.retention_days,
            storage_tier=StorageTier(record.storage_tier),
            compression=record.compression,
            legal_hold=record.legal_hold,
            immutable=record.immutable,
            expires_at=_aware(record.expires_at),
        ),
        compliance_tags=tuple(
            ComplianceTag(
                standard=ComplianceStandard(tag.standard),
                requirement=tag.requirement,
                article=tag.article,
                status=ComplianceStatus(tag.status),
            )
            for tag in sorted(record.tags, key=lambda t: t.id)
        ),
        description=record.description,
        network=NetworkContext(**record.network),
        application=ApplicationContext(**record.application),
        legal=LegalContext(**record.legal),
        changes=dict(record.changes),
        metadata=dict(record.entry_metadata),
        sequence=record.sequence,
        previous_hash=record.previous_hash,
        chain_hash=record.chain_hash,
    )


class SqlAuditRepository:
    """SQLAlchemy async implementation of the audit repository.

    Args:
        session_factory: Factory producing AsyncSession instances.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    async def create_schema(engine: AsyncEngine) -> None:
        """Create ledger tables if they do not exist (development and tests)."""
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def insert(self, entry: AuditEntry) -> None:
        async with self._session_factory() as session:
            session.add(entry_to_record(entry))
            try:
                await session.commit()
            except IntegrityError:
                raise ImmutabilityViolationError(
                    "Audit entry or tenant sequence already exists", audit_id=entry.audit_id
                ) from None
        logger.debug("Inserted audit entry", audit_id=entry.audit_id, tenant_id=entry.tenant_id)

    async def get(self, tenant_id: str, audit_id: str) -> AuditEntry | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditEntryRecord).where(
                    AuditEntryRecord.audit_id == audit_id,
                    AuditEntryRecord.tenant_id == tenant_id,
                )
            )
            record = result.scalar_one_or_none()
            return record_to_entry(record) if record else None

    async def latest(self, tenant_id: str) -> AuditEntry | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditEntryRecord)
                .where(AuditEntryRecord.tenant_id == tenant_id)
                .order_by(AuditEntryRecord.sequence.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
            return record_to_entry(record) if record else None

    async def query(self, tenant_id: str, filters: QueryFilters) -> list[AuditEntry]:
        stmt = select(AuditEntryRecord).where(AuditEntryRecord.tenant_id == tenant_id)
        if filters.start is not None:
            stmt = stmt.where(AuditEntryRecord.timestamp >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(AuditEntryRecord.timestamp <= filters.end)
        if filters.actor_id is not None:
            stmt = stmt.where(AuditEntryRecord.actor_id == filters.actor_id)
        if filters.resource_type is not None:
            stmt = stmt.where(AuditEntryRecord.resource_type == filters.resource_type)
        if filters.resource_id is not None:
            stmt = stmt.where(AuditEntryRecord.resource_id == filters.resource_id)
        if filters.event_types:
            stmt = stmt.where(AuditEntryRecord.event_type.in_([t.value for t in filters.event_types]))
        if filters.min_severity is not None:
            allowed = [s.value for s in Severity if s.level >= filters.min_severity.level]
            stmt = stmt.where(AuditEntryRecord.severity.in_(allowed))
        if filters.case_number is not None:
            stmt = stmt.where(AuditEntryRecord.case_number == filters.case_number)
        if filters.standard is not None:
            stmt = stmt.where(AuditEntryRecord.tags.any(ComplianceTagRecord.standard == filters.standard.value))
        stmt = stmt.order_by(AuditEntryRecord.timestamp, AuditEntryRecord.sequence)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            entries = [record_to_entry(r) for r in result.scalars().all()]
        # JSON-column filters are applied in Python to stay dialect-neutral
        entries = [e for e in entries if filters.matches(e)]
        if filters.limit is not None:
            entries = entries[: filters.limit]
        return entries

    async def set_legal_hold(self, tenant_id: str, audit_id: str) -> AuditEntry | None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(AuditEntryRecord)
                .where(AuditEntryRecord.audit_id == audit_id, AuditEntryRecord.tenant_id == tenant_id)
                .values(legal_hold=True, expires_at=None)
            )
            await session.commit()
            if result.rowcount == 0:
                return None
        return await self.get(tenant_id, audit_id)

    async def record_anchor(self, audit_id: str, reference: str, anchored_at: datetime) -> None:
        async with self._session_factory() as session:
            await session.merge(
                AnchorReceiptRecord(audit_id=audit_id, reference=reference, anchored_at=anchored_at)
            )
            await session.commit()

    async def get_anchor(self, audit_id: str) -> str | None:
        async with self._session_factory() as session:
            receipt = await session.get(AnchorReceiptRecord, audit_id)
            return receipt.reference if receipt else None
