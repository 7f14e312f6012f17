"""Business logic services for aumos-access-ledger.

Services contain all domain logic. They:
  - Accept dependencies via constructor injection (repositories, stores, publishers)
  - Orchestrate the decision path and the audit write path
  - Raise domain errors from aumos_access_ledger.errors
  - Are framework-agnostic (no FastAPI, no direct DB access)

Every access decision is handed to the AuditLedger. Read-side services
(ForensicInvestigator, ComplianceReporter) only ever query the ledger.
"""

import asyncio
import json
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from aumos_access_ledger.adapters.alert_dispatcher import AlertDispatcher
from aumos_access_ledger.adapters.anchor import AnchorScheduler
from aumos_access_ledger.adapters.audit_enricher import AuditEnricher
from aumos_access_ledger.adapters.decision_cache import DecisionCache
from aumos_access_ledger.adapters.forensic_analyzer import (
    build_timeline,
    chain_of_custody,
    compute_statistics,
    detect_anomalies,
    extract_findings,
    summarize_bundle,
)
from aumos_access_ledger.adapters.override_predicates import default_predicates
from aumos_access_ledger.core import integrity
from aumos_access_ledger.core.entities import (
    AccessDecision,
    Actor,
    ApplicationContext,
    AuditEntry,
    AuditEvent,
    ComplianceReport,
    ComplianceStandard,
    ComplianceStatus,
    ComplianceTag,
    CustodyLink,
    Decision,
    DecisionCode,
    DiscoveryBundle,
    EventType,
    InvestigationReport,
    NetworkContext,
    QueryFilters,
    QueryResult,
    ReportPeriod,
    RequirementTally,
    ResourceContext,
    RetentionPolicy,
    RETENTION_POLICIES,
    SEVERITY_RETENTION,
    STANDARD_PROFILES,
    Severity,
    Subject,
    new_audit_id,
)
from aumos_access_ledger.core.interfaces import (
    IAuditRepository,
    IAuditSink,
    IContextResolver,
    IEmergencyStore,
    IKeyValueStore,
    IOverridePredicate,
)
from aumos_access_ledger.core.policy import (
    SUPER_ADMIN,
    AuditVerbosity,
    CatalogHolder,
    PolicyCatalog,
    Role,
    ScopeTier,
    normalize_identifier,
    role_satisfies,
)
from aumos_access_ledger.errors import (
    AuthenticationRequiredError,
    CacheUnavailableError,
    ImmutabilityViolationError,
    InvestigationCancelledError,
    NotFoundError,
    PersistenceFailureError,
    ValidationError,
)
from aumos_access_ledger.observability import LedgerMetrics, get_logger

logger = get_logger(__name__)

_SECONDS_PER_DAY = 86_400


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_severity(value: "Severity | str") -> Severity:
    """Parse a severity name, rejecting unknown tiers.

    Raises:
        ValidationError: If the value is not a known severity.
    """
    if isinstance(value, Severity):
        return value
    try:
        return Severity(normalize_identifier(value))
    except ValueError:
        raise ValidationError(f"Unknown severity: {value}") from None


# ---------------------------------------------------------------------------
# Audit ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainVerification:
    """Outcome of re-verifying a tenant's ledger."""

    tenant_id: str
    valid: bool
    checked: int
    broken_at: str | None = None
    reason: str | None = None


class AuditLedger:
    """Append-only, hash-chained audit ledger.

    ``record`` runs an explicit commit pipeline:

        validate -> enrich -> compute_hash + sign -> assign_retention
        -> persist (per-tenant ordered, chain-linked) -> maybe_alert -> maybe_anchor

    Writes for one tenant are serialized by a per-tenant lock so sequence
    numbers and chain links are strictly ordered; tenants proceed concurrently.

    Args:
        repository: Append-only audit repository (write path).
        alerts: Fire-and-forget alert dispatcher.
        emergency_store: Fallback store for entries the repository rejects.
        signing_key: HMAC key for entry signatures.
        audit_salt: Server salt appended to the integrity-hash input.
        enricher: Derives network context and compliance tags.
        anchors: Background anchor scheduler; anchoring is skipped when None.
        metrics: Throughput counters for the dashboard.
        alert_min_severity: Lowest severity that triggers an alert.
        anchor_min_severity: Lowest severity that is anchored.
        clock: Source of entry timestamps.
    """

    def __init__(
        self,
        repository: IAuditRepository,
        alerts: AlertDispatcher,
        emergency_store: IEmergencyStore,
        signing_key: bytes,
        audit_salt: bytes,
        enricher: AuditEnricher | None = None,
        anchors: AnchorScheduler | None = None,
        metrics: LedgerMetrics | None = None,
        alert_min_severity: Severity = Severity.ERROR,
        anchor_min_severity: Severity = Severity.SECURITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._alerts = alerts
        self._emergency_store = emergency_store
        self._signing_key = signing_key
        self._audit_salt = audit_salt
        self._enricher = enricher or AuditEnricher()
        self._anchors = anchors
        self._metrics = metrics or LedgerMetrics()
        self._alert_min_severity = alert_min_severity
        self._anchor_min_severity = anchor_min_severity
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        # Last committed (sequence, chain_hash) per tenant in this process
        self._heads: dict[str, tuple[int, str]] = {}

    @property
    def metrics(self) -> LedgerMetrics:
        return self._metrics

    async def record(self, event: AuditEvent) -> str:
        """Commit an event and return the new entry id.

        Raises:
            ValidationError: If required fields are missing or the event type is unknown.
            PersistenceFailureError: If the entry could not be stored.
        """
        entry = await self.commit(event)
        return entry.audit_id

    async def commit(self, event: AuditEvent) -> AuditEntry:
        """Run the full write pipeline for one event and return the stored entry."""
        event_type, severity = self.validate(event)
        event = self._enricher.enrich(event, event_type.category)

        audit_id = new_audit_id()
        timestamp = self._clock()
        integrity_hash = self.compute_hash(
            audit_id, event.tenant_id, timestamp, event_type, event.actor.id,
            event.resource_type, event.resource_id,
        )
        signature = self.sign(audit_id, event.tenant_id, timestamp, event.actor.id, event.action)
        retention = self.assign_retention(severity, event.compliance_tags, timestamp)

        entry = AuditEntry(
            audit_id=audit_id,
            tenant_id=event.tenant_id,
            timestamp=timestamp,
            event_type=event_type,
            event_category=event_type.category,
            action=event.action,
            severity=severity,
            actor=event.actor,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            integrity_hash=integrity_hash,
            signature=signature,
            retention=retention,
            compliance_tags=event.compliance_tags,
            description=event.description,
            network=event.network,
            application=event.application,
            legal=event.legal,
            changes=dict(event.changes),
            metadata=dict(event.metadata),
        )
        entry = await self.persist(entry)
        self._metrics.record(severity.level)
        self.maybe_alert(entry)
        self.maybe_anchor(entry)

        logger.info(
            "Recorded audit entry",
            audit_id=entry.audit_id,
            tenant_id=entry.tenant_id,
            event_type=entry.event_type.value,
            severity=entry.severity.value,
            sequence=entry.sequence,
        )
        return entry

    def validate(self, event: AuditEvent) -> tuple[EventType, Severity]:
        """Check required fields and parse the closed enums.

        Returns:
            Parsed event type and severity.

        Raises:
            ValidationError: On any missing field or unknown enum value.
        """
        for name in ("tenant_id", "action", "resource_type"):
            value = getattr(event, name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Audit event requires {name}")
        if not event.event_type:
            raise ValidationError("Audit event requires event_type")
        return EventType.parse(event.event_type), parse_severity(event.severity)

    def compute_hash(
        self,
        audit_id: str,
        tenant_id: str,
        timestamp: datetime,
        event_type: EventType,
        actor_id: str | None,
        resource_type: str,
        resource_id: str | None,
    ) -> str:
        fields = integrity.hash_fields(
            audit_id, tenant_id, timestamp, event_type.value, actor_id, resource_type, resource_id
        )
        return integrity.compute_integrity_hash(fields, self._audit_salt)

    def sign(self, audit_id: str, tenant_id: str, timestamp: datetime, actor_id: str | None, action: str) -> str:
        fields = integrity.signature_fields(audit_id, tenant_id, timestamp, actor_id, action)
        return integrity.sign(fields, self._signing_key)

    def assign_retention(
        self, severity: Severity, tags: Sequence[ComplianceTag], timestamp: datetime
    ) -> RetentionPolicy:
        """Resolve the retention policy for an entry.

        The severity selects the base policy. Compliance tags can only lengthen
        it: each standard's minimum retention applies, and a standard that must
        be kept permanently forces legal hold. SECURITY and LEGAL entries are
        always held and immutable.
        """
        base = RETENTION_POLICIES[SEVERITY_RETENTION[severity]]
        minimum_days: int | None = None
        permanent_standard = False
        for tag in tags:
            days = STANDARD_PROFILES[tag.standard].retention_days
            if days is None:
                permanent_standard = True
            else:
                minimum_days = days if minimum_days is None else max(minimum_days, days)
        force = severity in (Severity.SECURITY, Severity.LEGAL) or permanent_standard
        return base.resolve(timestamp, minimum_days=minimum_days, legal_hold=force, immutable=force)

    async def persist(self, entry: AuditEntry) -> AuditEntry:
        """Assign the tenant sequence and chain link, then insert.

        Raises:
            PersistenceFailureError: After diverting the entry to the emergency store.
        """
        lock = self._locks.setdefault(entry.tenant_id, asyncio.Lock())
        async with lock:
            try:
                head = self._heads.get(entry.tenant_id)
                if head is None:
                    latest = await self._repository.latest(entry.tenant_id)
                    head = (latest.sequence, latest.chain_hash) if latest else (0, None)
                sequence = head[0] + 1
                linked = replace(
                    entry,
                    sequence=sequence,
                    previous_hash=head[1],
                    chain_hash=integrity.chain_hash(head[1], entry.integrity_hash, sequence),
                )
                await self._repository.insert(linked)
            except Exception as e:
                self._heads.pop(entry.tenant_id, None)
                await self._handle_persistence_failure(entry, e)
            self._heads[entry.tenant_id] = (linked.sequence, linked.chain_hash)
        return linked

    def maybe_alert(self, entry: AuditEntry) -> bool:
        if entry.severity.level < self._alert_min_severity.level:
            return False
        self._alerts.dispatch_entry_alert(entry)
        return True

    def maybe_anchor(self, entry: AuditEntry) -> bool:
        if self._anchors is None or entry.severity.level < self._anchor_min_severity.level:
            return False
        self._anchors.schedule(entry.audit_id, entry.integrity_hash)
        return True

    def verify(self, entry: AuditEntry) -> bool:
        """Recompute the integrity hash and signature of an entry."""
        expected_hash = self.compute_hash(
            entry.audit_id, entry.tenant_id, entry.timestamp, entry.event_type,
            entry.actor.id, entry.resource_type, entry.resource_id,
        )
        if expected_hash != entry.integrity_hash:
            return False
        fields = integrity.signature_fields(
            entry.audit_id, entry.tenant_id, entry.timestamp, entry.actor.id, entry.action
        )
        return integrity.verify_signature(fields, self._signing_key, entry.signature)

    async def verify_stored(self, tenant_id: str, audit_id: str) -> bool:
        """Verify a stored entry.

        Raises:
            NotFoundError: If the entry does not exist in the tenant.
            ImmutabilityViolationError: If the stored entry fails verification.
        """
        entry = await self._repository.get(tenant_id, audit_id)
        if entry is None:
            raise NotFoundError(f"Audit entry {audit_id} not found")
        if not self.verify(entry):
            await self._escalate_violation(entry, "Stored audit entry failed verification")
        return True

    async def verify_chain(self, tenant_id: str) -> ChainVerification:
        """Walk a tenant's ledger in sequence order re-verifying every link."""
        entries = sorted(await self._repository.query(tenant_id, QueryFilters()), key=lambda e: e.sequence)
        previous: str | None = None
        for checked, entry in enumerate(entries):
            reason = None
            if not self.verify(entry):
                reason = "integrity hash or signature mismatch"
            elif entry.previous_hash != previous:
                reason = "previous-hash link broken"
            elif entry.chain_hash != integrity.chain_hash(previous, entry.integrity_hash, entry.sequence):
                reason = "chain hash mismatch"
            if reason is not None:
                logger.critical("Ledger chain verification failed", tenant_id=tenant_id,
                                audit_id=entry.audit_id, reason=reason)
                return ChainVerification(tenant_id, False, checked, entry.audit_id, reason)
            previous = entry.chain_hash
        return ChainVerification(tenant_id, True, len(entries))

    async def resave(self, entry: AuditEntry) -> AuditEntry:
        """Reject any attempt to store a changed version of an existing entry.

        Re-submitting an unchanged entry is a no-op.

        Raises:
            NotFoundError: If the entry does not exist.
            ImmutabilityViolationError: If any field differs from the stored entry.
        """
        stored = await self._repository.get(entry.tenant_id, entry.audit_id)
        if stored is None:
            raise NotFoundError(f"Audit entry {entry.audit_id} not found")
        recomputed = self.compute_hash(
            entry.audit_id, entry.tenant_id, entry.timestamp, entry.event_type,
            entry.actor.id, entry.resource_type, entry.resource_id,
        )
        if recomputed != stored.integrity_hash:
            await self._escalate_violation(stored, "Attempt to alter hashed fields of an audit entry", recomputed)
        if entry != stored:
            await self._escalate_violation(stored, "Attempt to alter a stored audit entry", recomputed)
        return stored

    async def place_legal_hold(self, tenant_id: str, audit_id: str, actor: Actor | None = None,
                               reason: str | None = None) -> AuditEntry:
        """Place an entry under legal hold, clearing its expiry.

        Raises:
            NotFoundError: If the entry does not exist in the tenant.
        """
        held = await self._repository.set_legal_hold(tenant_id, audit_id)
        if held is None:
            raise NotFoundError(f"Audit entry {audit_id} not found")
        await self.record(AuditEvent(
            tenant_id=tenant_id,
            event_type=EventType.AUDIT_REVIEW,
            action="LEGAL_HOLD_PLACED",
            resource_type="AUDIT_ENTRY",
            resource_id=audit_id,
            severity=Severity.WARNING,
            actor=actor or Actor(actor_type="SYSTEM"),
            description=reason,
        ))
        return held

    async def _escalate_violation(self, stored: AuditEntry, message: str, recomputed: str | None = None) -> None:
        logger.critical("Immutability violation", audit_id=stored.audit_id, tenant_id=stored.tenant_id,
                        detail=message)
        try:
            await self.record(AuditEvent(
                tenant_id=stored.tenant_id,
                event_type=EventType.INTEGRITY_VIOLATION,
                action="IMMUTABILITY_VIOLATION",
                resource_type="AUDIT_ENTRY",
                resource_id=stored.audit_id,
                severity=Severity.CRITICAL,
                actor=Actor(actor_type="SYSTEM"),
                description=message,
                metadata={"stored_hash": stored.integrity_hash, "recomputed_hash": recomputed},
            ))
        except PersistenceFailureError:
            logger.critical("Could not record immutability violation", audit_id=stored.audit_id)
        raise ImmutabilityViolationError(message, audit_id=stored.audit_id)

    async def _handle_persistence_failure(self, entry: AuditEntry, error: Exception) -> None:
        self._metrics.record_failure()
        emergency_id: str | None = None
        try:
            emergency_id = await self._emergency_store.write(entry.to_record())
        except Exception:
            logger.critical("Emergency store write failed; audit entry exists only in logs",
                            audit_id=entry.audit_id, entry=entry.to_record())
        logger.error("Audit entry persistence failed", audit_id=entry.audit_id,
                     tenant_id=entry.tenant_id, emergency_id=emergency_id, error=str(error))
        self._alerts.dispatch_persistence_failure(entry.tenant_id, entry.audit_id, emergency_id, str(error))
        raise PersistenceFailureError("Audit entry could not be persisted", emergency_id=emergency_id) from error


# ---------------------------------------------------------------------------
# Decision engine
# ---------------------------------------------------------------------------


class DecisionEngine:
    """Evaluates access requests against the policy catalog.

    Order of evaluation, short-circuiting on the first definitive result:

    1. normalize role and permission
    2. SUPER_ADMIN allows (no cache read or write)
    3. tenant isolation, then scope tier
    4. cache lookup
    5. role-permission check (default deny)
    6. override predicates, only when step 5 allowed
    7. cache write

    Every outcome, allow or deny, is handed to the audit sink.

    Args:
        catalog: Holder of the active immutable policy catalog.
        cache: Decision cache.
        audit_sink: Where outcomes are recorded (the AuditLedger).
        alerts: Dispatcher for cross-tenant security alerts.
        predicates: Override predicates; defaults to privilege, minimization, ownership.
        context_resolver: Resolves unknown resource tenants.
        resolution_timeout_seconds: Bound on a single context resolution.
    """

    def __init__(
        self,
        catalog: CatalogHolder,
        cache: DecisionCache,
        audit_sink: IAuditSink,
        alerts: AlertDispatcher,
        predicates: Sequence[IOverridePredicate] | None = None,
        context_resolver: IContextResolver | None = None,
        resolution_timeout_seconds: float = 0.25,
    ) -> None:
        self._catalog = catalog
        self._cache = cache
        self._audit_sink = audit_sink
        self._alerts = alerts
        self._predicates = list(predicates) if predicates is not None else default_predicates()
        self._resolver = context_resolver
        self._resolution_timeout = resolution_timeout_seconds

    @property
    def catalog(self) -> PolicyCatalog:
        return self._catalog.current

    async def evaluate(
        self,
        subject: Subject | Mapping[str, Any] | None,
        tenant_id: str,
        permission: str,
        resource: ResourceContext | None = None,
        network: NetworkContext | None = None,
        application: ApplicationContext | None = None,
    ) -> Decision:
        """Decide whether ``subject`` may exercise ``permission`` on ``resource``.

        Args:
            subject: Authenticated subject or raw identity claims.
            tenant_id: Tenant the request targets.
            permission: Permission name, e.g. ``DOCUMENT_DELETE`` (case-insensitive).
            resource: Attributes of the resource; an empty context when omitted.
            network: Caller network context recorded with the decision.
            application: Caller application context recorded with the decision.

        Returns:
            The decision, with processing time in milliseconds.

        Raises:
            AuthenticationRequiredError: If the subject is missing or malformed.
            PersistenceFailureError: If the decision could not be recorded.
        """
        started = time.perf_counter()
        resource = resource or ResourceContext()
        network = network or NetworkContext()
        application = application or ApplicationContext()
        permission_name = normalize_identifier(permission)

        try:
            if not isinstance(subject, Subject):
                subject = Subject.from_claims(subject)
        except AuthenticationRequiredError:
            await self._record_authentication_failure(tenant_id, permission_name, resource, network, application)
            raise

        catalog = self._catalog.current
        role = catalog.role(subject.role)

        decision, cacheable = await self._decide(catalog, role, subject, tenant_id, permission_name, resource)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 3)
        decision = replace(decision, processing_time_ms=elapsed_ms)

        if cacheable and not decision.cached:
            await self._cache.put(AccessDecision(
                subject_id=subject.id,
                tenant_id=subject.tenant_id,
                permission=permission_name,
                resource_id=resource.resource_id,
                allowed=decision.allowed,
                code=decision.code,
                reason=decision.reason,
                computed_at=_utcnow(),
                ttl_seconds=self._cache.default_ttl_seconds,
            ), resource)

        await self._record_decision(subject, role, permission_name, resource, decision, network, application)
        return decision

    async def _decide(
        self,
        catalog: PolicyCatalog,
        role: Role,
        subject: Subject,
        tenant_id: str,
        permission_name: str,
        resource: ResourceContext,
    ) -> tuple[Decision, bool]:
        """Return the decision and whether it may be cached."""
        if role.name == SUPER_ADMIN:
            return Decision(True, DecisionCode.SUPER_ADMIN_BYPASS, "Super administrator"), False

        if role.scope is not ScopeTier.GLOBAL:
            isolation = await self._check_tenant(subject, tenant_id, permission_name, resource)
            if isolation is not None:
                return isolation, False

        scope_denial = self._check_scope(catalog, role, subject, resource)
        if scope_denial is not None:
            return scope_denial, False

        cached = await self._cache.get(subject.tenant_id, subject.id, permission_name, resource)
        if cached is not None:
            return Decision(cached.allowed, cached.code, cached.reason, cached=True), False

        required = catalog.permission(permission_name)
        if required is None or not role_satisfies(catalog, role, required):
            reason = (
                f"Unknown permission {permission_name}" if required is None
                else f"Role {role.name} lacks {permission_name}"
            )
            return Decision(False, DecisionCode.INSUFFICIENT_PERMISSION, reason), True

        for predicate in self._predicates:
            denial = predicate.check(subject, permission_name, resource)
            if denial is not None:
                logger.info("Override predicate denied access", predicate=predicate.name,
                            subject_id=subject.id, permission=permission_name, code=denial.code.value)
                return denial, True

        return Decision(True, DecisionCode.ALLOWED, f"Role {role.name} holds {permission_name}"), True

    async def _check_tenant(
        self, subject: Subject, tenant_id: str, permission_name: str, resource: ResourceContext
    ) -> Decision | None:
        target = resource.tenant_id
        if target is None and resource.resource_id is not None and self._resolver is not None:
            target = await self._resolve_tenant(resource)
            if target is None:
                return Decision(
                    False, DecisionCode.CONTEXT_RESOLUTION_FAILED, "Resource tenant could not be resolved"
                )
        target = target or tenant_id
        if target == subject.tenant_id:
            return None

        logger.warning("Cross-tenant access attempt", subject_id=subject.id,
                       subject_tenant_id=subject.tenant_id, target_tenant_id=target, permission=permission_name)
        self._alerts.dispatch_cross_tenant_attempt(
            subject.id, subject.tenant_id, target, permission_name, resource.resource_id
        )
        return Decision(False, DecisionCode.TENANT_SCOPE_VIOLATION, "Resource belongs to another tenant")

    async def _resolve_tenant(self, resource: ResourceContext) -> str | None:
        assert self._resolver is not None
        try:
            return await asyncio.wait_for(
                self._resolver.resolve_tenant(resource), timeout=self._resolution_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Context resolution timed out", resource_id=resource.resource_id,
                           timeout_seconds=self._resolution_timeout)
        except Exception as e:
            logger.warning("Context resolution failed", resource_id=resource.resource_id, error=str(e))
        return None

    @staticmethod
    def _check_scope(
        catalog: PolicyCatalog, role: Role, subject: Subject, resource: ResourceContext
    ) -> Decision | None:
        if not catalog.is_known_role(role.name):
            return None
        scope = catalog.scope(role.scope)
        if scope is None or role.name not in scope.allowed_roles:
            return Decision(False, DecisionCode.SCOPE_VIOLATION,
                            f"Role {role.name} is not permitted at scope {role.scope.value}")
        if role.scope is ScopeTier.PROJECT and resource.project_id is not None:
            if resource.project_id not in subject.project_ids:
                return Decision(False, DecisionCode.SCOPE_VIOLATION,
                                "Resource belongs to a project the subject is not assigned to")
        return None

    async def reload_catalog(self, catalog: PolicyCatalog) -> None:
        """Swap in a new catalog and drop every cached decision."""
        previous = self._catalog.swap(catalog)
        try:
            removed = await self._cache.purge_all()
        except CacheUnavailableError:
            logger.error("Catalog reloaded but decision cache could not be purged",
                         version=catalog.version)
            return
        logger.info("Reloaded policy catalog", previous_version=previous.version,
                    version=catalog.version, purged=removed)

    async def _record_decision(
        self,
        subject: Subject,
        role: Role,
        permission_name: str,
        resource: ResourceContext,
        decision: Decision,
        network: NetworkContext,
        application: ApplicationContext,
    ) -> None:
        if decision.code is DecisionCode.TENANT_SCOPE_VIOLATION:
            severity = Severity.SECURITY
        elif decision.allowed:
            severity = Severity.INFO
        else:
            severity = Severity.WARNING

        required = self._catalog.current.permission(permission_name)
        resource_type = normalize_identifier(resource.resource_type) or (
            required.resource.value if required is not None else "PERMISSION"
        )
        metadata: dict[str, Any] = {
            "permission": permission_name,
            "code": decision.code.value,
            "reason": decision.reason,
            "cached": decision.cached,
            "processing_time_ms": decision.processing_time_ms,
            "catalog_version": self._catalog.current.version,
        }
        if role.audit_verbosity in (AuditVerbosity.HIGH, AuditVerbosity.CRITICAL):
            metadata["resource_context"] = asdict(resource)

        await self._audit_sink.record(AuditEvent(
            tenant_id=subject.tenant_id,
            event_type=EventType.AUTHORIZATION,
            action="ACCESS_GRANTED" if decision.allowed else "ACCESS_DENIED",
            resource_type=resource_type,
            resource_id=resource.resource_id,
            severity=severity,
            actor=Actor(id=subject.id, role=subject.role),
            description=decision.reason,
            network=network,
            application=application,
            metadata=metadata,
        ))

    async def _record_authentication_failure(
        self,
        tenant_id: str,
        permission_name: str,
        resource: ResourceContext,
        network: NetworkContext,
        application: ApplicationContext,
    ) -> None:
        if not tenant_id:
            logger.warning("Unauthenticated request without tenant", permission=permission_name)
            return
        await self._audit_sink.record(AuditEvent(
            tenant_id=tenant_id,
            event_type=EventType.AUTHENTICATION,
            action="AUTHENTICATION_REQUIRED",
            resource_type=normalize_identifier(resource.resource_type) or "PERMISSION",
            resource_id=resource.resource_id,
            severity=Severity.WARNING,
            actor=Actor(actor_type="ANONYMOUS"),
            description="Request without a valid authenticated subject",
            network=network,
            application=application,
            metadata={"permission": permission_name},
        ))


# ---------------------------------------------------------------------------
# Read side: forensic investigation
# ---------------------------------------------------------------------------


def _investigation_body(report: InvestigationReport) -> dict[str, Any]:
    criteria = asdict(report.criteria)
    for key in ("start", "end"):
        criteria[key] = criteria[key].isoformat() if criteria[key] else None
    criteria["event_types"] = [t.value for t in report.criteria.event_types]
    criteria["min_severity"] = report.criteria.min_severity.value if report.criteria.min_severity else None
    criteria["standard"] = report.criteria.standard.value if report.criteria.standard else None
    return {
        "investigation_id": report.investigation_id,
        "tenant_id": report.tenant_id,
        "criteria": criteria,
        "generated_at": report.generated_at.isoformat(),
        "expires_at": report.expires_at.isoformat(),
        "record_count": report.record_count,
        "statistics": {k: dict(v) for k, v in report.statistics.items()},
        "anomalies": [a.to_dict() for a in report.anomalies],
        "timeline": report.timeline,
        "findings": report.findings,
        "chain_of_custody": [link.to_dict() for link in report.chain_of_custody],
    }


def _bundle_body(bundle: DiscoveryBundle) -> dict[str, Any]:
    return {
        "bundle_id": bundle.bundle_id,
        "tenant_id": bundle.tenant_id,
        "metadata": bundle.metadata,
        "generated_at": bundle.generated_at.isoformat(),
        "expires_at": bundle.expires_at.isoformat(),
        "records": bundle.records,
        "summary": dict(bundle.summary),
        "chain_of_custody": [link.to_dict() for link in bundle.chain_of_custody],
    }


def investigation_to_dict(report: InvestigationReport) -> dict[str, Any]:
    return {**_investigation_body(report), "signature": report.signature}


def bundle_to_dict(bundle: DiscoveryBundle) -> dict[str, Any]:
    """Export envelope of a discovery bundle."""
    return {**_bundle_body(bundle), "signature": bundle.signature}


def bundle_from_dict(data: Mapping[str, Any]) -> DiscoveryBundle:
    """Rebuild a bundle from its export envelope so it can be verified.

    Raises:
        ValidationError: If the envelope is missing fields or malformed.
    """
    try:
        metadata = data["metadata"]
        return DiscoveryBundle(
            bundle_id=data["bundle_id"],
            tenant_id=data["tenant_id"],
            case_number=metadata["case_number"],
            period_start=datetime.fromisoformat(metadata["period"]["start"]),
            period_end=datetime.fromisoformat(metadata["period"]["end"]),
            generated_at=datetime.fromisoformat(data["generated_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            records=list(data["records"]),
            summary=dict(data["summary"]),
            chain_of_custody=[
                CustodyLink(
                    audit_id=link["audit_id"],
                    timestamp=datetime.fromisoformat(link["timestamp"]),
                    action=link["action"],
                    actor=link["actor"],
                    resource=link["resource"],
                    integrity_hash=link["integrity_hash"],
                )
                for link in data["chain_of_custody"]
            ],
            integrity_hash=metadata["integrity_hash"],
            signature=data["signature"],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed discovery bundle: {e}") from None


class ForensicInvestigator:
    """Read-only query and analysis engine over the ledger.

    Artifacts are fully computed and signed before they are stored or
    returned, so a cancelled investigation leaves nothing behind.

    Args:
        repository: Read path of the audit repository.
        artifacts: Key-value store for signed artifacts.
        audit_sink: Records that an artifact was generated.
        signing_key: HMAC key for query results, investigations and bundles.
        unusual_hours: Hours of day flagged when busy.
        unusual_hour_threshold: Events per unusual hour above which it is flagged.
        rapid_window_seconds: Gap under which consecutive events count as rapid.
        rapid_threshold: Rapid gaps above which the set is flagged.
        investigation_ttl_days: Expiry of stored investigations.
        bundle_ttl_days: Expiry of stored discovery bundles.
    """

    def __init__(
        self,
        repository: IAuditRepository,
        artifacts: IKeyValueStore,
        audit_sink: IAuditSink,
        signing_key: bytes,
        unusual_hours: Sequence[int] = (2, 3, 4, 5),
        unusual_hour_threshold: int = 10,
        rapid_window_seconds: float = 1.0,
        rapid_threshold: int = 10,
        investigation_ttl_days: int = 90,
        bundle_ttl_days: int = 30,
    ) -> None:
        self._repository = repository
        self._artifacts = artifacts
        self._audit_sink = audit_sink
        self._signing_key = signing_key
        self._unusual_hours = list(unusual_hours)
        self._unusual_hour_threshold = unusual_hour_threshold
        self._rapid_window_seconds = rapid_window_seconds
        self._rapid_threshold = rapid_threshold
        self._investigation_ttl_days = investigation_ttl_days
        self._bundle_ttl_days = bundle_ttl_days

    async def query(self, tenant_id: str, filters: QueryFilters) -> QueryResult:
        """Return matching records with a signature over the result set."""
        self._check_window(filters.start, filters.end)
        entries = await self._repository.query(tenant_id, filters)
        records = [entry.to_record() for entry in entries]
        signature = integrity.sign({"tenant_id": tenant_id, "records": records}, self._signing_key)
        return QueryResult(records=records, signature=signature)

    def verify_query_result(self, tenant_id: str, result: QueryResult) -> bool:
        return integrity.verify_signature(
            {"tenant_id": tenant_id, "records": result.records}, self._signing_key, result.signature
        )

    async def investigate(
        self,
        tenant_id: str,
        criteria: QueryFilters,
        requested_by: Actor | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> InvestigationReport:
        """Run a forensic investigation and store the signed report.

        Args:
            tenant_id: Tenant under investigation.
            criteria: Query filters selecting the entries.
            requested_by: Investigator, recorded in the ledger.
            cancel_event: Set to abort before the report is signed.

        Returns:
            The signed report.

        Raises:
            ValidationError: If the time window is inverted.
            InvestigationCancelledError: If ``cancel_event`` was set mid-run.
        """
        self._check_window(criteria.start, criteria.end)
        investigation_id = f"INV-{uuid.uuid4().hex.upper()}"
        logger.info("Starting investigation", investigation_id=investigation_id, tenant_id=tenant_id)

        entries = await self._repository.query(tenant_id, criteria)
        await self._checkpoint(cancel_event, investigation_id)
        statistics = compute_statistics(entries)
        anomalies = detect_anomalies(
            entries, self._unusual_hours, self._unusual_hour_threshold,
            self._rapid_window_seconds, self._rapid_threshold,
        )
        await self._checkpoint(cancel_event, investigation_id)
        timeline = build_timeline(entries)
        findings = extract_findings(entries)
        custody = chain_of_custody(entries)
        await self._checkpoint(cancel_event, investigation_id)

        generated_at = _utcnow()
        report = InvestigationReport(
            investigation_id=investigation_id,
            tenant_id=tenant_id,
            criteria=criteria,
            generated_at=generated_at,
            expires_at=generated_at + timedelta(days=self._investigation_ttl_days),
            record_count=len(entries),
            statistics=statistics,
            anomalies=anomalies,
            timeline=timeline,
            findings=findings,
            chain_of_custody=custody,
            signature="",
        )
        body = _investigation_body(report)
        report = replace(report, signature=integrity.sign(body, self._signing_key))

        await self._artifacts.set_with_ttl(
            f"investigation:{tenant_id}:{investigation_id}",
            json.dumps({**body, "signature": report.signature}, sort_keys=True),
            self._investigation_ttl_days * _SECONDS_PER_DAY,
        )
        await self._audit_sink.record(AuditEvent(
            tenant_id=tenant_id,
            event_type=EventType.AUDIT_REVIEW,
            action="FORENSIC_INVESTIGATION",
            resource_type="INVESTIGATION",
            resource_id=investigation_id,
            severity=Severity.WARNING,
            actor=requested_by or Actor(actor_type="SYSTEM"),
            metadata={"record_count": len(entries), "anomalies": len(anomalies)},
        ))
        logger.info("Completed investigation", investigation_id=investigation_id,
                    record_count=len(entries), anomalies=len(anomalies))
        return report

    def verify_investigation(self, report: InvestigationReport) -> bool:
        return integrity.verify_signature(_investigation_body(report), self._signing_key, report.signature)

    async def generate_discovery_bundle(
        self,
        tenant_id: str,
        case_number: str,
        start: datetime,
        end: datetime,
        requested_by: Actor | None = None,
    ) -> DiscoveryBundle:
        """Assemble and sign the ledger records responsive to a discovery request.

        Raises:
            ValidationError: If the case number is empty or the window is inverted.
        """
        if not case_number or not case_number.strip():
            raise ValidationError("case_number is required")
        self._check_window(start, end, required=True)

        entries = await self._repository.query(
            tenant_id, QueryFilters(start=start, end=end, case_number=case_number)
        )
        records = [entry.to_record() for entry in entries]
        generated_at = _utcnow()
        bundle = DiscoveryBundle(
            bundle_id=f"DISC-{uuid.uuid4().hex.upper()}",
            tenant_id=tenant_id,
            case_number=case_number,
            period_start=start,
            period_end=end,
            generated_at=generated_at,
            expires_at=generated_at + timedelta(days=self._bundle_ttl_days),
            records=records,
            summary=summarize_bundle(entries),
            chain_of_custody=chain_of_custody(entries),
            integrity_hash=integrity.digest_records(records),
            signature="",
        )
        bundle = replace(bundle, signature=integrity.sign(_bundle_body(bundle), self._signing_key))

        await self._artifacts.set_with_ttl(
            f"discovery:bundle:{tenant_id}:{bundle.bundle_id}",
            json.dumps(bundle_to_dict(bundle), sort_keys=True, default=str),
            self._bundle_ttl_days * _SECONDS_PER_DAY,
        )
        await self._audit_sink.record(AuditEvent(
            tenant_id=tenant_id,
            event_type=EventType.LEGAL_DISCOVERY,
            action="DISCOVERY_BUNDLE_GENERATED",
            resource_type="DISCOVERY_BUNDLE",
            resource_id=bundle.bundle_id,
            severity=Severity.INFO,
            actor=requested_by or Actor(actor_type="SYSTEM"),
            metadata={"record_count": len(records), "integrity_hash": bundle.integrity_hash},
        ))
        logger.info("Generated discovery bundle", bundle_id=bundle.bundle_id,
                    case_number=case_number, record_count=len(records))
        return bundle

    def verify_bundle(self, bundle: DiscoveryBundle) -> bool:
        """Check the record digest and the whole-bundle signature."""
        if integrity.digest_records(bundle.records) != bundle.integrity_hash:
            return False
        return integrity.verify_signature(_bundle_body(bundle), self._signing_key, bundle.signature)

    async def load_artifact(self, tenant_id: str, kind: str, artifact_id: str) -> dict[str, Any]:
        """Load a stored investigation or bundle.

        Raises:
            NotFoundError: If the artifact does not exist or has expired.
        """
        prefix = {"investigation": "investigation", "bundle": "discovery:bundle"}[kind]
        raw = await self._artifacts.get(f"{prefix}:{tenant_id}:{artifact_id}")
        if raw is None:
            raise NotFoundError(f"{kind.capitalize()} {artifact_id} not found")
        return json.loads(raw)

    @staticmethod
    def _check_window(start: datetime | None, end: datetime | None, required: bool = False) -> None:
        if required and (start is None or end is None):
            raise ValidationError("start and end are required")
        if start is not None and end is not None and end <= start:
            raise ValidationError("end must be after start")

    @staticmethod
    async def _checkpoint(cancel_event: asyncio.Event | None, investigation_id: str) -> None:
        await asyncio.sleep(0)
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Investigation cancelled", investigation_id=investigation_id)
            raise InvestigationCancelledError(f"Investigation {investigation_id} was cancelled")


# ---------------------------------------------------------------------------
# Read side: compliance reporting
# ---------------------------------------------------------------------------


def compliance_score(compliant: int, total: int) -> int:
    """Percentage of compliant tags, rounded half up; 100 when nothing is tagged."""
    if total <= 0:
        return 100
    return (200 * compliant + total) // (2 * total)


def period_window(period: ReportPeriod, now: datetime) -> tuple[datetime, datetime]:
    """Start and end of a named reporting period ending at ``now``."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is ReportPeriod.DAILY:
        start = midnight
    elif period is ReportPeriod.WEEKLY:
        start = midnight - timedelta(days=7)
    elif period is ReportPeriod.MONTHLY:
        start = midnight.replace(day=1)
    elif period is ReportPeriod.QUARTERLY:
        start = midnight.replace(month=3 * ((now.month - 1) // 3) + 1, day=1)
    else:
        start = midnight.replace(month=1, day=1)
    return start, now


def _report_body(report: ComplianceReport) -> dict[str, Any]:
    return {
        "report_id": report.report_id,
        "tenant_id": report.tenant_id,
        "standard": report.standard.value,
        "period": report.period_label,
        "period_start": report.period_start.isoformat(),
        "period_end": report.period_end.isoformat(),
        "generated_at": report.generated_at.isoformat(),
        "expires_at": report.expires_at.isoformat(),
        "record_count": report.record_count,
        "compliance_score": report.compliance_score,
        "by_requirement": {
            name: {"compliant": tally.compliant, "non_compliant": tally.non_compliant}
            for name, tally in report.by_requirement.items()
        },
        "gaps": report.gaps,
        "strengths": report.strengths,
        "recommendations": report.recommendations,
        "critical_findings": report.critical_findings,
    }


def report_to_dict(report: ComplianceReport) -> dict[str, Any]:
    return {**_report_body(report), "signature": report.signature}


class ComplianceReporter:
    """Aggregates tagged ledger entries into scored, signed compliance reports.

    Args:
        repository: Read path of the audit repository.
        artifacts: Key-value store for signed reports.
        audit_sink: Records that a report was generated.
        signing_key: HMAC key for reports.
        report_ttl_days: Expiry of stored reports.
        clock: Source of "now" for named periods.
    """

    def __init__(
        self,
        repository: IAuditRepository,
        artifacts: IKeyValueStore,
        audit_sink: IAuditSink,
        signing_key: bytes,
        report_ttl_days: int = 365,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._artifacts = artifacts
        self._audit_sink = audit_sink
        self._signing_key = signing_key
        self._report_ttl_days = report_ttl_days
        self._clock = clock

    async def generate_report(
        self,
        tenant_id: str,
        standard: ComplianceStandard,
        period: ReportPeriod | None = ReportPeriod.MONTHLY,
        start: datetime | None = None,
        end: datetime | None = None,
        requested_by: Actor | None = None,
    ) -> ComplianceReport:
        """Score the tenant's compliance with one standard over a period.

        Pass either a named ``period`` or an explicit ``start``/``end`` window.

        Raises:
            ValidationError: If the explicit window is incomplete or inverted.
        """
        now = self._clock()
        if start is not None or end is not None:
            if start is None or end is None or end <= start:
                raise ValidationError("An explicit report window needs start < end")
            label = "CUSTOM"
        else:
            period = period or ReportPeriod.MONTHLY
            start, end = period_window(period, now)
            label = period.value

        entries = await self._repository.query(
            tenant_id, QueryFilters(start=start, end=end, standard=standard)
        )

        tallies: dict[str, list[int]] = {}
        gaps: list[dict[str, Any]] = []
        for entry in entries:
            for tag in entry.compliance_tags:
                if tag.standard is not standard:
                    continue
                tally = tallies.setdefault(tag.requirement, [0, 0])
                if tag.status is ComplianceStatus.COMPLIANT:
                    tally[0] += 1
                else:
                    tally[1] += 1
                    gaps.append({
                        "requirement": tag.requirement,
                        "audit_id": entry.audit_id,
                        "timestamp": entry.timestamp.isoformat(),
                        "status": tag.status.value,
                        "description": f"Non-compliance detected: {tag.requirement}",
                    })

        by_requirement = {name: RequirementTally(c, n) for name, (c, n) in tallies.items()}
        compliant = sum(t.compliant for t in by_requirement.values())
        total = sum(t.total for t in by_requirement.values())
        score = compliance_score(compliant, total)
        strengths = [
            {
                "requirement": name,
                "compliant_events": tally.compliant,
                "description": f"Full compliance for {name}",
            }
            for name, tally in by_requirement.items()
            if tally.total > 0 and tally.non_compliant == 0
        ]
        recommendations: list[str] = []
        if gaps:
            recommendations.append(f"Address {len(gaps)} compliance gaps identified in the audit")
        if score < 90:
            recommendations.append("Implement additional controls to raise the compliance score above 90%")

        report = ComplianceReport(
            report_id=f"COMPLIANCE-{standard.value}-{uuid.uuid4().hex[:12].upper()}",
            tenant_id=tenant_id,
            standard=standard,
            period_label=label,
            period_start=start,
            period_end=end,
            generated_at=now,
            expires_at=now + timedelta(days=self._report_ttl_days),
            record_count=len(entries),
            compliance_score=score,
            by_requirement=by_requirement,
            gaps=gaps,
            strengths=strengths,
            recommendations=recommendations,
            critical_findings=sum(1 for e in entries if e.severity is Severity.CRITICAL),
            signature="",
        )
        report = replace(report, signature=integrity.sign(_report_body(report), self._signing_key))

        await self._artifacts.set_with_ttl(
            f"compliance:report:{tenant_id}:{report.report_id}",
            json.dumps(report_to_dict(report), sort_keys=True),
            self._report_ttl_days * _SECONDS_PER_DAY,
        )
        await self._audit_sink.record(AuditEvent(
            tenant_id=tenant_id,
            event_type=EventType.REGULATORY_REPORT,
            action="COMPLIANCE_REPORT_GENERATED",
            resource_type="COMPLIANCE_REPORT",
            resource_id=report.report_id,
            severity=Severity.INFO,
            actor=requested_by or Actor(actor_type="SYSTEM"),
            metadata={"standard": standard.value, "score": score, "record_count": len(entries)},
        ))
        logger.info("Generated compliance report", report_id=report.report_id, tenant_id=tenant_id,
                    standard=standard.value, score=score, record_count=len(entries))
        return report

    def verify_report(self, report: ComplianceReport) -> bool:
        return integrity.verify_signature(_report_body(report), self._signing_key, report.signature)

    async def load_report(self, tenant_id: str, report_id: str) -> dict[str, Any]:
        """Load a stored report.

        Raises:
            NotFoundError: If the report does not exist or has expired.
        """
        raw = await self._artifacts.get(f"compliance:report:{tenant_id}:{report_id}")
        if raw is None:
            raise NotFoundError(f"Compliance report {report_id} not found")
        return json.loads(raw)
