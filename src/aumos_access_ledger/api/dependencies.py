"""Service wiring and FastAPI dependencies for aumos-access-ledger.

``build_container`` assembles every service from settings: in-memory
adapters by default, Redis and PostgreSQL when their URLs are configured.
The container lives on ``app.state`` and route dependencies read from it,
so tests can build their own container or override any dependency.
"""

from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as redis
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from aumos_access_ledger.adapters.alert_dispatcher import AlertDispatcher
from aumos_access_ledger.adapters.anchor import AnchorScheduler, LocalAnchorService
from aumos_access_ledger.adapters.audit_enricher import AuditEnricher
from aumos_access_ledger.adapters.background import BackgroundSupervisor, PeriodicTask
from aumos_access_ledger.adapters.decision_cache import DecisionCache
from aumos_access_ledger.adapters.emergency_store import InMemoryEmergencyStore, JsonlEmergencyStore
from aumos_access_ledger.adapters.kv_store import InMemoryKeyValueStore, RedisKeyValueStore
from aumos_access_ledger.adapters.publishers import InMemoryPublisher, RedisPublisher
from aumos_access_ledger.adapters.repositories import InMemoryAuditRepository, SqlAuditRepository
from aumos_access_ledger.core.interfaces import (
    IAuditRepository,
    IEmergencyStore,
    IEventPublisher,
    IKeyValueStore,
)
from aumos_access_ledger.core.policy import CatalogHolder, default_catalog
from aumos_access_ledger.core.services import (
    AuditLedger,
    ComplianceReporter,
    DecisionEngine,
    ForensicInvestigator,
    parse_severity,
)
from aumos_access_ledger.observability import LedgerMetrics, get_logger
from aumos_access_ledger.settings import Settings

logger = get_logger(__name__)

_IDENTITY_HEADERS: dict[str, str] = {
    "x-subject-id": "id",
    "x-tenant-id": "tenant_id",
    "x-role": "role",
    "x-client-id": "client_id",
}


@dataclass
class ServiceContainer:
    """Every long-lived service and adapter of one running instance."""

    settings: Settings
    catalog: CatalogHolder
    kv_store: IKeyValueStore
    publisher: IEventPublisher
    repository: IAuditRepository
    emergency_store: IEmergencyStore
    metrics: LedgerMetrics
    alerts: AlertDispatcher
    anchors: AnchorScheduler
    cache: DecisionCache
    ledger: AuditLedger
    engine: DecisionEngine
    investigator: ForensicInvestigator
    reporter: ComplianceReporter
    supervisor: BackgroundSupervisor = field(default_factory=BackgroundSupervisor)
    redis_client: redis.Redis | None = None
    db_engine: AsyncEngine | None = None

    async def startup(self) -> None:
        if self.db_engine is not None:
            await SqlAuditRepository.create_schema(self.db_engine)
        self.supervisor.start()
        logger.info("Service container started", tasks=[t.name for t in self.supervisor.tasks])

    async def shutdown(self) -> None:
        await self.supervisor.stop()
        await self.anchors.drain()
        await self.alerts.drain()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        if self.db_engine is not None:
            await self.db_engine.dispose()
        logger.info("Service container stopped")


def build_container(settings: Settings) -> ServiceContainer:
    """Wire all services from settings.

    Raises:
        ConfigurationError: If signing material is missing.
    """
    settings.require_keys()

    redis_client: redis.Redis | None = None
    kv_store: IKeyValueStore
    publisher: IEventPublisher
    if settings.redis_url:
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
        kv_store = RedisKeyValueStore(redis_client)
        publisher = RedisPublisher(redis_client)
        logger.info("Using Redis adapters", url=settings.redis_url.split("@")[-1])
    else:
        kv_store = InMemoryKeyValueStore()
        publisher = InMemoryPublisher()

    db_engine: AsyncEngine | None = None
    repository: IAuditRepository
    if settings.database_url:
        db_engine = create_async_engine(settings.database_url, pool_pre_ping=True)
        repository = SqlAuditRepository(async_sessionmaker(db_engine, expire_on_commit=False))
        logger.info("Using SQL audit repository")
    else:
        repository = InMemoryAuditRepository()

    emergency_store: IEmergencyStore = (
        JsonlEmergencyStore(settings.emergency_store_path)
        if settings.emergency_store_path
        else InMemoryEmergencyStore()
    )

    signing_key = settings.signing_key.get_secret_value().encode()
    metrics = LedgerMetrics()
    alerts = AlertDispatcher(publisher)
    anchors = AnchorScheduler(
        LocalAnchorService(),
        repository,
        max_attempts=settings.anchor_max_attempts,
        max_pending=settings.anchor_max_pending,
    )
    cache = DecisionCache(kv_store, default_ttl_seconds=settings.decision_cache_ttl_seconds)
    catalog = CatalogHolder(default_catalog())

    ledger = AuditLedger(
        repository=repository,
        alerts=alerts,
        emergency_store=emergency_store,
        signing_key=signing_key,
        audit_salt=settings.audit_salt.get_secret_value().encode(),
        enricher=AuditEnricher(default_jurisdiction=settings.default_jurisdiction),
        anchors=anchors,
        metrics=metrics,
        alert_min_severity=parse_severity(settings.alert_min_severity),
        anchor_min_severity=parse_severity(settings.anchor_min_severity),
    )
    engine = DecisionEngine(
        catalog=catalog,
        cache=cache,
        audit_sink=ledger,
        alerts=alerts,
        resolution_timeout_seconds=settings.context_resolution_timeout_ms / 1000,
    )
    investigator = ForensicInvestigator(
        repository=repository,
        artifacts=kv_store,
        audit_sink=ledger,
        signing_key=settings.discovery_key(),
        unusual_hours=settings.unusual_hours,
        unusual_hour_threshold=settings.unusual_hour_threshold,
        rapid_window_seconds=settings.rapid_succession_window_seconds,
        rapid_threshold=settings.rapid_succession_threshold,
        investigation_ttl_days=settings.investigation_ttl_days,
        bundle_ttl_days=settings.discovery_bundle_ttl_days,
    )
    reporter = ComplianceReporter(
        repository=repository,
        artifacts=kv_store,
        audit_sink=ledger,
        signing_key=settings.report_key(),
        report_ttl_days=settings.compliance_report_ttl_days,
    )

    async def flush_metrics() -> None:
        await alerts.publish_metrics(metrics.snapshot())

    supervisor = BackgroundSupervisor([
        PeriodicTask("dashboard-metrics", settings.metrics_flush_interval_seconds, flush_metrics),
        PeriodicTask("anchor-retry", settings.anchor_retry_interval_seconds, anchors.retry_pending),
    ])

    return ServiceContainer(
        settings=settings,
        catalog=catalog,
        kv_store=kv_store,
        publisher=publisher,
        repository=repository,
        emergency_store=emergency_store,
        metrics=metrics,
        alerts=alerts,
        anchors=anchors,
        cache=cache,
        ledger=ledger,
        engine=engine,
        investigator=investigator,
        reporter=reporter,
        supervisor=supervisor,
        redis_client=redis_client,
        db_engine=db_engine,
    )


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_subject_claims(request: Request) -> dict[str, Any] | None:
    """Read identity claims forwarded by the upstream identity provider.

    Returns:
        Claims mapping, or None when the request carries no subject.
    """
    claims: dict[str, Any] = {
        claim: request.headers[header]
        for header, claim in _IDENTITY_HEADERS.items()
        if request.headers.get(header)
    }
    if not claims:
        return None
    projects = request.headers.get("x-project-ids")
    if projects:
        claims["project_ids"] = [p.strip() for p in projects.split(",") if p.strip()]
    claims["mfa_verified"] = request.headers.get("x-mfa-verified", "").lower() == "true"
    return claims
