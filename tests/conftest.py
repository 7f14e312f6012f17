"""Shared test fixtures for aumos-access-ledger."""

import os
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from aumos_access_ledger.adapters.alert_dispatcher import AlertDispatcher
from aumos_access_ledger.adapters.anchor import AnchorScheduler, LocalAnchorService
from aumos_access_ledger.adapters.decision_cache import DecisionCache
from aumos_access_ledger.adapters.emergency_store import InMemoryEmergencyStore
from aumos_access_ledger.adapters.kv_store import InMemoryKeyValueStore
from aumos_access_ledger.adapters.publishers import InMemoryPublisher
from aumos_access_ledger.adapters.repositories import InMemoryAuditRepository
from aumos_access_ledger.core.entities import Actor, AuditEvent, EventType, Severity, Subject
from aumos_access_ledger.core.policy import CatalogHolder, default_catalog
from aumos_access_ledger.core.services import (
    AuditLedger,
    ComplianceReporter,
    DecisionEngine,
    ForensicInvestigator,
)

os.environ.setdefault("AUMOS_ACCESS_SIGNING_KEY", "test-signing-key-0123456789abcdef0123456789")
os.environ.setdefault("AUMOS_ACCESS_AUDIT_SALT", "test-audit-salt-0123456789abcdef01234567890")

SIGNING_KEY = b"unit-test-signing-key-0123456789abcdef"
AUDIT_SALT = b"unit-test-audit-salt-0123456789abcdef"
TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


class ManualClock:
    """Deterministic clock; each call advances by ``step``."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=5)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository() -> InMemoryAuditRepository:
    return InMemoryAuditRepository()


@pytest.fixture
def publisher() -> InMemoryPublisher:
    return InMemoryPublisher()


@pytest.fixture
def alerts(publisher: InMemoryPublisher) -> AlertDispatcher:
    return AlertDispatcher(publisher)


@pytest.fixture
def emergency_store() -> InMemoryEmergencyStore:
    return InMemoryEmergencyStore()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def anchor_service() -> LocalAnchorService:
    return LocalAnchorService()


@pytest.fixture
def anchors(anchor_service: LocalAnchorService, repository: InMemoryAuditRepository) -> AnchorScheduler:
    return AnchorScheduler(anchor_service, repository)


@pytest.fixture
def ledger(
    repository: InMemoryAuditRepository,
    alerts: AlertDispatcher,
    emergency_store: InMemoryEmergencyStore,
    anchors: AnchorScheduler,
    clock: ManualClock,
) -> AuditLedger:
    """Ledger over in-memory adapters with a deterministic clock."""
    return AuditLedger(
        repository=repository,
        alerts=alerts,
        emergency_store=emergency_store,
        signing_key=SIGNING_KEY,
        audit_salt=AUDIT_SALT,
        anchors=anchors,
        clock=clock,
    )


@pytest.fixture
def cache(kv_store: InMemoryKeyValueStore) -> DecisionCache:
    return DecisionCache(kv_store)


@pytest.fixture
def catalog() -> CatalogHolder:
    return CatalogHolder(default_catalog())


@pytest.fixture
def engine(catalog: CatalogHolder, cache: DecisionCache, ledger: AuditLedger, alerts: AlertDispatcher) -> DecisionEngine:
    return DecisionEngine(catalog=catalog, cache=cache, audit_sink=ledger, alerts=alerts)


@pytest.fixture
def investigator(
    repository: InMemoryAuditRepository, kv_store: InMemoryKeyValueStore, ledger: AuditLedger
) -> ForensicInvestigator:
    return ForensicInvestigator(repository=repository, artifacts=kv_store, audit_sink=ledger, signing_key=SIGNING_KEY)


@pytest.fixture
def reporter(
    repository: InMemoryAuditRepository, kv_store: InMemoryKeyValueStore, ledger: AuditLedger
) -> ComplianceReporter:
    return ComplianceReporter(repository=repository, artifacts=kv_store, audit_sink=ledger, signing_key=SIGNING_KEY)


@pytest.fixture
def make_subject() -> Callable[..., Subject]:
    """Factory for subjects in the default tenant."""

    def _make(role: str, subject_id: str = "user-1", tenant_id: str = TENANT, **kwargs: Any) -> Subject:
        return Subject(id=subject_id, tenant_id=tenant_id, role=role, **kwargs)

    return _make


@pytest.fixture
def make_event() -> Callable[..., AuditEvent]:
    """Factory for valid audit events; keyword overrides replace defaults."""

    def _make(**overrides: Any) -> AuditEvent:
        fields: dict[str, Any] = {
            "tenant_id": TENANT,
            "event_type": EventType.DOCUMENT_READ,
            "action": "READ",
            "resource_type": "DOCUMENT",
            "resource_id": "doc-1",
            "severity": Severity.INFO,
            "actor": Actor(id="user-1", role="ATTORNEY"),
        }
        fields.update(overrides)
        return AuditEvent(**fields)

    return _make


@pytest.fixture
def app() -> FastAPI:
    """Fresh application with its own in-memory container."""
    from aumos_access_ledger.main import create_app
    from aumos_access_ledger.settings import Settings

    return create_app(Settings())


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the test application.

    Returns:
        Configured HTTPX AsyncClient for test requests.
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as async_client:
        yield async_client
