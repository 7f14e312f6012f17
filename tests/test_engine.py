"""Tests for DecisionEngine.

Covers the evaluation order, default deny, tenant isolation, override
predicates, the decision cache and the audit trail every decision leaves.
"""

import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from aumos_access_ledger.adapters.alert_dispatcher import AlertDispatcher
from aumos_access_ledger.adapters.decision_cache import DecisionCache
from aumos_access_ledger.adapters.kv_store import InMemoryKeyValueStore
from aumos_access_ledger.adapters.publishers import InMemoryPublisher, Topics
from aumos_access_ledger.adapters.repositories import InMemoryAuditRepository
from aumos_access_ledger.core.entities import (
    AuditEntry,
    DecisionCode,
    EventType,
    QueryFilters,
    ResourceContext,
    Severity,
    Subject,
)
from aumos_access_ledger.core.policy import CatalogHolder, default_catalog
from aumos_access_ledger.core.services import AuditLedger, DecisionEngine
from aumos_access_ledger.errors import AuthenticationRequiredError

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


async def _entries(repository: InMemoryAuditRepository, tenant_id: str = TENANT) -> list[AuditEntry]:
    return await repository.query(tenant_id, QueryFilters())


class _SlowResolver:
    async def resolve_tenant(self, resource: ResourceContext) -> str | None:
        await asyncio.sleep(1)
        return TENANT


class _StaticResolver:
    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id

    async def resolve_tenant(self, resource: ResourceContext) -> str | None:
        return self.tenant_id


class TestBaseDecisions:
    @pytest.mark.asyncio
    async def test_super_admin_bypasses_cache(
        self, engine: DecisionEngine, cache: DecisionCache, make_subject: Callable[..., Subject]
    ) -> None:
        cache.get = AsyncMock(return_value=None)
        cache.put = AsyncMock()

        decision = await engine.evaluate(make_subject("SUPER_ADMIN", tenant_id="platform"), TENANT, "SYSTEM_ALL")

        assert decision.allowed
        assert decision.code is DecisionCode.SUPER_ADMIN_BYPASS
        cache.get.assert_not_awaited()
        cache.put.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_role_level_does_not_imply_permission(
        self, engine: DecisionEngine, make_subject: Callable[..., Subject]
    ) -> None:
        resource = ResourceContext(resource_id="doc-9", resource_type="DOCUMENT", tenant_id=TENANT)

        decision = await engine.evaluate(make_subject("ATTORNEY"), TENANT, "DOCUMENT_DELETE", resource)

        assert not decision.allowed
        assert decision.code is DecisionCode.INSUFFICIENT_PERMISSION

    @pytest.mark.asyncio
    async def test_direct_grant_is_allowed(self, engine: DecisionEngine, make_subject: Callable[..., Subject]) -> None:
        decision = await engine.evaluate(make_subject("ATTORNEY"), TENANT, "document view")

        assert decision.allowed
        assert decision.code is DecisionCode.ALLOWED
        assert decision.processing_time_ms >= 0

    @pytest.mark.asyncio
    async def test_unknown_permission_is_denied(
        self, engine: DecisionEngine, make_subject: Callable[..., Subject]
    ) -> None:
        decision = await engine.evaluate(make_subject("FIRM_PARTNER"), TENANT, "DOCUMENT_TELEPORT")
        assert decision.code is DecisionCode.INSUFFICIENT_PERMISSION

    @pytest.mark.asyncio
    async def test_unknown_role_is_denied(self, engine: DecisionEngine, make_subject: Callable[..., Subject]) -> None:
        decision = await engine.evaluate(make_subject("JANITOR"), TENANT, "MESSAGE_COMMUNICATE")
        assert decision.code is DecisionCode.INSUFFICIENT_PERMISSION

    @pytest.mark.asyncio
    async def test_claims_mapping_is_accepted(self, engine: DecisionEngine) -> None:
        claims = {"id": "user-7", "tenant_id": TENANT, "role": "Paralegal"}
        decision = await engine.evaluate(claims, TENANT, "CASE_VIEW")
        assert decision.allowed


class TestTenantIsolation:
    @pytest.mark.asyncio
    async def test_cross_tenant_request_is_denied_and_alerted(
        self,
        engine: DecisionEngine,
        alerts: AlertDispatcher,
        publisher: InMemoryPublisher,
        repository: InMemoryAuditRepository,
        make_subject: Callable[..., Subject],
    ) -> None:
        resource = ResourceContext(resource_id="doc-1", resource_type="DOCUMENT", tenant_id=OTHER_TENANT)

        decision = await engine.evaluate(make_subject("FIRM_PARTNER"), TENANT, "DOCUMENT_VIEW", resource)
        await alerts.drain()

        assert decision.code is DecisionCode.TENANT_SCOPE_VIOLATION
        messages = publisher.messages[Topics.CROSS_TENANT_ATTEMPT]
        assert len(messages) == 1
        assert messages[0]["subject_tenant_id"] == TENANT
        assert messages[0]["target_tenant_id"] == OTHER_TENANT

        entries = await _entries(repository)
        assert entries[-1].severity is Severity.SECURITY
        assert entries[-1].action == "ACCESS_DENIED"
        assert await _entries(repository, OTHER_TENANT) == []

    @pytest.mark.asyncio
    async def test_request_tenant_mismatch_is_denied(
        self, engine: DecisionEngine, make_subject: Callable[..., Subject]
    ) -> None:
        decision = await engine.evaluate(make_subject("ATTORNEY"), OTHER_TENANT, "DOCUMENT_VIEW")
        assert decision.code is DecisionCode.TENANT_SCOPE_VIOLATION

    @pytest.mark.asyncio
    async def test_resolved_tenant_is_enforced(
        self,
        catalog: CatalogHolder,
        cache: DecisionCache,
        ledger: AuditLedger,
        alerts: AlertDispatcher,
        make_subject: Callable[..., Subject],
    ) -> None:
        engine = DecisionEngine(catalog, cache, ledger, alerts, context_resolver=_StaticResolver(OTHER_TENANT))
        resource = ResourceContext(resource_id="doc-1", resource_type="DOCUMENT")

        decision = await engine.evaluate(make_subject("ATTORNEY"), TENANT, "DOCUMENT_VIEW", resource)

        assert decision.code is DecisionCode.TENANT_SCOPE_VIOLATION

    @pytest.mark.asyncio
    async def test_resolver_timeout_denies(
        self,
        catalog: CatalogHolder,
        cache: DecisionCache,
        ledger: AuditLedger,
        alerts: AlertDispatcher,
        make_subject: Callable[..., Subject],
    ) -> None:
        engine = DecisionEngine(
            catalog, cache, ledger, alerts,
            context_resolver=_SlowResolver(), resolution_timeout_seconds=0.01,
        )
        resource = ResourceContext(resource_id="doc-1", resource_type="DOCUMENT")

        decision = await engine.evaluate(make_subject("ATTORNEY"), TENANT, "DOCUMENT_VIEW", resource)

        assert not decision.allowed
        assert decision.code is DecisionCode.CONTEXT_RESOLUTION_FAILED


class TestScopeAndPredicates:
    @pytest.mark.asyncio
    async def test_external_counsel_limited_to_assigned_projects(
        self, engine: DecisionEngine, make_subject: Callable[..., Subject]
    ) -> None:
        counsel = make_subject("EXTERNAL_COUNSEL", subject_id="ext-1", project_ids=frozenset({"matter-1"}))
        assigned = ResourceContext(resource_id="doc-1", resource_type="DOCUMENT", project_id="matter-1")
        other = ResourceContext(resource_id="doc-2", resource_type="DOCUMENT", project_id="matter-2")

        allowed = await engine.evaluate(counsel, TENANT, "DOCUMENT_VIEW_ASSIGNED", assigned)
        denied = await engine.evaluate(counsel, TENANT, "DOCUMENT_VIEW_ASSIGNED", other)

        assert allowed.allowed
        assert denied.code is DecisionCode.SCOPE_VIOLATION

    @pytest.mark.asyncio
    async def test_client_representative_cannot_read_other_client(
        self, engine: DecisionEngine, make_subject: Callable[..., Subject]
    ) -> None:
        representative = make_subject("CLIENT_REPRESENTATIVE", subject_id="rep-1", client_id="client-1")
        resource = ResourceContext(
            resource_id="record-7", resource_type="CLIENT_DATA", client_id="client-2", purpose="CASE_REVIEW"
        )

        decision = await engine.evaluate(representative, TENANT, "CLIENT_DATA_VIEW", resource)

        assert not decision.allowed
        assert decision.code is DecisionCode.DATA_MINIMIZATION_VIOLATION

    @pytest.mark.asyncio
    async def test_predicates_only_run_after_base_allow(
        self,
        catalog: CatalogHolder,
        cache: DecisionCache,
        ledger: AuditLedger,
        alerts: AlertDispatcher,
        make_subject: Callable[..., Subject],
    ) -> None:
        predicate = MagicMock()
        predicate.name = "spy"
        engine = DecisionEngine(catalog, cache, ledger, alerts, predicates=[predicate])

        decision = await engine.evaluate(make_subject("PARALEGAL"), TENANT, "DOCUMENT_DELETE")

        assert decision.code is DecisionCode.INSUFFICIENT_PERMISSION
        predicate.check.assert_not_called()


class TestCaching:
    @pytest.mark.asyncio
    async def test_repeat_request_is_served_from_cache(
        self, engine: DecisionEngine, make_subject: Callable[..., Subject]
    ) -> None:
        resource = ResourceContext(resource_id="doc-1", resource_type="DOCUMENT")

        first = await engine.evaluate(make_subject("ATTORNEY"), TENANT, "DOCUMENT_VIEW", resource)
        second = await engine.evaluate(make_subject("ATTORNEY"), TENANT, "DOCUMENT_VIEW", resource)

        assert not first.cached
        assert second.cached
        assert (second.allowed, second.code) == (first.allowed, first.code)

    @pytest.mark.asyncio
    async def test_cached_allow_does_not_leak_to_another_client(
        self, engine: DecisionEngine, make_subject: Callable[..., Subject]
    ) -> None:
        representative = make_subject("CLIENT_REPRESENTATIVE", subject_id="rep-1", client_id="client-1")
        own = ResourceContext(resource_type="CLIENT_DATA", client_id="client-1", purpose="CASE_REVIEW")
        other = ResourceContext(resource_type="CLIENT_DATA", client_id="client-2", purpose="CASE_REVIEW")

        first = await engine.evaluate(representative, TENANT, "CLIENT_DATA_VIEW", own)
        second = await engine.evaluate(representative, TENANT, "CLIENT_DATA_VIEW", other)

        assert first.allowed
        assert not second.allowed
        assert not second.cached
        assert second.code is DecisionCode.DATA_MINIMIZATION_VIOLATION

    @pytest.mark.asyncio
    async def test_cached_allow_does_not_skip_purpose_requirement(
        self, engine: DecisionEngine, make_subject: Callable[..., Subject]
    ) -> None:
        representative = make_subject("CLIENT_REPRESENTATIVE", subject_id="rep-1", client_id="client-1")
        with_purpose = ResourceContext(
            resource_id="rec-1", resource_type="CLIENT_DATA", client_id="client-1", purpose="CASE_REVIEW"
        )
        without_purpose = ResourceContext(resource_id="rec-1", resource_type="CLIENT_DATA", client_id="client-1")

        first = await engine.evaluate(representative, TENANT, "CLIENT_DATA_VIEW", with_purpose)
        second = await engine.evaluate(representative, TENANT, "CLIENT_DATA_VIEW", without_purpose)
        third = await engine.evaluate(representative, TENANT, "CLIENT_DATA_VIEW", with_purpose)

        assert first.allowed
        assert (second.allowed, second.cached) == (False, False)
        assert second.code is DecisionCode.DATA_MINIMIZATION_VIOLATION
        assert third.allowed and third.cached

    @pytest.mark.asyncio
    async def test_tenant_denials_are_not_cached(
        self, engine: DecisionEngine, kv_store: InMemoryKeyValueStore, make_subject: Callable[..., Subject]
    ) -> None:
        await engine.evaluate(make_subject("ATTORNEY"), OTHER_TENANT, "DOCUMENT_VIEW")
        assert len(kv_store) == 0

    @pytest.mark.asyncio
    async def test_reload_catalog_purges_cache(
        self, engine: DecisionEngine, kv_store: InMemoryKeyValueStore, make_subject: Callable[..., Subject]
    ) -> None:
        await engine.evaluate(make_subject("ATTORNEY"), TENANT, "DOCUMENT_VIEW")
        assert len(kv_store) == 1

        await engine.reload_catalog(default_catalog(version="v2"))

        assert len(kv_store) == 0
        assert engine.catalog.version == "v2"


class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_every_decision_is_recorded(
        self,
        engine: DecisionEngine,
        repository: InMemoryAuditRepository,
        make_subject: Callable[..., Subject],
    ) -> None:
        await engine.evaluate(make_subject("ATTORNEY"), TENANT, "DOCUMENT_VIEW")
        await engine.evaluate(make_subject("ATTORNEY"), TENANT, "DOCUMENT_VIEW")
        await engine.evaluate(make_subject("ATTORNEY"), TENANT, "DOCUMENT_DELETE")

        entries = await _entries(repository)

        assert [e.event_type for e in entries] == [EventType.AUTHORIZATION] * 3
        assert [e.action for e in entries] == ["ACCESS_GRANTED", "ACCESS_GRANTED", "ACCESS_DENIED"]
        assert entries[1].metadata["cached"] is True
        assert entries[2].severity is Severity.WARNING
        assert entries[2].metadata["code"] == "INSUFFICIENT_PERMISSION"

    @pytest.mark.asyncio
    async def test_high_verbosity_role_records_resource_context(
        self,
        engine: DecisionEngine,
        repository: InMemoryAuditRepository,
        make_subject: Callable[..., Subject],
    ) -> None:
        resource = ResourceContext(resource_id="doc-1", resource_type="DOCUMENT")

        await engine.evaluate(make_subject("FIRM_PARTNER"), TENANT, "DOCUMENT_VIEW", resource)
        await engine.evaluate(make_subject("PARALEGAL", subject_id="user-2"), TENANT, "DOCUMENT_VIEW", resource)

        partner_entry, paralegal_entry = await _entries(repository)
        assert partner_entry.metadata["resource_context"]["resource_id"] == "doc-1"
        assert "resource_context" not in paralegal_entry.metadata

    @pytest.mark.asyncio
    async def test_missing_subject_raises_and_is_recorded(
        self, engine: DecisionEngine, repository: InMemoryAuditRepository
    ) -> None:
        with pytest.raises(AuthenticationRequiredError):
            await engine.evaluate(None, TENANT, "DOCUMENT_VIEW")

        entries = await _entries(repository)
        assert len(entries) == 1
        assert entries[0].event_type is EventType.AUTHENTICATION
        assert entries[0].action == "AUTHENTICATION_REQUIRED"

    @pytest.mark.asyncio
    async def test_malformed_claims_raise(self, engine: DecisionEngine) -> None:
        with pytest.raises(AuthenticationRequiredError):
            await engine.evaluate({"id": "user-1", "tenant_id": TENANT}, TENANT, "DOCUMENT_VIEW")
