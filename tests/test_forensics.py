"""Tests for ForensicInvestigator: queries, investigations and discovery bundles."""

import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from aumos_access_ledger.adapters.kv_store import InMemoryKeyValueStore
from aumos_access_ledger.adapters.repositories import InMemoryAuditRepository
from aumos_access_ledger.core.entities import (
    Actor,
    AuditEvent,
    EventType,
    LegalContext,
    QueryFilters,
    Severity,
)
from aumos_access_ledger.core.services import (
    AuditLedger,
    ForensicInvestigator,
    bundle_from_dict,
    bundle_to_dict,
)
from aumos_access_ledger.errors import InvestigationCancelledError, NotFoundError, ValidationError

TENANT = "tenant-a"
NOON = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class _SteppingClock:
    def __init__(self, start: datetime, step: timedelta) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


class TestQuery:
    @pytest.mark.asyncio
    async def test_query_result_is_signed(
        self, ledger: AuditLedger, investigator: ForensicInvestigator, make_event: Callable[..., AuditEvent]
    ) -> None:
        await ledger.record(make_event())
        await ledger.record(make_event(actor=Actor(id="user-2", role="PARALEGAL")))

        result = await investigator.query(TENANT, QueryFilters(actor_id="user-2"))

        assert len(result.records) == 1
        assert result.records[0]["actor"]["id"] == "user-2"
        assert investigator.verify_query_result(TENANT, result)
        assert not investigator.verify_query_result("tenant-b", result)

    @pytest.mark.asyncio
    async def test_inverted_window_is_rejected(self, investigator: ForensicInvestigator) -> None:
        with pytest.raises(ValidationError):
            await investigator.query(TENANT, QueryFilters(start=NOON, end=NOON - timedelta(hours=1)))

    @pytest.mark.asyncio
    async def test_query_is_tenant_scoped(
        self, ledger: AuditLedger, investigator: ForensicInvestigator, make_event: Callable[..., AuditEvent]
    ) -> None:
        await ledger.record(make_event(tenant_id="tenant-b"))
        result = await investigator.query(TENANT, QueryFilters())
        assert result.records == []


class TestInvestigation:
    @pytest.mark.asyncio
    async def test_report_contents(
        self,
        ledger: AuditLedger,
        investigator: ForensicInvestigator,
        make_event: Callable[..., AuditEvent],
    ) -> None:
        await ledger.record(make_event())
        await ledger.record(make_event(resource_id="doc-2"))
        await ledger.record(make_event(event_type=EventType.DATA_BREACH, action="EXFILTRATION",
                                       severity=Severity.SECURITY))

        report = await investigator.investigate(TENANT, QueryFilters(), requested_by=Actor("inv-1", "COMPLIANCE_OFFICER"))

        assert report.investigation_id.startswith("INV-")
        assert report.record_count == 3
        assert report.statistics["by_event_type"] == {"DOCUMENT_READ": 2, "DATA_BREACH": 1}
        assert report.statistics["by_hour"] == {"12": 3}
        assert [f["category"] for f in report.findings] == ["SECURITY"]
        assert len(report.timeline) == len(report.chain_of_custody) == 3
        assert report.chain_of_custody[0].resource == "DOCUMENT:doc-1"
        assert report.anomalies == []
        assert investigator.verify_investigation(report)
        assert not investigator.verify_investigation(replace(report, record_count=2))

    @pytest.mark.asyncio
    async def test_report_is_stored_and_recorded(
        self,
        ledger: AuditLedger,
        repository: InMemoryAuditRepository,
        investigator: ForensicInvestigator,
        make_event: Callable[..., AuditEvent],
    ) -> None:
        await ledger.record(make_event())

        report = await investigator.investigate(TENANT, QueryFilters())

        stored = await investigator.load_artifact(TENANT, "investigation", report.investigation_id)
        assert stored["signature"] == report.signature
        assert stored["record_count"] == 1
        entries = await repository.query(TENANT, QueryFilters(event_types=(EventType.AUDIT_REVIEW,)))
        assert [e.action for e in entries] == ["FORENSIC_INVESTIGATION"]

    @pytest.mark.asyncio
    async def test_cancelled_investigation_leaves_nothing(
        self,
        ledger: AuditLedger,
        repository: InMemoryAuditRepository,
        kv_store: InMemoryKeyValueStore,
        investigator: ForensicInvestigator,
        make_event: Callable[..., AuditEvent],
    ) -> None:
        await ledger.record(make_event())
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(InvestigationCancelledError):
            await investigator.investigate(TENANT, QueryFilters(), cancel_event=cancel)

        assert len(kv_store) == 0
        assert len(await repository.query(TENANT, QueryFilters())) == 1

    @pytest.mark.asyncio
    async def test_missing_artifact(self, investigator: ForensicInvestigator) -> None:
        with pytest.raises(NotFoundError):
            await investigator.load_artifact(TENANT, "investigation", "INV-MISSING")


class TestUnusualHourAnomaly:
    @pytest.fixture
    def clock(self) -> _SteppingClock:
        return _SteppingClock(datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc), timedelta(seconds=1))

    @pytest.mark.asyncio
    async def test_busy_unusual_hour_is_flagged(
        self, ledger: AuditLedger, investigator: ForensicInvestigator, make_event: Callable[..., AuditEvent]
    ) -> None:
        for index in range(11):
            await ledger.record(make_event(resource_id=f"doc-{index}"))

        report = await investigator.investigate(TENANT, QueryFilters())

        assert [a.kind for a in report.anomalies] == ["UNUSUAL_HOUR_ACTIVITY"]
        assert report.anomalies[0].count == 11
        assert report.anomalies[0].detail["hour"] == 3

    @pytest.mark.asyncio
    async def test_threshold_is_exclusive(
        self, ledger: AuditLedger, investigator: ForensicInvestigator, make_event: Callable[..., AuditEvent]
    ) -> None:
        for index in range(10):
            await ledger.record(make_event(resource_id=f"doc-{index}"))

        report = await investigator.investigate(TENANT, QueryFilters())

        assert report.anomalies == []


class TestRapidSuccessionAnomaly:
    @pytest.fixture
    def clock(self) -> _SteppingClock:
        return _SteppingClock(NOON, timedelta(milliseconds=100))

    @pytest.mark.asyncio
    async def test_rapid_events_are_flagged(
        self, ledger: AuditLedger, investigator: ForensicInvestigator, make_event: Callable[..., AuditEvent]
    ) -> None:
        for index in range(12):
            await ledger.record(make_event(resource_id=f"doc-{index}"))

        report = await investigator.investigate(TENANT, QueryFilters())

        rapid = [a for a in report.anomalies if a.kind == "RAPID_SUCCESSION_EVENTS"]
        assert len(rapid) == 1
        assert rapid[0].count == 11
        assert any(f["category"] == "DATA_ACCESS" for f in report.findings)


class TestDiscoveryBundle:
    @pytest.mark.asyncio
    async def test_bundle_contains_only_case_records(
        self, ledger: AuditLedger, investigator: ForensicInvestigator, make_event: Callable[..., AuditEvent]
    ) -> None:
        for index in range(3):
            await ledger.record(make_event(resource_id=f"doc-{index}", legal=LegalContext(case_number="CASE-42")))
        await ledger.record(make_event(resource_id="doc-9", legal=LegalContext(case_number="CASE-7")))

        bundle = await investigator.generate_discovery_bundle(
            TENANT, "CASE-42", NOON - timedelta(hours=1), NOON + timedelta(hours=1)
        )

        assert bundle.bundle_id.startswith("DISC-")
        assert len(bundle.records) == 3
        assert bundle.summary["total_records"] == 3
        assert bundle.metadata["case_number"] == "CASE-42"
        assert investigator.verify_bundle(bundle)

    @pytest.mark.asyncio
    async def test_tampered_bundle_fails_verification(
        self, ledger: AuditLedger, investigator: ForensicInvestigator, make_event: Callable[..., AuditEvent]
    ) -> None:
        await ledger.record(make_event(legal=LegalContext(case_number="CASE-42")))
        bundle = await investigator.generate_discovery_bundle(
            TENANT, "CASE-42", NOON - timedelta(hours=1), NOON + timedelta(hours=1)
        )

        forged = [dict(bundle.records[0], action="DELETE")]

        assert not investigator.verify_bundle(replace(bundle, records=forged))
        assert not investigator.verify_bundle(replace(bundle, case_number="CASE-43"))

    @pytest.mark.asyncio
    async def test_exported_bundle_verifies(
        self, ledger: AuditLedger, investigator: ForensicInvestigator, make_event: Callable[..., AuditEvent]
    ) -> None:
        await ledger.record(make_event(legal=LegalContext(case_number="CASE-42")))
        bundle = await investigator.generate_discovery_bundle(
            TENANT, "CASE-42", NOON - timedelta(hours=1), NOON + timedelta(hours=1)
        )

        stored = await investigator.load_artifact(TENANT, "bundle", bundle.bundle_id)

        assert stored == bundle_to_dict(bundle)
        assert investigator.verify_bundle(bundle_from_dict(stored))

    def test_malformed_export_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            bundle_from_dict({"bundle_id": "DISC-1"})

    @pytest.mark.asyncio
    async def test_case_number_and_window_are_required(self, investigator: ForensicInvestigator) -> None:
        with pytest.raises(ValidationError):
            await investigator.generate_discovery_bundle(TENANT, " ", NOON, NOON + timedelta(hours=1))
        with pytest.raises(ValidationError):
            await investigator.generate_discovery_bundle(TENANT, "CASE-42", NOON, NOON)
