"""HTTP tests for the /api/v1 routes.

Each test gets a fresh application with in-memory adapters. Identity is
supplied the way the upstream identity provider forwards it: as headers.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

TENANT = "tenant-a"


def _headers(role: str, subject_id: str = "user-1", tenant_id: str = TENANT, **extra: str) -> dict[str, str]:
    return {"x-subject-id": subject_id, "x-tenant-id": tenant_id, "x-role": role, **extra}


ATTORNEY = _headers("ATTORNEY")
OFFICER = _headers("COMPLIANCE_OFFICER", subject_id="officer-1")


async def _record(client: AsyncClient, **body: object) -> str:
    payload = {"event_type": "DOCUMENT_READ", "action": "READ", "resource_type": "DOCUMENT",
               "resource_id": "doc-1", **body}
    response = await client.post("/api/v1/audit/events", json=payload, headers=ATTORNEY)
    assert response.status_code == 201
    return response.json()["audit_id"]


# ---------------------------------------------------------------------------
# Access decisions
# ---------------------------------------------------------------------------


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_allow(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/access/evaluate", json={"permission": "DOCUMENT_VIEW"}, headers=ATTORNEY
        )

        assert response.status_code == 200
        body = response.json()
        assert body["allowed"] is True
        assert body["code"] == "ALLOWED"

    @pytest.mark.asyncio
    async def test_deny_is_a_200_with_code(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/access/evaluate", json={"permission": "DOCUMENT_DELETE"}, headers=ATTORNEY
        )

        assert response.status_code == 200
        assert response.json()["code"] == "INSUFFICIENT_PERMISSION"

    @pytest.mark.asyncio
    async def test_cross_tenant_target(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/access/evaluate",
            json={"permission": "DOCUMENT_VIEW", "resource": {"resource_id": "doc-1", "tenant_id": "tenant-b"}},
            headers=ATTORNEY,
        )

        assert response.json()["code"] == "TENANT_SCOPE_VIOLATION"

    @pytest.mark.asyncio
    async def test_project_header_scopes_external_counsel(self, client: AsyncClient) -> None:
        counsel = _headers("EXTERNAL_COUNSEL", subject_id="ext-1", **{"x-project-ids": "matter-1, matter-2"})
        body = {"permission": "CASE_VIEW_ASSIGNED", "resource": {"resource_type": "CASE", "project_id": "matter-3"}}

        response = await client.post("/api/v1/access/evaluate", json=body, headers=counsel)

        assert response.json()["code"] == "SCOPE_VIOLATION"

    @pytest.mark.asyncio
    async def test_missing_identity_is_401(self, client: AsyncClient) -> None:
        response = await client.post("/api/v1/access/evaluate", json={"permission": "DOCUMENT_VIEW"})

        assert response.status_code == 401
        assert response.json() == {"code": "AUTHENTICATION_REQUIRED", "message": "Authentication required"}

    @pytest.mark.asyncio
    async def test_cache_purge_requires_user_administration(self, client: AsyncClient) -> None:
        await client.post("/api/v1/access/evaluate", json={"permission": "DOCUMENT_VIEW"}, headers=ATTORNEY)

        denied = await client.post("/api/v1/access/cache/purge", json={}, headers=ATTORNEY)
        allowed = await client.post(
            "/api/v1/access/cache/purge", json={"subject_id": "user-1"}, headers=_headers("FIRM_ADMIN", "admin-1")
        )

        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["purged"] >= 1

    @pytest.mark.asyncio
    async def test_partner_can_purge_whole_tenant(self, client: AsyncClient) -> None:
        await client.post("/api/v1/access/evaluate", json={"permission": "DOCUMENT_VIEW"}, headers=ATTORNEY)
        await client.post(
            "/api/v1/access/evaluate", json={"permission": "CASE_VIEW"}, headers=_headers("PARALEGAL", "para-1")
        )

        response = await client.post(
            "/api/v1/access/cache/purge", json={}, headers=_headers("FIRM_PARTNER", "partner-1")
        )

        assert response.status_code == 200
        assert response.json()["purged"] >= 2


# ---------------------------------------------------------------------------
# Audit ledger
# ---------------------------------------------------------------------------


class TestAuditLedger:
    @pytest.mark.asyncio
    async def test_record_then_query(self, client: AsyncClient) -> None:
        audit_id = await _record(client)

        response = await client.post(
            "/api/v1/audit/query", json={"event_types": ["DOCUMENT_READ"]}, headers=OFFICER
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total_count"] == 1
        assert body["records"][0]["audit_id"] == audit_id
        assert body["signature"]

    @pytest.mark.asyncio
    async def test_query_requires_audit_permission(self, client: AsyncClient) -> None:
        response = await client.post("/api/v1/audit/query", json={}, headers=ATTORNEY)

        assert response.status_code == 403
        assert response.json()["detail"] == {"code": "INSUFFICIENT_PERMISSION", "message": "Access denied"}

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_400(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/audit/events",
            json={"event_type": "DOCUMENT_TELEPORT", "action": "READ", "resource_type": "DOCUMENT"},
            headers=ATTORNEY,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_verify_entry_and_chain(self, client: AsyncClient) -> None:
        audit_id = await _record(client)
        await _record(client, resource_id="doc-2")

        entry = await client.get(f"/api/v1/audit/entries/{audit_id}/verify", headers=OFFICER)
        chain = await client.get("/api/v1/audit/chain/verify", headers=OFFICER)

        assert entry.json() == {"audit_id": audit_id, "valid": True}
        assert chain.json()["valid"] is True
        assert chain.json()["checked"] >= 2

    @pytest.mark.asyncio
    async def test_verify_unknown_entry_is_404(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/audit/entries/AUD-MISSING/verify", headers=OFFICER)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_legal_hold(self, client: AsyncClient) -> None:
        audit_id = await _record(client, event_type="BACKUP", resource_type="SYSTEM")

        response = await client.post(
            f"/api/v1/audit/entries/{audit_id}/legal-hold", json={"reason": "Litigation"}, headers=OFFICER
        )

        assert response.status_code == 200
        retention = response.json()["retention"]
        assert retention["legal_hold"] is True
        assert retention["expires_at"] is None


# ---------------------------------------------------------------------------
# Forensics and compliance
# ---------------------------------------------------------------------------


class TestReadSide:
    @pytest.mark.asyncio
    async def test_investigation_round_trip(self, client: AsyncClient) -> None:
        await _record(client)

        created = await client.post("/api/v1/investigations", json={}, headers=OFFICER)
        assert created.status_code == 201
        investigation_id = created.json()["investigation_id"]

        fetched = await client.get(f"/api/v1/investigations/{investigation_id}", headers=OFFICER)

        assert fetched.status_code == 200
        assert fetched.json()["signature"] == created.json()["signature"]

    @pytest.mark.asyncio
    async def test_missing_investigation_is_404(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/investigations/INV-MISSING", headers=OFFICER)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_discovery_bundle_export_verifies(self, client: AsyncClient) -> None:
        await _record(client, case_number="CASE-42")
        now = datetime.now(tz=timezone.utc)
        body = {
            "case_number": "CASE-42",
            "start": (now - timedelta(hours=1)).isoformat(),
            "end": (now + timedelta(hours=1)).isoformat(),
        }

        created = await client.post("/api/v1/discovery/bundles", json=body, headers=OFFICER)
        assert created.status_code == 201
        bundle_id = created.json()["bundle_id"]
        exported = await client.get(f"/api/v1/discovery/bundles/{bundle_id}", headers=OFFICER)
        verified = await client.post("/api/v1/discovery/bundles/verify", json=exported.json(), headers=OFFICER)

        assert exported.json()["metadata"]["record_count"] == 1
        assert verified.json() == {"bundle_id": bundle_id, "valid": True}

    @pytest.mark.asyncio
    async def test_compliance_report(self, client: AsyncClient) -> None:
        await _record(client)

        created = await client.post(
            "/api/v1/compliance/reports", json={"standard": "POPIA", "period": "DAILY"}, headers=OFFICER
        )
        assert created.status_code == 201
        report = created.json()
        fetched = await client.get(f"/api/v1/compliance/reports/{report['report_id']}", headers=OFFICER)

        assert report["standard"] == "POPIA"
        assert report["compliance_score"] == 100
        assert fetched.json()["signature"] == report["signature"]

    @pytest.mark.asyncio
    async def test_compliance_report_requires_report_permission(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/compliance/reports", json={"standard": "POPIA"}, headers=_headers("PARALEGAL")
        )
        assert response.status_code == 403
