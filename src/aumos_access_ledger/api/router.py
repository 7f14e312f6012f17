"""API router for aumos-access-ledger.

All endpoints are registered here and included in main.py under /api/v1.
Routes delegate to the service layer and hold no business logic.
Ledger, discovery and compliance routes are themselves guarded by the
decision engine, so every read of the ledger is also recorded in it.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from aumos_access_ledger.api.dependencies import ServiceContainer, get_container, get_subject_claims
from aumos_access_ledger.api.schemas import (
    AuditEntryResponse,
    AuditEventRequest,
    AuditEventResponse,
    BundleVerificationResponse,
    CachePurgeRequest,
    CachePurgeResponse,
    ChainVerificationResponse,
    ComplianceReportRequest,
    ComplianceReportResponse,
    DecisionResponse,
    DiscoveryBundleRequest,
    DiscoveryBundleResponse,
    EvaluateRequest,
    InvestigationResponse,
    LegalHoldRequest,
    QueryRequest,
    QueryResponse,
    VerifyResponse,
)
from aumos_access_ledger.core.entities import (
    Actor,
    ApplicationContext,
    AuditEvent,
    LegalContext,
    NetworkContext,
    ResourceContext,
    Subject,
)
from aumos_access_ledger.core.services import (
    bundle_from_dict,
    bundle_to_dict,
    investigation_to_dict,
    report_to_dict,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request context and access guard
# ---------------------------------------------------------------------------


def request_contexts(request: Request) -> tuple[NetworkContext, ApplicationContext]:
    """Caller network and application context recorded with every decision."""
    network = NetworkContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        session_id=request.headers.get("x-session-id"),
    )
    application = ApplicationContext(
        module="api",
        endpoint=request.url.path,
        method=request.method,
        correlation_id=request.headers.get("x-correlation-id"),
        request_id=request.headers.get("x-request-id"),
    )
    return network, application


def require_permission(
    permission: str, resource_type: str | None = None
) -> Callable[..., Awaitable[Subject]]:
    """Build a dependency that lets the request through only if the engine allows it."""

    async def guard(
        request: Request,
        claims: dict[str, Any] | None = Depends(get_subject_claims),
        container: ServiceContainer = Depends(get_container),
    ) -> Subject:
        network, application = request_contexts(request)
        tenant_id = (claims or {}).get("tenant_id", "")
        decision = await container.engine.evaluate(
            claims, tenant_id, permission,
            ResourceContext(resource_type=resource_type), network, application,
        )
        if not decision.allowed:
            raise HTTPException(status_code=403, detail={"code": decision.code.value, "message": "Access denied"})
        return Subject.from_claims(claims)

    return guard


def require_subject(claims: dict[str, Any] | None = Depends(get_subject_claims)) -> Subject:
    return Subject.from_claims(claims)


def _actor(subject: Subject) -> Actor:
    return Actor(id=subject.id, role=subject.role)


# ---------------------------------------------------------------------------
# Access decision endpoints
# ---------------------------------------------------------------------------


@router.post("/access/evaluate", response_model=DecisionResponse)
async def evaluate_access(
    request: Request,
    body: EvaluateRequest,
    claims: dict[str, Any] | None = Depends(get_subject_claims),
    container: ServiceContainer = Depends(get_container),
) -> DecisionResponse:
    """Decide whether the calling subject may exercise a permission.

    Allow and deny are both 200 responses; the decision is in the body.
    A request without a valid subject is rejected with 401.
    """
    network, application = request_contexts(request)
    tenant_id = body.tenant_id or (claims or {}).get("tenant_id", "")
    resource = body.resource.to_domain() if body.resource else None
    decision = await container.engine.evaluate(
        claims, tenant_id, body.permission, resource, network, application
    )
    return DecisionResponse(
        allowed=decision.allowed,
        code=decision.code.value,
        reason=decision.reason,
        processing_time_ms=decision.processing_time_ms,
        cached=decision.cached,
    )


@router.post("/access/cache/purge", response_model=CachePurgeResponse)
async def purge_decision_cache(
    body: CachePurgeRequest,
    subject: Subject = Depends(require_permission("USER_ALL")),
    container: ServiceContainer = Depends(get_container),
) -> CachePurgeResponse:
    """Drop cached decisions for one subject or for the caller's whole tenant."""
    if body.subject_id:
        purged = await container.cache.purge_subject(subject.tenant_id, body.subject_id)
    else:
        purged = await container.cache.purge_tenant(subject.tenant_id)
    return CachePurgeResponse(purged=purged)


# ---------------------------------------------------------------------------
# Audit ledger endpoints
# ---------------------------------------------------------------------------


@router.post("/audit/events", response_model=AuditEventResponse, status_code=201)
async def record_audit_event(
    request: Request,
    body: AuditEventRequest,
    subject: Subject = Depends(require_subject),
    container: ServiceContainer = Depends(get_container),
) -> AuditEventResponse:
    """Record a system event in the caller's tenant ledger."""
    network, application = request_contexts(request)
    event = AuditEvent(
        tenant_id=subject.tenant_id,
        event_type=body.event_type,
        action=body.action,
        resource_type=body.resource_type,
        resource_id=body.resource_id,
        severity=body.severity,
        actor=_actor(subject),
        description=body.description,
        network=network,
        application=application,
        legal=LegalContext(
            case_number=body.case_number,
            matter_id=body.matter_id,
            client_id=body.client_id,
            jurisdiction=body.jurisdiction,
            data_category=body.data_category,
        ),
        changes=body.changes,
        metadata=body.metadata,
        compliance_tags=tuple(tag.to_domain() for tag in body.compliance_tags),
    )
    audit_id = await container.ledger.record(event)
    return AuditEventResponse(audit_id=audit_id)


@router.post("/audit/query", response_model=QueryResponse)
async def query_audit_entries(
    body: QueryRequest,
    subject: Subject = Depends(require_permission("AUDIT_VIEW", "AUDIT")),
    container: ServiceContainer = Depends(get_container),
) -> QueryResponse:
    """Return matching ledger records with a signature over the result set."""
    result = await container.investigator.query(subject.tenant_id, body.to_filters())
    return QueryResponse(records=result.records, total_count=len(result.records), signature=result.signature)


@router.get("/audit/entries/{audit_id}/verify", response_model=VerifyResponse)
async def verify_audit_entry(
    audit_id: str,
    subject: Subject = Depends(require_permission("AUDIT_VIEW", "AUDIT")),
    container: ServiceContainer = Depends(get_container),
) -> VerifyResponse:
    """Re-verify a stored entry's integrity hash and signature.

    A failed verification is an immutability violation and returns 409.
    """
    valid = await container.ledger.verify_stored(subject.tenant_id, audit_id)
    return VerifyResponse(audit_id=audit_id, valid=valid)


@router.get("/audit/chain/verify", response_model=ChainVerificationResponse)
async def verify_audit_chain(
    subject: Subject = Depends(require_permission("AUDIT_VIEW", "AUDIT")),
    container: ServiceContainer = Depends(get_container),
) -> ChainVerificationResponse:
    """Walk the caller's tenant ledger re-verifying every entry and chain link."""
    result = await container.ledger.verify_chain(subject.tenant_id)
    return ChainVerificationResponse(
        tenant_id=result.tenant_id,
        valid=result.valid,
        checked=result.checked,
        broken_at=result.broken_at,
        reason=result.reason,
    )


@router.post("/audit/entries/{audit_id}/legal-hold", response_model=AuditEntryResponse)
async def place_legal_hold(
    audit_id: str,
    body: LegalHoldRequest,
    subject: Subject = Depends(require_permission("AUDIT_ALL", "AUDIT")),
    container: ServiceContainer = Depends(get_container),
) -> AuditEntryResponse:
    """Place a ledger entry under legal hold, exempting it from expiry."""
    entry = await container.ledger.place_legal_hold(
        subject.tenant_id, audit_id, actor=_actor(subject), reason=body.reason
    )
    return AuditEntryResponse.from_record(entry.to_record())


# ---------------------------------------------------------------------------
# Forensic endpoints
# ---------------------------------------------------------------------------


@router.post("/investigations", response_model=InvestigationResponse, status_code=201)
async def run_investigation(
    body: QueryRequest,
    subject: Subject = Depends(require_permission("AUDIT_VIEW", "AUDIT")),
    container: ServiceContainer = Depends(get_container),
) -> InvestigationResponse:
    """Run a forensic investigation over the caller's tenant ledger."""
    report = await container.investigator.investigate(
        subject.tenant_id, body.to_filters(), requested_by=_actor(subject)
    )
    return InvestigationResponse.model_validate(investigation_to_dict(report))


@router.get("/investigations/{investigation_id}", response_model=InvestigationResponse)
async def get_investigation(
    investigation_id: str,
    subject: Subject = Depends(require_permission("AUDIT_VIEW", "AUDIT")),
    container: ServiceContainer = Depends(get_container),
) -> InvestigationResponse:
    stored = await container.investigator.load_artifact(subject.tenant_id, "investigation", investigation_id)
    return InvestigationResponse.model_validate(stored)


@router.post("/discovery/bundles", response_model=DiscoveryBundleResponse, status_code=201)
async def generate_discovery_bundle(
    body: DiscoveryBundleRequest,
    subject: Subject = Depends(require_permission("AUDIT_VIEW", "AUDIT")),
    container: ServiceContainer = Depends(get_container),
) -> DiscoveryBundleResponse:
    """Assemble the signed ledger bundle responsive to a discovery request."""
    bundle = await container.investigator.generate_discovery_bundle(
        subject.tenant_id, body.case_number, body.start, body.end, requested_by=_actor(subject)
    )
    return DiscoveryBundleResponse.model_validate(bundle_to_dict(bundle))


@router.get("/discovery/bundles/{bundle_id}", response_model=DiscoveryBundleResponse)
async def get_discovery_bundle(
    bundle_id: str,
    subject: Subject = Depends(require_permission("AUDIT_VIEW", "AUDIT")),
    container: ServiceContainer = Depends(get_container),
) -> DiscoveryBundleResponse:
    stored = await container.investigator.load_artifact(subject.tenant_id, "bundle", bundle_id)
    return DiscoveryBundleResponse.model_validate(stored)


@router.post("/discovery/bundles/verify", response_model=BundleVerificationResponse)
async def verify_discovery_bundle(
    body: dict[str, Any],
    subject: Subject = Depends(require_permission("AUDIT_VIEW", "AUDIT")),
    container: ServiceContainer = Depends(get_container),
) -> BundleVerificationResponse:
    """Verify an exported bundle's record digest and signature."""
    bundle = bundle_from_dict(body)
    return BundleVerificationResponse(
        bundle_id=bundle.bundle_id, valid=container.investigator.verify_bundle(bundle)
    )


# ---------------------------------------------------------------------------
# Compliance endpoints
# ---------------------------------------------------------------------------


@router.post("/compliance/reports", response_model=ComplianceReportResponse, status_code=201)
async def generate_compliance_report(
    body: ComplianceReportRequest,
    subject: Subject = Depends(require_permission("REPORT_ALL", "REPORT")),
    container: ServiceContainer = Depends(get_container),
) -> ComplianceReportResponse:
    """Score the caller's tenant against one compliance standard."""
    report = await container.reporter.generate_report(
        subject.tenant_id, body.standard, body.period, body.start, body.end, requested_by=_actor(subject)
    )
    return ComplianceReportResponse.model_validate(report_to_dict(report))


@router.get("/compliance/reports/{report_id}", response_model=ComplianceReportResponse)
async def get_compliance_report(
    report_id: str,
    subject: Subject = Depends(require_permission("REPORT_ALL", "REPORT")),
    container: ServiceContainer = Depends(get_container),
) -> ComplianceReportResponse:
    stored = await container.reporter.load_report(subject.tenant_id, report_id)
    return ComplianceReportResponse.model_validate(stored)

