"""Pydantic request and response schemas for aumos-access-ledger API.

Schemas are grouped by resource: access decisions, the audit ledger,
forensics and compliance. Bodies are {Resource}Request, results are
{Resource}Response. Exported discovery bundles are accepted back as their
raw export envelope so that the signed bytes are verified unchanged.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from aumos_access_ledger.core.entities import (
    ComplianceStandard,
    ComplianceStatus,
    ComplianceTag,
    EventType,
    QueryFilters,
    ReportPeriod,
    ResourceContext,
)
from aumos_access_ledger.core.services import parse_severity


# ---------------------------------------------------------------------------
# Access decision schemas
# ---------------------------------------------------------------------------


class ResourceContextSchema(BaseModel):
    """Attributes of the resource an access decision is made about."""

    resource_id: str | None = Field(default=None, description="Identifier of the specific resource")
    resource_type: str | None = Field(default=None, description="Resource type (DOCUMENT, CLIENT_DATA, ...)")
    tenant_id: str | None = Field(default=None, description="Owning tenant, when known to the caller")
    owner_type: str | None = Field(default=None, description="Owner kind (CLIENT, ATTORNEY, FIRM)")
    owner_id: str | None = Field(default=None, description="Identifier of the owner")
    client_id: str | None = Field(default=None, description="Client the resource belongs to")
    project_id: str | None = Field(default=None, description="Project or matter the resource belongs to")
    relationship: str | None = Field(default=None, description="Caller relationship to the owner")
    data_category: str | None = Field(default=None, description="Personal-data category")
    purpose: str | None = Field(default=None, description="Declared processing purpose")
    encrypted: bool = Field(default=False, description="Whether the data is stored encrypted")
    requires_ownership: bool = Field(default=False, description="Whether only the owner may act")

    def to_domain(self) -> ResourceContext:
        return ResourceContext(**self.model_dump())


class EvaluateRequest(BaseModel):
    """Request body for POST /api/v1/access/evaluate."""

    permission: str = Field(min_length=1, description="Permission name, e.g. DOCUMENT_DELETE")
    tenant_id: str | None = Field(
        default=None, description="Target tenant; defaults to the caller's tenant"
    )
    resource: ResourceContextSchema | None = Field(default=None, description="Resource attributes")


class DecisionResponse(BaseModel):
    """Outcome of an access evaluation."""

    allowed: bool = Field(description="Whether the operation may proceed")
    code: str = Field(description="Decision code (ALLOWED, INSUFFICIENT_PERMISSION, ...)")
    reason: str = Field(description="Human-readable reason")
    processing_time_ms: float = Field(description="Evaluation time in milliseconds")
    cached: bool = Field(description="Whether the decision came from the cache")


class CachePurgeRequest(BaseModel):
    """Request body for POST /api/v1/access/cache/purge."""

    subject_id: str | None = Field(
        default=None, description="Purge one subject; omit to purge the whole tenant"
    )


class CachePurgeResponse(BaseModel):
    purged: int = Field(description="Number of cached decisions removed")


# ---------------------------------------------------------------------------
# Audit ledger schemas
# ---------------------------------------------------------------------------


class ComplianceTagSchema(BaseModel):
    standard: ComplianceStandard = Field(description="Compliance standard")
    requirement: str = Field(description="Requirement the entry evidences")
    article: str | None = Field(default=None, description="Article or section of the standard")
    status: ComplianceStatus = Field(default=ComplianceStatus.COMPLIANT, description="Compliance status")

    def to_domain(self) -> ComplianceTag:
        return ComplianceTag(
            standard=self.standard, requirement=self.requirement, article=self.article, status=self.status
        )


class AuditEventRequest(BaseModel):
    """Request body for POST /api/v1/audit/events."""

    event_type: str = Field(min_length=1, description="Event type (DOCUMENT_READ, BILLING, ...)")
    action: str = Field(min_length=1, description="Action performed")
    resource_type: str = Field(min_length=1, description="Type of resource acted upon")
    resource_id: str | None = Field(default=None, description="Identifier of the resource")
    severity: str = Field(default="INFO", description="Severity tier (DEBUG ... LEGAL)")
    description: str | None = Field(default=None, description="Free-text description")
    case_number: str | None = Field(default=None, description="Court case number")
    matter_id: str | None = Field(default=None, description="Matter identifier")
    client_id: str | None = Field(default=None, description="Client identifier")
    jurisdiction: str | None = Field(default=None, description="Jurisdiction; defaults to the service default")
    data_category: str | None = Field(default=None, description="Personal-data category")
    changes: dict[str, Any] = Field(default_factory=dict, description="Before/after change set")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Additional structured detail")
    compliance_tags: list[ComplianceTagSchema] = Field(
        default_factory=list, description="Explicit compliance tags; automatic tags are added"
    )


class AuditEventResponse(BaseModel):
    audit_id: str = Field(description="Identifier of the committed ledger entry")


class RetentionSchema(BaseModel):
    name: str = Field(description="Retention policy name")
    duration_days: int | None = Field(description="Retention duration; null is permanent")
    storage_tier: str = Field(description="Storage tier")
    compression: str = Field(description="Archive compression")
    legal_hold: bool = Field(description="Whether the entry is exempt from expiry")
    immutable: bool = Field(description="Whether the entry is write-once archived")
    expires_at: datetime | None = Field(description="Expiry instant; null under legal hold")


class AuditEntryResponse(BaseModel):
    """Response schema for a single ledger entry."""

    audit_id: str = Field(description="Entry identifier")
    tenant_id: str = Field(description="Owning tenant")
    timestamp: datetime = Field(description="When the entry was committed")
    event_type: str = Field(description="Event type")
    event_category: str = Field(description="Event category")
    action: str = Field(description="Action performed")
    severity: str = Field(description="Severity tier")
    actor_id: str | None = Field(description="Actor identifier; null for system events")
    actor_role: str | None = Field(description="Actor role")
    resource_type: str = Field(description="Type of resource acted upon")
    resource_id: str | None = Field(description="Identifier of the resource")
    integrity_hash: str = Field(description="Salted SHA-512 over the immutable core fields")
    signature: str = Field(description="HMAC-SHA256 origin signature")
    sequence: int = Field(description="Per-tenant sequence number")
    previous_hash: str | None = Field(description="Chain hash of the preceding tenant entry")
    chain_hash: str = Field(description="Chain hash of this entry")
    retention: RetentionSchema = Field(description="Assigned retention policy")
    compliance_tags: list[ComplianceTagSchema] = Field(description="Compliance tags")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "AuditEntryResponse":
        return cls(
            **{k: v for k, v in record.items() if k in cls.model_fields},
            actor_id=record["actor"]["id"],
            actor_role=record["actor"]["role"],
        )


class QueryRequest(BaseModel):
    """Ledger query filters, shared by queries and investigations."""

    start: datetime | None = Field(default=None, description="Earliest timestamp (inclusive)")
    end: datetime | None = Field(default=None, description="Latest timestamp (inclusive)")
    actor_id: str | None = Field(default=None, description="Filter by actor")
    resource_type: str | None = Field(default=None, description="Filter by resource type")
    resource_id: str | None = Field(default=None, description="Filter by resource")
    event_types: list[str] = Field(default_factory=list, description="Filter by event types")
    min_severity: str | None = Field(default=None, description="Lowest severity to include")
    ip_address: str | None = Field(default=None, description="Filter by caller IP address")
    correlation_id: str | None = Field(default=None, description="Filter by correlation id")
    case_number: str | None = Field(default=None, description="Filter by case number")
    standard: ComplianceStandard | None = Field(default=None, description="Filter by compliance tag")
    limit: int | None = Field(default=None, ge=1, le=10_000, description="Maximum records returned")

    def to_filters(self) -> QueryFilters:
        return QueryFilters(
            start=self.start,
            end=self.end,
            actor_id=self.actor_id,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            event_types=tuple(EventType.parse(t) for t in self.event_types),
            min_severity=parse_severity(self.min_severity) if self.min_severity else None,
            ip_address=self.ip_address,
            correlation_id=self.correlation_id,
            case_number=self.case_number,
            standard=self.standard,
            limit=self.limit,
        )


class QueryResponse(BaseModel):
    records: list[dict[str, Any]] = Field(description="Matching entries in time order")
    total_count: int = Field(description="Number of records returned")
    signature: str = Field(description="Signature over the tenant and record set")


class VerifyResponse(BaseModel):
    audit_id: str = Field(description="Verified entry")
    valid: bool = Field(description="Whether the hash and signature re-verified")


class ChainVerificationResponse(BaseModel):
    tenant_id: str = Field(description="Verified tenant")
    valid: bool = Field(description="Whether every entry and link re-verified")
    checked: int = Field(description="Entries verified before the first failure")
    broken_at: str | None = Field(description="First entry that failed")
    reason: str | None = Field(description="Failure reason")


class LegalHoldRequest(BaseModel):
    """Request body for POST /api/v1/audit/entries/{audit_id}/legal-hold."""

    reason: str | None = Field(default=None, description="Reason for the hold, recorded in the ledger")


# ---------------------------------------------------------------------------
# Forensic schemas
# ---------------------------------------------------------------------------


class InvestigationResponse(BaseModel):
    """Signed forensic investigation report."""

    investigation_id: str = Field(description="Investigation identifier")
    tenant_id: str = Field(description="Investigated tenant")
    criteria: dict[str, Any] = Field(description="Filters the investigation ran with")
    generated_at: datetime = Field(description="When the report was generated")
    expires_at: datetime = Field(description="When the stored report expires")
    record_count: int = Field(description="Entries analysed")
    statistics: dict[str, dict[str, int]] = Field(description="Breakdowns by dimension")
    anomalies: list[dict[str, Any]] = Field(description="Detected anomalies")
    timeline: list[dict[str, Any]] = Field(description="Event timeline")
    findings: list[dict[str, Any]] = Field(description="Key findings")
    chain_of_custody: list[dict[str, Any]] = Field(description="Entry ids and hashes in order")
    signature: str = Field(description="Signature over the whole report")


class DiscoveryBundleRequest(BaseModel):
    """Request body for POST /api/v1/discovery/bundles."""

    case_number: str = Field(min_length=1, description="Court case number")
    start: datetime = Field(description="Start of the discovery period")
    end: datetime = Field(description="End of the discovery period")


class DiscoveryBundleResponse(BaseModel):
    """Signed legal-discovery bundle export envelope."""

    bundle_id: str = Field(description="Bundle identifier")
    tenant_id: str = Field(description="Owning tenant")
    metadata: dict[str, Any] = Field(description="Case number, period, record count and integrity hash")
    generated_at: datetime = Field(description="When the bundle was generated")
    expires_at: datetime = Field(description="When the stored bundle expires")
    records: list[dict[str, Any]] = Field(description="Responsive ledger records")
    summary: dict[str, Any] = Field(description="Bundle summary")
    chain_of_custody: list[dict[str, Any]] = Field(description="Entry ids and hashes in order")
    signature: str = Field(description="Signature over the whole bundle")


class BundleVerificationResponse(BaseModel):
    bundle_id: str = Field(description="Verified bundle")
    valid: bool = Field(description="Whether the digest and signature verified")


# ---------------------------------------------------------------------------
# Compliance schemas
# ---------------------------------------------------------------------------


class ComplianceReportRequest(BaseModel):
    """Request body for POST /api/v1/compliance/reports."""

    standard: ComplianceStandard = Field(description="Standard to report on")
    period: ReportPeriod = Field(default=ReportPeriod.MONTHLY, description="Named reporting period")
    start: datetime | None = Field(default=None, description="Explicit window start; overrides period")
    end: datetime | None = Field(default=None, description="Explicit window end; overrides period")


class ComplianceReportResponse(BaseModel):
    """Signed compliance report."""

    report_id: str = Field(description="Report identifier")
    tenant_id: str = Field(description="Reported tenant")
    standard: ComplianceStandard = Field(description="Standard reported on")
    period: str = Field(description="Named period or CUSTOM")
    period_start: datetime = Field(description="Start of the reporting window")
    period_end: datetime = Field(description="End of the reporting window")
    generated_at: datetime = Field(description="When the report was generated")
    expires_at: datetime = Field(description="When the stored report expires")
    record_count: int = Field(description="Tagged entries in the window")
    compliance_score: int = Field(ge=0, le=100, description="Percentage of compliant tags")
    by_requirement: dict[str, dict[str, int]] = Field(description="Compliant/non-compliant counts")
    gaps: list[dict[str, Any]] = Field(description="Non-compliant tags")
    strengths: list[dict[str, Any]] = Field(description="Requirements at full compliance")
    recommendations: list[str] = Field(description="Suggested remediation")
    critical_findings: int = Field(description="CRITICAL entries in the window")
    signature: str = Field(description="Signature over the whole report")
