"""Domain entities for aumos-access-ledger.

Immutable value types shared by the decision engine, the audit ledger and the
read-side services. Persistence mapping lives in core.models; these types are
framework-agnostic.
"""

import uuid
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from aumos_access_ledger.core.policy import normalize_identifier
from aumos_access_ledger.errors import AuthenticationRequiredError, ValidationError


# ---------------------------------------------------------------------------
# Access decisions
# ---------------------------------------------------------------------------


class DecisionCode(str, Enum):
    """Outcome codes of the decision engine. Deny codes are values, not errors."""

    ALLOWED = "ALLOWED"
    SUPER_ADMIN_BYPASS = "SUPER_ADMIN_BYPASS"
    INSUFFICIENT_PERMISSION = "INSUFFICIENT_PERMISSION"
    SCOPE_VIOLATION = "SCOPE_VIOLATION"
    TENANT_SCOPE_VIOLATION = "TENANT_SCOPE_VIOLATION"
    LEGAL_PRIVILEGE_VIOLATION = "LEGAL_PRIVILEGE_VIOLATION"
    DATA_MINIMIZATION_VIOLATION = "DATA_MINIMIZATION_VIOLATION"
    OWNERSHIP_VIOLATION = "OWNERSHIP_VIOLATION"
    CONTEXT_RESOLUTION_FAILED = "CONTEXT_RESOLUTION_FAILED"


@dataclass(frozen=True)
class Subject:
    """Authenticated caller as supplied by the identity provider.

    Attributes:
        id: Subject (user) identifier.
        tenant_id: Tenant the subject belongs to.
        role: Normalized role name.
        client_id: Client the subject represents, for client-scoped roles.
        project_ids: Projects or matters the subject is assigned to.
        mfa_verified: Whether the session was MFA-verified.
    """

    id: str
    tenant_id: str
    role: str
    client_id: str | None = None
    project_ids: frozenset[str] = frozenset()
    mfa_verified: bool = False

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any] | None) -> "Subject":
        """Build a Subject from identity-provider claims, validating their shape.

        Args:
            claims: Mapping with at least ``id``, ``tenant_id`` and ``role``.

        Returns:
            The validated Subject.

        Raises:
            AuthenticationRequiredError: If claims are missing or malformed.
        """
        if not claims:
            raise AuthenticationRequiredError("Authentication required")
        subject_id = claims.get("id") or claims.get("sub")
        tenant_id = claims.get("tenant_id")
        role = normalize_identifier(claims.get("role"))
        for value in (subject_id, tenant_id):
            if not isinstance(value, str) or not value.strip():
                raise AuthenticationRequiredError("Authenticated subject is malformed")
        if not role:
            raise AuthenticationRequiredError("Authenticated subject has no role")
        projects = claims.get("project_ids") or ()
        if isinstance(projects, str):
            raise AuthenticationRequiredError("Authenticated subject is malformed")
        return cls(
            id=subject_id.strip(),
            tenant_id=tenant_id.strip(),
            role=role,
            client_id=claims.get("client_id"),
            project_ids=frozenset(str(p) for p in projects),
            mfa_verified=bool(claims.get("mfa_verified", False)),
        )


@dataclass(frozen=True)
class ResourceContext:
    """Attributes of the resource a decision is made about.

    Attributes:
        resource_id: Identifier of the specific resource, if any.
        resource_type: Resource type (DOCUMENT, CLIENT_DATA, ...).
        tenant_id: Owning tenant; resolved through a ContextResolver when unknown.
        owner_type: Who owns the resource (CLIENT, ATTORNEY, FIRM).
        owner_id: Identifier of the owner.
        client_id: Client the resource belongs to.
        project_id: Project or matter the resource belongs to.
        relationship: Relationship of the caller to the owner (e.g. ATTORNEY_CLIENT).
        data_category: Personal-data category (PERSONAL_GENERAL, PERSONAL_SENSITIVE).
        purpose: Declared processing purpose.
        encrypted: Whether the data is stored encrypted.
        requires_ownership: Whether only the owner (or an admin) may act on it.
    """

    resource_id: str | None = None
    resource_type: str | None = None
    tenant_id: str | None = None
    owner_type: str | None = None
    owner_id: str | None = None
    client_id: str | None = None
    project_id: str | None = None
    relationship: str | None = None
    data_category: str | None = None
    purpose: str | None = None
    encrypted: bool = False
    requires_ownership: bool = False


@dataclass(frozen=True)
class Decision:
    """Result returned to callers of the decision engine."""

    allowed: bool
    code: DecisionCode
    reason: str
    processing_time_ms: float = 0.0
    cached: bool = False


@dataclass(frozen=True)
class AccessDecision:
    """Cached form of a decision. Lives only as long as its TTL."""

    subject_id: str
    tenant_id: str
    permission: str
    resource_id: str | None
    allowed: bool
    code: DecisionCode
    reason: str
    computed_at: datetime
    ttl_seconds: int

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["code"] = self.code.value
        record["computed_at"] = self.computed_at.isoformat()
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "AccessDecision":
        return cls(
            subject_id=record["subject_id"],
            tenant_id=record["tenant_id"],
            permission=record["permission"],
            resource_id=record.get("resource_id"),
            allowed=bool(record["allowed"]),
            code=DecisionCode(record["code"]),
            reason=record["reason"],
            computed_at=datetime.fromisoformat(record["computed_at"]),
            ttl_seconds=int(record["ttl_seconds"]),
        )


# ---------------------------------------------------------------------------
# Audit events
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    """Audit severity tiers, lowest to highest."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
    SECURITY = "SECURITY"
    LEGAL = "LEGAL"

    @property
    def level(self) -> int:
        return _SEVERITY_LEVELS[self]


_SEVERITY_LEVELS: dict[Severity, int] = {
    Severity.DEBUG: 0,
    Severity.INFO: 1,
    Severity.WARNING: 2,
    Severity.ERROR: 3,
    Severity.CRITICAL: 4,
    Severity.SECURITY: 5,
    Severity.LEGAL: 6,
}


class EventCategory(str, Enum):
    SECURITY = "SECURITY"
    LEGAL = "LEGAL"
    SYSTEM = "SYSTEM"
    COMPLIANCE = "COMPLIANCE"
    BUSINESS = "BUSINESS"


class EventType(str, Enum):
    """Closed set of ledger event types; each belongs to one category."""

    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    SESSION_MANAGEMENT = "SESSION_MANAGEMENT"
    ACCESS_CONTROL = "ACCESS_CONTROL"
    DATA_BREACH = "DATA_BREACH"
    SECURITY_SCAN = "SECURITY_SCAN"
    INTEGRITY_VIOLATION = "INTEGRITY_VIOLATION"

    DOCUMENT_CREATE = "DOCUMENT_CREATE"
    DOCUMENT_READ = "DOCUMENT_READ"
    DOCUMENT_UPDATE = "DOCUMENT_UPDATE"
    DOCUMENT_DELETE = "DOCUMENT_DELETE"
    DOCUMENT_SHARE = "DOCUMENT_SHARE"
    DOCUMENT_EXPORT = "DOCUMENT_EXPORT"
    LEGAL_DISCOVERY = "LEGAL_DISCOVERY"
    E_FILING = "E_FILING"
    CASE_MANAGEMENT = "CASE_MANAGEMENT"

    BACKUP = "BACKUP"
    RESTORE = "RESTORE"
    SYSTEM_UPDATE = "SYSTEM_UPDATE"
    PERFORMANCE_MONITOR = "PERFORMANCE_MONITOR"
    ERROR_LOG = "ERROR_LOG"
    MAINTENANCE = "MAINTENANCE"

    POPIA_ACCESS_REQUEST = "POPIA_ACCESS_REQUEST"
    GDPR_DELETE_REQUEST = "GDPR_DELETE_REQUEST"
    COMPLIANCE_SCAN = "COMPLIANCE_SCAN"
    AUDIT_REVIEW = "AUDIT_REVIEW"
    REGULATORY_REPORT = "REGULATORY_REPORT"

    BILLING = "BILLING"
    SUBSCRIPTION = "SUBSCRIPTION"
    TENANT_CREATE = "TENANT_CREATE"
    TENANT_UPDATE = "TENANT_UPDATE"
    USER_MANAGEMENT = "USER_MANAGEMENT"
    ROLE_CHANGE = "ROLE_CHANGE"

    @property
    def category(self) -> EventCategory:
        return _EVENT_CATEGORIES[self]

    @classmethod
    def parse(cls, value: "str | EventType") -> "EventType":
        """Parse an event type, rejecting unknown names.

        Raises:
            ValidationError: If the value is not a known event type.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(normalize_identifier(value))
        except ValueError:
            raise ValidationError(f"Unknown event type: {value}") from None


_EVENT_CATEGORIES: dict[EventType, EventCategory] = {
    **{t: EventCategory.SECURITY for t in (
        EventType.AUTHENTICATION, EventType.AUTHORIZATION, EventType.SESSION_MANAGEMENT,
        EventType.ACCESS_CONTROL, EventType.DATA_BREACH, EventType.SECURITY_SCAN,
        EventType.INTEGRITY_VIOLATION,
    )},
    **{t: EventCategory.LEGAL for t in (
        EventType.DOCUMENT_CREATE, EventType.DOCUMENT_READ, EventType.DOCUMENT_UPDATE,
        EventType.DOCUMENT_DELETE, EventType.DOCUMENT_SHARE, EventType.DOCUMENT_EXPORT,
        EventType.LEGAL_DISCOVERY, EventType.E_FILING, EventType.CASE_MANAGEMENT,
    )},
    **{t: EventCategory.SYSTEM for t in (
        EventType.BACKUP, EventType.RESTORE, EventType.SYSTEM_UPDATE,
        EventType.PERFORMANCE_MONITOR, EventType.ERROR_LOG, EventType.MAINTENANCE,
    )},
    **{t: EventCategory.COMPLIANCE for t in (
        EventType.POPIA_ACCESS_REQUEST, EventType.GDPR_DELETE_REQUEST, EventType.COMPLIANCE_SCAN,
        EventType.AUDIT_REVIEW, EventType.REGULATORY_REPORT,
    )},
    **{t: EventCategory.BUSINESS for t in (
        EventType.BILLING, EventType.SUBSCRIPTION, EventType.TENANT_CREATE,
        EventType.TENANT_UPDATE, EventType.USER_MANAGEMENT, EventType.ROLE_CHANGE,
    )},
}


class ComplianceStandard(str, Enum):
    POPIA = "POPIA"
    GDPR = "GDPR"
    HIPAA = "HIPAA"
    SOX = "SOX"
    SOUTH_AFRICAN_COURT = "SOUTH_AFRICAN_COURT"


class ComplianceStatus(str, Enum):
    COMPLIANT = "COMPLIANT"
    NON_COMPLIANT = "NON_COMPLIANT"
    REQUIRES_REVIEW = "REQUIRES_REVIEW"


@dataclass(frozen=True)
class StandardProfile:
    """Record-keeping obligations of a compliance standard."""

    article: str
    requirement: str
    retention_days: int | None  # None: must be kept permanently


STANDARD_PROFILES: dict[ComplianceStandard, StandardProfile] = {
    ComplianceStandard.POPIA: StandardProfile("Section 14", "Records of processing activities", 7 * 365),
    ComplianceStandard.GDPR: StandardProfile("Article 30", "Records of processing activities", 10 * 365),
    ComplianceStandard.HIPAA: StandardProfile("164.316", "Documentation retention", 6 * 365),
    ComplianceStandard.SOX: StandardProfile("Section 302", "Financial record retention", 7 * 365),
    ComplianceStandard.SOUTH_AFRICAN_COURT: StandardProfile("Rule 35", "Discovery bundles", None),
}


@dataclass(frozen=True)
class ComplianceTag:
    standard: ComplianceStandard
    requirement: str
    article: str | None = None
    status: ComplianceStatus = ComplianceStatus.COMPLIANT

    @classmethod
    def for_standard(
        cls,
        standard: ComplianceStandard,
        status: ComplianceStatus = ComplianceStatus.COMPLIANT,
    ) -> "ComplianceTag":
        profile = STANDARD_PROFILES[standard]
        return cls(standard=standard, requirement=profile.requirement, article=profile.article, status=status)


class StorageTier(str, Enum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"
    ARCHIVE = "ARCHIVE"
    IMMUTABLE_ARCHIVE = "IMMUTABLE_ARCHIVE"


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention assigned to an entry at write time.

    Attributes:
        name: Policy name (30_DAYS ... PERMANENT).
        duration_days: Retention duration; None means permanent.
        storage_tier: Storage class the entry is placed in.
        compression: Compression applied when archived.
        legal_hold: Whether the entry is exempt from expiry.
        immutable: Whether the entry is write-once archived.
        expires_at: Expiry instant; always None under legal hold.
    """

    name: str
    duration_days: int | None
    storage_tier: StorageTier
    compression: str
    legal_hold: bool = False
    immutable: bool = False
    expires_at: datetime | None = None

    def resolve(self, timestamp: datetime, minimum_days: int | None = None,
                legal_hold: bool = False, immutable: bool = False) -> "RetentionPolicy":
        """Return a copy anchored at ``timestamp`` with hold flags and expiry applied."""
        hold = self.legal_hold or legal_hold
        days = self.duration_days
        if days is not None and minimum_days is not None:
            days = max(days, minimum_days)
        expires_at = None if hold or days is None else timestamp + timedelta(days=days)
        return RetentionPolicy(
            name=self.name,
            duration_days=days,
            storage_tier=self.storage_tier,
            compression=self.compression,
            legal_hold=hold,
            immutable=self.immutable or immutable,
            expires_at=expires_at,
        )


RETENTION_POLICIES: dict[str, RetentionPolicy] = {
    "30_DAYS": RetentionPolicy("30_DAYS", 30, StorageTier.HOT, "GZIP"),
    "1_YEAR": RetentionPolicy("1_YEAR", 365, StorageTier.WARM, "GZIP"),
    "3_YEARS": RetentionPolicy("3_YEARS", 3 * 365, StorageTier.COLD, "GZIP"),
    "5_YEARS": RetentionPolicy("5_YEARS", 5 * 365, StorageTier.ARCHIVE, "LZ4"),
    "7_YEARS": RetentionPolicy("7_YEARS", 7 * 365, StorageTier.ARCHIVE, "LZ4", legal_hold=True),
    "10_YEARS": RetentionPolicy(
        "10_YEARS", 10 * 365, StorageTier.ARCHIVE, "LZ4", legal_hold=True, immutable=True
    ),
    "PERMANENT": RetentionPolicy(
        "PERMANENT", None, StorageTier.IMMUTABLE_ARCHIVE, "NONE", legal_hold=True, immutable=True
    ),
}

SEVERITY_RETENTION: dict[Severity, str] = {
    Severity.DEBUG: "30_DAYS",
    Severity.INFO: "1_YEAR",
    Severity.WARNING: "3_YEARS",
    Severity.ERROR: "5_YEARS",
    Severity.CRITICAL: "7_YEARS",
    Severity.SECURITY: "10_YEARS",
    Severity.LEGAL: "PERMANENT",
}


@dataclass(frozen=True)
class NetworkContext:
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    device_type: str | None = None
    browser: str | None = None
    operating_system: str | None = None


@dataclass(frozen=True)
class ApplicationContext:
    module: str | None = None
    function: str | None = None
    endpoint: str | None = None
    method: str | None = None
    status_code: int | None = None
    correlation_id: str | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class LegalContext:
    case_number: str | None = None
    matter_id: str | None = None
    client_id: str | None = None
    jurisdiction: str | None = None
    data_category: str | None = None


@dataclass(frozen=True)
class Actor:
    """Who caused an event. A missing id means the system itself."""

    id: str | None = None
    role: str | None = None
    actor_type: str = "USER"

    @property
    def display_id(self) -> str:
        return self.id or "SYSTEM"


@dataclass(frozen=True)
class AuditEvent:
    """Input to ``AuditLedger.record``; carries caller-resolved context only."""

    tenant_id: str
    event_type: EventType | str
    action: str
    resource_type: str
    resource_id: str | None = None
    severity: Severity = Severity.INFO
    actor: Actor = field(default_factory=Actor)
    description: str | None = None
    network: NetworkContext = field(default_factory=NetworkContext)
    application: ApplicationContext = field(default_factory=ApplicationContext)
    legal: LegalContext = field(default_factory=LegalContext)
    changes: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    compliance_tags: tuple[ComplianceTag, ...] = ()


@dataclass(frozen=True)
class AuditEntry:
    """A committed ledger entry. Never mutated once stored.

    ``integrity_hash`` covers audit_id, tenant_id, timestamp, event_type,
    actor id, resource_type and resource_id. ``chain_hash`` links the entry
    to the previous entry of the same tenant.
    """

    audit_id: str
    tenant_id: str
    timestamp: datetime
    event_type: EventType
    event_category: EventCategory
    action: str
    severity: Severity
    actor: Actor
    resource_type: str
    resource_id: str | None
    integrity_hash: str
    signature: str
    retention: RetentionPolicy
    compliance_tags: tuple[ComplianceTag, ...] = ()
    description: str | None = None
    network: NetworkContext = field(default_factory=NetworkContext)
    application: ApplicationContext = field(default_factory=ApplicationContext)
    legal: LegalContext = field(default_factory=LegalContext)
    changes: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    sequence: int = 0
    previous_hash: str | None = None
    chain_hash: str = ""

    @property
    def legal_hold(self) -> bool:
        return self.retention.legal_hold

    @property
    def immutable(self) -> bool:
        return self.retention.immutable

    def to_record(self) -> dict[str, Any]:
        """Plain JSON-compatible representation used for exports and signatures."""
        record = asdict(self)
        record["timestamp"] = self.timestamp.isoformat()
        record["event_type"] = self.event_type.value
        record["event_category"] = self.event_category.value
        record["severity"] = self.severity.value
        record["retention"]["storage_tier"] = self.retention.storage_tier.value
        expires_at = self.retention.expires_at
        record["retention"]["expires_at"] = expires_at.isoformat() if expires_at else None
        record["compliance_tags"] = [
            {
                "standard": tag.standard.value,
                "requirement": tag.requirement,
                "article": tag.article,
                "status": tag.status.value,
            }
            for tag in self.compliance_tags
        ]
        record["changes"] = dict(self.changes)
        record["metadata"] = dict(self.metadata)
        return record


def new_audit_id() -> str:
    """Generate a ledger entry identifier."""
    return f"AUD-{uuid.uuid4().hex.upper()}"


# ---------------------------------------------------------------------------
# Read-side artifacts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryFilters:
    """Filters accepted by ledger queries and investigations."""

    start: datetime | None = None
    end: datetime | None = None
    actor_id: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    event_types: tuple[EventType, ...] = ()
    min_severity: Severity | None = None
    ip_address: str | None = None
    correlation_id: str | None = None
    case_number: str | None = None
    standard: ComplianceStandard | None = None
    limit: int | None = None

    def matches(self, entry: AuditEntry) -> bool:
        if self.start is not None and entry.timestamp < self.start:
            return False
        if self.end is not None and entry.timestamp > self.end:
            return False
        if self.actor_id is not None and entry.actor.id != self.actor_id:
            return False
        if self.resource_type is not None and entry.resource_type != self.resource_type:
            return False
        if self.resource_id is not None and entry.resource_id != self.resource_id:
            return False
        if self.event_types and entry.event_type not in self.event_types:
            return False
        if self.min_severity is not None and entry.severity.level < self.min_severity.level:
            return False
        if self.ip_address is not None and entry.network.ip_address != self.ip_address:
            return False
        if self.correlation_id is not None and entry.application.correlation_id != self.correlation_id:
            return False
        if self.case_number is not None and entry.legal.case_number != self.case_number:
            return False
        if self.standard is not None and not any(t.standard is self.standard for t in entry.compliance_tags):
            return False
        return True


@dataclass(frozen=True)
class CustodyLink:
    audit_id: str
    timestamp: datetime
    action: str
    actor: str
    resource: str
    integrity_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "audit_id": self.audit_id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "actor": self.actor,
            "resource": self.resource,
            "integrity_hash": self.integrity_hash,
        }


@dataclass(frozen=True)
class Anomaly:
    kind: str
    description: str
    severity: str
    count: int
    detail: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "description": self.description,
            "severity": self.severity,
            "count": self.count,
            "detail": dict(self.detail),
        }


@dataclass(frozen=True)
class QueryResult:
    records: list[dict[str, Any]]
    signature: str


@dataclass(frozen=True)
class InvestigationReport:
    investigation_id: str
    tenant_id: str
    criteria: QueryFilters
    generated_at: datetime
    expires_at: datetime
    record_count: int
    statistics: Mapping[str, Mapping[str, int]]
    anomalies: list[Anomaly]
    timeline: list[dict[str, Any]]
    findings: list[dict[str, Any]]
    chain_of_custody: list[CustodyLink]
    signature: str


@dataclass(frozen=True)
class DiscoveryBundle:
    bundle_id: str
    tenant_id: str
    case_number: str
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    expires_at: datetime
    records: list[dict[str, Any]]
    summary: Mapping[str, Any]
    chain_of_custody: list[CustodyLink]
    integrity_hash: str
    signature: str

    @property
    def metadata(self) -> dict[str, Any]:
        return {
            "case_number": self.case_number,
            "period": {"start": self.period_start.isoformat(), "end": self.period_end.isoformat()},
            "record_count": len(self.records),
            "integrity_hash": self.integrity_hash,
        }


class ReportPeriod(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUAL = "ANNUAL"


@dataclass(frozen=True)
class RequirementTally:
    compliant: int = 0
    non_compliant: int = 0

    @property
    def total(self) -> int:
        return self.compliant + self.non_compliant


@dataclass(frozen=True)
class ComplianceReport:
    report_id: str
    tenant_id: str
    standard: ComplianceStandard
    period_label: str
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    expires_at: datetime
    record_count: int
    compliance_score: int
    by_requirement: Mapping[str, RequirementTally]
    gaps: list[dict[str, Any]]
    strengths: list[dict[str, Any]]
    recommendations: list[str]
    critical_findings: int
    signature: str
