"""Policy catalog for aumos-access-ledger.

Roles, permissions and scopes are loaded once into an immutable PolicyCatalog
and injected into the decision engine. Permissions are a closed
Resource x Action type; a permission name such as ``DOCUMENT_DELETE`` is
only ever a lookup key into the catalog, never composed ad hoc.

Reloading the catalog swaps the whole object held by CatalogHolder.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from aumos_access_ledger.errors import ConfigurationError

SUPER_ADMIN = "SUPER_ADMIN"
GLOBAL_WILDCARD = "*"

_WHITESPACE = re.compile(r"\s+")


class Resource(str, Enum):
    """Closed set of protected resource types."""

    DOCUMENT = "DOCUMENT"
    CASE = "CASE"
    CLIENT = "CLIENT"
    CLIENT_DATA = "CLIENT_DATA"
    BILLING = "BILLING"
    USER = "USER"
    FIRM = "FIRM"
    SETTINGS = "SETTINGS"
    AUDIT = "AUDIT"
    REPORT = "REPORT"
    SYSTEM = "SYSTEM"
    API = "API"
    CALENDAR = "CALENDAR"
    CONTRACT = "CONTRACT"
    COURT = "COURT"
    RESEARCH = "RESEARCH"
    TRAINING = "TRAINING"
    MESSAGE = "MESSAGE"
    RISK = "RISK"


class Action(str, Enum):
    """Closed set of actions. ``ALL`` is the resource-level wildcard."""

    ALL = "*"
    CREATE = "CREATE"
    CREATE_RESTRICTED = "CREATE_RESTRICTED"
    EDIT = "EDIT"
    VIEW = "VIEW"
    VIEW_OWN = "VIEW_OWN"
    VIEW_ASSIGNED = "VIEW_ASSIGNED"
    VIEW_BILLING = "VIEW_BILLING"
    DELETE = "DELETE"
    SHARE = "SHARE"
    EXPORT = "EXPORT"
    VERSION = "VERSION"
    UPLOAD = "UPLOAD"
    ORGANIZE = "ORGANIZE"
    CLOSE = "CLOSE"
    ASSIGN = "ASSIGN"
    MANAGE = "MANAGE"
    APPROVE = "APPROVE"
    PROCESS = "PROCESS"
    SUBMIT = "SUBMIT"
    FINANCIAL = "FINANCIAL"
    AUDIT = "AUDIT"
    COMPLIANCE = "COMPLIANCE"
    COMMUNICATE = "COMMUNICATE"
    DRAFT = "DRAFT"
    FILING = "FILING"
    USE = "USE"
    ASSESSMENT = "ASSESSMENT"


class ScopeTier(str, Enum):
    """Enforcement tier of a role's scope."""

    GLOBAL = "GLOBAL"
    TENANT = "TENANT"
    DEPARTMENT = "DEPARTMENT"
    TEAM = "TEAM"
    PROJECT = "PROJECT"
    CLIENT = "CLIENT"


class AuditVerbosity(str, Enum):
    """How much request context a role's decisions carry into the ledger."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


def normalize_identifier(value: Any) -> str:
    """Normalize a role or permission identifier.

    Trims, uppercases and collapses internal whitespace to a single underscore
    so that lookups are case- and whitespace-insensitive.

    Args:
        value: Raw identifier from the caller.

    Returns:
        The normalized identifier, or an empty string for falsy input.
    """
    if value is None:
        return ""
    if isinstance(value, Enum):
        value = value.value
    return _WHITESPACE.sub("_", str(value).strip().upper())


@dataclass(frozen=True)
class Permission:
    """A resource/action pair with the minimum role level it implies.

    Attributes:
        resource: Protected resource type.
        action: Action on the resource, or Action.ALL for the resource wildcard.
        level: Hierarchy level associated with the permission.
    """

    resource: Resource
    action: Action
    level: int

    @property
    def name(self) -> str:
        suffix = "ALL" if self.action is Action.ALL else self.action.value
        return f"{self.resource.value}_{suffix}"

    @property
    def is_wildcard(self) -> bool:
        return self.action is Action.ALL


@dataclass(frozen=True)
class Role:
    """An immutable role definition.

    Attributes:
        name: Normalized role name.
        level: Rank in the hierarchy; higher is more privileged.
        permissions: Names of permissions held directly (may contain ``*``).
        scope: Scope tier the role operates in.
        requires_mfa: Whether sessions for this role must be MFA-verified.
        audit_verbosity: Detail level of audit records for this role's decisions.
        description: Human-readable description.
    """

    name: str
    level: int
    permissions: frozenset[str]
    scope: ScopeTier
    requires_mfa: bool = False
    audit_verbosity: AuditVerbosity = AuditVerbosity.LOW
    description: str = ""

    @property
    def has_global_wildcard(self) -> bool:
        return GLOBAL_WILDCARD in self.permissions


@dataclass(frozen=True)
class Scope:
    """An enforcement tier and the roles allowed to operate at it."""

    tier: ScopeTier
    allowed_roles: frozenset[str]
    description: str = ""


UNKNOWN_ROLE = Role(
    name="UNKNOWN",
    level=0,
    permissions=frozenset(),
    scope=ScopeTier.TENANT,
    description="Unknown role",
)


@dataclass(frozen=True)
class PolicyCatalog:
    """Immutable lookup tables for roles, permissions and scopes.

    Build with ``PolicyCatalog.build``, which validates that every permission a
    role references exists and every role's scope is defined.
    """

    roles: Mapping[str, Role]
    permissions: Mapping[str, Permission]
    scopes: Mapping[ScopeTier, Scope]
    version: str = "default"
    _wildcards: Mapping[Resource, Permission] = field(default_factory=dict, repr=False)

    @classmethod
    def build(
        cls,
        roles: Iterable[Role],
        permissions: Iterable[Permission],
        scopes: Iterable[Scope],
        version: str = "default",
    ) -> "PolicyCatalog":
        """Construct and validate a catalog.

        Raises:
            ConfigurationError: If a role references an undefined permission or scope.
        """
        permission_map = {permission.name: permission for permission in permissions}
        scope_map = {scope.tier: scope for scope in scopes}
        role_map: dict[str, Role] = {}
        for role in roles:
            unknown = {
                name for name in role.permissions
                if name != GLOBAL_WILDCARD and name not in permission_map
            }
            if unknown:
                raise ConfigurationError(
                    f"Role {role.name} references undefined permissions: {sorted(unknown)}"
                )
            if role.scope not in scope_map:
                raise ConfigurationError(f"Role {role.name} uses undefined scope {role.scope.value}")
            role_map[role.name] = role

        wildcards = {p.resource: p for p in permission_map.values() if p.is_wildcard}
        return cls(
            roles=MappingProxyType(role_map),
            permissions=MappingProxyType(permission_map),
            scopes=MappingProxyType(scope_map),
            version=version,
            _wildcards=MappingProxyType(wildcards),
        )

    def role(self, name: str) -> Role:
        """Look up a role by (normalized) name; unknown names yield UNKNOWN_ROLE."""
        return self.roles.get(normalize_identifier(name), UNKNOWN_ROLE)

    def is_known_role(self, name: str) -> bool:
        return normalize_identifier(name) in self.roles

    def permission(self, name: str) -> Permission | None:
        """Look up a permission by (normalized) name."""
        return self.permissions.get(normalize_identifier(name))

    def scope(self, tier: ScopeTier) -> Scope | None:
        return self.scopes.get(tier)

    def resource_wildcard(self, resource: Resource) -> Permission | None:
        """Return the ``RESOURCE_ALL`` permission for a resource, if defined."""
        return self._wildcards.get(resource)


def role_satisfies(catalog: PolicyCatalog, role: Role, permission: Permission) -> bool:
    """Decide whether a role satisfies a permission from the catalog alone.

    A role satisfies a permission when it holds it directly, holds the global
    wildcard, or holds the resource wildcard and either its own level or the
    wildcard's level reaches the permission's level.

    Args:
        catalog: Catalog the role and permission come from.
        role: Role being checked.
        permission: Required permission.

    Returns:
        True if the role satisfies the permission.
    """
    if role.has_global_wildcard or permission.name in role.permissions:
        return True
    wildcard = catalog.resource_wildcard(permission.resource)
    if wildcard is None or wildcard.name not in role.permissions:
        return False
    return role.level >= permission.level or wildcard.level >= permission.level


class CatalogHolder:
    """Holds the active catalog; reload is a single reference swap.

    Args:
        catalog: Initial catalog.
    """

    def __init__(self, catalog: PolicyCatalog) -> None:
        self._catalog = catalog

    @property
    def current(self) -> PolicyCatalog:
        return self._catalog

    def swap(self, catalog: PolicyCatalog) -> PolicyCatalog:
        """Replace the active catalog and return the previous one."""
        previous, self._catalog = self._catalog, catalog
        return previous


# ---------------------------------------------------------------------------
# Default legal-practice catalog
# ---------------------------------------------------------------------------

_PERMISSION_TABLE: dict[Resource, dict[Action, int]] = {
    Resource.DOCUMENT: {
        Action.ALL: 100, Action.CREATE: 60, Action.CREATE_RESTRICTED: 55, Action.EDIT: 70,
        Action.VIEW: 50, Action.VIEW_OWN: 30, Action.VIEW_ASSIGNED: 50, Action.VIEW_BILLING: 45,
        Action.DELETE: 90, Action.SHARE: 70, Action.EXPORT: 80, Action.VERSION: 70,
        Action.UPLOAD: 40, Action.ORGANIZE: 40, Action.MANAGE: 80, Action.AUDIT: 85,
    },
    Resource.CASE: {
        Action.ALL: 100, Action.CREATE: 80, Action.EDIT: 70, Action.VIEW: 50,
        Action.VIEW_OWN: 30, Action.VIEW_ASSIGNED: 50, Action.CLOSE: 90, Action.ASSIGN: 85,
        Action.MANAGE: 70,
    },
    Resource.CLIENT: {
        Action.ALL: 100, Action.CREATE: 70, Action.EDIT: 60, Action.VIEW: 40,
        Action.DELETE: 95, Action.MANAGE: 70, Action.COMMUNICATE: 40,
    },
    Resource.CLIENT_DATA: {
        Action.ALL: 100, Action.VIEW: 30, Action.EDIT: 60, Action.EXPORT: 80,
    },
    Resource.BILLING: {
        Action.ALL: 100, Action.CREATE: 70, Action.EDIT: 80, Action.VIEW: 45,
        Action.APPROVE: 90, Action.PROCESS: 85, Action.SUBMIT: 60, Action.MANAGE: 90,
    },
    Resource.USER: {Action.ALL: 90, Action.AUDIT: 85},
    Resource.FIRM: {Action.ALL: 100},
    Resource.SETTINGS: {Action.ALL: 100, Action.MANAGE: 90, Action.COMPLIANCE: 85},
    Resource.AUDIT: {Action.ALL: 100, Action.VIEW: 85},
    Resource.REPORT: {Action.ALL: 100, Action.VIEW: 60, Action.FINANCIAL: 85},
    Resource.SYSTEM: {Action.ALL: 1000},
    Resource.API: {Action.ALL: 95},
    Resource.CALENDAR: {Action.MANAGE: 40},
    Resource.CONTRACT: {Action.DRAFT: 70},
    Resource.COURT: {Action.FILING: 80},
    Resource.RESEARCH: {Action.USE: 50},
    Resource.TRAINING: {Action.USE: 50},
    Resource.MESSAGE: {Action.COMMUNICATE: 30},
    Resource.RISK: {Action.ASSESSMENT: 85},
}

# name: (level, scope, requires_mfa, verbosity, permissions, description)
_ROLE_TABLE: dict[str, tuple[int, ScopeTier, bool, AuditVerbosity, tuple[str, ...], str]] = {
    "SUPER_ADMIN": (
        1000, ScopeTier.GLOBAL, True, AuditVerbosity.CRITICAL, (GLOBAL_WILDCARD,),
        "Platform administrator",
    ),
    "FIRM_PARTNER": (
        100, ScopeTier.TENANT, True, AuditVerbosity.HIGH,
        ("FIRM_ALL", "BILLING_MANAGE", "USER_ALL", "DOCUMENT_ALL", "CASE_ALL", "CLIENT_ALL",
         "REPORT_ALL", "SETTINGS_ALL"),
        "Senior or managing partner",
    ),
    "FIRM_ADMIN": (
        90, ScopeTier.TENANT, True, AuditVerbosity.HIGH,
        ("USER_ALL", "DOCUMENT_MANAGE", "CASE_MANAGE", "CLIENT_MANAGE", "REPORT_VIEW",
         "SETTINGS_MANAGE", "BILLING_VIEW"),
        "Firm administrator or practice manager",
    ),
    "COMPLIANCE_OFFICER": (
        85, ScopeTier.TENANT, True, AuditVerbosity.HIGH,
        ("AUDIT_ALL", "REPORT_ALL", "SETTINGS_COMPLIANCE", "DOCUMENT_AUDIT", "USER_AUDIT",
         "RISK_ASSESSMENT"),
        "Compliance officer or risk manager",
    ),
    "ADVOCATE": (
        80, ScopeTier.TENANT, True, AuditVerbosity.MEDIUM,
        ("DOCUMENT_CREATE", "DOCUMENT_EDIT", "DOCUMENT_VIEW", "CASE_MANAGE", "CLIENT_MANAGE",
         "COURT_FILING", "RESEARCH_USE", "BILLING_CREATE"),
        "Advocate",
    ),
    "EXTERNAL_COUNSEL": (
        75, ScopeTier.PROJECT, True, AuditVerbosity.MEDIUM,
        ("DOCUMENT_VIEW_ASSIGNED", "CASE_VIEW_ASSIGNED", "MESSAGE_COMMUNICATE", "BILLING_SUBMIT"),
        "External counsel or consultant",
    ),
    "ATTORNEY": (
        70, ScopeTier.TENANT, True, AuditVerbosity.MEDIUM,
        ("DOCUMENT_CREATE", "DOCUMENT_EDIT", "DOCUMENT_VIEW", "CASE_MANAGE", "CLIENT_MANAGE",
         "CONTRACT_DRAFT", "BILLING_CREATE", "REPORT_VIEW"),
        "Attorney",
    ),
    "CANDIDATE_ATTORNEY": (
        60, ScopeTier.TENANT, False, AuditVerbosity.LOW,
        ("DOCUMENT_VIEW", "DOCUMENT_CREATE_RESTRICTED", "CASE_VIEW", "CLIENT_VIEW",
         "RESEARCH_USE", "TRAINING_USE"),
        "Candidate attorney (article clerk)",
    ),
    "PARALEGAL": (
        50, ScopeTier.TENANT, False, AuditVerbosity.LOW,
        ("DOCUMENT_VIEW", "DOCUMENT_UPLOAD", "CASE_VIEW", "CLIENT_VIEW", "CALENDAR_MANAGE",
         "DOCUMENT_ORGANIZE"),
        "Paralegal or legal assistant",
    ),
    "FINANCE_OFFICER": (
        45, ScopeTier.TENANT, True, AuditVerbosity.HIGH,
        ("BILLING_ALL", "REPORT_FINANCIAL", "CLIENT_VIEW", "DOCUMENT_VIEW_BILLING"),
        "Finance or billing officer",
    ),
    "LEGAL_SECRETARY": (
        40, ScopeTier.TENANT, False, AuditVerbosity.LOW,
        ("DOCUMENT_UPLOAD", "CALENDAR_MANAGE", "CLIENT_COMMUNICATE", "BILLING_PROCESS",
         "DOCUMENT_ORGANIZE"),
        "Legal secretary",
    ),
    "CLIENT_REPRESENTATIVE": (
        30, ScopeTier.CLIENT, True, AuditVerbosity.MEDIUM,
        ("DOCUMENT_VIEW_OWN", "CASE_VIEW_OWN", "CLIENT_DATA_VIEW", "MESSAGE_COMMUNICATE",
         "BILLING_VIEW"),
        "Client authorized representative",
    ),
}

_SCOPE_TABLE: dict[ScopeTier, tuple[str, tuple[str, ...]]] = {
    ScopeTier.GLOBAL: ("Access across all tenants", ("SUPER_ADMIN",)),
    ScopeTier.TENANT: (
        "Access within a single firm",
        ("FIRM_PARTNER", "FIRM_ADMIN", "ADVOCATE", "ATTORNEY", "CANDIDATE_ATTORNEY", "PARALEGAL",
         "LEGAL_SECRETARY", "FINANCE_OFFICER", "COMPLIANCE_OFFICER"),
    ),
    ScopeTier.DEPARTMENT: (
        "Access within a department",
        ("ADVOCATE", "ATTORNEY", "CANDIDATE_ATTORNEY", "PARALEGAL"),
    ),
    ScopeTier.TEAM: (
        "Access within a case team",
        ("ADVOCATE", "ATTORNEY", "CANDIDATE_ATTORNEY", "PARALEGAL", "EXTERNAL_COUNSEL"),
    ),
    ScopeTier.PROJECT: (
        "Access to assigned projects or cases",
        ("ADVOCATE", "ATTORNEY", "CANDIDATE_ATTORNEY", "PARALEGAL", "EXTERNAL_COUNSEL",
         "CLIENT_REPRESENTATIVE"),
    ),
    ScopeTier.CLIENT: ("Access to own client data only", ("CLIENT_REPRESENTATIVE",)),
}


def default_catalog(version: str = "default") -> PolicyCatalog:
    """Build the legal-practice catalog shipped with the service."""
    permissions = [
        Permission(resource=resource, action=action, level=level)
        for resource, actions in _PERMISSION_TABLE.items()
        for action, level in actions.items()
    ]
    roles = [
        Role(
            name=name,
            level=level,
            permissions=frozenset(held),
            scope=scope,
            requires_mfa=mfa,
            audit_verbosity=verbosity,
            description=description,
        )
        for name, (level, scope, mfa, verbosity, held, description) in _ROLE_TABLE.items()
    ]
    scopes = [
        Scope(tier=tier, allowed_roles=frozenset(allowed), description=description)
        for tier, (description, allowed) in _SCOPE_TABLE.items()
    ]
    return PolicyCatalog.build(roles=roles, permissions=permissions, scopes=scopes, version=version)
