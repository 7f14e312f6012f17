"""Domain override predicates for the decision engine.

Predicates run only after the role-permission check allowed a request. Each
one either abstains (returns None) or returns a denying Decision, and any
deny overrides the allow.

- LegalPrivilegePredicate: attorney-client privilege and work-product doctrine.
- DataMinimizationPredicate: POPIA minimality, purpose specification and
  data-subject participation principles.
- OwnershipPredicate: owner-only resources, with administrative bypass.
"""

from aumos_access_ledger.core.entities import Decision, DecisionCode, ResourceContext, Subject
from aumos_access_ledger.core.policy import normalize_identifier

# Roles that may read client-owned documents, given an attorney-client relationship
_PRIVILEGED_CLIENT_DOCUMENT_ROLES: frozenset[str] = frozenset(
    {"ADVOCATE", "ATTORNEY", "CANDIDATE_ATTORNEY", "PARALEGAL"}
)

# Roles that may access attorney work product
_WORK_PRODUCT_ROLES: frozenset[str] = frozenset({"ADVOCATE", "ATTORNEY", "FIRM_PARTNER", "FIRM_ADMIN"})

# Third parties never see work product, whatever else they hold
_THIRD_PARTY_ROLES: frozenset[str] = frozenset({"EXTERNAL_COUNSEL", "CLIENT_REPRESENTATIVE"})

# Resource types that carry personal information
_PERSONAL_DATA_RESOURCES: frozenset[str] = frozenset({"CLIENT", "CLIENT_DATA", "USER"})

_SENSITIVE_CATEGORY = "PERSONAL_SENSITIVE"
_SENSITIVE_BARRED_ROLES: frozenset[str] = frozenset({"LEGAL_SECRETARY"})

# Roles that bypass owner-only restrictions
_OWNERSHIP_BYPASS_ROLES: frozenset[str] = frozenset(
    {"SUPER_ADMIN", "FIRM_PARTNER", "FIRM_ADMIN", "COMPLIANCE_OFFICER"}
)


def _deny(code: DecisionCode, reason: str) -> Decision:
    return Decision(allowed=False, code=code, reason=reason)


class LegalPrivilegePredicate:
    """Enforce attorney-client privilege and the work-product doctrine on documents."""

    name = "legal_privilege"

    def check(self, subject: Subject, permission: str, resource: ResourceContext) -> Decision | None:
        if normalize_identifier(resource.resource_type) != "DOCUMENT":
            return None
        owner_type = normalize_identifier(resource.owner_type)

        if owner_type == "CLIENT":
            if subject.role not in _PRIVILEGED_CLIENT_DOCUMENT_ROLES:
                return _deny(
                    DecisionCode.LEGAL_PRIVILEGE_VIOLATION,
                    f"Role {subject.role} may not access privileged client documents",
                )
            if normalize_identifier(resource.relationship) != "ATTORNEY_CLIENT":
                return _deny(
                    DecisionCode.LEGAL_PRIVILEGE_VIOLATION,
                    "Client document access requires an attorney-client relationship",
                )

        if owner_type == "ATTORNEY":
            if subject.role in _THIRD_PARTY_ROLES:
                return _deny(
                    DecisionCode.LEGAL_PRIVILEGE_VIOLATION,
                    "Third parties are excluded from attorney work product",
                )
            if subject.role not in _WORK_PRODUCT_ROLES:
                return _deny(
                    DecisionCode.LEGAL_PRIVILEGE_VIOLATION,
                    f"Role {subject.role} may not access attorney work product",
                )
        return None


class DataMinimizationPredicate:
    """Enforce data-protection minimization on personal-data resources.

    Checked in order: sensitive-category bar, purpose specification, client
    self-access, encryption of sensitive data.
    """

    name = "data_minimization"

    def check(self, subject: Subject, permission: str, resource: ResourceContext) -> Decision | None:
        if normalize_identifier(resource.resource_type) not in _PERSONAL_DATA_RESOURCES:
            return None
        category = normalize_identifier(resource.data_category)

        if subject.role in _SENSITIVE_BARRED_ROLES and category == _SENSITIVE_CATEGORY:
            return _deny(
                DecisionCode.DATA_MINIMIZATION_VIOLATION,
                f"Role {subject.role} has no need for sensitive personal data",
            )

        purpose = normalize_identifier(resource.purpose)
        if not purpose or purpose == "GENERAL":
            return _deny(
                DecisionCode.DATA_MINIMIZATION_VIOLATION,
                "A specific processing purpose is required for personal data",
            )

        if subject.role == "CLIENT_REPRESENTATIVE" and normalize_identifier(resource.resource_type) == "CLIENT_DATA":
            owner = resource.client_id or resource.owner_id
            own_id = subject.client_id or subject.id
            if owner is None or owner != own_id:
                return _deny(
                    DecisionCode.DATA_MINIMIZATION_VIOLATION,
                    "Clients may only access their own records",
                )

        if category == _SENSITIVE_CATEGORY and not resource.encrypted:
            return _deny(
                DecisionCode.DATA_MINIMIZATION_VIOLATION,
                "Sensitive personal data must be encrypted to be accessed",
            )
        return None


class OwnershipPredicate:
    """Restrict owner-only resources to their owner, except for administrative roles."""

    name = "ownership"

    def check(self, subject: Subject, permission: str, resource: ResourceContext) -> Decision | None:
        if not resource.requires_ownership or subject.role in _OWNERSHIP_BYPASS_ROLES:
            return None
        if resource.owner_id is None or resource.owner_id != subject.id:
            return _deny(DecisionCode.OWNERSHIP_VIOLATION, "Resource is restricted to its owner")
        return None


def default_predicates() -> list[LegalPrivilegePredicate | DataMinimizationPredicate | OwnershipPredicate]:
    """Predicates applied by the engine unless others are injected."""
    return [LegalPrivilegePredicate(), DataMinimizationPredicate(), OwnershipPredicate()]
