"""Domain errors for aumos-access-ledger.

Deny outcomes of the decision engine are values (see core.entities.DecisionCode),
never exceptions. The errors below signal conditions that must stop the
current operation.
"""


class AccessLedgerError(Exception):
    """Base class for all aumos-access-ledger errors.

    Args:
        message: Human-readable description, safe to return to callers.
        code: Stable machine-readable error code.
    """

    code: str = "ACCESS_LEDGER_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(AccessLedgerError):
    """Input failed domain validation."""

    code = "VALIDATION_ERROR"


class NotFoundError(AccessLedgerError):
    """A requested ledger artifact does not exist in the tenant scope."""

    code = "NOT_FOUND"


class ConfigurationError(AccessLedgerError):
    """Process configuration is unusable (e.g. signing key material is missing).

    Raised at startup; the service must not start without its keys.
    """

    code = "CONFIGURATION_ERROR"


class AuthenticationRequiredError(AccessLedgerError):
    """No authenticated subject, or the subject claims are malformed.

    Always fatal to the request and never cached.
    """

    code = "AUTHENTICATION_REQUIRED"


class ImmutabilityViolationError(AccessLedgerError):
    """A stored audit entry was altered or an alteration was attempted.

    Indicates ledger corruption or a coding defect. Always escalated as a
    critical meta-event.

    Args:
        message: Description of the violation.
        audit_id: Identifier of the affected entry.
    """

    code = "IMMUTABILITY_VIOLATION"

    def __init__(self, message: str, audit_id: str) -> None:
        super().__init__(message)
        self.audit_id = audit_id


class PersistenceFailureError(AccessLedgerError):
    """An audit entry could not be written to the primary store.

    The entry has been diverted to the emergency store; ``emergency_id``
    references it for operator follow-up.

    Args:
        message: Description of the failure.
        emergency_id: Identifier of the emergency-store record, if one was written.
    """

    code = "AUDIT_PERSISTENCE_FAILURE"

    def __init__(self, message: str, emergency_id: str | None = None) -> None:
        super().__init__(message)
        self.emergency_id = emergency_id


class CacheUnavailableError(AccessLedgerError):
    """The decision cache backend could not be reached.

    Callers degrade to uncached evaluation; this error never denies access by itself.
    """

    code = "CACHE_UNAVAILABLE"


class InvestigationCancelledError(AccessLedgerError):
    """A forensic investigation was aborted before its artifact was signed."""

    code = "INVESTIGATION_CANCELLED"
