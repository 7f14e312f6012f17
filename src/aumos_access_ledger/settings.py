"""Service-specific settings for aumos-access-ledger.

Environment variable prefix: AUMOS_ACCESS_

Signing material (signing key, audit salt) is never embedded; it must be
supplied through the environment. ``Settings.require_keys`` is called at
startup and refuses to continue without it.
"""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from aumos_access_ledger.errors import ConfigurationError

_MIN_KEY_LENGTH = 32


class Settings(BaseSettings):
    """Settings for aumos-access-ledger."""

    service_name: str = "aumos-access-ledger"
    version: str = "0.1.0"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Key material
    signing_key: SecretStr = SecretStr("")
    audit_salt: SecretStr = SecretStr("")
    discovery_signing_key: SecretStr | None = None
    report_signing_key: SecretStr | None = None

    # Decision engine
    decision_cache_ttl_seconds: int = 300
    context_resolution_timeout_ms: int = 250

    # Audit ledger
    alert_min_severity: str = "ERROR"
    anchor_min_severity: str = "SECURITY"
    default_jurisdiction: str = "RSA"
    emergency_store_path: str | None = None

    # Forensics
    unusual_hours: list[int] = [2, 3, 4, 5]
    unusual_hour_threshold: int = 10
    rapid_succession_window_seconds: float = 1.0
    rapid_succession_threshold: int = 10

    # Artifact expiry
    investigation_ttl_days: int = 90
    discovery_bundle_ttl_days: int = 30
    compliance_report_ttl_days: int = 365

    # Background tasks
    metrics_flush_interval_seconds: float = 60.0
    anchor_retry_interval_seconds: float = 30.0
    anchor_max_attempts: int = 10
    anchor_max_pending: int = 10_000

    # Infrastructure (in-memory adapters when unset)
    redis_url: str | None = None
    database_url: str | None = None

    model_config = SettingsConfigDict(env_prefix="AUMOS_ACCESS_")

    def require_keys(self) -> None:
        """Validate that signing material is present and usable.

        Raises:
            ConfigurationError: If the signing key or audit salt is missing or too short.
        """
        for name, value in (("signing_key", self.signing_key), ("audit_salt", self.audit_salt)):
            if len(value.get_secret_value()) < _MIN_KEY_LENGTH:
                raise ConfigurationError(
                    f"{name} must be supplied via AUMOS_ACCESS_{name.upper()} "
                    f"and be at least {_MIN_KEY_LENGTH} characters"
                )

    def discovery_key(self) -> bytes:
        """Key used to sign discovery bundles and investigations."""
        key = self.discovery_signing_key or self.signing_key
        return key.get_secret_value().encode()

    def report_key(self) -> bytes:
        """Key used to sign compliance reports."""
        key = self.report_signing_key or self.signing_key
        return key.get_secret_value().encode()
