"""Structured logging and ledger throughput metrics for aumos-access-ledger.

Logging uses structlog with JSON output in production and console output in
development. Sensitive keys are redacted before rendering so that signing
material and personal data never reach log sinks.
"""

import re
import sys
import time
from collections import deque
from collections.abc import MutableMapping
from typing import Any, cast

import structlog
from structlog.types import EventDict, WrappedLogger

SENSITIVE_KEYS: frozenset[str] = frozenset({
    "password",
    "secret",
    "token",
    "api_key",
    "authorization",
    "signing_key",
    "audit_salt",
    "private_key",
    "email",
    "phone",
    "mfa_code",
})

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}


class PIIRedactor:
    """structlog processor that redacts sensitive keys and email addresses."""

    def __call__(
        self,
        _logger: WrappedLogger,
        _method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        return cast(EventDict, self._redact(event_dict))

    def _redact(self, data: MutableMapping[str, Any]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key, value in data.items():
            if key.lower() in SENSITIVE_KEYS:
                result[key] = "[REDACTED]"
            elif isinstance(value, dict):
                result[key] = self._redact(value)
            elif isinstance(value, str):
                result[key] = EMAIL_PATTERN.sub("[EMAIL]", value)
            else:
                result[key] = value
        return result


def setup_logging(level: str = "INFO", format: str = "json", redact_pii: bool = True) -> None:
    """Configure structured logging for the process.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format: "json" for production, "console" for local development.
        redact_pii: Whether to redact sensitive keys and email addresses.
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if redact_pii:
        processors.append(PIIRedactor())
    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_LEVELS.get(level.upper(), 20)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound to the given module name.

    Args:
        name: Logger name, typically ``__name__``.

    Returns:
        A bound structlog logger accepting key-value event fields.
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


class LedgerMetrics:
    """Rolling throughput counters for the audit ledger dashboard.

    Keeps a one-minute window of recorded events so the dashboard flush can
    report events-per-minute and the number of critical events in that window.

    Args:
        window_seconds: Width of the rolling window.
        critical_level: Severity level at or above which an event counts as critical.
    """

    def __init__(self, window_seconds: float = 60.0, critical_level: int = 4) -> None:
        self._window_seconds = window_seconds
        self._critical_level = critical_level
        self._recent: deque[tuple[float, int]] = deque(maxlen=10_000)
        self.total_recorded = 0
        self.persistence_failures = 0

    def record(self, severity_level: int) -> None:
        """Count one successfully recorded entry."""
        self.total_recorded += 1
        self._recent.append((time.monotonic(), severity_level))

    def record_failure(self) -> None:
        """Count one entry that had to be diverted to the emergency store."""
        self.persistence_failures += 1

    def snapshot(self) -> dict[str, Any]:
        """Return the current dashboard view of the rolling window."""
        cutoff = time.monotonic() - self._window_seconds
        while self._recent and self._recent[0][0] < cutoff:
            self._recent.popleft()
        return {
            "events_per_minute": len(self._recent),
            "critical_events": sum(1 for _, level in self._recent if level >= self._critical_level),
            "total_recorded": self.total_recorded,
            "persistence_failures": self.persistence_failures,
        }
