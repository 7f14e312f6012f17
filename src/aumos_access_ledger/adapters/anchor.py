"""Tamper-evidence anchoring for aumos-access-ledger.

Anchoring submits an entry's integrity hash to an external system as
independent corroboration. It is best effort: an entry is valid without a
receipt, failed submissions are queued and retried by a background job,
and receipts are stored apart from the entry so no hashed field changes.
"""

import asyncio
import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone

from aumos_access_ledger.core.interfaces import IAnchorService, IAuditRepository
from aumos_access_ledger.observability import get_logger

logger = get_logger(__name__)


class LocalAnchorService:
    """Simulated anchor service producing hash-derived receipts.

    Stands in for a distributed-ledger or timestamping authority; the
    receipt is deterministic in the anchored hash and the submission time.
    """

    def __init__(self, network: str = "local") -> None:
        self._network = network
        self.anchored: dict[str, str] = {}

    async def anchor(self, audit_id: str, integrity_hash: str) -> str:
        submitted_at = datetime.now(tz=timezone.utc).isoformat()
        digest = hashlib.sha256(f"{audit_id}:{integrity_hash}:{submitted_at}".encode()).hexdigest()
        reference = f"{self._network}:0x{digest}"
        self.anchored[audit_id] = reference
        return reference


@dataclass
class _PendingAnchor:
    audit_id: str
    integrity_hash: str
    attempts: int = 0


class AnchorScheduler:
    """Runs anchor submissions off the write path and retries failures.

    The retry queue is bounded twice: an entry is abandoned after
    ``max_attempts`` submissions, and when ``max_pending`` entries are
    already queued the oldest one is dropped. Both are logged at error level
    with the audit id so the entry can be re-anchored by hand.

    Args:
        service: Anchor service implementation.
        repository: Repository the receipts are recorded in.
        timeout_seconds: Bound on a single submission.
        max_attempts: Submissions per entry before it is abandoned.
        max_pending: Capacity of the retry queue.
    """

    def __init__(
        self,
        service: IAnchorService,
        repository: IAuditRepository,
        timeout_seconds: float = 5.0,
        max_attempts: int = 10,
        max_pending: int = 10_000,
    ) -> None:
        self._service = service
        self._repository = repository
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._max_pending = max(1, max_pending)
        self._retry_queue: dict[str, _PendingAnchor] = {}
        self._in_flight: set[asyncio.Task[bool]] = set()
        self.abandoned_count = 0

    @property
    def pending_count(self) -> int:
        return len(self._retry_queue)

    def schedule(self, audit_id: str, integrity_hash: str) -> None:
        """Submit in the background; the caller never waits."""
        pending = _PendingAnchor(audit_id=audit_id, integrity_hash=integrity_hash)
        task = asyncio.get_running_loop().create_task(self._submit(pending))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def retry_pending(self) -> int:
        """Retry queued submissions once each. Returns how many succeeded."""
        succeeded = 0
        for pending in list(self._retry_queue.values()):
            if await self._submit(pending):
                succeeded += 1
        return succeeded

    async def drain(self) -> None:
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _submit(self, pending: _PendingAnchor) -> bool:
        pending.attempts += 1
        try:
            reference = await asyncio.wait_for(
                self._service.anchor(pending.audit_id, pending.integrity_hash),
                timeout=self._timeout_seconds,
            )
            await self._repository.record_anchor(
                pending.audit_id, reference, datetime.now(tz=timezone.utc)
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            if pending.attempts >= self._max_attempts:
                self._abandon(pending, reason="max_attempts", error=error)
                return False
            self._enqueue(pending)
            logger.warning(
                "Anchor submission failed; queued for retry",
                audit_id=pending.audit_id,
                attempts=pending.attempts,
                error=error,
            )
            return False
        self._retry_queue.pop(pending.audit_id, None)
        logger.info("Anchored audit entry", audit_id=pending.audit_id, reference=reference)
        return True

    def _enqueue(self, pending: _PendingAnchor) -> None:
        if pending.audit_id not in self._retry_queue and len(self._retry_queue) >= self._max_pending:
            oldest = next(iter(self._retry_queue.values()))
            self._abandon(oldest, reason="queue_full")
        self._retry_queue[pending.audit_id] = pending

    def _abandon(self, pending: _PendingAnchor, reason: str, error: str | None = None) -> None:
        self._retry_queue.pop(pending.audit_id, None)
        self.abandoned_count += 1
        logger.error(
            "Giving up on anchor submission",
            audit_id=pending.audit_id,
            integrity_hash=pending.integrity_hash,
            attempts=pending.attempts,
            reason=reason,
            error=error,
        )
