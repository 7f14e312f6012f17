"""Emergency stores for audit entries the primary repository rejected.

A missing audit record is itself a compliance violation, so an entry that
cannot be persisted is written here before the failure is surfaced. Records
stay until an operator replays them.
"""

import asyncio
import json
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from aumos_access_ledger.observability import get_logger

logger = get_logger(__name__)


def _envelope(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "emergency_id": f"EMG-{uuid.uuid4().hex.upper()}",
        "written_at": datetime.now(tz=timezone.utc).isoformat(),
        "record": record,
    }


class InMemoryEmergencyStore:
    """Process-local emergency store for tests and development."""

    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    async def write(self, record: dict[str, Any]) -> str:
        envelope = _envelope(record)
        self.records.append(envelope)
        return envelope["emergency_id"]

    async def pending(self) -> list[dict[str, Any]]:
        return list(self.records)


class JsonlEmergencyStore:
    """Append-only JSON-lines file, fsynced per record.

    Args:
        path: File the records are appended to; parent directories are created.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    async def write(self, record: dict[str, Any]) -> str:
        envelope = _envelope(record)
        line = json.dumps(envelope, default=str, sort_keys=True)
        async with self._lock:
            await asyncio.to_thread(self._append, line)
        logger.warning(
            "Wrote audit entry to emergency store",
            emergency_id=envelope["emergency_id"],
            path=str(self._path),
        )
        return envelope["emergency_id"]

    async def pending(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        return [json.loads(line) for line in text.splitlines() if line.strip()]

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
            handle.flush()
            os.fsync(handle.fileno())
