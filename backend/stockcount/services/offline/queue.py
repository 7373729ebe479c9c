"""Durable client-local queue of scans captured while offline.

The queue is owned by a single process. Every mutation goes through
``enqueue``/``add_event``, ``drain``, ``ack`` and ``clear_synced``, all of
which take the same ``asyncio.Lock``; ``ack`` merges outcomes by event id
into the current list so events enqueued while a drain is in flight are
kept. The file is replaced atomically on every write.
"""

import asyncio
import json
import logging
import os
import secrets
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from stockcount.core.config import settings
from stockcount.models.offline_sync import ScanWorkflowType
from stockcount.schemas.sync import OfflineScanMetadata

logger = logging.getLogger("sync")

QUEUE_FILE_VERSION = 1


class EventState(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    STUCK = "stuck"  # terminal: retries exhausted or rejected by the server


class OutcomeStatus(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    FAILED = "failed"  # retryable
    STUCK = "stuck"  # rejected as invalid, never retried


def new_event_id() -> str:
    return f"offline_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class OfflineScanEvent(BaseModel):
    """A scan buffered on the device until it reaches the server."""

    id: str = Field(default_factory=new_event_id)
    barcode: str = Field(min_length=1)
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))
    workflow_type: ScanWorkflowType
    metadata: OfflineScanMetadata = Field(default_factory=OfflineScanMetadata)
    state: EventState = EventState.PENDING
    sync_attempts: int = 0
    last_sync_attempt: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def synced(self) -> bool:
        return self.state == EventState.SYNCED

    @property
    def stuck(self) -> bool:
        return self.state == EventState.STUCK

    def to_payload(self) -> Dict[str, Any]:
        """Body for the server acceptance endpoint."""
        return self.model_dump(
            mode="json",
            include={"id", "barcode", "timestamp", "workflow_type", "metadata"},
            exclude_none=True,
        )


@dataclass(frozen=True)
class SyncOutcome:
    event_id: str
    status: OutcomeStatus
    attempted_at: datetime
    error: Optional[str] = None


class OfflineCaptureQueue:
    """File-backed queue of ``OfflineScanEvent``."""

    def __init__(self, path: Union[str, Path, None] = None, max_attempts: Optional[int] = None):
        self.path = Path(path or settings.offline_queue_path)
        self.max_attempts = max_attempts or settings.sync_max_attempts
        self._lock = asyncio.Lock()
        self._events: Optional[List[OfflineScanEvent]] = None

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def _read(self) -> List[OfflineScanEvent]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        return [OfflineScanEvent.model_validate(e) for e in data.get("events", [])]

    def _write(self, events: List[OfflineScanEvent]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": QUEUE_FILE_VERSION,
            "events": [e.model_dump(mode="json") for e in events],
        }
        fd, tmp_path = tempfile.mkstemp(prefix=".offline_", suffix=".json", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def _load(self) -> List[OfflineScanEvent]:
        if self._events is None:
            self._events = await asyncio.to_thread(self._read)
        return self._events

    async def _persist(self) -> None:
        snapshot = [e.model_copy() for e in self._events or []]
        await asyncio.to_thread(self._write, snapshot)

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------
    async def enqueue(self, event: OfflineScanEvent) -> OfflineScanEvent:
        """Append an event as pending and persist the queue."""
        event = event.model_copy(update={
            "state": EventState.PENDING,
            "sync_attempts": 0,
            "last_sync_attempt": None,
            "last_error": None,
        })
        async with self._lock:
            events = await self._load()
            events.append(event)
            await self._persist()
        logger.debug("Queued offline scan %s (%s)", event.id, event.barcode)
        return event

    async def add_event(
        self,
        barcode: str,
        workflow_type: Union[ScanWorkflowType, str],
        metadata: Union[OfflineScanMetadata, Dict[str, Any], None] = None,
        timestamp: Optional[int] = None,
    ) -> OfflineScanEvent:
        fields: Dict[str, Any] = {
            "barcode": barcode,
            "workflow_type": workflow_type,
            "metadata": metadata or {},
        }
        if timestamp is not None:
            fields["timestamp"] = timestamp
        return await self.enqueue(OfflineScanEvent.model_validate(fields))

    async def drain(self) -> List[OfflineScanEvent]:
        """Snapshot of events eligible for a sync attempt."""
        async with self._lock:
            events = await self._load()
            return [
                e.model_copy()
                for e in events
                if e.state == EventState.PENDING and e.sync_attempts < self.max_attempts
            ]

    async def ack(self, outcomes: Iterable[SyncOutcome]) -> None:
        """Merge sync outcomes into the queue and persist once."""
        by_id = {o.event_id: o for o in outcomes}
        if not by_id:
            return
        async with self._lock:
            events = await self._load()
            for event in events:
                outcome = by_id.get(event.id)
                if outcome is None or event.state != EventState.PENDING:
                    continue
                self._apply_outcome(event, outcome)
            await self._persist()

    def _apply_outcome(self, event: OfflineScanEvent, outcome: SyncOutcome) -> None:
        if outcome.status in (OutcomeStatus.ACCEPTED, OutcomeStatus.DUPLICATE):
            event.state = EventState.SYNCED
            event.last_error = None
            return

        event.sync_attempts += 1
        event.last_sync_attempt = outcome.attempted_at
        event.last_error = outcome.error
        if outcome.status == OutcomeStatus.STUCK or event.sync_attempts >= self.max_attempts:
            event.state = EventState.STUCK
            logger.warning(
                "Offline scan %s stuck after %s attempt(s): %s",
                event.id, event.sync_attempts, outcome.error,
            )

    async def clear_synced(self) -> int:
        """Drop every synced event; returns how many were removed."""
        async with self._lock:
            events = await self._load()
            remaining = [e for e in events if e.state != EventState.SYNCED]
            removed = len(events) - len(remaining)
            if removed:
                self._events = remaining
                await self._persist()
            return removed

    # ------------------------------------------------------------------
    # inspection
    # ------------------------------------------------------------------
    async def events(self) -> List[OfflineScanEvent]:
        async with self._lock:
            return [e.model_copy() for e in await self._load()]

    async def pending_count(self) -> int:
        async with self._lock:
            return sum(1 for e in await self._load() if e.state == EventState.PENDING)

    async def stuck_events(self) -> List[OfflineScanEvent]:
        async with self._lock:
            return [e.model_copy() for e in await self._load() if e.state == EventState.STUCK]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
