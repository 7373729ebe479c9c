"""Sync reconciler - drains the offline queue against the server.

Events are submitted concurrently and each is classified on its own:

- 2xx: ``accepted`` (or ``duplicate`` when the server already had it)
- 4xx other than 408/429: ``stuck``; the server rejected the event as
  invalid and it is never retried
- 5xx, 408, 429 or a network error: ``failed``; the attempt is counted and
  the event stays queued until it reaches the attempt limit

All outcomes are written back to the queue in one ``ack``.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import httpx

from stockcount.core.config import settings
from stockcount.services.offline.queue import (
    OfflineCaptureQueue,
    OfflineScanEvent,
    OutcomeStatus,
    SyncOutcome,
    utcnow,
)

logger = logging.getLogger("sync")

RETRYABLE_CLIENT_STATUSES = {408, 429}
OFFLINE_SCAN_PATH = "/api/v1/sync/offline-scan"


@dataclass
class SyncReport:
    accepted: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    stuck: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def synced(self) -> int:
        return len(self.accepted) + len(self.duplicates)

    @property
    def total(self) -> int:
        return self.synced + len(self.failed) + len(self.stuck)

    def add(self, outcome: SyncOutcome) -> None:
        target = {
            OutcomeStatus.ACCEPTED: self.accepted,
            OutcomeStatus.DUPLICATE: self.duplicates,
            OutcomeStatus.FAILED: self.failed,
            OutcomeStatus.STUCK: self.stuck,
        }[outcome.status]
        target.append(outcome.event_id)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("detail"):
        return f"HTTP {response.status_code}: {body['detail']}"
    return f"HTTP {response.status_code}"


class SyncReconciler:
    """Pushes pending offline events to the server acceptance endpoint."""

    def __init__(
        self,
        queue: OfflineCaptureQueue,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        notifier: Optional[Callable[[SyncReport], Any]] = None,
        timeout: Optional[float] = None,
    ):
        self.queue = queue
        self.base_url = (base_url or settings.sync_server_url).rstrip("/")
        self.token = token
        self.notifier = notifier
        self.timeout = timeout or settings.sync_request_timeout_seconds
        self._client = client
        self._running = asyncio.Lock()

    def _headers(self) -> dict:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def _submit(self, client: httpx.AsyncClient, event: OfflineScanEvent) -> SyncOutcome:
        attempted_at = utcnow()
        try:
            response = await client.post(
                f"{self.base_url}{OFFLINE_SCAN_PATH}",
                json=event.to_payload(),
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.info("Offline scan %s not delivered: %s", event.id, exc)
            return SyncOutcome(event.id, OutcomeStatus.FAILED, attempted_at, error=str(exc) or type(exc).__name__)

        if response.is_success:
            try:
                duplicate = bool(response.json().get("duplicate"))
            except ValueError:
                duplicate = False
            status = OutcomeStatus.DUPLICATE if duplicate else OutcomeStatus.ACCEPTED
            return SyncOutcome(event.id, status, attempted_at)

        error = _error_detail(response)
        if response.is_client_error and response.status_code not in RETRYABLE_CLIENT_STATUSES:
            return SyncOutcome(event.id, OutcomeStatus.STUCK, attempted_at, error=error)
        return SyncOutcome(event.id, OutcomeStatus.FAILED, attempted_at, error=error)

    async def _submit_all(self, events: List[OfflineScanEvent]) -> List[SyncOutcome]:
        if self._client is not None:
            return await asyncio.gather(*(self._submit(self._client, e) for e in events))
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await asyncio.gather(*(self._submit(client, e) for e in events))

    async def sync(self) -> SyncReport:
        """Run one reconciliation pass. Overlapping calls are skipped."""
        if self._running.locked():
            return SyncReport(skipped=True)

        async with self._running:
            events = await self.queue.drain()
            report = SyncReport()
            if not events:
                return report

            outcomes = await self._submit_all(events)
            await self.queue.ack(outcomes)
            for outcome in outcomes:
                report.add(outcome)

            logger.info(
                "Offline sync: accepted=%s duplicates=%s failed=%s stuck=%s",
                len(report.accepted), len(report.duplicates), len(report.failed), len(report.stuck),
            )
            if report.synced:
                await self._notify(report)
            return report

    async def _notify(self, report: SyncReport) -> None:
        if self.notifier is None:
            return
        try:
            result = self.notifier(report)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Sync notification failed")
