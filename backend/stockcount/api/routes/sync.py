"""Offline scan sync routes."""

import logging

from fastapi import APIRouter, Request

from stockcount.core.rate_limit import limiter
from stockcount.core.rbac import CurrentUser
from stockcount.db.session import DbSession
from stockcount.schemas.sync import (
    OfflineScanBatchRequest,
    OfflineScanBatchResponse,
    OfflineScanEventIn,
    OfflineScanResult,
)
from stockcount.services.offline_sync_service import OfflineSyncService

logger = logging.getLogger("sync")

router = APIRouter()


@router.post("/offline-scan", response_model=OfflineScanResult)
@limiter.limit("300/minute")
def sync_offline_scan(
    request: Request,
    event: OfflineScanEventIn,
    db: DbSession,
    current_user: CurrentUser,
):
    """Accept one offline scan. Redelivery returns ``duplicate=true``."""
    return OfflineSyncService(db).accept_one(current_user.tenant_id, current_user.user_id, event)


@router.post("/offline-scans", response_model=OfflineScanBatchResponse)
@limiter.limit("30/minute")
def sync_offline_scans(
    request: Request,
    payload: OfflineScanBatchRequest,
    db: DbSession,
    current_user: CurrentUser,
):
    """Accept a batch of offline scans, reporting each event's outcome."""
    return OfflineSyncService(db).accept_batch(
        current_user.tenant_id, current_user.user_id, payload.events
    )
