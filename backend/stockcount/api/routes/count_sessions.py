"""Count session routes."""

import logging
from typing import List

from fastapi import APIRouter, Query, Request, status

from stockcount.core.rate_limit import limiter
from stockcount.core.rbac import CurrentUser
from stockcount.db.session import DbSession
from stockcount.schemas.inventory import (
    CountSessionCreate,
    CountSessionDetailResponse,
    CountSessionResponse,
    CountSessionTransition,
    SessionProgressResponse,
)
from stockcount.services.count_session_service import CountSessionService

logger = logging.getLogger("inventory")

router = APIRouter()


@router.post("", response_model=CountSessionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_session(
    request: Request,
    payload: CountSessionCreate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Start counting a location. 409 with ``existing_session`` if one is open."""
    return CountSessionService.create(
        db,
        tenant_id=current_user.tenant_id,
        location_id=payload.location_id,
        user_id=current_user.user_id,
        notes=payload.notes,
    )


@router.get("", response_model=List[CountSessionResponse])
@limiter.limit("60/minute")
def list_sessions(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    location_id: int = Query(...),
    session_status: str = Query("active", alias="status"),
):
    """List a location's sessions; ``status=all`` disables the status filter."""
    return CountSessionService.list_sessions(
        db, current_user.tenant_id, location_id, status=session_status
    )


@router.get("/{session_id}", response_model=CountSessionDetailResponse)
@limiter.limit("60/minute")
def get_session(request: Request, session_id: int, db: DbSession, current_user: CurrentUser):
    detail = CountSessionService.detail(db, current_user.tenant_id, session_id)
    progress = detail["progress"]
    return {
        "session": detail["session"],
        "completed_items": detail["completed_items"],
        "pending_items": detail["pending_items"],
        "progress": {"session_id": session_id, **progress.to_dict()},
    }


@router.patch("/{session_id}", response_model=CountSessionResponse)
@limiter.limit("30/minute")
def transition_session(
    request: Request,
    session_id: int,
    payload: CountSessionTransition,
    db: DbSession,
    current_user: CurrentUser,
):
    """Pause, resume or commit a session."""
    return CountSessionService.transition(
        db,
        tenant_id=current_user.tenant_id,
        session_id=session_id,
        action=payload.action,
        user_id=current_user.user_id,
    )


@router.get("/{session_id}/progress", response_model=SessionProgressResponse)
@limiter.limit("120/minute")
def get_session_progress(request: Request, session_id: int, db: DbSession, current_user: CurrentUser):
    session = CountSessionService.get(db, current_user.tenant_id, session_id)
    return {"session_id": session.id, **CountSessionService.progress(session).to_dict()}
