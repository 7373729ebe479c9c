"""API routes."""

from fastapi import APIRouter

from stockcount.api.routes import count_sessions, counts, sync

api_router = APIRouter()

api_router.include_router(count_sessions.router, prefix="/count/sessions", tags=["count-sessions"])
api_router.include_router(counts.router, prefix="/count", tags=["counts", "anomalies"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
