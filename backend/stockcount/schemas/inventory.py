"""Count session schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from stockcount.models.inventory import SessionStatus
from stockcount.models.inventory_item import CountingWorkflow
from stockcount.schemas.count import CountRecordResponse


class CountSessionCreate(BaseModel):
    """Count session creation schema."""

    location_id: int
    notes: Optional[str] = Field(default=None, max_length=1000)


class CountSessionTransition(BaseModel):
    action: Literal["pause", "resume", "commit"]


class CountSessionResponse(BaseModel):
    """Count session response schema."""

    id: int
    location_id: int
    user_id: int
    status: SessionStatus
    started_at: datetime
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    total_items_count: int
    counted_items_count: int
    progress_percentage: int
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class SessionProgressResponse(BaseModel):
    session_id: int
    total: int
    completed: int
    remaining: int
    percentage: int


class PendingItemResponse(BaseModel):
    id: int
    name: str
    barcode: Optional[str] = None
    unit: str
    counting_workflow: CountingWorkflow
    par_level: Optional[Decimal] = None

    model_config = {"from_attributes": True}


class CountSessionDetailResponse(BaseModel):
    session: CountSessionResponse
    completed_items: List[CountRecordResponse]
    pending_items: List[PendingItemResponse]
    progress: SessionProgressResponse
