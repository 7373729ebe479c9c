"""Count submission and anomaly validation schemas.

Counting input is a tagged union over the item's counting workflow; each
variant carries only the fields its workflow needs.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from stockcount.models.inventory import CountMethod


class UnitCountInput(BaseModel):
    workflow: Literal["unit_count"] = "unit_count"
    quantity: Decimal


class ContainerWeightInput(BaseModel):
    workflow: Literal["container_weight"] = "container_weight"
    gross_weight_grams: float
    tare_weight_grams: Optional[float] = None
    container_instance_id: Optional[int] = None
    unit_weight_grams: Optional[float] = Field(default=None, gt=0)


class BottleHybridInput(BaseModel):
    workflow: Literal["bottle_hybrid"] = "bottle_hybrid"
    full_bottles_count: int = Field(ge=0)
    partial_bottles_weight_grams: Optional[float] = None


class KegWeightInput(BaseModel):
    workflow: Literal["keg_weight"] = "keg_weight"
    gross_weight_grams: float
    tapped_date: Optional[date] = None
    temperature_celsius: Optional[float] = None


class BatchWeightInput(BaseModel):
    workflow: Literal["batch_weight"] = "batch_weight"
    gross_weight_grams: float
    tare_weight_grams: Optional[float] = None
    batch_code: Optional[str] = Field(default=None, max_length=100)
    use_by_date: Optional[date] = None


CountInput = Annotated[
    Union[UnitCountInput, ContainerWeightInput, BottleHybridInput, KegWeightInput, BatchWeightInput],
    Field(discriminator="workflow"),
]


class CountSubmitRequest(BaseModel):
    """Submit one count, optionally inside a session."""

    item_id: int
    session_id: Optional[int] = None
    location_id: Optional[int] = None
    input: CountInput
    notes: Optional[str] = Field(default=None, max_length=500)
    anomaly_override: bool = False
    anomaly_notes: Optional[str] = Field(default=None, max_length=1000)


class AnomalyFindingResponse(BaseModel):
    type: str
    severity: str
    message: str
    suggested_action: str
    confidence_score: float


class CountRecordResponse(BaseModel):
    """Count record response schema."""

    id: int
    item_id: int
    session_id: Optional[int] = None
    location_id: Optional[int] = None
    quantity: Decimal
    unit: str
    counting_method: CountMethod
    counting_workflow: Optional[str] = None
    counted_by: int
    counted_at: datetime
    container_instance_id: Optional[int] = None
    gross_weight_grams: Optional[float] = None
    tare_weight_grams: Optional[float] = None
    net_weight_grams: Optional[float] = None
    full_bottles_count: Optional[int] = None
    partial_bottles_equivalent: Optional[float] = None
    batch_code: Optional[str] = None
    use_by_date: Optional[date] = None
    raw_inputs: Optional[dict] = None
    has_anomalies: bool = False
    anomaly_types: Optional[List[str]] = None
    anomaly_override: bool = False
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class CountSubmitResponse(BaseModel):
    record: Optional[CountRecordResponse] = None
    anomalies: List[AnomalyFindingResponse] = []
    can_proceed: bool = True
    require_confirmation: bool = False
    derived: dict = {}


class WeightValidationRequest(BaseModel):
    """Evaluate a weight reading without recording it."""

    inventory_item_id: Optional[int] = None
    container_instance_id: Optional[int] = None
    measured_weight_grams: float
    tare_weight_grams: Optional[float] = None


class WeightValidationResponse(BaseModel):
    has_anomaly: bool
    anomalies: List[AnomalyFindingResponse]
    can_proceed: bool
    require_confirmation: bool


class AnomalyDetectionResponse(BaseModel):
    """Stored anomaly audit entry."""

    id: int
    detection_context: str
    inventory_item_id: Optional[int] = None
    container_instance_id: Optional[int] = None
    session_id: Optional[int] = None
    anomaly_type: str
    severity: str
    measured_weight_grams: Optional[float] = None
    confidence_score: Optional[float] = None
    findings: Optional[List[AnomalyFindingResponse]] = None
    created_by: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}
