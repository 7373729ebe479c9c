"""Weight anomaly audit log."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String

from stockcount.db.base import Base


class WeightAnomalyDetection(Base):
    """One row per evaluated reading that produced at least one finding.

    Keyed by the first finding's type and severity; the full list is kept in
    ``findings`` for review. Never read back by the counting path.
    """
    __tablename__ = "weight_anomaly_detections"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    detection_context = Column(String(50), nullable=False, default="count")  # count, validate, sync
    inventory_item_id = Column(Integer, nullable=True, index=True)
    container_instance_id = Column(Integer, nullable=True)
    session_id = Column(Integer, nullable=True)

    anomaly_type = Column(String(50), nullable=False, index=True)
    severity = Column(String(20), nullable=False)
    measured_weight_grams = Column(Float, nullable=True)
    confidence_score = Column(Float, nullable=True)
    findings = Column(JSON, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
