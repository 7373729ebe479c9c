"""Weight anomaly detection for inventory counts.

Every weight-based reading is checked against five independent rules before
it is accepted:

1. Tare weight error (critical) - measured weight below the effective tare.
2. Negative weight (critical) - the scale reported a value below zero.
3. Empty container (warning) - a known container holds almost nothing.
4. Statistical outlier (warning) - z-score against the item's recent history.
5. Impossible weight (error) - net weight exceeds what the container can hold.

``evaluate`` is a pure function. Anomalies are data, never exceptions; only a
malformed reading raises ValidationError. ``AnomalyDetectionService`` wires
the pure rules to the database (container lookup, history query).
"""

import logging
import math
import statistics
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from stockcount.core.config import settings
from stockcount.core.exceptions import NotFoundError, ValidationError
from stockcount.models.container import ContainerInstance
from stockcount.models.inventory import CountRecord, WEIGHT_BASED_METHODS

logger = logging.getLogger(__name__)


class AnomalySeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AnomalyType(str, Enum):
    TARE_WEIGHT_ERROR = "tare_weight_error"
    NEGATIVE_WEIGHT = "negative_weight"
    EMPTY_CONTAINER = "empty_container"
    OUTLIER_WEIGHT = "outlier_weight"
    IMPOSSIBLE_WEIGHT = "impossible_weight"


@dataclass(frozen=True)
class AnomalyThresholds:
    """Tunable detector constants; defaults come from settings."""

    empty_container_grams: float = 10.0
    outlier_z_score: float = 3.0
    history_window: int = 20
    min_history_samples: int = 5
    max_density_grams_per_litre: float = 1200.0

    @classmethod
    def from_settings(cls) -> "AnomalyThresholds":
        return cls(
            empty_container_grams=settings.anomaly_empty_container_threshold_grams,
            outlier_z_score=settings.anomaly_outlier_z_threshold,
            history_window=settings.anomaly_outlier_history_window,
            min_history_samples=settings.anomaly_outlier_min_samples,
            max_density_grams_per_litre=settings.anomaly_max_density_grams_per_litre,
        )


@dataclass(frozen=True)
class WeightReading:
    measured_weight_grams: float
    fallback_tare_grams: Optional[float] = None


@dataclass(frozen=True)
class ContainerProfile:
    tare_weight_grams: float
    max_capacity_ml: Optional[float] = None


@dataclass
class AnomalyFinding:
    type: AnomalyType
    severity: AnomalySeverity
    message: str
    suggested_action: str
    confidence_score: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["severity"] = self.severity.value
        return data


@dataclass
class AnomalyVerdict:
    anomalies: List[AnomalyFinding] = field(default_factory=list)

    @property
    def has_anomaly(self) -> bool:
        return bool(self.anomalies)

    @property
    def can_proceed(self) -> bool:
        return not any(a.severity == AnomalySeverity.CRITICAL for a in self.anomalies)

    @property
    def require_confirmation(self) -> bool:
        return any(
            a.severity in (AnomalySeverity.ERROR, AnomalySeverity.WARNING)
            for a in self.anomalies
        )

    @property
    def has_error(self) -> bool:
        return any(a.severity == AnomalySeverity.ERROR for a in self.anomalies)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_anomaly": self.has_anomaly,
            "anomalies": [a.to_dict() for a in self.anomalies],
            "can_proceed": self.can_proceed,
            "require_confirmation": self.require_confirmation,
        }


def _z_score(value: float, history: Sequence[float]) -> float:
    """Population z-score; 0 on a perfectly uniform history."""
    mean = statistics.fmean(history)
    std_dev = statistics.pstdev(history, mu=mean)
    if std_dev == 0:
        return 0.0
    return (value - mean) / std_dev


def evaluate(
    reading: WeightReading,
    container: Optional[ContainerProfile] = None,
    history: Sequence[float] = (),
    thresholds: Optional[AnomalyThresholds] = None,
) -> List[AnomalyFinding]:
    """Run every rule against one reading and return all findings.

    ``history`` holds the item's previous gross weights, most recent first.
    Only the first ``thresholds.history_window`` entries are used.
    """
    thresholds = thresholds or AnomalyThresholds.from_settings()
    measured = reading.measured_weight_grams
    if measured is None or isinstance(measured, bool) or not isinstance(measured, (int, float)):
        raise ValidationError("measured_weight_grams is required and must be numeric")
    if not math.isfinite(measured):
        raise ValidationError("measured_weight_grams must be a finite number")

    findings: List[AnomalyFinding] = []

    if container is not None:
        effective_tare = container.tare_weight_grams
    else:
        effective_tare = reading.fallback_tare_grams or 0.0
    net_weight = measured - effective_tare

    if measured < effective_tare:
        findings.append(AnomalyFinding(
            type=AnomalyType.TARE_WEIGHT_ERROR,
            severity=AnomalySeverity.CRITICAL,
            message=f"Measured weight ({measured:.1f}g) is less than tare weight ({effective_tare:g}g)",
            suggested_action="Check if correct container was scanned. Verify scale calibration.",
            confidence_score=1.0,
        ))

    if measured < 0:
        findings.append(AnomalyFinding(
            type=AnomalyType.NEGATIVE_WEIGHT,
            severity=AnomalySeverity.CRITICAL,
            message="Measured weight is negative",
            suggested_action="Recalibrate scale or check connections",
            confidence_score=1.0,
        ))

    if container is not None and 0 <= net_weight < thresholds.empty_container_grams:
        findings.append(AnomalyFinding(
            type=AnomalyType.EMPTY_CONTAINER,
            severity=AnomalySeverity.WARNING,
            message=f"Container appears empty ({net_weight:.1f}g net weight)",
            suggested_action="If intentionally empty, proceed. Otherwise, check if product was forgotten.",
            confidence_score=0.95,
        ))

    window = [float(w) for w in history[:thresholds.history_window]]
    if len(window) >= thresholds.min_history_samples:
        z_score = abs(_z_score(measured, window))
        if z_score > thresholds.outlier_z_score:
            findings.append(AnomalyFinding(
                type=AnomalyType.OUTLIER_WEIGHT,
                severity=AnomalySeverity.WARNING,
                message=f"Weight is {z_score:.1f} standard deviations from historical average",
                suggested_action=f"Verify measurement. Historical average: {statistics.fmean(window):.0f}g",
                confidence_score=0.85,
            ))

    if container is not None and container.max_capacity_ml:
        max_possible_net = (container.max_capacity_ml / 1000) * thresholds.max_density_grams_per_litre
        if net_weight > max_possible_net:
            findings.append(AnomalyFinding(
                type=AnomalyType.IMPOSSIBLE_WEIGHT,
                severity=AnomalySeverity.ERROR,
                message=f"Net weight ({net_weight:.0f}g) exceeds container capacity",
                suggested_action="Check if correct container type was scanned",
                confidence_score=0.90,
            ))

    return findings


class AnomalyDetectionService:
    """Loads container and history for a reading and evaluates it."""

    def __init__(self, db: Session, thresholds: Optional[AnomalyThresholds] = None):
        self.db = db
        self.thresholds = thresholds or AnomalyThresholds.from_settings()

    def get_container(self, tenant_id: int, container_instance_id: int) -> ContainerInstance:
        container = (
            self.db.query(ContainerInstance)
            .filter(
                ContainerInstance.id == container_instance_id,
                ContainerInstance.tenant_id == tenant_id,
            )
            .first()
        )
        if not container:
            raise NotFoundError("Container", container_instance_id)
        return container

    @staticmethod
    def container_profile(container: Optional[ContainerInstance]) -> Optional[ContainerProfile]:
        if container is None:
            return None
        max_capacity = container.container_type.max_capacity_ml if container.container_type else None
        return ContainerProfile(
            tare_weight_grams=container.tare_weight_grams,
            max_capacity_ml=max_capacity,
        )

    def weight_history(self, tenant_id: int, item_id: int) -> List[float]:
        """Most recent weight-based gross readings for an item, newest first."""
        rows = (
            self.db.query(CountRecord.gross_weight_grams)
            .filter(
                CountRecord.tenant_id == tenant_id,
                CountRecord.item_id == item_id,
                CountRecord.counting_method.in_(WEIGHT_BASED_METHODS),
                CountRecord.gross_weight_grams.isnot(None),
            )
            .order_by(CountRecord.counted_at.desc(), CountRecord.id.desc())
            .limit(self.thresholds.history_window)
            .all()
        )
        return [row[0] for row in rows]

    def evaluate_reading(
        self,
        tenant_id: int,
        measured_weight_grams: float,
        item_id: Optional[int] = None,
        fallback_tare_grams: Optional[float] = None,
        container: Optional[ContainerInstance] = None,
    ) -> AnomalyVerdict:
        history = self.weight_history(tenant_id, item_id) if item_id is not None else []
        findings = evaluate(
            WeightReading(measured_weight_grams, fallback_tare_grams),
            self.container_profile(container),
            history,
            self.thresholds,
        )
        if findings:
            logger.info(
                "Anomalies detected for item=%s weight=%s: %s",
                item_id, measured_weight_grams, [f.type.value for f in findings],
            )
        return AnomalyVerdict(findings)
