"""Tests for the weight anomaly detector and the /count/validate endpoint."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from stockcount.core.exceptions import NotFoundError, ValidationError
from stockcount.models.anomaly import WeightAnomalyDetection
from stockcount.models.inventory import CountMethod, CountRecord
from stockcount.services.anomaly_detection_service import (
    AnomalyDetectionService,
    AnomalySeverity,
    AnomalyThresholds,
    AnomalyType,
    AnomalyVerdict,
    ContainerProfile,
    WeightReading,
    evaluate,
)

from conftest import OTHER_TENANT_ID, TENANT_ID, USER_ID

THRESHOLDS = AnomalyThresholds()
# mean 1000, population std dev 10
STEADY_HISTORY = [990.0, 1010.0] * 3


def _types(findings):
    return [f.type for f in findings]


class TestTareAndNegativeRules:

    def test_measured_below_container_tare_is_critical(self):
        findings = evaluate(WeightReading(50.0), ContainerProfile(tare_weight_grams=100.0), [], THRESHOLDS)
        assert _types(findings) == [AnomalyType.TARE_WEIGHT_ERROR]
        assert findings[0].severity == AnomalySeverity.CRITICAL
        assert findings[0].confidence_score == 1.0
        verdict = AnomalyVerdict(findings)
        assert verdict.can_proceed is False

    def test_fallback_tare_used_without_container(self):
        findings = evaluate(WeightReading(50.0, fallback_tare_grams=100.0), None, [], THRESHOLDS)
        assert _types(findings) == [AnomalyType.TARE_WEIGHT_ERROR]

    def test_container_tare_wins_over_fallback(self):
        findings = evaluate(
            WeightReading(150.0, fallback_tare_grams=200.0),
            ContainerProfile(tare_weight_grams=100.0),
            [],
            THRESHOLDS,
        )
        assert AnomalyType.TARE_WEIGHT_ERROR not in _types(findings)

    def test_negative_weight_raises_both_critical_findings(self):
        findings = evaluate(WeightReading(-5.0), None, [], THRESHOLDS)
        assert set(_types(findings)) == {AnomalyType.TARE_WEIGHT_ERROR, AnomalyType.NEGATIVE_WEIGHT}
        assert all(f.severity == AnomalySeverity.CRITICAL for f in findings)


class TestEmptyContainerRule:

    def test_near_empty_container_is_warning(self):
        findings = evaluate(WeightReading(255.0), ContainerProfile(250.0), [], THRESHOLDS)
        assert _types(findings) == [AnomalyType.EMPTY_CONTAINER]
        assert findings[0].severity == AnomalySeverity.WARNING
        verdict = AnomalyVerdict(findings)
        assert verdict.can_proceed is True
        assert verdict.require_confirmation is True

    def test_exactly_at_tare_is_empty(self):
        findings = evaluate(WeightReading(250.0), ContainerProfile(250.0), [], THRESHOLDS)
        assert _types(findings) == [AnomalyType.EMPTY_CONTAINER]

    def test_not_applied_without_container(self):
        assert evaluate(WeightReading(5.0), None, [], THRESHOLDS) == []

    def test_threshold_is_configurable(self):
        thresholds = AnomalyThresholds(empty_container_grams=50.0)
        findings = evaluate(WeightReading(280.0), ContainerProfile(250.0), [], thresholds)
        assert _types(findings) == [AnomalyType.EMPTY_CONTAINER]


class TestOutlierRule:

    def test_five_sigma_reading_is_outlier_warning(self):
        findings = evaluate(WeightReading(1050.0), None, STEADY_HISTORY, THRESHOLDS)
        assert _types(findings) == [AnomalyType.OUTLIER_WEIGHT]
        assert findings[0].severity == AnomalySeverity.WARNING
        assert findings[0].confidence_score == 0.85
        assert "5.0 standard deviations" in findings[0].message
        verdict = AnomalyVerdict(findings)
        assert verdict.can_proceed is True
        assert verdict.require_confirmation is True

    def test_low_outlier_uses_absolute_z_score(self):
        findings = evaluate(WeightReading(950.0), None, STEADY_HISTORY, THRESHOLDS)
        assert _types(findings) == [AnomalyType.OUTLIER_WEIGHT]

    def test_within_three_sigma_is_clean(self):
        assert evaluate(WeightReading(1020.0), None, STEADY_HISTORY, THRESHOLDS) == []

    def test_needs_minimum_history(self):
        assert evaluate(WeightReading(1050.0), None, [990.0, 1010.0, 990.0, 1010.0], THRESHOLDS) == []

    def test_uniform_history_never_flags(self):
        assert evaluate(WeightReading(5000.0), None, [1000.0] * 10, THRESHOLDS) == []

    def test_only_most_recent_window_is_used(self):
        history = [990.0, 1010.0] * 10 + [5000.0] * 30
        findings = evaluate(WeightReading(1050.0), None, history, THRESHOLDS)
        assert _types(findings) == [AnomalyType.OUTLIER_WEIGHT]


class TestImpossibleWeightRule:

    def test_net_above_capacity_is_error(self):
        # 4 L at 1.2 kg/L -> 4800 g max net
        findings = evaluate(WeightReading(250.0 + 4801.0), ContainerProfile(250.0, 4000.0), [], THRESHOLDS)
        assert _types(findings) == [AnomalyType.IMPOSSIBLE_WEIGHT]
        assert findings[0].severity == AnomalySeverity.ERROR
        verdict = AnomalyVerdict(findings)
        assert verdict.can_proceed is True
        assert verdict.require_confirmation is True
        assert verdict.has_error is True

    def test_net_at_capacity_is_clean(self):
        assert evaluate(WeightReading(250.0 + 4800.0), ContainerProfile(250.0, 4000.0), [], THRESHOLDS) == []

    def test_no_capacity_no_check(self):
        assert evaluate(WeightReading(100000.0), ContainerProfile(250.0), [], THRESHOLDS) == []


class TestVerdictAndInput:

    def test_clean_reading_needs_nothing(self):
        verdict = AnomalyVerdict(evaluate(WeightReading(1000.0), ContainerProfile(250.0, 4000.0), [], THRESHOLDS))
        assert verdict.to_dict() == {
            "has_anomaly": False,
            "anomalies": [],
            "can_proceed": True,
            "require_confirmation": False,
        }

    def test_finding_serialises_enum_values(self):
        data = evaluate(WeightReading(50.0), ContainerProfile(100.0), [], THRESHOLDS)[0].to_dict()
        assert data["type"] == "tare_weight_error"
        assert data["severity"] == "critical"

    @pytest.mark.parametrize("value", [None, float("nan"), float("inf"), "100"])
    def test_malformed_reading_is_validation_error(self, value):
        with pytest.raises(ValidationError):
            evaluate(WeightReading(value), None, [], THRESHOLDS)


def _weight_record(db_session, item, gross, minutes_ago, method=CountMethod.WEIGHT):
    record = CountRecord(
        tenant_id=item.tenant_id,
        item_id=item.id,
        quantity=Decimal("1"),
        unit=item.unit,
        counting_method=method,
        counted_by=USER_ID,
        counted_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
        gross_weight_grams=gross,
    )
    db_session.add(record)
    return record


class TestAnomalyDetectionService:

    def test_history_is_newest_first_weight_based_only(self, db_session, test_items):
        flour = test_items["flour"]
        for i in range(25):
            _weight_record(db_session, flour, 1000.0 + i, minutes_ago=i)
        _weight_record(db_session, flour, 9999.0, minutes_ago=0, method=CountMethod.MANUAL)
        db_session.commit()

        history = AnomalyDetectionService(db_session).weight_history(TENANT_ID, flour.id)
        assert len(history) == 20
        assert history[0] == 1000.0
        assert 9999.0 not in history

    def test_hybrid_records_count_as_history(self, db_session, test_items):
        wine = test_items["wine"]
        for i in range(5):
            _weight_record(db_session, wine, 900.0, minutes_ago=i, method=CountMethod.HYBRID)
        db_session.commit()
        assert len(AnomalyDetectionService(db_session).weight_history(TENANT_ID, wine.id)) == 5

    def test_history_is_tenant_scoped(self, db_session, test_items):
        flour = test_items["flour"]
        _weight_record(db_session, flour, 1000.0, minutes_ago=1)
        db_session.commit()
        assert AnomalyDetectionService(db_session).weight_history(OTHER_TENANT_ID, flour.id) == []

    def test_outlier_against_stored_history(self, db_session, test_items):
        flour = test_items["flour"]
        for i, gross in enumerate(STEADY_HISTORY):
            _weight_record(db_session, flour, gross, minutes_ago=i + 1)
        db_session.commit()

        verdict = AnomalyDetectionService(db_session).evaluate_reading(TENANT_ID, 1050.0, item_id=flour.id)
        assert [a.type for a in verdict.anomalies] == [AnomalyType.OUTLIER_WEIGHT]

    def test_container_lookup_is_tenant_scoped(self, db_session, test_container):
        service = AnomalyDetectionService(db_session)
        assert service.get_container(TENANT_ID, test_container.id).id == test_container.id
        with pytest.raises(NotFoundError):
            service.get_container(OTHER_TENANT_ID, test_container.id)

    def test_container_profile_uses_instance_tare_and_type_capacity(self, db_session, test_container):
        profile = AnomalyDetectionService.container_profile(test_container)
        assert profile == ContainerProfile(tare_weight_grams=250.0, max_capacity_ml=4000.0)


class TestValidateEndpoint:

    def test_sub_tare_reading_blocks_and_is_audited(self, client, auth_headers, db_session, test_container):
        response = client.post(
            "/api/v1/count/validate",
            json={"container_instance_id": test_container.id, "measured_weight_grams": 100.0},
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["has_anomaly"] is True
        assert data["can_proceed"] is False
        assert data["anomalies"][0]["type"] == "tare_weight_error"

        audit = db_session.query(WeightAnomalyDetection).all()
        assert len(audit) == 1
        assert audit[0].anomaly_type == "tare_weight_error"
        assert audit[0].severity == "critical"
        assert audit[0].detection_context == "validate"
        assert audit[0].tenant_id == TENANT_ID

    def test_clean_reading_writes_no_audit(self, client, auth_headers, db_session, test_container):
        response = client.post(
            "/api/v1/count/validate",
            json={"container_instance_id": test_container.id, "measured_weight_grams": 1250.0},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["has_anomaly"] is False
        assert db_session.query(WeightAnomalyDetection).count() == 0

    def test_unknown_container_is_404(self, client, auth_headers, test_container):
        response = client.post(
            "/api/v1/count/validate",
            json={"container_instance_id": test_container.id + 100, "measured_weight_grams": 100.0},
            headers=auth_headers,
        )
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_requires_authentication(self, client):
        response = client.post("/api/v1/count/validate", json={"measured_weight_grams": 100.0})
        assert response.status_code == 401

    def test_anomaly_list_requires_manager(self, client, auth_headers, staff_headers, test_container):
        client.post(
            "/api/v1/count/validate",
            json={"container_instance_id": test_container.id, "measured_weight_grams": 100.0},
            headers=auth_headers,
        )
        assert client.get("/api/v1/count/anomalies", headers=staff_headers).status_code == 403

        response = client.get("/api/v1/count/anomalies", headers=auth_headers)
        assert response.status_code == 200
        entries = response.json()
        assert len(entries) == 1
        assert entries[0]["findings"][0]["type"] == "tare_weight_error"
