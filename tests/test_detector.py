"""Unit tests for price change classification."""

import pytest

from conftest import NOW, ROUTE
from fare_tracker.detector import ChangeDetector
from fare_tracker.errors import NoPriorAnalyticsError
from fare_tracker.models import ChangeType


class TestClassify:
    """Tests for classification rules."""

    def test_no_prior_analytics(self):
        """The first observation for a route has nothing to compare against."""
        with pytest.raises(NoPriorAnalyticsError):
            ChangeDetector().classify(None, 550.0)

    def test_new_minimum_above_threshold_alerts(self, make_record):
        """A drop of 450 from an all-time min of 1000 beats a 400 threshold."""
        result = ChangeDetector().classify(make_record(all_time_min=1000.0, alert_threshold=400.0), 550.0)

        assert result.change_type == ChangeType.NEW_MINIMUM
        assert result.should_alert is True
        assert result.absolute_change == -450.0
        assert result.percent_change == -45.0
        assert result.price_drop == 450.0

    def test_new_minimum_below_threshold_no_alert(self, make_record):
        """A drop of 300 is a new minimum but not alert-worthy."""
        result = ChangeDetector().classify(make_record(all_time_min=1000.0, alert_threshold=400.0), 700.0)

        assert result.change_type == ChangeType.NEW_MINIMUM
        assert result.should_alert is False

    def test_drop_exactly_at_threshold_alerts(self, make_record):
        """The threshold is inclusive."""
        result = ChangeDetector().classify(make_record(all_time_min=1000.0, alert_threshold=400.0), 600.0)
        assert result.should_alert is True

    def test_price_spike(self, make_record):
        """A price above 1.5x the average is a spike and never alerts."""
        record = make_record(all_time_min=1000.0, alert_threshold=400.0, current_avg=900.0)
        result = ChangeDetector().classify(record, 1450.0)

        assert result.change_type == ChangeType.PRICE_SPIKE
        assert result.should_alert is False
        assert result.absolute_change == 450.0

    def test_normal_fluctuation(self, make_record):
        """Small moves above the minimum are normal."""
        result = ChangeDetector().classify(make_record(all_time_min=1000.0, current_avg=1100.0), 1050.0)

        assert result.change_type == ChangeType.NORMAL_FLUCTUATION
        assert result.should_alert is False

    def test_equal_to_minimum_is_not_new_minimum(self, make_record):
        """Matching the all-time min is not a new minimum."""
        result = ChangeDetector().classify(make_record(all_time_min=1000.0), 1000.0)
        assert result.change_type == ChangeType.NORMAL_FLUCTUATION

    def test_zero_threshold_alerts_on_repeat_low(self, make_record):
        """With a zero threshold, matching the all-time low is a significant drop."""
        result = ChangeDetector().classify(make_record(all_time_min=1000.0, alert_threshold=0.0), 1000.0)

        assert result.change_type == ChangeType.SIGNIFICANT_DROP
        assert result.should_alert is True

    def test_reason_is_deterministic(self, make_record):
        """Reason text is built from the classification and the delta."""
        record = make_record(all_time_min=5000.0, alert_threshold=400.0, current_avg=5200.0)
        first = ChangeDetector().classify(record, 4500.0)
        second = ChangeDetector().classify(record, 4500.0)

        assert first.reason == second.reason
        assert first.reason == "New all-time low, down MXN500 from MXN5000"


class TestEvaluate:
    """Tests for classification with audit logging."""

    def test_event_recorded_for_alert(self, db, make_record):
        """Alert-worthy changes are logged with their reason."""
        detector = ChangeDetector(db)
        detector.evaluate(make_record(all_time_min=1000.0, alert_threshold=400.0), 550.0, now=NOW)

        events = db.get_price_change_events(ROUTE)
        assert len(events) == 1
        event = events[0]
        assert event.change_type == ChangeType.NEW_MINIMUM
        assert event.old_price == 1000.0
        assert event.new_price == 550.0
        assert event.price_change == -450.0
        assert event.change_percentage == -45.0
        assert event.alert_sent is True
        assert event.alert_reason is not None

    def test_event_recorded_without_alert(self, db, make_record):
        """Every classification is logged, alert or not."""
        detector = ChangeDetector(db)
        detector.evaluate(make_record(all_time_min=1000.0, current_avg=1100.0), 1050.0, now=NOW)

        events = db.get_price_change_events(ROUTE)
        assert len(events) == 1
        assert events[0].alert_sent is False
        assert events[0].alert_reason is None

    def test_spike_event_references_average(self, db, make_record):
        """Spikes are logged against the previous average."""
        detector = ChangeDetector(db)
        detector.evaluate(make_record(all_time_min=1000.0, current_avg=900.0), 1450.0, now=NOW)

        event = db.get_price_change_events(ROUTE)[0]
        assert event.change_type == ChangeType.PRICE_SPIKE
        assert event.old_price == 900.0
        assert event.previous_min == 1000.0

    def test_no_event_without_analytics(self, db):
        """Nothing is logged when classification is impossible."""
        with pytest.raises(NoPriorAnalyticsError):
            ChangeDetector(db).evaluate(None, 550.0, now=NOW)
        assert db.get_price_change_events(ROUTE) == []
