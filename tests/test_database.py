"""Tests for the SQLite price store."""

from datetime import date, timedelta

import pytest

from conftest import FLIGHT_DATE, NOW, ROUTE
from fare_tracker.database import FareDatabase
from fare_tracker.errors import NoDataError, StoreError
from fare_tracker.models import Currency, PriceObservation


class TestPriceSamples:
    """Tests for the append-only sample ledger."""

    def test_schema_verified(self, db):
        """All tables are created on startup."""
        assert db.verify_schema() is True

    def test_add_and_read_sample(self, db):
        """A stored sample reads back unchanged."""
        observation = PriceObservation(
            origin="MEX",
            destination="CUN",
            flight_date=FLIGHT_DATE,
            price=4500.0,
            currency=Currency.USD,
            source_link="https://example.com/flight",
        )
        stored = db.add_sample(observation, observed_at=NOW)

        samples = db.get_samples_for_route(ROUTE)
        assert samples == [stored]
        assert samples[0].route_id == "MEX::CUN::2024-12-01"
        assert samples[0].currency == Currency.USD
        assert samples[0].observed_at == NOW
        assert db.get_sample_count() == 1

    def test_samples_newest_first(self, db, add_price):
        """Route history is returned most recent first."""
        add_price(5000.0, NOW - timedelta(hours=3))
        add_price(4500.0, NOW - timedelta(hours=1))
        add_price(5400.0, NOW - timedelta(hours=2))

        prices = [s.price for s in db.get_samples_for_route(ROUTE)]
        assert prices == [4500.0, 5400.0, 5000.0]

    def test_samples_by_date(self, db, add_price):
        """Samples are selected by flight date across routes."""
        add_price(5000.0, NOW, destination="CUN")
        add_price(3000.0, NOW, destination="GDL")
        add_price(2000.0, NOW, flight_date=date(2024, 12, 24))

        samples = db.get_samples_for_date(FLIGHT_DATE)
        assert {s.route_key.destination for s in samples} == {"CUN", "GDL"}

    def test_most_common_flight_date(self, db, add_price):
        """The most frequently observed date wins."""
        add_price(5000.0, NOW)
        add_price(5100.0, NOW)
        add_price(2000.0, NOW, flight_date=date(2024, 12, 24))
        add_price(2100.0, NOW - timedelta(days=30), flight_date=date(2024, 12, 24))
        add_price(2200.0, NOW - timedelta(days=30), flight_date=date(2024, 12, 24))

        assert db.get_most_common_flight_date() == date(2024, 12, 24)
        assert db.get_most_common_flight_date(since=NOW - timedelta(days=7)) == FLIGHT_DATE

    def test_most_common_flight_date_empty(self, db):
        assert db.get_most_common_flight_date() is None


class TestAnalyticsTransaction:
    """Tests for the analytics read-modify-write."""

    def test_updater_failure_rolls_back(self, db):
        """Nothing is written when the updater raises."""

        def failing(samples, existing):
            raise NoDataError("no samples")

        with pytest.raises(NoDataError):
            db.update_route_analytics(ROUTE, failing)
        assert db.get_route_count() == 0

    def test_updater_sees_samples_and_existing(self, db, add_price):
        """The updater gets the route's samples and the stored record."""
        from fare_tracker.analytics import refresh_analytics

        add_price(5000.0, NOW - timedelta(hours=1))
        seen = []

        def updater(samples, existing):
            seen.append((len(samples), existing))
            return refresh_analytics(ROUTE, samples, NOW, existing=existing)

        first = db.update_route_analytics(ROUTE, updater)
        db.update_route_analytics(ROUTE, updater)

        assert seen[0] == (1, None)
        assert seen[1] == (1, first)

    def test_record_alert_sent_increments(self, db, add_price):
        """The alert counter is incremented in place."""
        from fare_tracker.analytics import RouteAnalyticsService

        add_price(5000.0, NOW - timedelta(hours=1))
        RouteAnalyticsService(db).refresh(ROUTE, NOW)

        db.record_alert_sent(ROUTE, NOW)
        db.record_alert_sent(ROUTE, NOW + timedelta(hours=1))

        record = db.get_route_analytics(ROUTE)
        assert record.total_alerts_sent == 2
        assert record.last_alert_sent_at == NOW + timedelta(hours=1)


class TestStoreErrors:
    """Tests for persistence failures."""

    def test_unopenable_database(self, tmp_path):
        """A path that cannot be opened raises StoreError."""
        with pytest.raises(StoreError):
            FareDatabase(tmp_path / "missing" / "dir" / "fares.db")
