"""Shared fixtures for fare tracker tests."""

import sys
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fare_tracker.database import FareDatabase
from fare_tracker.errors import DeliveryError
from fare_tracker.models import (
    Currency,
    PriceObservation,
    PriceSample,
    RouteAnalyticsRecord,
    RouteKey,
    Trend,
)
from fare_tracker.notifier import DeliveryResult, PushTransport

NOW = datetime(2024, 11, 20, 12, 0, tzinfo=timezone.utc)
FLIGHT_DATE = date(2024, 12, 1)
ROUTE = RouteKey("MEX", "CUN", FLIGHT_DATE)


class FakeTransport(PushTransport):
    """Records messages instead of sending them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def send(self, title: str, text: str) -> DeliveryResult:
        self.sent.append((title, text))
        if self.fail:
            raise DeliveryError("HTTP 500: Internal Server Error", status_code=500)
        return DeliveryResult(success=True, status_code=200)


@pytest.fixture
def db(tmp_path):
    return FareDatabase(tmp_path / "fares.db")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def add_price(db):
    """Store a fare observed at a given time."""
    def _add(price, observed_at, origin="MEX", destination="CUN", flight_date=FLIGHT_DATE,
             currency=Currency.MXN) -> PriceSample:
        observation = PriceObservation(
            origin=origin,
            destination=destination,
            flight_date=flight_date,
            price=price,
            currency=currency,
        )
        return db.add_sample(observation, observed_at=observed_at)
    return _add


@pytest.fixture
def make_sample():
    """Build an in-memory sample without touching the database."""
    counter = iter(range(1, 10_000))

    def _make(price, observed_at, route_key=ROUTE) -> PriceSample:
        return PriceSample(
            id=next(counter),
            route_key=route_key,
            price=price,
            currency=Currency.MXN,
            observed_at=observed_at,
        )
    return _make


@pytest.fixture
def make_record():
    """Build an analytics record with sensible defaults."""
    def _make(all_time_min=1000.0, alert_threshold=400.0, current_avg=1100.0, **overrides):
        fields = dict(
            route_key=ROUTE,
            current_min_price=all_time_min,
            current_max_price=1500.0,
            current_avg_price=current_avg,
            current_median_price=current_avg,
            price_volatility=50.0,
            total_samples=5,
            all_time_min_price=all_time_min,
            all_time_max_price=1500.0,
            samples_last_24h=1,
            samples_last_7d=5,
            trend_24h=Trend.STABLE,
            trend_7d=Trend.STABLE,
            currency=Currency.MXN,
            alert_threshold=alert_threshold,
            total_alerts_sent=0,
            created_at=NOW,
            last_updated=NOW,
        )
        fields.update(overrides)
        return RouteAnalyticsRecord(**fields)
    return _make
