"""Data types shared by the price store, analytics and alerting."""

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from .config import DEFAULT_CURRENCY, MAX_REASONABLE_PRICE
from .errors import ValidationError

ROUTE_SEPARATOR = "::"
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a stored ISO timestamp, assuming UTC when no offset is present."""
    ts = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def parse_flight_date(value: str | date) -> date:
    """Parse a YYYY-MM-DD flight date. Raises ValidationError if malformed."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise ValidationError(f"Invalid date format. Expected YYYY-MM-DD, got: {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")


class Currency(Enum):
    """Currencies accepted at ingress."""
    MXN = "MXN"
    USD = "USD"
    EUR = "EUR"


class Trend(Enum):
    """Direction of a price trend window."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class ChangeType(Enum):
    """Classification of a new observation relative to history."""
    NEW_MINIMUM = "new_minimum"
    SIGNIFICANT_DROP = "significant_drop"
    PRICE_SPIKE = "price_spike"
    NORMAL_FLUCTUATION = "normal_fluctuation"


@dataclass(frozen=True)
class RouteKey:
    """An (origin, destination, flight date) itinerary."""
    origin: str
    destination: str
    flight_date: date

    @property
    def route_id(self) -> str:
        return ROUTE_SEPARATOR.join(
            (self.origin, self.destination, self.flight_date.isoformat())
        )

    @property
    def label(self) -> str:
        return f"{self.origin} → {self.destination}"

    @classmethod
    def from_route_id(cls, route_id: str) -> "RouteKey":
        origin, destination, flight_date = route_id.split(ROUTE_SEPARATOR)
        return cls(origin, destination, date.fromisoformat(flight_date))

    def __str__(self) -> str:
        return self.route_id


@dataclass(frozen=True)
class PriceObservation:
    """A price reported by the scraper, validated before it is stored."""
    origin: str
    destination: str
    flight_date: date
    price: float
    currency: Currency = Currency.MXN
    source_link: Optional[str] = None

    @property
    def route_key(self) -> RouteKey:
        return RouteKey(self.origin, self.destination, self.flight_date)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceObservation":
        """
        Build an observation from raw scraper output.

        Accepts ``origin``/``destination`` (or ``from``/``to``), ``flight_date``,
        ``price``, ``currency`` and ``link``/``source_link``. Every problem is
        collected and reported in a single ValidationError.
        """
        errors = []

        origin = data.get("origin", data.get("from"))
        destination = data.get("destination", data.get("to"))
        if not isinstance(origin, str) or not origin.strip():
            errors.append("Origin city is required and must be a non-empty string")
        if not isinstance(destination, str) or not destination.strip():
            errors.append("Destination city is required and must be a non-empty string")
        for name, city in (("Origin", origin), ("Destination", destination)):
            if isinstance(city, str) and ROUTE_SEPARATOR in city:
                errors.append(f"{name} city must not contain '{ROUTE_SEPARATOR}'")

        price = data.get("price")
        if (
            isinstance(price, bool)
            or not isinstance(price, (int, float))
            or not math.isfinite(price)
            or price <= 0
        ):
            errors.append("Price is required and must be a positive number")
        elif price > MAX_REASONABLE_PRICE:
            errors.append(f"Price seems unreasonably high (>{MAX_REASONABLE_PRICE:,.0f})")

        raw_currency = data.get("currency") or DEFAULT_CURRENCY
        currency = None
        try:
            currency = Currency(raw_currency)
        except ValueError:
            allowed = ", ".join(c.value for c in Currency)
            errors.append(f"Currency must be one of {allowed}")

        flight_date = None
        raw_date = data.get("flight_date")
        if not raw_date:
            errors.append("Flight date is required")
        else:
            try:
                flight_date = parse_flight_date(raw_date)
            except ValidationError as e:
                errors.extend(e.errors)

        link = data.get("source_link", data.get("link"))
        if link is not None and (not isinstance(link, str) or not link.startswith("https://")):
            errors.append("Link must be a valid HTTPS URL")

        if errors:
            raise ValidationError(errors)

        return cls(
            origin=origin.strip(),
            destination=destination.strip(),
            flight_date=flight_date,
            price=round(float(price), 2),
            currency=currency,
            source_link=link,
        )


@dataclass(frozen=True)
class PriceSample:
    """A stored price observation. Never mutated."""
    id: int
    route_key: RouteKey
    price: float
    currency: Currency
    observed_at: datetime
    source_link: Optional[str] = None

    @property
    def route_id(self) -> str:
        return self.route_key.route_id


@dataclass
class RouteAnalyticsRecord:
    """Aggregate statistics and alert state for one route."""
    route_key: RouteKey
    current_min_price: float
    current_max_price: float
    current_avg_price: float
    current_median_price: float
    price_volatility: float
    total_samples: int
    all_time_min_price: float
    all_time_max_price: float
    samples_last_24h: int
    samples_last_7d: int
    trend_24h: Trend
    trend_7d: Trend
    currency: Currency
    alert_threshold: float
    total_alerts_sent: int
    created_at: datetime
    last_updated: datetime
    last_alert_sent_at: Optional[datetime] = None

    @property
    def route_id(self) -> str:
        return self.route_key.route_id

    @property
    def volatility_level(self) -> str:
        """Human-readable volatility bucket used in reports."""
        if self.price_volatility > 200:
            return "HIGH"
        elif self.price_volatility > 100:
            return "MEDIUM"
        return "LOW"


@dataclass(frozen=True)
class PriceChangeEvent:
    """Audit record written for every classification."""
    route_key: RouteKey
    old_price: float
    new_price: float
    price_change: float
    change_percentage: float
    change_type: ChangeType
    samples_analyzed: int
    previous_min: float
    previous_avg: float
    alert_sent: bool
    alert_reason: Optional[str]
    currency: Currency
    created_at: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class NotificationRecord:
    """Audit record written for every dispatch attempt that passed the throttle."""
    route_key: RouteKey
    old_price: Optional[float]
    new_price: float
    price_drop: Optional[float]
    drop_percentage: float
    currency: Currency
    alert_reason: str
    success: bool
    sent_at: datetime
    status_code: Optional[int] = None
    error: Optional[str] = None
    notification_type: str = "price_drop"
    id: Optional[int] = None


def format_money(currency: Currency | str, amount: float) -> str:
    """Format an amount like ``MXN4500`` or ``USD129.99``."""
    code = currency.value if isinstance(currency, Currency) else currency
    amount = round(float(amount), 2)
    if amount == int(amount):
        return f"{code}{int(amount)}"
    return f"{code}{amount:.2f}"
