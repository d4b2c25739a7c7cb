"""Classify new fares against route history and decide whether to alert."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .config import SPIKE_FACTOR
from .database import FareDatabase
from .errors import NoPriorAnalyticsError
from .models import (
    ChangeType,
    PriceChangeEvent,
    RouteAnalyticsRecord,
    format_money,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeResult:
    """Outcome of classifying one price against a route's analytics."""
    change_type: ChangeType
    should_alert: bool
    reason: str
    absolute_change: float
    percent_change: float
    reference_price: float  # all-time min the change is measured against

    @property
    def price_drop(self) -> float:
        """Positive amount below the reference price (0 if not lower)."""
        return max(0.0, -self.absolute_change)


class ChangeDetector:
    """
    Compares a newly observed price with a route's analytics record.

    Every change is measured against the route's all-time minimum. Rules, first
    match wins:
    1. Below the all-time min: NEW_MINIMUM, alert if the drop >= threshold
    2. At least the threshold below the all-time min: SIGNIFICANT_DROP, alert
    3. Above 1.5x the current average: PRICE_SPIKE, no alert
    4. Anything else: NORMAL_FLUCTUATION, no alert
    """

    def __init__(self, db: Optional[FareDatabase] = None, spike_factor: float = SPIKE_FACTOR):
        self.db = db
        self.spike_factor = spike_factor

    def classify(self, record: Optional[RouteAnalyticsRecord], new_price: float) -> ChangeResult:
        """
        Classify a new price for a route.

        Raises:
            NoPriorAnalyticsError: if the route has no analytics record yet
        """
        if record is None:
            raise NoPriorAnalyticsError("No prior analytics to compare against")

        reference = record.all_time_min_price
        threshold = record.alert_threshold
        absolute_change = new_price - reference
        percent_change = absolute_change / reference * 100 if reference else 0.0
        drop = -absolute_change
        currency = record.currency

        if new_price < reference:
            change_type = ChangeType.NEW_MINIMUM
            should_alert = abs(absolute_change) >= threshold
            reason = (
                f"New all-time low, down {format_money(currency, drop)} "
                f"from {format_money(currency, reference)}"
            )
        elif drop >= threshold:
            # Only reachable with a zero threshold: a repeat of the all-time low
            change_type = ChangeType.SIGNIFICANT_DROP
            should_alert = True
            reason = f"Significant drop of {format_money(currency, drop)}"
        elif new_price > record.current_avg_price * self.spike_factor:
            change_type = ChangeType.PRICE_SPIKE
            should_alert = False
            spike = (new_price - record.current_avg_price) / record.current_avg_price * 100
            reason = (
                f"Price spike {spike:.1f}% above average "
                f"{format_money(currency, record.current_avg_price)}"
            )
        else:
            change_type = ChangeType.NORMAL_FLUCTUATION
            should_alert = False
            reason = f"Normal fluctuation ({absolute_change:+.2f}, {percent_change:+.2f}%)"

        return ChangeResult(
            change_type=change_type,
            should_alert=should_alert,
            reason=reason,
            absolute_change=round(absolute_change, 2),
            percent_change=round(percent_change, 2),
            reference_price=reference,
        )

    def evaluate(
        self,
        record: Optional[RouteAnalyticsRecord],
        new_price: float,
        now: Optional[datetime] = None,
    ) -> ChangeResult:
        """Classify a new price and append the outcome to the change-event audit trail."""
        result = self.classify(record, new_price)

        old_price = (
            record.current_avg_price
            if result.change_type == ChangeType.PRICE_SPIKE
            else record.all_time_min_price
        )
        event = PriceChangeEvent(
            route_key=record.route_key,
            old_price=old_price,
            new_price=new_price,
            price_change=result.absolute_change,
            change_percentage=result.percent_change,
            change_type=result.change_type,
            samples_analyzed=record.total_samples,
            previous_min=record.all_time_min_price,
            previous_avg=record.current_avg_price,
            alert_sent=result.should_alert,
            alert_reason=result.reason if result.should_alert else None,
            currency=record.currency,
            created_at=now or utcnow(),
        )
        if self.db is not None:
            self.db.add_price_change_event(event)

        logger.info(
            f"[{record.route_key.label}] {result.change_type.value}: "
            f"{result.absolute_change:+.2f} ({result.percent_change:+.2f}%) vs all-time min "
            f"{record.all_time_min_price:.2f}"
        )
        if result.should_alert:
            logger.info(f"[{record.route_key.label}] Alert required: {result.reason}")

        return result
