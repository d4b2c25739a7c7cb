"""Batch evaluation of every route observed for a flight date."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from .analytics import RouteAnalyticsService
from .database import FareDatabase
from .detector import ChangeDetector
from .errors import NoDataError, NoPriorAnalyticsError
from .models import ChangeType, Currency, PriceSample, RouteAnalyticsRecord, utcnow
from .notifier import AlertContext, NotificationDispatcher

logger = logging.getLogger(__name__)

DEFAULT_DATE_LOOKBACK = timedelta(days=7)


@dataclass(frozen=True)
class AlertSummary:
    """A delivered alert, as listed in the run summary."""
    route: str
    price: float
    currency: Currency
    price_drop: float
    reason: str
    change_type: ChangeType


@dataclass
class EvaluationSummary:
    """Outcome of one evaluation run."""
    flight_date: date
    routes_analyzed: int = 0
    alerts_sent: int = 0
    alerts: list[AlertSummary] = field(default_factory=list)
    errors: int = 0


def latest_per_route(samples: list[PriceSample]) -> dict[tuple[str, str], PriceSample]:
    """
    Pick the most recent sample for each (origin, destination).

    Only a strictly later ``observed_at`` replaces a sample already picked, so
    ties keep the first one encountered.
    """
    latest: dict[tuple[str, str], PriceSample] = {}
    for sample in samples:
        key = (sample.route_key.origin, sample.route_key.destination)
        current = latest.get(key)
        if current is None or sample.observed_at > current.observed_at:
            latest[key] = sample
    return latest


class PriceEvaluator:
    """
    Runs every route for a flight date through analytics, classification and alerting.

    For each route the lowest new price is judged against the analytics built
    from the samples that came before it; afterwards the analytics are
    refreshed again to include every sample. Routes are independent: a
    failure on one is logged and the run moves on.
    """

    def __init__(
        self,
        db: FareDatabase,
        dispatcher: Optional[NotificationDispatcher] = None,
        analytics: Optional[RouteAnalyticsService] = None,
        detector: Optional[ChangeDetector] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher(db)
        self.analytics = analytics or RouteAnalyticsService(db)
        self.detector = detector or ChangeDetector(db)

    def resolve_flight_date(self, now: Optional[datetime] = None) -> date:
        """
        Pick the flight date to evaluate when none is given.

        Uses the most commonly observed flight date over the last week, falling
        back to all history.

        Raises:
            NoDataError: if no samples exist at all
        """
        now = now or utcnow()
        flight_date = self.db.get_most_common_flight_date(since=now - DEFAULT_DATE_LOOKBACK)
        if flight_date is None:
            flight_date = self.db.get_most_common_flight_date()
        if flight_date is None:
            raise NoDataError("No price samples to choose a flight date from")
        logger.info(f"Using most common flight date: {flight_date.isoformat()}")
        return flight_date

    def pending_samples(
        self,
        latest: PriceSample,
        existing: Optional[RouteAnalyticsRecord],
    ) -> list[PriceSample]:
        """
        Samples of the route that arrived since its analytics were last refreshed.

        Falls back to just the latest sample when the route has no analytics
        yet or nothing new arrived.
        """
        if existing is None:
            return [latest]
        pending = [
            s for s in self.db.get_samples_for_route(latest.route_key)
            if s.observed_at > existing.last_updated
        ]
        return pending or [latest]

    async def evaluate_route(
        self,
        sample: PriceSample,
        now: datetime,
        skip_alerts: bool = False,
    ) -> Optional[AlertSummary]:
        """
        Evaluate the new prices of one route.

        The lowest price among the samples that arrived since the last refresh
        is judged against the history before them, so a drop followed by a
        rebound within one interval is still caught. Samples in a currency
        other than the route's are not classified.

        Returns the alert summary if an alert was delivered, else None.
        """
        route_key = sample.route_key
        pending = self.pending_samples(sample, self.db.get_route_analytics(route_key))

        try:
            record = self.analytics.refresh(
                route_key, now, exclude_sample_ids={s.id for s in pending}
            )
        except NoDataError:
            record = None

        if record is not None:
            comparable = [s for s in pending if s.currency == record.currency]
            if not comparable:
                logger.warning(
                    f"[{route_key.label}] Skipping {sample.currency.value} price, "
                    f"route is tracked in {record.currency.value}"
                )
                self.analytics.refresh(route_key, now)
                return None
        else:
            comparable = pending

        # Newest first, so ties go to the most recent sample
        candidate = min(comparable, key=lambda s: s.price)

        try:
            result = self.detector.evaluate(record, candidate.price, now)
        except NoPriorAnalyticsError:
            logger.info(f"[{route_key.label}] First observation, nothing to compare against")
            self.analytics.refresh(route_key, now)
            return None

        alert = None
        if result.should_alert and not skip_alerts:
            outcome = await self.dispatcher.try_notify(
                route_key,
                candidate.price,
                result.reason,
                AlertContext(
                    currency=candidate.currency,
                    old_price=result.reference_price,
                    price_drop=result.price_drop,
                ),
                now=now,
            )
            if outcome.delivered:
                alert = AlertSummary(
                    route=route_key.label,
                    price=candidate.price,
                    currency=candidate.currency,
                    price_drop=result.price_drop,
                    reason=result.reason,
                    change_type=result.change_type,
                )
        elif result.should_alert:
            logger.info(f"[{route_key.label}] Alerts disabled, skipping notification")

        self.analytics.refresh(route_key, now)
        return alert

    async def evaluate(
        self,
        flight_date: Optional[date] = None,
        now: Optional[datetime] = None,
        skip_alerts: bool = False,
    ) -> EvaluationSummary:
        """
        Evaluate every route observed for a flight date.

        Args:
            flight_date: Date to evaluate (defaults to the most common one)
            now: Reference instant (defaults to the current time)
            skip_alerts: Refresh and classify without sending notifications

        Raises:
            NoDataError: if no samples exist for the date
        """
        now = now or utcnow()
        if flight_date is None:
            flight_date = self.resolve_flight_date(now)

        samples = self.db.get_samples_for_date(flight_date)
        if not samples:
            raise NoDataError(f"No flights to analyze for {flight_date.isoformat()}")

        routes = latest_per_route(samples)
        summary = EvaluationSummary(flight_date=flight_date)
        logger.info(f"Analyzing {len(routes)} unique routes for {flight_date.isoformat()}")

        for i, sample in enumerate(routes.values(), 1):
            logger.info(f"[{i}/{len(routes)}] Processing {sample.route_key.label}")
            summary.routes_analyzed += 1
            try:
                alert = await self.evaluate_route(sample, now, skip_alerts=skip_alerts)
            except Exception as e:
                logger.error(f"Error processing {sample.route_key}: {e}")
                summary.errors += 1
                continue

            if alert is not None:
                summary.alerts.append(alert)
                summary.alerts_sent += 1

        logger.info(
            f"Evaluation complete: {summary.routes_analyzed} routes, "
            f"{summary.alerts_sent} alerts, {summary.errors} errors"
        )
        return summary
