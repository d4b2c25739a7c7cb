"""Per-route price analytics: windowed trends, statistics and all-time extremes."""

import logging
import math
from datetime import datetime, timedelta
from typing import Collection, Optional, Sequence

from .config import PRICE_DROP_THRESHOLD
from .database import FareDatabase
from .errors import NoDataError
from .models import PriceSample, RouteAnalyticsRecord, RouteKey, Trend, utcnow
from .stats import calculate_stats, calculate_trend

logger = logging.getLogger(__name__)

DAY = timedelta(hours=24)
WEEK = timedelta(days=7)


def split_windows(
    samples: Sequence[PriceSample], now: datetime
) -> tuple[list[float], list[float], list[float]]:
    """
    Partition prices into the last 24h, last 7d and the 7d-14d-ago windows.

    Order of the input is preserved in each window.
    """
    last_24h = [s.price for s in samples if s.observed_at > now - DAY]
    last_7d = [s.price for s in samples if s.observed_at > now - WEEK]
    older_7d = [
        s.price for s in samples
        if now - 2 * WEEK < s.observed_at <= now - WEEK
    ]
    return last_24h, last_7d, older_7d


def refresh_analytics(
    route_key: RouteKey,
    samples: Sequence[PriceSample],
    now: datetime,
    existing: Optional[RouteAnalyticsRecord] = None,
    default_threshold: float = PRICE_DROP_THRESHOLD,
) -> RouteAnalyticsRecord:
    """
    Recompute a route's analytics record from its full sample history.

    Windows and statistics are rebuilt from scratch on every call so late or
    backfilled samples are picked up. Only the all-time extremes and the alert
    state are carried over from ``existing``: all-time min can only go down,
    all-time max can only go up, and threshold and alert counters are never
    touched here.

    A route is tracked in one currency: the existing record's, or that of the
    oldest sample for a new record. Samples in any other currency are left
    out of every statistic.

    Args:
        route_key: Route being refreshed
        samples: Every sample for the route
        now: Reference instant for the time windows
        existing: Current record for the route, if any
        default_threshold: Alert threshold for a brand-new record

    Raises:
        NoDataError: if there are no samples in the route's currency
    """
    if not samples:
        raise NoDataError(f"No price samples for route {route_key}")

    ordered = sorted(samples, key=lambda s: s.observed_at, reverse=True)
    currency = existing.currency if existing is not None else ordered[-1].currency
    foreign = [s for s in ordered if s.currency != currency]
    if foreign:
        logger.warning(
            f"[{route_key.label}] Ignoring {len(foreign)} sample(s) not in {currency.value}"
        )
        ordered = [s for s in ordered if s.currency == currency]
    if not ordered:
        raise NoDataError(f"No {currency.value} price samples for route {route_key}")

    stats = calculate_stats([s.price for s in ordered])
    last_24h, last_7d, older_7d = split_windows(ordered, now)

    # Newest first, so the first half is the more recent one
    if len(last_24h) >= 2:
        half = math.ceil(len(last_24h) / 2)
        trend_24h = calculate_trend(last_24h[:half], last_24h[half:])
    else:
        trend_24h = Trend.STABLE
    trend_7d = calculate_trend(last_7d, older_7d)

    if existing is None:
        all_time_min = stats.min
        all_time_max = stats.max
        alert_threshold = default_threshold
        total_alerts_sent = 0
        last_alert_sent_at = None
        created_at = now
    else:
        all_time_min = min(existing.all_time_min_price, stats.min)
        all_time_max = max(existing.all_time_max_price, stats.max)
        alert_threshold = existing.alert_threshold
        total_alerts_sent = existing.total_alerts_sent
        last_alert_sent_at = existing.last_alert_sent_at
        created_at = existing.created_at

    return RouteAnalyticsRecord(
        route_key=route_key,
        current_min_price=stats.min,
        current_max_price=stats.max,
        current_avg_price=stats.avg,
        current_median_price=stats.median,
        price_volatility=stats.volatility,
        total_samples=stats.samples,
        all_time_min_price=all_time_min,
        all_time_max_price=all_time_max,
        samples_last_24h=len(last_24h),
        samples_last_7d=len(last_7d),
        trend_24h=trend_24h,
        trend_7d=trend_7d,
        currency=currency,
        alert_threshold=alert_threshold,
        total_alerts_sent=total_alerts_sent,
        created_at=created_at,
        last_updated=now,
        last_alert_sent_at=last_alert_sent_at,
    )


class RouteAnalyticsService:
    """Loads route history from the store and keeps analytics records current."""

    def __init__(self, db: FareDatabase, default_threshold: float = PRICE_DROP_THRESHOLD):
        self.db = db
        self.default_threshold = default_threshold

    def refresh(
        self,
        route_key: RouteKey,
        now: Optional[datetime] = None,
        exclude_sample_ids: Collection[int] = (),
    ) -> RouteAnalyticsRecord:
        """
        Refresh and persist the analytics record for a route.

        ``exclude_sample_ids`` leaves samples out, so new observations can be
        judged against the history that preceded them.

        Raises:
            NoDataError: if the route has no (remaining) samples
        """
        now = now or utcnow()

        def _update(samples: list[PriceSample], existing: Optional[RouteAnalyticsRecord]) -> RouteAnalyticsRecord:
            if exclude_sample_ids:
                samples = [s for s in samples if s.id not in exclude_sample_ids]
            return refresh_analytics(
                route_key, samples, now,
                existing=existing,
                default_threshold=self.default_threshold,
            )

        record = self.db.update_route_analytics(route_key, _update)

        logger.info(
            f"[{route_key.label}] Analytics: min {record.current_min_price:.2f} | "
            f"avg {record.current_avg_price:.2f} | median {record.current_median_price:.2f} | "
            f"max {record.current_max_price:.2f} | volatility {record.price_volatility:.2f}"
        )
        logger.debug(
            f"[{route_key.label}] Samples: {record.total_samples} total | "
            f"{record.samples_last_24h} (24h) | {record.samples_last_7d} (7d) | "
            f"trends 24h={record.trend_24h.value} 7d={record.trend_7d.value}"
        )
        return record

    def set_threshold(self, route_key: RouteKey, threshold: float) -> bool:
        """Override the alert threshold for one route."""
        if not math.isfinite(threshold) or threshold < 0:
            raise ValueError("Alert threshold must be a non-negative number")
        updated = self.db.set_alert_threshold(route_key, threshold)
        if updated:
            logger.info(f"[{route_key.label}] Alert threshold set to {threshold:.2f}")
        else:
            logger.warning(f"[{route_key.label}] No analytics yet, threshold not set")
        return updated
