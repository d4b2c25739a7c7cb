"""Descriptive statistics and trend detection for route prices."""

import statistics
from dataclasses import dataclass
from typing import Sequence

from .config import TREND_CHANGE_PERCENT
from .errors import NoDataError
from .models import Trend


@dataclass(frozen=True)
class PriceStats:
    """Summary statistics over a set of prices (rounded to cents)."""
    min: float
    max: float
    avg: float
    median: float
    volatility: float
    samples: int


def calculate_stats(prices: Sequence[float]) -> PriceStats:
    """
    Calculate min, max, mean, median and volatility for a set of prices.

    Volatility is the population standard deviation: the full route history
    is the population, not a sample of it. All prices must share a currency.

    Raises:
        NoDataError: if prices is empty
    """
    if not prices:
        raise NoDataError("Cannot calculate statistics without prices")

    values = [float(p) for p in prices]

    return PriceStats(
        min=round(min(values), 2),
        max=round(max(values), 2),
        avg=round(statistics.fmean(values), 2),
        median=round(statistics.median(values), 2),
        volatility=round(statistics.pstdev(values), 2),
        samples=len(values),
    )


def calculate_trend(recent: Sequence[float], older: Sequence[float]) -> Trend:
    """
    Compare the mean of recent prices against older ones.

    More than 5% higher is UP, more than 5% lower is DOWN. An empty window on
    either side is not enough evidence and yields STABLE.
    """
    if not recent or not older:
        return Trend.STABLE

    recent_avg = statistics.fmean(recent)
    older_avg = statistics.fmean(older)
    if older_avg == 0:
        return Trend.STABLE

    change_percent = (recent_avg - older_avg) / older_avg * 100

    if change_percent > TREND_CHANGE_PERCENT:
        return Trend.UP
    if change_percent < -TREND_CHANGE_PERCENT:
        return Trend.DOWN
    return Trend.STABLE
