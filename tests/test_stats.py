"""Unit tests for price statistics and trend detection."""

import pytest

from fare_tracker.errors import NoDataError
from fare_tracker.models import Trend
from fare_tracker.stats import calculate_stats, calculate_trend


class TestCalculateStats:
    """Tests for descriptive statistics."""

    def test_basic_stats(self):
        """Should compute min, max, mean and sample count."""
        stats = calculate_stats([5000.0, 5400.0, 4500.0])
        assert stats.min == 4500.0
        assert stats.max == 5400.0
        assert stats.avg == 4966.67
        assert stats.samples == 3

    def test_median_odd_count(self):
        """Median of an odd-length set is the middle value."""
        stats = calculate_stats([300.0, 100.0, 200.0])
        assert stats.median == 200.0

    def test_median_even_count(self):
        """Median of an even-length set averages the two middle values."""
        stats = calculate_stats([400.0, 100.0, 300.0, 200.0])
        assert stats.median == 250.0

    def test_population_standard_deviation(self):
        """Volatility divides by count, not count - 1."""
        stats = calculate_stats([2, 4, 4, 4, 5, 5, 7, 9])
        assert stats.volatility == 2.0

    def test_constant_prices_have_zero_volatility(self):
        """A constant set has no volatility."""
        stats = calculate_stats([1234.5] * 6)
        assert stats.volatility == 0.0
        assert stats.min == stats.max == stats.median == stats.avg == 1234.5

    def test_single_price(self):
        """A single price is its own min, max, mean and median."""
        stats = calculate_stats([999.99])
        assert stats.min == stats.max == stats.avg == stats.median == 999.99
        assert stats.volatility == 0.0

    def test_ordering_invariants(self):
        """min <= median <= max and the mean lies within [min, max]."""
        for prices in ([1.0, 2.0, 10.0], [7.5, 7.5, 1.0, 30.0], [3100.0, 2800.0, 2950.0, 4000.0, 2500.0]):
            stats = calculate_stats(prices)
            assert stats.min <= stats.median <= stats.max
            assert stats.min <= stats.avg <= stats.max

    def test_rounded_to_cents(self):
        """Reported values are rounded to two decimals."""
        stats = calculate_stats([1.0, 2.0, 2.0])
        assert stats.avg == 1.67
        assert stats.volatility == 0.47

    def test_empty_input_raises(self):
        """Empty input is 'no data', not zeros."""
        with pytest.raises(NoDataError):
            calculate_stats([])


class TestCalculateTrend:
    """Tests for trend classification."""

    def test_trend_up(self):
        """More than 5% above the older mean is UP."""
        assert calculate_trend([1100.0], [1000.0]) == Trend.UP

    def test_trend_down(self):
        """More than 5% below the older mean is DOWN."""
        assert calculate_trend([900.0, 940.0], [1000.0]) == Trend.DOWN

    def test_trend_stable_within_band(self):
        """Changes within +/-5% are STABLE."""
        assert calculate_trend([1040.0], [1000.0]) == Trend.STABLE
        assert calculate_trend([960.0], [1000.0]) == Trend.STABLE

    def test_empty_windows_are_stable(self):
        """Missing evidence on either side yields STABLE."""
        assert calculate_trend([], [1000.0]) == Trend.STABLE
        assert calculate_trend([1000.0], []) == Trend.STABLE
        assert calculate_trend([], []) == Trend.STABLE
