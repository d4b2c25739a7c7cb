"""Read-only summaries of route analytics and notification history."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .database import FareDatabase
from .models import NotificationRecord, RouteAnalyticsRecord, Trend, format_money, utcnow

TREND_ICONS = {
    Trend.UP: "📈",
    Trend.DOWN: "📉",
    Trend.STABLE: "➡️",
}


@dataclass(frozen=True)
class NotificationStats:
    """Delivery counts across all notification attempts."""
    total: int
    successful: int
    failed: int
    last_24_hours: int

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.successful / self.total * 100, 1)


def notification_stats(db: FareDatabase, now: Optional[datetime] = None) -> NotificationStats:
    """Count total, successful, failed and last-24h notification attempts."""
    now = now or utcnow()
    total = db.count_notifications()
    successful = db.count_notifications(success=True)
    return NotificationStats(
        total=total,
        successful=successful,
        failed=total - successful,
        last_24_hours=db.count_notifications(since=now - timedelta(hours=24)),
    )


def format_analytics_summary(records: list[RouteAnalyticsRecord]) -> list[str]:
    """Render analytics records as report lines."""
    if not records:
        return ["No analytics data available"]

    lines = []
    for r in records:
        cur = r.currency
        lines.extend([
            f"✈️  {r.route_key.label} ({r.route_key.flight_date.isoformat()})",
            f"   Range: {format_money(cur, r.all_time_min_price)} - {format_money(cur, r.all_time_max_price)}",
            f"   Current: min {r.current_min_price:.2f} | avg {r.current_avg_price:.2f} | "
            f"median {r.current_median_price:.2f}",
            f"   Volatility: {r.price_volatility:.2f} ({r.volatility_level})",
            f"   Samples: {r.total_samples} total | {r.samples_last_24h} (24h) | {r.samples_last_7d} (7d)",
            f"   Trends: 24h {TREND_ICONS[r.trend_24h]} | 7d {TREND_ICONS[r.trend_7d]}",
            f"   Alerts sent: {r.total_alerts_sent} (threshold {format_money(cur, r.alert_threshold)})",
        ])
    return lines


def format_notification_history(records: list[NotificationRecord]) -> list[str]:
    """Render notification attempts as report lines."""
    if not records:
        return ["No notifications recorded"]

    lines = []
    for i, n in enumerate(records, 1):
        status = "✓" if n.success else "✗"
        lines.append(f"{i}. {status} {n.route_key.label} ({n.route_key.flight_date.isoformat()})")
        drop = f" (down {format_money(n.currency, n.price_drop)})" if n.price_drop else ""
        lines.append(f"   Price: {format_money(n.currency, n.new_price)}{drop} | {n.drop_percentage}%")
        lines.append(f"   Reason: {n.alert_reason}")
        lines.append(f"   Sent: {n.sent_at.strftime('%Y-%m-%d %H:%M:%S %Z')}")
        if not n.success:
            lines.append(f"   Error: {n.error or 'unknown error'}")
    return lines


def format_notification_stats(stats: NotificationStats) -> list[str]:
    """Render notification statistics as report lines."""
    return [
        f"   Total:        {stats.total}",
        f"   Successful:   {stats.successful}",
        f"   Failed:       {stats.failed}",
        f"   Last 24h:     {stats.last_24_hours}",
        f"   Success rate: {stats.success_rate}%",
    ]
