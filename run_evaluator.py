#!/usr/bin/env python3
"""
Flight Fare Evaluator

Reads fares stored by the scraper, refreshes per-route analytics in SQLite,
and sends Pushcut alerts on significant price drops.

Usage:
    python run_evaluator.py                         # Evaluate the most common flight date
    python run_evaluator.py --date 2024-12-01       # Evaluate a specific date
    python run_evaluator.py --schedule              # Evaluate every 4 hours
    python run_evaluator.py --first-run             # Build analytics (no alerts)
    python run_evaluator.py --record MEX CUN 2024-12-01 4500
    python run_evaluator.py --threshold MEX CUN 2024-12-01 250
    python run_evaluator.py --summary               # Analytics and notification reports
    python run_evaluator.py --test-db               # Verify database
    python run_evaluator.py --test-alert            # Test Pushcut webhook
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from fare_tracker.analytics import RouteAnalyticsService
from fare_tracker.config import DB_PATH, DEFAULT_CURRENCY, EVALUATION_INTERVAL_HOURS, PRICE_DROP_THRESHOLD
from fare_tracker.database import FareDatabase
from fare_tracker.errors import FareTrackerError, ValidationError
from fare_tracker.evaluator import EvaluationSummary, PriceEvaluator
from fare_tracker.models import PriceObservation, RouteKey, format_money, parse_flight_date
from fare_tracker.notifier import send_test_alert
from fare_tracker.reports import (
    format_analytics_summary,
    format_notification_history,
    format_notification_stats,
    notification_stats,
)

logger = logging.getLogger(__name__)


def print_summary(summary: EvaluationSummary) -> None:
    print(f"\n{'='*60}")
    print(f"Results for {summary.flight_date.isoformat()}:")
    print(f"{'='*60}")
    print(f"  Routes analyzed: {summary.routes_analyzed}")
    print(f"  Alerts sent:     {summary.alerts_sent}")
    print(f"  Threshold:       >= {PRICE_DROP_THRESHOLD:.0f} (default)")
    if summary.errors:
        print(f"  Errors:          {summary.errors}")

    if summary.alerts:
        print("\nAlerts sent:")
        for alert in summary.alerts:
            print(f"  • {alert.route}: {format_money(alert.currency, alert.price)}")
            print(f"    {alert.reason} ({alert.change_type.value})")
    else:
        print("\nNo significant price drops detected")


async def run_once(db: FareDatabase, flight_date: date | None = None, first_run: bool = False) -> bool:
    """Run a single evaluation."""
    evaluator = PriceEvaluator(db)

    mode = "FIRST RUN (no alerts)" if first_run else "SINGLE RUN"
    logger.info(f"Fare Evaluator - {mode}")
    logger.info(f"Database: {db.db_path}")
    logger.info(f"Routes in DB: {db.get_route_count()}, Price points: {db.get_sample_count()}")

    try:
        summary = await evaluator.evaluate(flight_date, skip_alerts=first_run)
    except FareTrackerError as e:
        print(f"✗ Evaluation failed: {e}")
        return False

    print_summary(summary)
    return True


async def run_with_schedule(
    db: FareDatabase,
    flight_date: date | None = None,
    interval_hours: float = EVALUATION_INTERVAL_HOURS,
):
    """Run evaluations in a loop with the specified interval."""
    evaluator = PriceEvaluator(db)
    interval_seconds = interval_hours * 3600

    logger.info(f"Starting scheduled evaluator (interval: {interval_hours}h)")

    cycle = 0
    while True:
        cycle += 1
        logger.info(f"Cycle {cycle} starting at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

        try:
            summary = await evaluator.evaluate(flight_date)
            logger.info(
                f"Cycle {cycle} complete: {summary.routes_analyzed} routes, "
                f"{summary.alerts_sent} alerts, {summary.errors} errors"
            )
        except FareTrackerError as e:
            logger.error(f"Cycle {cycle} failed: {e}")

        logger.info(f"Next cycle in {interval_hours} hours...")
        await asyncio.sleep(interval_seconds)


def record_price(db: FareDatabase, origin: str, destination: str, flight_date: str, price: str,
                 currency: str, link: str | None) -> bool:
    """Validate and store one observed fare."""
    try:
        observation = PriceObservation.from_dict({
            "origin": origin,
            "destination": destination,
            "flight_date": flight_date,
            "price": float(price),
            "currency": currency,
            "link": link,
        })
    except (ValueError, ValidationError) as e:
        print(f"✗ {e}")
        return False

    sample = db.add_sample(observation)
    print(f"✓ Stored {sample.route_key.label} {format_money(sample.currency, sample.price)} "
          f"for {flight_date} (#{sample.id})")
    return True


def set_threshold(db: FareDatabase, origin: str, destination: str, flight_date: str, threshold: str) -> bool:
    """Override the alert threshold for one route."""
    try:
        route_key = RouteKey(origin, destination, parse_flight_date(flight_date))
        updated = RouteAnalyticsService(db).set_threshold(route_key, float(threshold))
    except (ValueError, ValidationError) as e:
        print(f"✗ {e}")
        return False

    if not updated:
        print(f"✗ No analytics for {route_key.label} on {flight_date} yet. Run an evaluation first.")
        return False
    print(f"✓ Threshold for {route_key.label} on {flight_date} set to {float(threshold):.2f}")
    return True


def show_reports(db: FareDatabase, history_limit: int = 5) -> None:
    """Print analytics and notification reports."""
    print(f"\n{'='*60}")
    print("Route Analytics")
    print(f"{'='*60}")
    for line in format_analytics_summary(db.get_all_route_analytics()):
        print(line)

    print(f"\n{'='*60}")
    print(f"Last {history_limit} Notifications")
    print(f"{'='*60}")
    for line in format_notification_history(db.get_notifications(limit=history_limit)):
        print(line)

    print(f"\n{'='*60}")
    print("Notification Stats")
    print(f"{'='*60}")
    for line in format_notification_stats(notification_stats(db)):
        print(line)


def test_database(db_path: Path) -> bool:
    """Test database connection and schema."""
    print(f"\n{'='*60}")
    print("Database Test")
    print(f"{'='*60}")

    db = FareDatabase(db_path)

    if db.verify_schema():
        print(f"✓ Database schema verified at {db_path}")
        print(f"  Routes: {db.get_route_count()}")
        print(f"  Prices: {db.get_sample_count()}")
        return True
    else:
        print("✗ Database schema verification failed")
        return False


async def test_alert() -> bool:
    """Test the Pushcut webhook with a sample alert."""
    print(f"\n{'='*60}")
    print("Pushcut Webhook Test")
    print(f"{'='*60}")

    success = await send_test_alert()

    if success:
        print("✓ Test alert sent successfully!")
    else:
        print("✗ Failed to send test alert. Check PUSHCUT_URL in .env")

    return success


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Flight Fare Evaluator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--date",
        type=str,
        metavar="YYYY-MM-DD",
        help="Flight date to evaluate (default: most common recent date)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=DB_PATH,
        help=f"Database path (default: {DB_PATH})",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help=f"Run continuously every {EVALUATION_INTERVAL_HOURS} hours",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=EVALUATION_INTERVAL_HOURS,
        metavar="HOURS",
        help=f"Interval between cycles (default: {EVALUATION_INTERVAL_HOURS}h)",
    )
    parser.add_argument(
        "--first-run",
        action="store_true",
        help="Build analytics from existing data (no alerts)",
    )
    parser.add_argument(
        "--record",
        nargs=4,
        metavar=("ORIGIN", "DESTINATION", "DATE", "PRICE"),
        help="Store an observed fare",
    )
    parser.add_argument(
        "--currency",
        type=str,
        default=DEFAULT_CURRENCY,
        help=f"Currency for --record (default: {DEFAULT_CURRENCY})",
    )
    parser.add_argument(
        "--link",
        type=str,
        help="Source link for --record (https only)",
    )
    parser.add_argument(
        "--threshold",
        nargs=4,
        metavar=("ORIGIN", "DESTINATION", "DATE", "AMOUNT"),
        help="Override the alert threshold for one route",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Show analytics and notification reports",
    )
    parser.add_argument(
        "--history",
        type=int,
        default=5,
        metavar="N",
        help="Notifications to show with --summary (default: 5)",
    )
    parser.add_argument(
        "--test-db",
        action="store_true",
        help="Test database connection and schema",
    )
    parser.add_argument(
        "--test-alert",
        action="store_true",
        help="Send a test alert to Pushcut",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if args.test_db:
        return 0 if test_database(args.db) else 1
    if args.test_alert:
        return 0 if asyncio.run(test_alert()) else 1

    flight_date = None
    if args.date:
        try:
            flight_date = parse_flight_date(args.date)
        except ValidationError as e:
            print(f"✗ {e}")
            return 1

    db = FareDatabase(args.db)

    if args.record:
        return 0 if record_price(db, *args.record, currency=args.currency, link=args.link) else 1
    if args.threshold:
        return 0 if set_threshold(db, *args.threshold) else 1
    if args.summary:
        show_reports(db, history_limit=args.history)
        return 0

    if args.schedule:
        try:
            asyncio.run(run_with_schedule(db, flight_date, interval_hours=args.interval))
        except KeyboardInterrupt:
            print("\n\nStopped by user.")
        return 0

    return 0 if asyncio.run(run_once(db, flight_date, first_run=args.first_run)) else 1


if __name__ == "__main__":
    sys.exit(main())
