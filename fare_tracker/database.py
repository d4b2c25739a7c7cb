"""SQLite price store for fare samples, route analytics and alert audit trails."""

import sqlite3
import logging
from pathlib import Path
from datetime import date, datetime, timezone
from typing import Callable, Optional
from contextlib import contextmanager

from .config import DB_PATH
from .errors import StoreError
from .models import (
    ChangeType,
    Currency,
    NotificationRecord,
    PriceChangeEvent,
    PriceObservation,
    PriceSample,
    RouteAnalyticsRecord,
    RouteKey,
    Trend,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

ANALYTICS_COLUMNS = (
    "route_id", "from_city", "to_city", "flight_date",
    "current_min_price", "current_max_price", "current_avg_price", "current_median_price",
    "price_volatility", "total_samples", "all_time_min_price", "all_time_max_price",
    "samples_last_24h", "samples_last_7d", "trend_24h", "trend_7d", "currency",
    "alert_threshold", "total_alerts_sent", "last_alert_sent_at", "created_at", "last_updated",
)

AnalyticsUpdater = Callable[[list[PriceSample], Optional[RouteAnalyticsRecord]], RouteAnalyticsRecord]


def _ts(value: datetime) -> str:
    """Normalize a datetime to a sortable UTC ISO string."""
    return parse_timestamp(value).astimezone(timezone.utc).isoformat(timespec="microseconds")


def _opt_ts(value: Optional[str]) -> Optional[datetime]:
    return parse_timestamp(value) if value else None


class FareDatabase:
    """SQLite database for tracking flight prices and alerts over time."""

    def __init__(self, db_path: Path | str = DB_PATH, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._init_db()

    @contextmanager
    def _get_connection(self, immediate: bool = False):
        """
        Context manager for database connections.

        With ``immediate=True`` the write lock is taken up front (BEGIN
        IMMEDIATE), so read-modify-write sequences are serialized against
        other connections and processes.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database at {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema if not exists."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            # Append-only ledger of observed prices
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS price_samples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    route_id TEXT NOT NULL,
                    from_city TEXT NOT NULL,
                    to_city TEXT NOT NULL,
                    flight_date TEXT NOT NULL,
                    price REAL NOT NULL,
                    currency TEXT NOT NULL,
                    link TEXT,
                    observed_at TEXT NOT NULL
                )
            """)

            # One row per route, upserted on every refresh
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS route_analytics (
                    route_id TEXT PRIMARY KEY,
                    from_city TEXT NOT NULL,
                    to_city TEXT NOT NULL,
                    flight_date TEXT NOT NULL,
                    current_min_price REAL NOT NULL,
                    current_max_price REAL NOT NULL,
                    current_avg_price REAL NOT NULL,
                    current_median_price REAL NOT NULL,
                    price_volatility REAL NOT NULL,
                    total_samples INTEGER NOT NULL,
                    all_time_min_price REAL NOT NULL,
                    all_time_max_price REAL NOT NULL,
                    samples_last_24h INTEGER NOT NULL DEFAULT 0,
                    samples_last_7d INTEGER NOT NULL DEFAULT 0,
                    trend_24h TEXT NOT NULL DEFAULT 'stable',
                    trend_7d TEXT NOT NULL DEFAULT 'stable',
                    currency TEXT NOT NULL,
                    alert_threshold REAL NOT NULL,
                    total_alerts_sent INTEGER NOT NULL DEFAULT 0,
                    last_alert_sent_at TEXT,
                    created_at TEXT NOT NULL,
                    last_updated TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS price_change_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    route_id TEXT NOT NULL,
                    from_city TEXT NOT NULL,
                    to_city TEXT NOT NULL,
                    flight_date TEXT NOT NULL,
                    old_price REAL NOT NULL,
                    new_price REAL NOT NULL,
                    price_change REAL NOT NULL,
                    change_percentage REAL NOT NULL,
                    change_type TEXT NOT NULL,
                    samples_analyzed INTEGER NOT NULL,
                    previous_min REAL NOT NULL,
                    previous_avg REAL NOT NULL,
                    alert_sent INTEGER NOT NULL,
                    alert_reason TEXT,
                    currency TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    route_id TEXT NOT NULL,
                    from_city TEXT NOT NULL,
                    to_city TEXT NOT NULL,
                    flight_date TEXT NOT NULL,
                    notification_type TEXT NOT NULL,
                    old_price REAL,
                    new_price REAL NOT NULL,
                    price_drop REAL,
                    drop_percentage REAL NOT NULL DEFAULT 0,
                    currency TEXT NOT NULL,
                    alert_reason TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    status_code INTEGER,
                    error TEXT,
                    sent_at TEXT NOT NULL
                )
            """)

            # Indices for route and time-range lookups
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_price_samples_route ON price_samples(route_id, observed_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_price_samples_date ON price_samples(flight_date)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_price_samples_observed_at ON price_samples(observed_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_change_events_route ON price_change_events(route_id, created_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_notifications_route ON notifications(route_id, sent_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_notifications_sent_at ON notifications(sent_at)")

            logger.debug(f"Database initialized at {self.db_path}")

    # Price samples

    def add_sample(self, observation: PriceObservation, observed_at: Optional[datetime] = None) -> PriceSample:
        """
        Append a validated price observation. Returns the stored sample.

        ``observed_at`` defaults to now; pass it explicitly to backfill.
        """
        observed_at = parse_timestamp(observed_at) if observed_at else utcnow()
        route_key = observation.route_key
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO price_samples
                    (route_id, from_city, to_city, flight_date, price, currency, link, observed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    route_key.route_id,
                    route_key.origin,
                    route_key.destination,
                    route_key.flight_date.isoformat(),
                    observation.price,
                    observation.currency.value,
                    observation.source_link,
                    _ts(observed_at),
                ),
            )
            sample_id = cursor.lastrowid

        logger.debug(f"[{route_key.label}] Stored {observation.currency.value} {observation.price:.2f}")
        return PriceSample(
            id=sample_id,
            route_key=route_key,
            price=observation.price,
            currency=observation.currency,
            observed_at=observed_at,
            source_link=observation.source_link,
        )

    @staticmethod
    def _row_to_sample(row: sqlite3.Row) -> PriceSample:
        return PriceSample(
            id=row["id"],
            route_key=RouteKey(row["from_city"], row["to_city"], date.fromisoformat(row["flight_date"])),
            price=row["price"],
            currency=Currency(row["currency"]),
            observed_at=parse_timestamp(row["observed_at"]),
            source_link=row["link"],
        )

    def _fetch_route_samples(self, conn: sqlite3.Connection, route_key: RouteKey) -> list[PriceSample]:
        rows = conn.execute(
            "SELECT * FROM price_samples WHERE route_id = ? ORDER BY observed_at DESC, id DESC",
            (route_key.route_id,),
        ).fetchall()
        return [self._row_to_sample(row) for row in rows]

    def get_samples_for_route(self, route_key: RouteKey) -> list[PriceSample]:
        """Get all samples for a route, most recent first."""
        with self._get_connection() as conn:
            return self._fetch_route_samples(conn, route_key)

    def get_samples_for_date(self, flight_date: date) -> list[PriceSample]:
        """Get all samples for every route flying on a date, most recent first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM price_samples WHERE flight_date = ? ORDER BY observed_at DESC, id DESC",
                (flight_date.isoformat(),),
            ).fetchall()
            return [self._row_to_sample(row) for row in rows]

    def get_most_common_flight_date(self, since: Optional[datetime] = None) -> Optional[date]:
        """Most frequently observed flight date (optionally only samples observed after ``since``)."""
        query = "SELECT flight_date, COUNT(*) AS n FROM price_samples"
        params: tuple = ()
        if since is not None:
            query += " WHERE observed_at > ?"
            params = (_ts(since),)
        query += " GROUP BY flight_date ORDER BY n DESC, flight_date ASC LIMIT 1"
        with self._get_connection() as conn:
            row = conn.execute(query, params).fetchone()
            return date.fromisoformat(row["flight_date"]) if row else None

    # Route analytics

    @staticmethod
    def _row_to_analytics(row: sqlite3.Row) -> RouteAnalyticsRecord:
        return RouteAnalyticsRecord(
            route_key=RouteKey(row["from_city"], row["to_city"], date.fromisoformat(row["flight_date"])),
            current_min_price=row["current_min_price"],
            current_max_price=row["current_max_price"],
            current_avg_price=row["current_avg_price"],
            current_median_price=row["current_median_price"],
            price_volatility=row["price_volatility"],
            total_samples=row["total_samples"],
            all_time_min_price=row["all_time_min_price"],
            all_time_max_price=row["all_time_max_price"],
            samples_last_24h=row["samples_last_24h"],
            samples_last_7d=row["samples_last_7d"],
            trend_24h=Trend(row["trend_24h"]),
            trend_7d=Trend(row["trend_7d"]),
            currency=Currency(row["currency"]),
            alert_threshold=row["alert_threshold"],
            total_alerts_sent=row["total_alerts_sent"],
            created_at=parse_timestamp(row["created_at"]),
            last_updated=parse_timestamp(row["last_updated"]),
            last_alert_sent_at=_opt_ts(row["last_alert_sent_at"]),
        )

    @staticmethod
    def _analytics_values(record: RouteAnalyticsRecord) -> tuple:
        key = record.route_key
        return (
            key.route_id, key.origin, key.destination, key.flight_date.isoformat(),
            record.current_min_price, record.current_max_price, record.current_avg_price,
            record.current_median_price, record.price_volatility, record.total_samples,
            record.all_time_min_price, record.all_time_max_price,
            record.samples_last_24h, record.samples_last_7d,
            record.trend_24h.value, record.trend_7d.value, record.currency.value,
            record.alert_threshold, record.total_alerts_sent,
            _ts(record.last_alert_sent_at) if record.last_alert_sent_at else None,
            _ts(record.created_at), _ts(record.last_updated),
        )

    def get_route_analytics(self, route_key: RouteKey) -> Optional[RouteAnalyticsRecord]:
        """Get the analytics record for a route, or None if never refreshed."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM route_analytics WHERE route_id = ?", (route_key.route_id,)
            ).fetchone()
            return self._row_to_analytics(row) if row else None

    def get_all_route_analytics(self) -> list[RouteAnalyticsRecord]:
        """Get all analytics records, most recently updated first."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM route_analytics ORDER BY last_updated DESC").fetchall()
            return [self._row_to_analytics(row) for row in rows]

    def update_route_analytics(self, route_key: RouteKey, updater: AnalyticsUpdater) -> RouteAnalyticsRecord:
        """
        Read-modify-write the analytics record for a route in one write transaction.

        ``updater`` receives the route's samples (most recent first) and the
        current record (or None) and returns the record to store. The write
        lock is held throughout, so concurrent refreshes of the same route
        cannot lose an all-time min/max update.
        """
        with self._get_connection(immediate=True) as conn:
            samples = self._fetch_route_samples(conn, route_key)
            row = conn.execute(
                "SELECT * FROM route_analytics WHERE route_id = ?", (route_key.route_id,)
            ).fetchone()
            existing = self._row_to_analytics(row) if row else None

            record = updater(samples, existing)

            placeholders = ", ".join("?" for _ in ANALYTICS_COLUMNS)
            conn.execute(
                f"INSERT OR REPLACE INTO route_analytics ({', '.join(ANALYTICS_COLUMNS)}) VALUES ({placeholders})",
                self._analytics_values(record),
            )
            return record

    def set_alert_threshold(self, route_key: RouteKey, threshold: float) -> bool:
        """Override the alert threshold for a route. Returns False if the route has no analytics."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE route_analytics SET alert_threshold = ? WHERE route_id = ?",
                (threshold, route_key.route_id),
            )
            return cursor.rowcount > 0

    def record_alert_sent(self, route_key: RouteKey, sent_at: datetime) -> None:
        """Atomically increment the alert counter for a route."""
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE route_analytics
                SET total_alerts_sent = total_alerts_sent + 1, last_alert_sent_at = ?
                WHERE route_id = ?
                """,
                (_ts(sent_at), route_key.route_id),
            )

    # Price change events

    def add_price_change_event(self, event: PriceChangeEvent) -> int:
        """Append a classification audit record. Returns its ID."""
        key = event.route_key
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO price_change_events
                    (route_id, from_city, to_city, flight_date, old_price, new_price, price_change,
                     change_percentage, change_type, samples_analyzed, previous_min, previous_avg,
                     alert_sent, alert_reason, currency, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    key.route_id, key.origin, key.destination, key.flight_date.isoformat(),
                    event.old_price, event.new_price, event.price_change, event.change_percentage,
                    event.change_type.value, event.samples_analyzed, event.previous_min,
                    event.previous_avg, int(event.alert_sent), event.alert_reason,
                    event.currency.value, _ts(event.created_at),
                ),
            )
            return cursor.lastrowid

    def get_price_change_events(
        self,
        route_key: Optional[RouteKey] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[PriceChangeEvent]:
        """Get classification audit records, most recent first."""
        query = "SELECT * FROM price_change_events WHERE 1 = 1"
        params: list = []
        if route_key is not None:
            query += " AND route_id = ?"
            params.append(route_key.route_id)
        if since is not None:
            query += " AND created_at >= ?"
            params.append(_ts(since))
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [
                PriceChangeEvent(
                    id=row["id"],
                    route_key=RouteKey(row["from_city"], row["to_city"], date.fromisoformat(row["flight_date"])),
                    old_price=row["old_price"],
                    new_price=row["new_price"],
                    price_change=row["price_change"],
                    change_percentage=row["change_percentage"],
                    change_type=ChangeType(row["change_type"]),
                    samples_analyzed=row["samples_analyzed"],
                    previous_min=row["previous_min"],
                    previous_avg=row["previous_avg"],
                    alert_sent=bool(row["alert_sent"]),
                    alert_reason=row["alert_reason"],
                    currency=Currency(row["currency"]),
                    created_at=parse_timestamp(row["created_at"]),
                )
                for row in rows
            ]

    # Notifications

    def add_notification(self, record: NotificationRecord) -> int:
        """Append a notification audit record. Returns its ID."""
        key = record.route_key
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO notifications
                    (route_id, from_city, to_city, flight_date, notification_type, old_price,
                     new_price, price_drop, drop_percentage, currency, alert_reason, success,
                     status_code, error, sent_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    key.route_id, key.origin, key.destination, key.flight_date.isoformat(),
                    record.notification_type, record.old_price, record.new_price, record.price_drop,
                    record.drop_percentage, record.currency.value, record.alert_reason,
                    int(record.success), record.status_code, record.error, _ts(record.sent_at),
                ),
            )
            return cursor.lastrowid

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> NotificationRecord:
        return NotificationRecord(
            id=row["id"],
            route_key=RouteKey(row["from_city"], row["to_city"], date.fromisoformat(row["flight_date"])),
            notification_type=row["notification_type"],
            old_price=row["old_price"],
            new_price=row["new_price"],
            price_drop=row["price_drop"],
            drop_percentage=row["drop_percentage"],
            currency=Currency(row["currency"]),
            alert_reason=row["alert_reason"],
            success=bool(row["success"]),
            status_code=row["status_code"],
            error=row["error"],
            sent_at=parse_timestamp(row["sent_at"]),
        )

    def get_last_notification(self, route_key: RouteKey) -> Optional[NotificationRecord]:
        """Get the most recent notification attempt for a route."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM notifications WHERE route_id = ? ORDER BY sent_at DESC, id DESC LIMIT 1",
                (route_key.route_id,),
            ).fetchone()
            return self._row_to_notification(row) if row else None

    def get_notifications(
        self,
        limit: int = 10,
        route_key: Optional[RouteKey] = None,
        since: Optional[datetime] = None,
    ) -> list[NotificationRecord]:
        """Get notification attempts, most recent first."""
        query = "SELECT * FROM notifications WHERE 1 = 1"
        params: list = []
        if route_key is not None:
            query += " AND route_id = ?"
            params.append(route_key.route_id)
        if since is not None:
            query += " AND sent_at >= ?"
            params.append(_ts(since))
        query += " ORDER BY sent_at DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_notification(row) for row in rows]

    def count_notifications(self, since: Optional[datetime] = None, success: Optional[bool] = None) -> int:
        """Count notification attempts, optionally filtered by time and outcome."""
        query = "SELECT COUNT(*) AS count FROM notifications WHERE 1 = 1"
        params: list = []
        if since is not None:
            query += " AND sent_at >= ?"
            params.append(_ts(since))
        if success is not None:
            query += " AND success = ?"
            params.append(int(success))
        with self._get_connection() as conn:
            return conn.execute(query, params).fetchone()["count"]

    # Housekeeping

    def get_sample_count(self) -> int:
        """Get total number of price observations."""
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) AS count FROM price_samples").fetchone()["count"]

    def get_route_count(self) -> int:
        """Get total number of routes with analytics."""
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) AS count FROM route_analytics").fetchone()["count"]

    def verify_schema(self) -> bool:
        """Verify database schema is correct. Returns True if valid."""
        try:
            with self._get_connection() as conn:
                for table in ("price_samples", "route_analytics", "price_change_events", "notifications"):
                    row = conn.execute(
                        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
                    ).fetchone()
                    if not row:
                        logger.error(f"Missing '{table}' table")
                        return False

                logger.info("Database schema verified ✓")
                return True

        except StoreError as e:
            logger.error(f"Schema verification failed: {e}")
            return False
