"""Configuration settings for the fare tracker."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database
DB_PATH: Path = Path(os.getenv("FARE_TRACKER_DB", Path(__file__).parent.parent / "fares.db"))

# Alert thresholds
PRICE_DROP_THRESHOLD: float = float(os.getenv("PRICE_DROP_THRESHOLD", "400"))  # Minimum drop to alert
SPIKE_FACTOR: float = 1.5  # Price above avg * factor is a spike
TREND_CHANGE_PERCENT: float = 5.0

# Notification throttling
NOTIFICATION_COOLDOWN_HOURS: float = float(os.getenv("NOTIFICATION_COOLDOWN_HOURS", "12"))

# Currency
DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "MXN")
MAX_REASONABLE_PRICE: float = 999_999

# Pushcut webhook
PUSHCUT_URL: str | None = os.getenv("PUSHCUT_URL")

# HTTP settings
REQUEST_TIMEOUT_SECONDS: int = int(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

# Scheduling
EVALUATION_INTERVAL_HOURS: float = float(os.getenv("EVALUATION_INTERVAL_HOURS", "4"))
