"""Fare tracker package: flight price analytics and drop alerts."""

from .database import FareDatabase
from .analytics import RouteAnalyticsService, refresh_analytics
from .detector import ChangeDetector, ChangeResult
from .evaluator import PriceEvaluator, EvaluationSummary
from .models import ChangeType, Currency, PriceObservation, RouteKey, Trend
from .notifier import NotificationDispatcher, NotificationThrottle, PushcutTransport

__all__ = [
    "FareDatabase",
    "RouteAnalyticsService",
    "refresh_analytics",
    "ChangeDetector",
    "ChangeResult",
    "PriceEvaluator",
    "EvaluationSummary",
    "ChangeType",
    "Currency",
    "PriceObservation",
    "RouteKey",
    "Trend",
    "NotificationDispatcher",
    "NotificationThrottle",
    "PushcutTransport",
]
