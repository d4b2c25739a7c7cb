"""Exceptions raised by the fare tracker."""


class FareTrackerError(Exception):
    """Base class for all fare tracker errors."""

    detail = "Fare tracker error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.detail
        super().__init__(self.detail)


class ValidationError(FareTrackerError):
    """Malformed price observation, rejected before storage."""

    detail = "Invalid price observation"

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(f"Price observation validation failed: {', '.join(self.errors)}")


class NoDataError(FareTrackerError):
    """The operation needs price history that does not exist."""

    detail = "No price data available"


class NoPriorAnalyticsError(FareTrackerError):
    """Classification attempted before any analytics exist for the route."""

    detail = "No prior analytics to compare against"


class DeliveryError(FareTrackerError):
    """Push transport failed or timed out."""

    detail = "Notification delivery failed"

    def __init__(self, detail: str | None = None, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(detail)


class StoreError(FareTrackerError):
    """Underlying persistence is unavailable."""

    detail = "Price store unavailable"
