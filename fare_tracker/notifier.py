"""Push notifications for fare drops, with a per-route cool-down."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import httpx

from .config import NOTIFICATION_COOLDOWN_HOURS, PUSHCUT_URL, REQUEST_TIMEOUT_SECONDS
from .database import FareDatabase
from .errors import DeliveryError
from .models import Currency, NotificationRecord, RouteKey, format_money, utcnow

logger = logging.getLogger(__name__)

THROTTLED = "throttled"


@dataclass(frozen=True)
class DeliveryResult:
    """What the push transport reported for one message."""
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class PushTransport(ABC):
    """A fire-and-forget push delivery channel."""

    @abstractmethod
    async def send(self, title: str, text: str) -> DeliveryResult:
        """
        Deliver one message.

        Raises:
            DeliveryError: if the message could not be delivered
        """


class PushcutTransport(PushTransport):
    """Delivers notifications through a Pushcut webhook."""

    def __init__(
        self,
        url: Optional[str] = PUSHCUT_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, title: str, text: str) -> DeliveryResult:
        if not self.url:
            logger.warning("Pushcut URL not configured. Skipping alert.")
            logger.info(f"[ALERT] {title}: {text}")
            raise DeliveryError("Pushcut URL not configured")

        payload = {"title": title, "text": text}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
                logger.info(f"Pushcut alert sent: {title}")
                return DeliveryResult(success=True, status_code=response.status_code)
        except httpx.HTTPStatusError as e:
            logger.error(f"Pushcut webhook error: {e.response.status_code} - {e.response.text}")
            raise DeliveryError(
                f"HTTP {e.response.status_code}: {e.response.reason_phrase}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Pushcut webhook request failed: {e!r}")
            raise DeliveryError(f"Request failed: {e!r}") from e
        except httpx.InvalidURL as e:
            logger.error(f"Pushcut URL is invalid: {e}")
            raise DeliveryError(f"Invalid Pushcut URL: {e}") from e


@dataclass(frozen=True)
class ThrottleDecision:
    """Whether a notification may go out, and why."""
    allowed: bool
    reason: str
    last_notification: Optional[NotificationRecord] = None


class NotificationThrottle:
    """
    Suppresses repeat notifications for an unchanged price.

    Based on the most recent notification for the route: none, or one at least
    ``cooldown_hours`` old, allows sending. Within the cool-down only a
    different price is allowed through.
    """

    def __init__(self, db: FareDatabase, cooldown_hours: float = NOTIFICATION_COOLDOWN_HOURS):
        self.db = db
        self.cooldown = timedelta(hours=cooldown_hours)

    def check(self, route_key: RouteKey, new_price: float, now: Optional[datetime] = None) -> ThrottleDecision:
        now = now or utcnow()
        last = self.db.get_last_notification(route_key)

        if last is None:
            logger.debug(f"[{route_key.label}] No previous notifications")
            return ThrottleDecision(True, "no previous notification")

        elapsed = now - last.sent_at
        hours = elapsed.total_seconds() / 3600
        if elapsed >= self.cooldown:
            return ThrottleDecision(True, f"last notification {hours:.1f}h ago", last)

        if round(last.new_price, 2) == round(new_price, 2):
            logger.info(
                f"[{route_key.label}] Notification blocked: same price ({new_price:.2f}) "
                f"within {hours:.1f}h"
            )
            return ThrottleDecision(False, THROTTLED, last)

        return ThrottleDecision(
            True, f"price changed {last.new_price:.2f} → {new_price:.2f}", last
        )


@dataclass(frozen=True)
class AlertContext:
    """Route details that accompany a notification."""
    currency: Currency
    old_price: Optional[float] = None
    price_drop: Optional[float] = None


@dataclass(frozen=True)
class NotifyOutcome:
    """Result of a notification attempt."""
    delivered: bool
    reason: str
    record: Optional[NotificationRecord] = None


def build_message(route_key: RouteKey, new_price: float, reason: str, currency: Currency) -> tuple[str, str]:
    """Build the (title, text) pair for a fare alert."""
    title = route_key.label
    text = f"{reason}: {format_money(currency, new_price)} for {route_key.flight_date.isoformat()}"
    return title, text


class NotificationDispatcher:
    """Gates alerts through the throttle, delivers them and records every attempt."""

    def __init__(
        self,
        db: FareDatabase,
        transport: Optional[PushTransport] = None,
        throttle: Optional[NotificationThrottle] = None,
        delivery_timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.db = db
        self.transport = transport or PushcutTransport()
        self.throttle = throttle or NotificationThrottle(db)
        self.delivery_timeout = delivery_timeout

    async def try_notify(
        self,
        route_key: RouteKey,
        new_price: float,
        reason: str,
        context: AlertContext,
        now: Optional[datetime] = None,
    ) -> NotifyOutcome:
        """
        Send a fare alert unless the throttle blocks it.

        Blocked alerts are neither sent nor recorded. Allowed alerts are always
        recorded, whether delivery succeeded or not; failures are not retried.
        """
        now = now or utcnow()
        decision = self.throttle.check(route_key, new_price, now)
        if not decision.allowed:
            logger.info(f"[{route_key.label}] Notification suppressed by frequency rules")
            return NotifyOutcome(delivered=False, reason=THROTTLED)

        title, text = build_message(route_key, new_price, reason, context.currency)

        try:
            result = await asyncio.wait_for(
                self.transport.send(title, text), timeout=self.delivery_timeout
            )
        except asyncio.TimeoutError:
            result = DeliveryResult(
                success=False, error=f"Delivery timed out after {self.delivery_timeout}s"
            )
        except DeliveryError as e:
            result = DeliveryResult(success=False, status_code=e.status_code, error=e.detail)

        drop_percentage = 0.0
        if context.old_price and context.price_drop is not None:
            drop_percentage = round(context.price_drop / context.old_price * 100, 2)

        record = NotificationRecord(
            route_key=route_key,
            old_price=context.old_price,
            new_price=new_price,
            price_drop=context.price_drop,
            drop_percentage=drop_percentage,
            currency=context.currency,
            alert_reason=reason,
            success=result.success,
            status_code=result.status_code,
            error=result.error,
            sent_at=now,
        )
        record_id = self.db.add_notification(record)

        if result.success:
            self.db.record_alert_sent(route_key, now)
            logger.info(f"[{route_key.label}] Price alert delivered (notification #{record_id})")
            return NotifyOutcome(delivered=True, reason="delivered", record=record)

        logger.error(f"[{route_key.label}] Price alert failed: {result.error}")
        return NotifyOutcome(delivered=False, reason=result.error or "delivery failed", record=record)


async def send_test_alert(transport: Optional[PushTransport] = None) -> bool:
    """Send a test alert to verify webhook connectivity."""
    transport = transport or PushcutTransport()
    title, text = build_message(
        RouteKey("MEX", "CUN", utcnow().date()),
        4500,
        "🧪 Test alert from fare tracker",
        Currency.MXN,
    )
    try:
        result = await transport.send(title, text)
    except DeliveryError as e:
        logger.error(f"Test alert failed: {e.detail}")
        return False
    return result.success
