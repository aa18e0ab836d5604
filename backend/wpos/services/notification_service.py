# Overview: Fire-and-forget event emission for low-stock and sale-failure events.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flask import current_app

from ..time_utils import to_utc_z, utcnow


EVENT_LOW_STOCK = "inventory.low_stock"
EVENT_SALE_FAILED = "sale.failed"


@dataclass(frozen=True)
class NotificationEvent:
    event_type: str
    payload: dict[str, Any]
    occurred_at: Any = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class NotificationEmitter:
    """
    Delivery transport lives outside this service. Subclasses hand events
    to whatever channel is configured (queue, webhook, SMS gateway).
    """

    def emit(self, event: NotificationEvent) -> None:
        raise NotImplementedError


class LoggingNotificationEmitter(NotificationEmitter):
    """Default emitter: writes events to the application log."""

    def emit(self, event: NotificationEvent) -> None:
        current_app.logger.info("notification %s %s", event.event_type, event.payload)


class CollectingNotificationEmitter(NotificationEmitter):
    """Keeps events in memory for later inspection."""

    def __init__(self):
        self.events: list[NotificationEvent] = []

    def emit(self, event: NotificationEvent) -> None:
        self.events.append(event)


def emit_safely(emitter: NotificationEmitter, event: NotificationEvent) -> bool:
    """
    Emit without letting a broken transport affect the caller.

    Events are only emitted after the owning transaction has committed or
    rolled back, so a failure here is logged and otherwise ignored.
    """
    try:
        emitter.emit(event)
        return True
    except Exception:
        current_app.logger.exception("Failed to emit %s notification", event.event_type)
        return False


def low_stock_event(*, product_id: int, sku: str | None, stock_level: int, threshold: int) -> NotificationEvent:
    return NotificationEvent(
        EVENT_LOW_STOCK,
        {
            "product_id": product_id,
            "sku": sku,
            "stock_level": stock_level,
            "threshold": threshold,
        },
    )


def sale_failed_event(*, transaction_id: str, error: dict, sale_type: str | None) -> NotificationEvent:
    return NotificationEvent(
        EVENT_SALE_FAILED,
        {
            "transaction_id": transaction_id,
            "sale_type": sale_type,
            "error": error,
        },
    )
