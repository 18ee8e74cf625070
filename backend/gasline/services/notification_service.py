# Overview: Order event emission; decouples the state machine from notification delivery.

"""
Notification Emitter

OrderStateMachine is handed an emitter at construction and calls
emit(event) after each successful commit. Delivery is best-effort: a
failing subscriber is logged and never affects the order operation or
the other subscribers.

Emitters:
- SignalEmitter: publishes on the blinker `order-event` signal (app default)
- NullEmitter: drops events
- RecordingEmitter: keeps events in memory (tests)

The public payload never carries secrets. The delivery OTP travels in
event.private and is read only by the email subscriber.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from blinker import Namespace
from flask import current_app

from gasline.time_utils import to_utc_z, utcnow


ORDER_CREATED = "order_created"
ORDER_CONFIRMED = "order_confirmed"
ORDER_ASSIGNED = "order_assigned"
ORDER_OUT_FOR_DELIVERY = "order_out_for_delivery"
ORDER_DELIVERED = "order_delivered"
ORDER_CANCELLED = "order_cancelled"
ORDER_RETURNED = "order_returned"
OTP_SENT = "otp_sent"

EVENT_TYPES = (
    ORDER_CREATED,
    ORDER_CONFIRMED,
    ORDER_ASSIGNED,
    ORDER_OUT_FOR_DELIVERY,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    ORDER_RETURNED,
    OTP_SENT,
)

_signals = Namespace()
order_event = _signals.signal("order-event")


@dataclass
class NotificationEvent:
    type: str
    payload: dict
    order_snapshot: dict = field(default_factory=dict)
    private: dict = field(default_factory=dict)

    @property
    def recipient_email(self) -> str | None:
        return self.order_snapshot.get("customer_email")

    def to_dict(self) -> dict:
        return {"type": self.type, **self.payload}


def build_event(event_type: str, order, *, extra: dict | None = None, private: dict | None = None,
                now=None) -> NotificationEvent:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type: {event_type}")
    payload = {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "agency_id": order.agency_id,
    }
    if extra:
        payload.update(extra)
    payload["timestamp"] = to_utc_z(now or utcnow())
    return NotificationEvent(
        type=event_type,
        payload=payload,
        order_snapshot=order.snapshot(),
        private=dict(private or {}),
    )


class NotificationEmitter:
    """Interface: emit(event) must never raise."""

    def emit(self, event: NotificationEvent) -> None:
        raise NotImplementedError


class NullEmitter(NotificationEmitter):
    def emit(self, event: NotificationEvent) -> None:
        return None


class RecordingEmitter(NotificationEmitter):
    def __init__(self):
        self.events: list[NotificationEvent] = []

    def emit(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type for e in self.events]

    def of_type(self, event_type: str) -> list[NotificationEvent]:
        return [e for e in self.events if e.type == event_type]

    def clear(self) -> None:
        self.events.clear()


class SignalEmitter(NotificationEmitter):
    """Sends each event to every receiver of `signal`, isolating failures."""

    def __init__(self, signal=order_event):
        self.signal = signal

    def emit(self, event: NotificationEvent) -> None:
        sender = current_app._get_current_object()
        for receiver in list(self.signal.receivers_for(sender)):
            try:
                receiver(sender, event=event)
            except Exception:
                current_app.logger.exception(
                    "Notification receiver failed for %s on order %s",
                    event.type, event.payload.get("order_number"),
                )
