# Overview: Email subscriber for order events; builds template messages and hands them to the configured sender.

"""
Transactional email

Subscribes to the order-event signal and maps each event to a template key.
Rendering and transport belong to the provider behind MAIL_SENDER, which
receives a plain dict:

    {"to": ..., "from": ..., "template": ..., "context": {...}}

With MAIL_SENDER unset, messages are written to the app log.
"""

from __future__ import annotations

from flask import current_app
from werkzeug.utils import import_string

from . import notification_service as events


EMAIL_TEMPLATES = {
    events.ORDER_CREATED: "order_confirmation",
    events.ORDER_ASSIGNED: "order_assigned",
    events.OTP_SENT: "delivery_otp",
    events.ORDER_DELIVERED: "order_delivered",
    events.ORDER_CANCELLED: "order_cancelled",
    events.ORDER_RETURNED: "order_returned",
}
LOGIN_OTP_TEMPLATE = "login_otp"


def log_sender(message: dict) -> None:
    context = {k: v for k, v in message["context"].items() if k != "otp"}
    current_app.logger.info(
        "Email queued: template=%s to=%s context=%s",
        message["template"], message["to"], context,
    )


def _resolve_sender():
    target = current_app.config.get("MAIL_SENDER")
    if not target:
        return log_sender
    if callable(target):
        return target
    return import_string(target)


def send_email(to: str, template: str, context: dict) -> None:
    message = {
        "to": to,
        "from": current_app.config.get("MAIL_DEFAULT_FROM"),
        "template": template,
        "context": context,
    }
    _resolve_sender()(message)


def build_context(event) -> dict:
    snapshot = event.order_snapshot
    context = {
        "order_number": snapshot.get("order_number"),
        "customer_name": snapshot.get("customer_name"),
        "customer_address": snapshot.get("customer_address"),
        "delivery_mode": snapshot.get("delivery_mode"),
        "items": snapshot.get("items", []),
        "total_amount": snapshot.get("total_amount"),
        "status": snapshot.get("status"),
    }
    for key in ("agent", "reason", "payment_received", "otp_expires_at"):
        if key in event.payload:
            context[key] = event.payload[key]
    if event.type == events.OTP_SENT:
        context["otp"] = event.private.get("otp")
    return context


def on_order_event(sender, event=None, **extra) -> None:
    """order-event receiver. Events without a template are ignored."""
    template = EMAIL_TEMPLATES.get(event.type)
    if template is None or not event.recipient_email:
        return
    send_email(event.recipient_email, template, build_context(event))


def send_login_otp(email: str, code: str, expires_at) -> None:
    send_email(email, LOGIN_OTP_TEMPLATE, {"otp": code, "expires_at": expires_at})
