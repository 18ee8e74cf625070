# Overview: Pytest coverage for order events, the signal emitter and the email subscriber.

import pytest
from blinker import Namespace

from gasline.services import email_service
from gasline.services.notification_service import (
    ORDER_CREATED,
    ORDER_OUT_FOR_DELIVERY,
    OTP_SENT,
    SignalEmitter,
    build_event,
)


@pytest.fixture
def signal():
    return Namespace().signal("test-order-event")


@pytest.fixture
def outbox(app, monkeypatch):
    sent = []
    monkeypatch.setitem(app.config, "MAIL_SENDER", sent.append)
    return sent


class TestBuildEvent:

    def test_payload_fields(self, place_order, clock):
        order = place_order()
        event = build_event(ORDER_CREATED, order, extra={"total_amount": "170.00"}, now=clock())
        assert event.payload["order_id"] == order.id
        assert event.payload["order_number"] == order.order_number
        assert event.payload["status"] == "pending"
        assert event.payload["total_amount"] == "170.00"
        assert event.payload["timestamp"] == "2026-03-02T09:30:00Z"
        assert event.recipient_email == "priya@example.com"

    def test_unknown_type(self, place_order):
        with pytest.raises(ValueError):
            build_event("order_lost", place_order())

    def test_private_not_in_public_dict(self, place_order):
        event = build_event(OTP_SENT, place_order(), private={"otp": "123456"})
        assert "otp" not in event.to_dict()
        assert event.private["otp"] == "123456"


class TestSignalEmitter:

    def test_failing_receiver_does_not_block_others(self, app, place_order, signal):
        received = []

        def broken(sender, event=None, **extra):
            raise RuntimeError("push gateway down")

        def working(sender, event=None, **extra):
            received.append(event.type)

        signal.connect(broken, weak=False)
        signal.connect(working, weak=False)

        SignalEmitter(signal).emit(build_event(ORDER_CREATED, place_order()))
        assert received == [ORDER_CREATED]


class TestEmailSubscriber:

    def test_order_created_email(self, app, place_order, outbox):
        email_service.on_order_event(app, event=build_event(ORDER_CREATED, place_order()))
        message = outbox[0]
        assert message["to"] == "priya@example.com"
        assert message["template"] == "order_confirmation"
        assert message["context"]["total_amount"] == "170.00"

    def test_otp_email_carries_code(self, app, place_order, outbox):
        event = build_event(OTP_SENT, place_order(), private={"otp": "654321"})
        email_service.on_order_event(app, event=event)
        assert outbox[0]["template"] == "delivery_otp"
        assert outbox[0]["context"]["otp"] == "654321"

    def test_untemplated_event_is_ignored(self, app, place_order, outbox):
        email_service.on_order_event(app, event=build_event(ORDER_OUT_FOR_DELIVERY, place_order()))
        assert outbox == []

    def test_default_sender_logs_without_code(self, app, place_order, monkeypatch, caplog):
        monkeypatch.setitem(app.config, "MAIL_SENDER", None)
        event = build_event(OTP_SENT, place_order(), private={"otp": "654321"})
        with caplog.at_level("INFO"):
            email_service.on_order_event(app, event=event)
        assert "delivery_otp" in caplog.text
        assert "654321" not in caplog.text
