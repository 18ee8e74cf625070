# Overview: Pytest coverage for the storage retry helper and overlapping order transitions.

import threading

import pytest
from sqlalchemy.orm.exc import StaleDataError

from gasline import create_app
from gasline.errors import IllegalTransitionError, InternalError, ValidationError
from gasline.extensions import db
from gasline.models import Agency, Order, Product
from gasline.services import inventory_service
from gasline.services.concurrency import run_with_retry
from gasline.services.notification_service import RecordingEmitter
from gasline.services.order_service import OrderStateMachine
from gasline.services.visibility_service import Caller
from gasline.validation import validate_checkout_payload
from conftest import checkout_payload
class TestRunWithRetry:

    def test_retries_stale_data_then_succeeds(self, db_session):
        calls = []

        def op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "ok"

        assert run_with_retry(op, backoff_base=0) == "ok"
        assert len(calls) == 3

    def test_exhausted_retries(self, db_session):
        def op():
            raise StaleDataError("version mismatch")

        with pytest.raises(InternalError):
            run_with_retry(op, attempts=2, backoff_base=0)

    def test_service_errors_are_not_retried(self, db_session):
        calls = []

        def op():
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_with_retry(op, backoff_base=0)
        assert len(calls) == 1


@pytest.fixture
def file_app(tmp_path):
    """App on a file database, so each app context gets its own connection."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'gasline.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


class TestOverlappingTransitions:

    def test_second_cancel_loses_on_version(self, file_app, monkeypatch):
        """Two workers cancel the same order; one commits and stock comes back once."""
        agency = Agency(name="City Gas", email="citygas@agency.test", phone="02012345678", city="Pune")
        product = Product(name="LPG Cylinder", unit="cylinder", category="lpg")
        db.session.add_all([agency, product])
        db.session.commit()
        inventory_service.receive_stock(agency.id, product.id, 10, variant_label="14.2kg", price="85.00")

        machine = OrderStateMachine(emitter=RecordingEmitter())
        order = machine.create_order(validate_checkout_payload(checkout_payload(agency.id, product.id)))
        order_id, agency_id, product_id = order.id, agency.id, product.id
        admin = Caller(id=900, email="admin@gasline.test", role="admin", name="Admin")

        real_restore = inventory_service.restore_stock
        started = []
        outcome = {}

        def other_worker():
            with file_app.app_context():
                try:
                    outcome["status"] = machine.cancel(order_id, "Agency closed", admin).status
                except Exception as exc:
                    outcome["error"] = exc
                finally:
                    db.session.remove()

        def restore_after_other_worker(locked_order):
            # The first caller has loaded and validated its copy; let the other commit first
            if not started:
                started.append(True)
                worker = threading.Thread(target=other_worker)
                worker.start()
                worker.join()
            real_restore(locked_order)

        monkeypatch.setattr(inventory_service, "restore_stock", restore_after_other_worker)

        with pytest.raises(IllegalTransitionError):
            machine.cancel(order_id, "Customer unreachable", admin)

        assert "error" not in outcome
        assert outcome["status"] == "cancelled"

        monkeypatch.undo()
        db.session.expire_all()
        cancelled = db.session.get(Order, order_id)
        assert cancelled.cancel_reason == "Agency closed"
        assert cancelled.version_id == 2
        assert inventory_service.get_available_stock(agency_id, product_id, "14.2kg") == 10
