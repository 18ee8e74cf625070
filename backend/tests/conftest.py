"""
Pytest fixtures for Gasline backend tests.

Provides test database setup, two agencies with agents and stock, callers
for every role, a controllable clock and a recording event emitter.
"""

from datetime import datetime, timedelta
import pytest
from gasline import create_app
from gasline.extensions import db
from gasline.models import Agency, DeliveryAgent, Product, User
from gasline.services import inventory_service, session_service
from gasline.services.notification_service import RecordingEmitter
from gasline.services.order_service import OrderStateMachine
from gasline.services.visibility_service import Caller
from gasline.validation import validate_checkout_payload


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 30, 0))


@pytest.fixture
def recorder():
    return RecordingEmitter()


@pytest.fixture
def otp_codes():
    """Deterministic delivery OTPs: 111111, 222222, ..."""
    return iter(f"{d}" * 6 for d in "123456789")


@pytest.fixture
def machine(app, recorder, clock, otp_codes, monkeypatch):
    """State machine wired to the recorder and fake clock, also used by the routes."""
    sm = OrderStateMachine(emitter=recorder, clock=clock, otp_generator=lambda: next(otp_codes))
    monkeypatch.setitem(app.extensions, "order_state_machine", sm)
    return sm


# =============================================================================
# AGENCIES, AGENTS, STOCK
# =============================================================================

@pytest.fixture
def agency_a(db_session):
    agency = Agency(name="Agency A - City Gas", email="citygas@agency.test", phone="02012345678", city="Pune")
    db_session.add(agency)
    db_session.commit()
    return agency


@pytest.fixture
def agency_b(db_session):
    agency = Agency(name="Agency B - Metro LPG", email="metro@agency.test", city="Mumbai")
    db_session.add(agency)
    db_session.commit()
    return agency


@pytest.fixture
def inactive_agency(db_session):
    agency = Agency(name="Closed Gas Co", email="closed@agency.test", status="inactive")
    db_session.add(agency)
    db_session.commit()
    return agency


@pytest.fixture
def agent_a(db_session, agency_a):
    agent = DeliveryAgent(agency_id=agency_a.id, name="Ravi Kumar", email="ravi@agency.test",
                          phone="9000000001", vehicle_number="MH12AB1234", status="online")
    db_session.add(agent)
    db_session.commit()
    return agent


@pytest.fixture
def agent_a2(db_session, agency_a):
    agent = DeliveryAgent(agency_id=agency_a.id, name="Sunil Patil", email="sunil@agency.test",
                          phone="9000000003")
    db_session.add(agent)
    db_session.commit()
    return agent


@pytest.fixture
def agent_b(db_session, agency_b):
    agent = DeliveryAgent(agency_id=agency_b.id, name="Imran Shaikh", email="imran@agency.test",
                          phone="9000000002")
    db_session.add(agent)
    db_session.commit()
    return agent


@pytest.fixture
def cylinder(db_session):
    product = Product(name="LPG Cylinder", unit="cylinder", category="lpg")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def regulator(db_session):
    product = Product(name="Gas Regulator", unit="piece", category="accessories")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def stocked(db_session, agency_a, agency_b, cylinder, regulator):
    """
    Agency A: cylinder 14.2kg x10 @ 85.00, 5kg x4 @ 40.00, regulator x3 (product level).
    Agency B: cylinder 14.2kg x2 @ 90.00.
    """
    inventory_service.receive_stock(agency_a.id, cylinder.id, 10, variant_label="14.2kg", price="85.00")
    inventory_service.receive_stock(agency_a.id, cylinder.id, 4, variant_label="5kg", price="40.00")
    inventory_service.receive_stock(agency_a.id, regulator.id, 3)
    inventory_service.receive_stock(agency_b.id, cylinder.id, 2, variant_label="14.2kg", price="90.00")


@pytest.fixture
def stock_of(db_session):
    """Fresh stock count for (agency, product[, variant])."""
    def _stock(agency, product, variant_label=None) -> int:
        db_session.expire_all()
        return inventory_service.get_available_stock(agency.id, product.id, variant_label)
    return _stock


# =============================================================================
# CALLERS
# =============================================================================

@pytest.fixture
def admin_caller():
    return Caller(id=900, email="admin@gasline.test", role="admin", name="Admin")


@pytest.fixture
def customer_caller():
    return Caller(id=901, email="priya@example.com", role="customer", name="Priya")


@pytest.fixture
def other_customer_caller():
    return Caller(id=902, email="someone@example.com", role="customer", name="Someone")


@pytest.fixture
def agent_caller(agent_a):
    return Caller(id=903, email=agent_a.email, role="agent", name=agent_a.name,
                  agency_id=agent_a.agency_id, delivery_agent_id=agent_a.id)


@pytest.fixture
def agent2_caller(agent_a2):
    return Caller(id=904, email=agent_a2.email, role="agent", name=agent_a2.name,
                  agency_id=agent_a2.agency_id, delivery_agent_id=agent_a2.id)


@pytest.fixture
def owner_a_caller(agency_a):
    return Caller(id=905, email="owner@citygas.test", role="agency_owner", name="Owner A",
                  agency_id=agency_a.id)


@pytest.fixture
def owner_b_caller(agency_b):
    return Caller(id=906, email="owner@metro.test", role="agency_owner", name="Owner B",
                  agency_id=agency_b.id)


# =============================================================================
# CHECKOUT HELPERS
# =============================================================================

def checkout_payload(agency_id, product_id, **overrides):
    payload = {
        "agency_id": agency_id,
        "customer_name": "Priya Sharma",
        "customer_email": "Priya@Example.com",
        "customer_phone": "9876543210",
        "customer_address": "12 MG Road, Koregaon Park, Pune 411001",
        "delivery_mode": "home_delivery",
        "payment_method": "cash_on_delivery",
        "items": [{
            "product_id": product_id,
            "product_name": "LPG Cylinder",
            "variant_label": "14.2kg",
            "variant_price": "85.00",
            "quantity": 2,
        }],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def checkout_body(agency_a, cylinder):
    """Factory for a valid checkout JSON body against agency A."""
    def _body(agency_id=None, product_id=None, **overrides):
        return checkout_payload(agency_id or agency_a.id, product_id or cylinder.id, **overrides)
    return _body


@pytest.fixture
def place_order(machine, stocked, agency_a, cylinder):
    """Create an order through the state machine; kwargs override the payload."""
    def _place(**overrides):
        payload = checkout_payload(agency_a.id, cylinder.id, **overrides)
        return machine.create_order(validate_checkout_payload(payload))
    return _place


# =============================================================================
# HTTP AUTH
# =============================================================================

@pytest.fixture
def auth_headers(db_session):
    """Factory: persist a User for the role and return Bearer headers."""
    def _headers(role, *, email, agency_id=None, delivery_agent_id=None, name=None):
        user = User(email=email, role=role, name=name or email, agency_id=agency_id,
                    delivery_agent_id=delivery_agent_id, is_active=True)
        db_session.add(user)
        db_session.commit()
        _, token = session_service.create_session(user.id)
        return {"Authorization": f"Bearer {token}"}
    return _headers
