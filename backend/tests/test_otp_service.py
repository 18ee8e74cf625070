# Overview: Pytest coverage for OTP primitives and login OTP flow.

from datetime import datetime, timedelta

import pytest

from gasline.errors import InvalidOTPError, NotFoundError, ValidationError
from gasline.models import LoginOTP, User
from gasline.services import maintenance_service, otp_service


NOW = datetime(2026, 3, 2, 9, 30, 0)


class TestOTPPrimitives:

    def test_generated_code_is_six_digits(self):
        codes = {otp_service.generate_otp_code() for _ in range(50)}
        assert all(len(c) == 6 and c.isdigit() for c in codes)

    def test_valid_until_expiry_inclusive(self):
        expires = NOW + timedelta(minutes=10)
        assert otp_service.is_otp_valid("123456", "123456", expires, NOW)
        assert otp_service.is_otp_valid("123456", "123456", expires, expires)
        assert not otp_service.is_otp_valid("123456", "123456", expires, expires + timedelta(seconds=1))

    def test_mismatch_and_missing(self):
        expires = NOW + timedelta(minutes=10)
        assert not otp_service.is_otp_valid("654321", "123456", expires, NOW)
        assert not otp_service.is_otp_valid("123456", None, expires, NOW)
        assert not otp_service.is_otp_valid("123456", "123456", None, NOW)
        assert not otp_service.is_otp_valid("", "123456", expires, NOW)


class TestLoginOTP:

    def test_customer_login_creates_user(self, db_session):
        record = otp_service.issue_login_otp("priya@example.com", "customer", now=NOW)
        user = otp_service.verify_login_otp("priya@example.com", "customer", record.code, now=NOW)

        assert user.id is not None
        assert user.role == "customer"
        assert user.last_login_at == NOW
        assert db_session.query(LoginOTP).filter_by(email="priya@example.com").one().is_used is True

    def test_code_is_single_use(self, db_session):
        record = otp_service.issue_login_otp("priya@example.com", "customer", now=NOW)
        code = record.code
        otp_service.verify_login_otp("priya@example.com", "customer", code, now=NOW)
        with pytest.raises(InvalidOTPError):
            otp_service.verify_login_otp("priya@example.com", "customer", code, now=NOW)

    def test_new_code_replaces_old(self, db_session):
        first = otp_service.issue_login_otp("priya@example.com", "customer", now=NOW).code
        second = otp_service.issue_login_otp("priya@example.com", "customer", now=NOW).code
        assert db_session.query(LoginOTP).filter_by(email="priya@example.com", role="customer").count() == 1
        if first != second:
            with pytest.raises(InvalidOTPError):
                otp_service.verify_login_otp("priya@example.com", "customer", first, now=NOW)
        otp_service.verify_login_otp("priya@example.com", "customer", second, now=NOW)

    def test_expired_code(self, db_session):
        code = otp_service.issue_login_otp("priya@example.com", "customer", now=NOW).code
        with pytest.raises(InvalidOTPError, match="Invalid or expired OTP"):
            otp_service.verify_login_otp("priya@example.com", "customer", code, now=NOW + timedelta(minutes=11))

    def test_codes_are_per_role(self, db_session, agent_a):
        code = otp_service.issue_login_otp(agent_a.email, "customer", now=NOW).code
        with pytest.raises(InvalidOTPError):
            otp_service.verify_login_otp(agent_a.email, "agent", code, now=NOW)

    def test_agent_login_links_delivery_agent(self, db_session, agent_a):
        code = otp_service.issue_login_otp(agent_a.email, "agent", now=NOW).code
        user = otp_service.verify_login_otp(agent_a.email, "agent", code, now=NOW)
        assert user.delivery_agent_id == agent_a.id
        assert user.agency_id == agent_a.agency_id
        assert user.name == "Ravi Kumar"

    def test_unregistered_agent_rejected(self, db_session):
        with pytest.raises(NotFoundError):
            otp_service.issue_login_otp("stranger@example.com", "agent", now=NOW)

    @pytest.mark.parametrize("role", ["admin", "agency_owner", "root"])
    def test_staff_roles_use_passwords(self, db_session, role):
        with pytest.raises(ValidationError):
            otp_service.issue_login_otp("boss@example.com", role, now=NOW)

    def test_disabled_account(self, db_session):
        db_session.add(User(email="priya@example.com", role="customer", is_active=False))
        db_session.commit()
        code = otp_service.issue_login_otp("priya@example.com", "customer", now=NOW).code
        with pytest.raises(ValidationError, match="disabled"):
            otp_service.verify_login_otp("priya@example.com", "customer", code, now=NOW)


class TestCleanup:

    def test_removes_used_and_expired(self, db_session):
        otp_service.issue_login_otp("a@example.com", "customer", now=datetime(2020, 1, 1))
        live = otp_service.issue_login_otp("b@example.com", "customer").code
        used = otp_service.issue_login_otp("c@example.com", "customer")
        otp_service.verify_login_otp("c@example.com", "customer", used.code)

        assert maintenance_service.cleanup_login_otps() == 2
        remaining = db_session.query(LoginOTP).one()
        assert remaining.email == "b@example.com"
        assert remaining.code == live
