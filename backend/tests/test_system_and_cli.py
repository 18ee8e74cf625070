# Overview: Pytest coverage for the health endpoint and CLI commands.

from sqlalchemy import DateTime

from gasline.extensions import db
from gasline.models import Agency, DeliveryAgent, User


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"


class TestCLI:

    def test_agency_agent_and_stock(self, app, db_session, cylinder, stock_of):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["agencies", "create", "--name", "City Gas",
                                     "--email", "CityGas@Example.com", "--city", "Pune"])
        assert "PASS" in result.output
        agency = db_session.query(Agency).filter_by(email="citygas@example.com").one()

        result = runner.invoke(args=["agents", "create", "--agency-id", str(agency.id), "--name", "Ravi",
                                     "--email", "ravi@example.com", "--phone", "9876543210"])
        assert "PASS" in result.output
        assert db_session.query(DeliveryAgent).filter_by(agency_id=agency.id).count() == 1

        result = runner.invoke(args=["inventory", "receive", "--agency-id", str(agency.id),
                                     "--product-id", str(cylinder.id), "--quantity", "12",
                                     "--variant", "14.2kg", "--price", "85.00"])
        assert "available now: 12" in result.output
        assert stock_of(agency, cylinder, "14.2kg") == 12

    def test_duplicate_agency(self, app, db_session, agency_a):
        result = app.test_cli_runner().invoke(args=["agencies", "create", "--name", "Again",
                                                    "--email", agency_a.email])
        assert "FAIL" in result.output

    def test_users_create_rejects_weak_password(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["users", "create", "--email", "admin@gasline.test",
                                                    "--role", "admin", "--password", "weak"])
        assert "FAIL" in result.output
        assert db_session.query(User).count() == 0

    def test_system_cancel_restores_stock(self, app, place_order, agency_a, cylinder, stock_of):
        order = place_order()
        result = app.test_cli_runner().invoke(args=["orders", "cancel", str(order.id),
                                                    "--reason", "Customer unreachable"])
        assert "PASS" in result.output
        assert stock_of(agency_a, cylinder, "14.2kg") == 10

    def test_maintenance_commands(self, app, db_session):
        runner = app.test_cli_runner()
        assert "Deleted 0" in runner.invoke(args=["maintenance", "cleanup-login-otps"]).output
        assert "Deleted 0" in runner.invoke(args=["maintenance", "cleanup-sessions"]).output


class TestSchema:

    def test_datetime_columns_are_naive_utc(self, app):
        columns = [c for t in db.metadata.sorted_tables for c in t.columns if isinstance(c.type, DateTime)]
        assert columns
        assert [f"{c.table.name}.{c.name}" for c in columns if c.type.timezone] == []
