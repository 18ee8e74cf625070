# backend/gasline/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Order state machine with blinker-backed notifications
    from .services import email_service
    from .services.notification_service import SignalEmitter, order_event
    from .services.order_service import OrderStateMachine

    order_event.connect(email_service.on_order_event)
    app.extensions["order_state_machine"] = OrderStateMachine(emitter=SignalEmitter())

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.orders import orders_bp
    from .routes.agents import agents_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(agents_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
