# backend/gasline/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/gasline.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///gasline.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # OTP lifetimes (minutes)
    DELIVERY_OTP_TTL_MINUTES = int(os.environ.get("DELIVERY_OTP_TTL_MINUTES", "10"))
    LOGIN_OTP_TTL_MINUTES = int(os.environ.get("LOGIN_OTP_TTL_MINUTES", "10"))

    # Upper bound for ?limit= on order listings
    ORDERS_MAX_PAGE_SIZE = int(os.environ.get("ORDERS_MAX_PAGE_SIZE", "100"))

    # Dotted path to a callable(message: dict) that hands mail to a provider.
    # None means messages are only written to the app log.
    MAIL_SENDER = os.environ.get("MAIL_SENDER")
    MAIL_DEFAULT_FROM = os.environ.get("MAIL_DEFAULT_FROM", "orders@gasline.local")

    # Bearer sessions: absolute lifetime and idle cutoff
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
    SESSION_IDLE_MINUTES = int(os.environ.get("SESSION_IDLE_MINUTES", "120"))
