# backend/stockroom/config.py
from __future__ import annotations
import os

from stockroom.time_utils import parse_duration


STOCK_WRITE_MODES = ("transactional", "two_phase")


class Config:
    # JWT_SECRET is the name the deployment uses; SECRET_KEY kept as alias
    SECRET_KEY = os.environ.get("JWT_SECRET") or os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockroom.sqlite3 by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DB_URL",
        os.environ.get("DATABASE_URL", "sqlite:///stockroom.sqlite3"),
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seed values for the settings document
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "My Company")
    COMPANY_EMAIL = os.environ.get("COMPANY_EMAIL", "")
    COMPANY_PHONE = os.environ.get("COMPANY_PHONE", "")
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD").upper()

    # Overdue sweep period, e.g. "3600", "15m", "1h"
    OVERDUE_SWEEP_INTERVAL = parse_duration(os.environ.get("OVERDUE_SWEEP_INTERVAL", "1h"))

    # Per-product lock wait before giving up with Timeout
    STOCK_LOCK_TIMEOUT = float(os.environ.get("STOCK_LOCK_TIMEOUT", "5"))

    # "two_phase" writes pending ledger entries ahead of the product update
    STOCK_WRITE_MODE = os.environ.get("STOCK_WRITE_MODE", "transactional")
    PENDING_GRACE_SECONDS = int(os.environ.get("PENDING_GRACE_SECONDS", "300"))

