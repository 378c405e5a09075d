# backend/rackstock/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # SQLite DB stored in backend/instance/rackstock.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///rackstock.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Low-stock threshold for items without their own min_stock_alert
    DEFAULT_MIN_STOCK_ALERT = 5

    # Stock-out over-draw policy: False rejects, True records and warns
    ALLOW_NEGATIVE_STOCK_OUT = _env_flag("RACKSTOCK_ALLOW_NEGATIVE_STOCK_OUT")

    # Rack names every warehouse gets from `flask racks replicate`
    STANDARD_RACKS = ("Rack No-1", "Rack No-2", "Rack No-3")

    RETRY_ATTEMPTS = 3
    RETRY_BACKOFF_BASE = 0.1

    TRANSFER_NUMBER_PREFIX = "TR"
    TRANSFER_NUMBER_PAD = 5
