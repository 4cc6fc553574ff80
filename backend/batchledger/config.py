# backend/batchledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the process unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///batchledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Inventory-line lock wait before AllocationTimeout is raised
    BATCH_LOCK_TIMEOUT_SECONDS = float(os.environ.get("BATCH_LOCK_TIMEOUT_SECONDS", "5.0"))

    # Retry policy for deadlocks / optimistic version conflicts
    BATCH_RETRY_ATTEMPTS = int(os.environ.get("BATCH_RETRY_ATTEMPTS", "3"))
    BATCH_RETRY_BACKOFF_SECONDS = float(os.environ.get("BATCH_RETRY_BACKOFF_SECONDS", "0.1"))

    # Reorder threshold used when a line has no explicit minimum level
    DEFAULT_MINIMUM_LEVEL = int(os.environ.get("DEFAULT_MINIMUM_LEVEL", "10"))

    EXPIRING_SOON_DAYS = int(os.environ.get("EXPIRING_SOON_DAYS", "30"))

    RETURN_BATCH_PREFIX = os.environ.get("RETURN_BATCH_PREFIX", "RETURN")
