# backend/batchledger/routes/system.py
"""
System health endpoint.
"""

import logging
import time

from flask import Blueprint
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import InventoryBatch, Store
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

logger = logging.getLogger(__name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        batch_count = db.session.query(InventoryBatch).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stores": store_count,
                "batches": batch_count,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return {
        "status": database["status"],
        "checked_at": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, status_code
