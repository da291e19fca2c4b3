# backend/modernpos/routes/system.py
"""
System health and activity endpoints.

Health covers the database and the stock ledger projection; the activity
feed is the read side of the append-only activity history.
"""

import time
from flask import Blueprint, current_app, request
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, InventoryMovement
from ..services.activity_service import list_activity
from ..services.inventory_service import verify_stock_projection
from modernpos.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        movement_count = db.session.query(InventoryMovement).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "inventory_movements": movement_count,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_ledger_health() -> dict:
    """
    Compare every product's cached stock with its movement ledger.

    A mismatch means stock was written outside inventory_service.
    """
    start_time = time.time()
    try:
        mismatches = verify_stock_projection()
    except SQLAlchemyError:
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Ledger error"
        }

    elapsed_ms = (time.time() - start_time) * 1000
    if mismatches:
        return {
            "status": "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "warning": f"{len(mismatches)} product(s) out of step with the ledger",
            "details": {"mismatches": mismatches[:20]},
        }
    return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    ledger_health = (
        check_ledger_health()
        if database_health["status"] == "healthy"
        else {"status": "unhealthy", "error": "Database unavailable"}
    )

    all_checks = [database_health, ledger_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200  # Degraded is still operational
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "ledger": ledger_health,
        }
    }

    return response, http_status


@system_bp.get("/api/activity")
def activity_feed():
    """
    Recent activity, newest first.

    Query params:
    - category: transaction | inventory | discount | customer | estimation | shift
    - limit: int (default 200, max 1000)
    """
    category = request.args.get("category")
    limit = min(request.args.get("limit", default=200, type=int) or 200, 1000)
    events = list_activity(category=category, limit=limit)
    return {"items": [e.to_dict() for e in events], "count": len(events)}
