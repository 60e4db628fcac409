# backend/fulfillment/routes/system.py
"""
System health endpoint.

Checks database connectivity and that cached wallet balances still agree
with the wallet ledger.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, Wallet, WalletLedgerEntry
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        wallet_count = db.session.query(Wallet).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "orders": order_count,
                "wallets": wallet_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_wallet_ledger_health() -> dict:
    """
    Compare every cached wallet balance with its ledger sum.

    Drift is reported as degraded: the ledger stays authoritative and
    `flask wallet rebuild` repairs the cache.
    """
    start_time = time.time()
    try:
        ledger_sums = (
            db.session.query(
                WalletLedgerEntry.user_id.label("user_id"),
                func.sum(WalletLedgerEntry.amount_cents).label("total"),
            )
            .group_by(WalletLedgerEntry.user_id)
            .subquery()
        )
        drifted = (
            db.session.query(Wallet.user_id)
            .outerjoin(ledger_sums, ledger_sums.c.user_id == Wallet.user_id)
            .filter(Wallet.balance_cents != func.coalesce(ledger_sums.c.total, 0))
            .all()
        )

        elapsed_ms = (time.time() - start_time) * 1000
        if drifted:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{len(drifted)} wallet cache(s) differ from the ledger",
                "details": {"user_ids": [row.user_id for row in drifted]},
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Wallet ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Wallet ledger error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    ledger_health = check_wallet_ledger_health()

    all_checks = [database_health, ledger_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "wallet_ledger": ledger_health,
        }
    }

    return response, http_status
