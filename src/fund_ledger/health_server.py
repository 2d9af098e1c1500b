"""
Health check HTTP server for Kubernetes liveness and readiness probes.

Provides endpoints for monitoring the health and readiness of the ledger.
"""

import sqlite3
from pathlib import Path
from typing import Any

from flask import Flask, jsonify

from fund_ledger import __version__
from fund_ledger.kernel.logging import get_logger
from fund_ledger.ledger import FundLedger

logger = get_logger(__name__)

app = Flask(__name__)

SERVICE_NAME = "fund-ledger"

# Global state - will be set by initialize_health_server()
_db_path: Path | None = None
_ledger: FundLedger | None = None


def initialize_health_server(db_path: str | Path, ledger: FundLedger | None = None) -> None:
    """
    Initialize the health server with the database path and ledger.

    Args:
        db_path: Path to SQLite database
        ledger: Ledger instance for detailed health checks (opened on
            the database path if None)
    """
    global _db_path, _ledger
    _db_path = Path(db_path)
    _ledger = ledger
    logger.info("Health server initialized", db_path=str(_db_path))


def _not_ready(reason: str, **details: Any) -> tuple[Any, int]:
    return jsonify({"status": "not_ready", "reason": reason, **details}), 503


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[Any, int]:
    """
    Liveness probe - checks if the process is running.

    Kubernetes will restart the pod if this fails.
    """
    return jsonify({"status": "alive", "service": SERVICE_NAME}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[Any, int]:
    """
    Readiness probe - checks if the service is ready to accept requests.

    Kubernetes will not route traffic to the pod if this fails.

    Checks:
    - Database path is configured and the file exists
    - The event store answers a query

    Returns:
        JSON response with 200 OK if ready, 503 if not ready
    """
    if _db_path is None:
        logger.error("Readiness check failed: DB path not initialized")
        return _not_ready("database_path_not_initialized")

    if not _db_path.exists():
        logger.error("Readiness check failed: DB file does not exist", db_path=str(_db_path))
        return _not_ready("database_file_not_found", db_path=str(_db_path))

    try:
        ledger = _get_ledger()
        ledger.event_store.ping()
        event_count = ledger.event_store.count_events()
    except sqlite3.Error as e:
        logger.error("Readiness check failed: DB operational error", error=str(e))
        return _not_ready("database_operational_error", error=str(e))

    logger.debug("Readiness check passed", event_count=event_count)
    return jsonify({"status": "ready", "database": "accessible", "event_count": event_count}), 200


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[Any, int]:
    """
    Detailed health check - includes ledger figures and invariant warnings.

    The service reports "degraded" (503) when the database is unreachable
    and "warning" (200) when a reconciliation tick has recorded drift or
    overspend.
    """
    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": __version__,
    }

    if _db_path is None or not _db_path.exists():
        health_data["database"] = {"status": "not_initialized"}
        health_data["status"] = "degraded"
        return jsonify(health_data), 503

    try:
        ledger = _get_ledger()
        summary = ledger.health()
    except sqlite3.Error as e:
        logger.error("Database health check failed", error=str(e))
        health_data["database"] = {"status": "unhealthy", "error": str(e)}
        health_data["status"] = "degraded"
        return jsonify(health_data), 503

    health_data["database"] = {
        "status": "healthy",
        "path": str(_db_path),
        "event_count": summary["events"],
        "stream_count": summary["streams"],
        "size_mb": round(_db_path.stat().st_size / (1024 * 1024), 2),
    }
    health_data["ledger"] = {
        "budgets": summary["budgets"],
        "pool_balance": summary["pool_balance"],
        "pending_settlements": summary["pending_settlements"],
        "drift_incidents": summary["drift_incidents"],
        "overspend_incidents": summary["overspend_incidents"],
    }
    if summary["drift_incidents"] or summary["overspend_incidents"]:
        health_data["status"] = "warning"

    return jsonify(health_data), 200


def _get_ledger() -> FundLedger:
    global _ledger
    if _ledger is None:
        _ledger = FundLedger(str(_db_path))
    return _ledger


def run_health_server(port: int = 8080, debug: bool = False) -> None:
    """
    Run the health check server.

    Args:
        port: Port to listen on (default: 8080)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("Starting health check server", port=port)
    app.run(host="0.0.0.0", port=port, debug=debug)


if __name__ == "__main__":
    # python -m fund_ledger.health_server
    import os

    initialize_health_server(os.getenv("FUND_LEDGER_DB", ".fund-ledger.db"))
    run_health_server(port=int(os.getenv("HEALTH_PORT", "8080")))
