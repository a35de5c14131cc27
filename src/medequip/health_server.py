"""
Health check HTTP server for liveness and readiness checks.

Reports whether the event store is reachable and, when a Marketplace is
attached, the workflow counters operators watch: open bottlenecks and
disputes waiting for arbitration.
"""

import sqlite3
from pathlib import Path
from typing import Any

from flask import Flask, jsonify

from medequip import __version__
from medequip.kernel.logging import get_logger
from medequip.marketplace import Marketplace

logger = get_logger(__name__)

app = Flask(__name__)

SERVICE = "medequip"

# Set by initialize_health_server()
_db_path: Path | None = None
_market: Marketplace | None = None


def initialize_health_server(db_path: str | Path, market: Marketplace | None = None) -> None:
    """
    Point the health server at a database and, optionally, a live Marketplace.

    Args:
        db_path: Path to SQLite database
        market: Marketplace instance for the workflow counters
    """
    global _db_path, _market
    _db_path = Path(db_path)
    _market = market
    logger.info("Health server initialized", db_path=str(_db_path))


def _count(conn: sqlite3.Connection, sql: str) -> int:
    return conn.execute(sql).fetchone()[0]


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[Any, int]:
    """Liveness check - the process is up."""
    return jsonify({"status": "alive", "service": SERVICE}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[Any, int]:
    """
    Readiness check - the event store answers queries.

    Returns:
        200 with the event count, or 503 with a reason
    """
    if _db_path is None:
        logger.error("Readiness check failed: DB path not initialized")
        return jsonify({"status": "not_ready", "reason": "database_path_not_initialized"}), 503

    if not _db_path.exists():
        logger.error("Readiness check failed: DB file does not exist", db_path=str(_db_path))
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "database_file_not_found",
                    "db_path": str(_db_path),
                }
            ),
            503,
        )

    try:
        conn = sqlite3.connect(str(_db_path), timeout=1.0)
        try:
            event_count = _count(conn, "SELECT COUNT(*) FROM events")
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error("Readiness check failed: DB error", error=str(e))
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "database_operational_error",
                    "error": str(e),
                }
            ),
            503,
        )

    logger.debug("Readiness check passed", event_count=event_count)
    return jsonify({"status": "ready", "database": "accessible", "event_count": event_count}), 200


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[Any, int]:
    """
    Detailed health - storage figures plus workflow counters.

    Returns:
        200 when healthy, 503 when degraded
    """
    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": SERVICE,
        "version": __version__,
    }

    if _db_path and _db_path.exists():
        try:
            conn = sqlite3.connect(str(_db_path), timeout=1.0)
            try:
                event_count = _count(conn, "SELECT COUNT(*) FROM events")
                stream_count = _count(conn, "SELECT COUNT(DISTINCT stream_id) FROM events")
                audit_count = _count(conn, "SELECT COUNT(*) FROM audit_log")
                page_count = _count(conn, "PRAGMA page_count")
                page_size = _count(conn, "PRAGMA page_size")
            finally:
                conn.close()

            health_data["database"] = {
                "status": "healthy",
                "path": str(_db_path),
                "event_count": event_count,
                "stream_count": stream_count,
                "audit_entry_count": audit_count,
                "size_mb": round(page_count * page_size / (1024 * 1024), 2),
            }
        except sqlite3.Error as e:
            logger.error("Database health check failed", error=str(e))
            health_data["database"] = {"status": "unhealthy", "error": str(e)}
            health_data["status"] = "degraded"
    else:
        health_data["database"] = {"status": "not_initialized"}
        health_data["status"] = "degraded"

    if _market is not None:
        counters = _market.health()
        health_data["workflow"] = {
            "open_bottlenecks": counters["open_bottlenecks"],
            "escalated_disputes": counters["escalated_disputes"],
        }

    status_code = 200 if health_data["status"] == "healthy" else 503
    return jsonify(health_data), status_code


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
    from medequip.kernel.logging import configure_logging
    from medequip.kernel.settings import Settings

    settings = Settings.from_env()
    configure_logging(json_output=settings.json_logs, log_level=settings.log_level)
    initialize_health_server(settings.db_path, Marketplace(settings.db_path))
    run_health_server()
