"""
Prometheus metrics server for MedEquip.

Starts an HTTP server exposing the marketplace metrics at /metrics. With
--db it also runs the periodic tick (quote expiry, bottleneck gauge) so
the gauges stay current between admin reads.

Usage:
    python -m medequip.metrics_server --port 9090
    python -m medequip.metrics_server --port 9090 --db marketplace.db --tick-seconds 300
"""

import argparse
import time

from medequip.kernel.logging import configure_logging, get_logger
from medequip.kernel.metrics import start_metrics_server
from medequip.marketplace import Marketplace

logger = get_logger(__name__)


def main() -> None:
    """
    Start the Prometheus metrics server.

    The server exposes all metrics at http://0.0.0.0:<port>/metrics
    in Prometheus text format.
    """
    parser = argparse.ArgumentParser(description="MedEquip Metrics Server")
    parser.add_argument(
        "--port",
        type=int,
        default=9090,
        help="Port to listen on (default: 9090)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Marketplace database; enables the periodic tick",
    )
    parser.add_argument(
        "--tick-seconds",
        type=int,
        default=300,
        help="Seconds between ticks when --db is given (default: 300)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs in JSON format (default: False)",
    )

    args = parser.parse_args()

    configure_logging(json_output=args.json_logs, log_level=args.log_level)

    logger.info(
        "Starting Prometheus metrics server",
        port=args.port,
        endpoint=f"http://0.0.0.0:{args.port}/metrics",
    )

    start_metrics_server(port=args.port)

    logger.info("Metrics server started successfully")

    market = Marketplace(args.db) if args.db else None
    last_tick = 0.0

    try:
        while True:
            if market is not None and time.monotonic() - last_tick >= args.tick_seconds:
                market.tick()
                last_tick = time.monotonic()
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down metrics server")


if __name__ == "__main__":
    main()
