"""
Prometheus metrics server for the fund ledger.

Starts an HTTP server that exposes Prometheus metrics at /metrics. When a
database is given, the ledger gauges (pool balance, pending settlements)
are refreshed from it on an interval, and a reconciliation tick can be run
on the same loop.

Usage:
    python -m fund_ledger.metrics_server --port 9090 --db ledger.db --tick-every 300
"""

import argparse
import time

from fund_ledger.kernel.logging import configure_logging, get_logger
from fund_ledger.kernel.metrics import start_metrics_server, update_ledger_gauges
from fund_ledger.ledger import FundLedger

logger = get_logger(__name__)


def refresh_gauges(ledger: FundLedger) -> None:
    """Push current pool balance and pending settlement count to the gauges"""
    summary = ledger.health()
    update_ledger_gauges(ledger.pool.balance, summary["pending_settlements"])


def main() -> None:
    """
    Start the Prometheus metrics server.

    The server exposes all ledger metrics at http://0.0.0.0:<port>/metrics
    in Prometheus text format.
    """
    parser = argparse.ArgumentParser(description="Fund Ledger Metrics Server")
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
        help="Ledger database to report gauges for",
    )
    parser.add_argument(
        "--refresh-seconds",
        type=int,
        default=15,
        help="Gauge refresh interval (default: 15)",
    )
    parser.add_argument(
        "--tick-every",
        type=int,
        default=0,
        help="Run a reconciliation tick every N seconds (default: never)",
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

    # Configure logging
    configure_logging(json_output=args.json_logs, log_level=args.log_level)

    logger.info(
        "Starting Prometheus metrics server",
        port=args.port,
        endpoint=f"http://0.0.0.0:{args.port}/metrics",
    )

    # Start metrics server
    start_metrics_server(port=args.port)

    logger.info("Metrics server started successfully")

    ledger = FundLedger(args.db) if args.db else None
    last_tick = time.monotonic()

    # Keep the server running
    try:
        while True:
            if ledger is not None:
                if args.tick_every and time.monotonic() - last_tick >= args.tick_every:
                    result = ledger.tick()
                    logger.info("Scheduled tick completed", summary=result.summary())
                    last_tick = time.monotonic()
                refresh_gauges(ledger)
            time.sleep(args.refresh_seconds if ledger is not None else 1)
    except KeyboardInterrupt:
        logger.info("Shutting down metrics server")


if __name__ == "__main__":
    main()
