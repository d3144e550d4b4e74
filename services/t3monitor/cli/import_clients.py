"""
Run one client import pass.

Run via: python -m t3monitor.cli.import_clients [--client-id N] [--loop]

Connection and HTTP settings come from T3MONITOR_* environment variables
or /etc/t3monitor/config.yaml (see t3monitor.config).
Exit status is 1 when at least one client failed to import.
"""

import argparse
import asyncio
import sys

from t3monitor.config import settings
from t3monitor.db.session import close_db, init_db
from t3monitor.logging_config import configure_logging, get_logger
from t3monitor.services.client_import import import_clients, run_importer

logger = get_logger("t3monitor.cli.import_clients")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import status reports from monitored clients")
    parser.add_argument("--client-id", type=int, default=None, help="Import only this client")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running, one pass every importer.interval_seconds",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)

    await init_db()
    try:
        if args.loop:
            await run_importer()
            return 0
        counts = await import_clients(args.client_id)
    finally:
        await close_db()

    print(f"success={counts['success']} error={counts['error']}")
    return 1 if counts["error"] else 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
