"""
Expiration worker process.

Consumes due expiry jobs until SIGINT/SIGTERM. Run several of these against
the same Redis queue to scale out.

Usage:
    python -m scripts.run_worker
    python -m scripts.run_worker --config config/settings.yaml --log-level DEBUG
"""
from __future__ import annotations

import argparse
import asyncio
import signal

from dotenv import load_dotenv

from config.settings import Settings, load_settings
from core.runtime import ExpiryRuntime
from utils.log_setup import configure_logging


async def run(settings: Settings):
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    async with ExpiryRuntime(settings):
        await stop_event.wait()


def main():
    parser = argparse.ArgumentParser(description="Nightlight expiration worker")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--log-level", default=None, help="Overrides the configured log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    args = parser.parse_args()

    load_dotenv()
    settings = load_settings(args.config)
    configure_logging(args.log_level or settings.log_level, json_output=args.json_logs)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
