"""CLI para sincronizar glucosa, comidas e insulina de Nightscout a LibreView."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

from ns_libre_sync.config import (
    EnvironmentProvider,
    PromptProvider,
    Resolution,
    resolve_config,
)
from ns_libre_sync.errors import SyncError
from ns_libre_sync.model import RunMode
from ns_libre_sync.planner import plan_window
from ns_libre_sync.sinks.libreview import DEFAULT_BASE_URL, LibreViewSink
from ns_libre_sync.sources.nightscout import NightscoutSource
from ns_libre_sync.storage import ConfigStore, CursorStore
from ns_libre_sync.sync import SyncOrchestrator

logger = logging.getLogger(__name__)

CANCELLED_EXIT_CODE = 130


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed argparse namespace.
    """
    parser = argparse.ArgumentParser(
        description="Copy Nightscout glucose, food and insulin entries to LibreView."
    )
    parser.add_argument(
        "--config-dir",
        default="config",
        help="Directory holding config.json and last.json (default: ./config).",
    )
    parser.add_argument(
        "--env-file",
        default="config.env",
        help="dotenv file with the automatic-mode settings (default: config.env).",
    )
    parser.add_argument(
        "--grace-seconds",
        type=float,
        default=10.0,
        help="Seconds to wait before an automatic run, to allow Ctrl+C (default: 10).",
    )
    parser.add_argument(
        "--reconfigure",
        action="store_true",
        help="Ask for the configuration again even if automatic mode is saved.",
    )
    parser.add_argument(
        "--parallel-fetch",
        action="store_true",
        help="Fetch glucose, food and insulin from Nightscout concurrently.",
    )
    parser.add_argument(
        "--libre-url",
        default=DEFAULT_BASE_URL,
        help=f"LibreView API base URL (default: {DEFAULT_BASE_URL}).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run one sync.

    Returns:
        Exit code: 0 on success or nothing to transfer, otherwise the
        ``exit_code`` of the error that stopped the run.
    """
    ns = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, ns.log_level),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    env_file = Path(ns.env_file).expanduser()
    if env_file.is_file():
        load_dotenv(env_file)

    config_dir = Path(ns.config_dir).expanduser().resolve()
    config_store = ConfigStore(config_dir / "config.json")
    cursor_store = CursorStore(config_dir / "last.json")

    try:
        resolution = resolve_config(
            config_store.load(),
            EnvironmentProvider(os.environ),
            PromptProvider() if sys.stdin.isatty() else None,
            config_store,
            reconfigure=ns.reconfigure,
        )
        if not resolution.should_sync:
            logger.info(
                "Auto mode enabled for next run using the config in %s",
                config_store.path,
            )
            return 0

        if resolution.mode is RunMode.AUTOMATIC and not _wait_grace(resolution, ns.grace_seconds):
            return CANCELLED_EXIT_CODE

        config = resolution.config
        logger.info("Mode: %s", resolution.mode.value)
        window = plan_window(
            resolution.mode,
            cursor_store.load(),
            resolution.year,
            resolution.month,
        )
        orchestrator = SyncOrchestrator(
            NightscoutSource(config.nightscout_url, config.nightscout_token),
            LibreViewSink(ns.libre_url),
            cursor_store,
            concurrent_fetch=ns.parallel_fetch,
        )
        result = orchestrator.run(config, window, resolution.reset_device)
    except SyncError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return exc.exit_code

    logger.info("Run finished: %s %s", result.status.value, result.counts)
    return 0


def _wait_grace(resolution: Resolution, seconds: float) -> bool:
    """Log the automatic config and give the operator time to cancel."""
    logger.info(
        "Using automatic mode, press Ctrl+C within %g seconds to cancel. "
        "Run with --reconfigure to show the prompts again.",
        seconds,
    )
    logger.info("Configuration: %s", resolution.config.masked())
    try:
        time.sleep(seconds)
    except KeyboardInterrupt:
        logger.warning("Cancelled by operator")
        return False
    return True
