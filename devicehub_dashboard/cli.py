"""Command-line entry point: load settings, configure logging, serve."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from . import __version__
from .config import load_settings
from .errors import ConfigurationError
from .logging_config import configure_logging

log = logging.getLogger(__name__)


# ── argument parsing ──────────────────────────────────────────────────────────

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="devicehub-dashboard",
        description="Read-only live status dashboard for the DeviceHub fleet.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Required environment:\n"
            "  API_BASE      base URL of the main service\n"
            "  STATS_TOKEN   shared secret for the counts endpoint\n"
            "\n"
            "Examples:\n"
            "  API_BASE=https://main.example.com STATS_TOKEN=... devicehub-dashboard\n"
            "  devicehub-dashboard --config dashboard.yaml --port 9000\n"
        ),
    )
    parser.add_argument(
        "--config", "-c",
        metavar="PATH",
        help="YAML settings file (default: $DASHBOARD_CONFIG if set)",
    )
    parser.add_argument(
        "--host",
        help="Interface to bind (default: $HOST or 0.0.0.0)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Port to listen on (default: $PORT or 8080)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Log level (default: $LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"devicehub-dashboard {__version__}",
    )
    return parser.parse_args(argv)


# ── main entry point ──────────────────────────────────────────────────────────

def run(argv=None) -> None:
    args = parse_args(argv)

    # Command-line values outrank the environment and go through the same checks.
    environ = dict(os.environ)
    for name, value in (("HOST", args.host), ("PORT", args.port), ("LOG_LEVEL", args.log_level)):
        if value is not None:
            environ[name] = str(value)

    try:
        settings = load_settings(args.config, environ)
    except ConfigurationError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        sys.exit(2)

    configure_logging(settings.log_level, settings.log_format)

    import uvicorn
    from .main import create_app

    app = create_app(settings)
    log.info("Dashboard listening on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
