"""Application entry point and CLI for rpc-monitor.

This module implements the main entry point: CLI argument parsing,
configuration loading, logging setup, and monitor service lifecycle
management with graceful shutdown on SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import NoReturn

from rpc_monitor.app.server import ApiServer
from rpc_monitor.app.service import MonitorService
from rpc_monitor.core.config import (
    DEFAULT_CONFIG_PATH,
    ConfigurationError,
    EnvironmentVariableError,
    load_main_config,
)
from rpc_monitor.utils.http_client import AIOHTTPClient
from rpc_monitor.utils.logging import configure_logging

__all__ = ["main"]

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 1


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for rpc-monitor.

    CLI Arguments:
        --config, -c: Path to main configuration file
        --log-level: Override log level from config
        --method: Override the initial probe method
        --port: Override the HTTP API port
        --no-server: Do not serve the HTTP API
        --no-syslog: Disable syslog integration
        --once: Run a single poll cycle, print the snapshot as JSON, and exit
    """
    parser = argparse.ArgumentParser(
        prog="rpc-monitor",
        description="Monitor the health and block height of blockchain JSON-RPC endpoints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rpc-monitor
  rpc-monitor --config /path/to/config.yaml
  rpc-monitor --method chain_getFinalizedHead --log-level DEBUG
  rpc-monitor --once --no-server
        """,
    )

    _ = parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to main configuration file (default: {DEFAULT_CONFIG_PATH})",
        metavar="PATH",
    )
    _ = parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration",
        metavar="LEVEL",
    )
    _ = parser.add_argument(
        "--method",
        type=str,
        help="Override the probe method from configuration",
        metavar="METHOD",
    )
    _ = parser.add_argument(
        "--port",
        type=int,
        help="Override the HTTP API port from configuration",
        metavar="PORT",
    )
    _ = parser.add_argument(
        "--no-server",
        action="store_true",
        help="Do not serve the HTTP API",
    )
    _ = parser.add_argument(
        "--no-syslog",
        action="store_true",
        help="Disable syslog integration (useful for development)",
    )
    _ = parser.add_argument(
        "--once",
        action="store_true",
        help="Run one poll cycle, print the snapshot as JSON, and exit",
    )

    return parser.parse_args(argv)


async def async_main(
    *,
    config_path: Path,
    log_level: str | None = None,
    method: str | None = None,
    port: int | None = None,
    serve: bool = True,
    enable_syslog: bool = True,
    run_once: bool = False,
) -> None:
    """Async main function implementing application lifecycle.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    config = load_main_config(config_path)

    if log_level is not None:
        config.application.log_level = log_level
    if method:
        config.monitor.method = method
    if port is not None:
        config.server.port = port

    configure_logging(
        log_level=config.application.log_level,
        enable_syslog=enable_syslog and config.application.syslog_enabled,
        enable_console=not run_once,
    )
    logger = logging.getLogger(__name__)
    logger.info(
        "rpc-monitor starting",
        extra={"config_path": str(config_path), "endpoints": len(config.endpoints), "method": config.monitor.method},
    )

    async with AIOHTTPClient() as client:
        service = MonitorService(config, client)

        if run_once:
            snapshot = await service.run_once()
            print(json.dumps(snapshot.to_list(), indent=2))
            return

        shutdown_event = asyncio.Event()

        def request_shutdown() -> None:
            if not shutdown_event.is_set():
                logger.info("Shutdown signal received, requesting graceful shutdown")
                shutdown_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, request_shutdown)

        server: ApiServer | None = None
        try:
            await service.start()
            if serve and config.server.enabled:
                server = ApiServer(service, host=config.server.host, port=config.server.port)
                await server.start()
            _ = await shutdown_event.wait()
        except Exception as exc:
            logger.exception("Monitor failed during execution", extra={"error": str(exc)})
            raise
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                _ = loop.remove_signal_handler(sig)
            if server is not None:
                await server.stop()
            await service.shutdown()
            logger.info("rpc-monitor shutdown complete")


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for rpc-monitor.

    Exit Codes:
        0: Clean shutdown
        1: Configuration error or runtime error
    """
    args = parse_arguments(argv)

    # Extract args with type annotations to avoid reportAny at argparse boundary
    config_path_arg: Path = args.config  # pyright: ignore[reportAny]  # argparse boundary
    log_level_arg: str | None = args.log_level  # pyright: ignore[reportAny]  # argparse boundary
    method_arg: str | None = args.method  # pyright: ignore[reportAny]  # argparse boundary
    port_arg: int | None = args.port  # pyright: ignore[reportAny]  # argparse boundary
    no_server_arg: bool = args.no_server  # pyright: ignore[reportAny]  # argparse boundary
    no_syslog_arg: bool = args.no_syslog  # pyright: ignore[reportAny]  # argparse boundary
    once_arg: bool = args.once  # pyright: ignore[reportAny]  # argparse boundary

    try:
        asyncio.run(
            async_main(
                config_path=config_path_arg,
                log_level=log_level_arg,
                method=method_arg,
                port=port_arg,
                serve=not no_server_arg,
                enable_syslog=not no_syslog_arg,
                run_once=once_arg,
            )
        )

    except ConfigurationError as exc:
        print(f"Configuration error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except EnvironmentVariableError as exc:
        print(f"Environment variable error:\n{exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    except KeyboardInterrupt:
        print("\nShutdown complete", file=sys.stderr)
        sys.exit(EXIT_SUCCESS)

    except Exception as exc:
        print(f"Unexpected error: {exc}", file=sys.stderr)
        logging.exception("Unexpected error during application execution")
        sys.exit(EXIT_RUNTIME_ERROR)

    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
