"""Structured logging infrastructure with cycle ID tracking.

This module configures logging for rpc-monitor: a console handler, an
optional syslog handler, and a filter that stamps every record with the
identifier of the poll cycle that produced it. The cycle ID lives in a
ContextVar so it is inherited by every probe task spawned for the cycle.
"""

import contextvars
import logging
import logging.handlers
import sys
from typing import Final, override

# Cycle ID context variable; inherited by asyncio tasks created within a cycle
cycle_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "cycle_id",
    default=None,
)

DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - [%(cycle_id)s] - %(message)s"

SYSLOG_LOG_FORMAT: Final[str] = "rpc-monitor[%(process)d]: %(levelname)s - [%(cycle_id)s] - %(name)s - %(message)s"

DEFAULT_SYSLOG_ADDRESS: Final[str] = "/dev/log"


class CycleIDFilter(logging.Filter):
    """Logging filter that adds the current cycle ID to log records.

    Records emitted outside a poll cycle carry ``"N/A"``.
    """

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        cycle_id = cycle_id_var.get()
        record.cycle_id = cycle_id if cycle_id is not None else "N/A"
        return True


def configure_logging(
    *,
    log_level: str = "INFO",
    enable_syslog: bool = False,
    syslog_address: str = DEFAULT_SYSLOG_ADDRESS,
    enable_console: bool = True,
) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_syslog: Enable syslog handler
        syslog_address: Syslog socket address (default: /dev/log)
        enable_console: Enable console output handler

    Example:
        >>> configure_logging(log_level="INFO")
        >>> logger = logging.getLogger(__name__)
        >>> logger.info("Cycle complete", extra={"endpoints": 4})
    """
    root_logger = logging.getLogger()
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    cycle_filter = CycleIDFilter()

    if enable_syslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
            syslog_handler.setFormatter(logging.Formatter(SYSLOG_LOG_FORMAT))
            syslog_handler.addFilter(cycle_filter)
            root_logger.addHandler(syslog_handler)
        except OSError as exc:
            # Syslog not available (e.g. containers); console only
            print(
                f"Warning: Could not connect to syslog at {syslog_address}: {exc}",
                file=sys.stderr,
            )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        console_handler.addFilter(cycle_filter)
        root_logger.addHandler(console_handler)

    # aiohttp access logs are noisy at INFO
    logging.getLogger("aiohttp.access").setLevel(max(level, logging.WARNING))


def set_cycle_id(cycle_id: str) -> contextvars.Token[str | None]:
    """Set the cycle ID for the current context.

    Returns:
        Token that restores the previous value via ``reset_cycle_id``
    """
    return cycle_id_var.set(cycle_id)


def reset_cycle_id(token: contextvars.Token[str | None]) -> None:
    cycle_id_var.reset(token)


def get_cycle_id() -> str | None:
    return cycle_id_var.get()
