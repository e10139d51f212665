# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Centralized logging configuration.

Usage:
    # In entry points (CLI)
    from trainbox.logging import configure_logging
    configure_logging(level=logging.DEBUG)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Allocated host port %d", port)

Launches run inside a user's interactive SSH session, so the CLI keeps
the root logger at ERROR unless diagnostics are requested.  Recoverable
failures (firewall, routing, store writes) log at WARNING and therefore
stay silent by default.
"""

import logging


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    level: int = logging.ERROR,
    format_string: str | None = None,
) -> None:
    """Configure logging for the application.

    Sets up the root logger with a single stderr handler.

    Args:
        level: The logging level (e.g., logging.ERROR, logging.DEBUG).
        format_string: Custom format string. If None, uses default format.
    """
    if format_string is None:
        format_string = DEFAULT_FORMAT

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)
