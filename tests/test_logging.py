# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for trainbox/logging.py."""

import logging

from trainbox.logging import DEFAULT_FORMAT, configure_logging


class TestConfigureLogging:
    def test_default_level_is_error(self) -> None:
        configure_logging()
        assert logging.getLogger().level == logging.ERROR

    def test_custom_level(self) -> None:
        configure_logging(level=logging.DEBUG)
        assert logging.getLogger().level == logging.DEBUG

    def test_single_handler(self) -> None:
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_default_format(self) -> None:
        configure_logging()
        handler = logging.getLogger().handlers[0]
        assert handler.formatter is not None
        assert handler.formatter._fmt == DEFAULT_FORMAT

    def test_custom_format(self) -> None:
        configure_logging(format_string="%(message)s")
        handler = logging.getLogger().handlers[0]
        assert handler.formatter is not None
        assert handler.formatter._fmt == "%(message)s"
