"""Unit tests for logging configuration."""
from __future__ import annotations

import logging

import pytest

from liquidator.logging_setup import configure_logging


class TestConfigureLogging:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("INFO", logging.INFO),
            ("DEBUG", logging.DEBUG),
            ("warning", logging.WARNING),
            ("NONEXISTENT", logging.INFO),
        ],
    )
    def test_root_level(self, name: str, expected: int) -> None:
        configure_logging(name)
        assert logging.getLogger().level == expected

    def test_aiohttp_kept_at_warning_under_debug(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("aiohttp").level == logging.WARNING
        assert not logging.getLogger("aiohttp").isEnabledFor(logging.INFO)
        assert logging.getLogger("liquidator.services.engine").isEnabledFor(logging.DEBUG)

    def test_reconfiguring_replaces_handler(self) -> None:
        configure_logging("INFO")
        configure_logging("DEBUG")

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert "%(name)s: %(message)s" in handlers[0].formatter._fmt
