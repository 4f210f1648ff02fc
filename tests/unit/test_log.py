"""Tests for structlog configuration."""

from __future__ import annotations

import logging

import structlog

from pipeline_it.observability.log import configure_logging


class TestConfigureLogging:
    def teardown_method(self) -> None:
        structlog.reset_defaults()

    def test_json_output_uses_json_renderer(self):
        configure_logging(json_output=True)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_output_by_default(self):
        configure_logging()
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_level_filters_lower_events(self):
        configure_logging(level=logging.WARNING)
        logger = structlog.get_logger()
        # Filtered levels return None without rendering.
        assert logger.info("ignored") is None
