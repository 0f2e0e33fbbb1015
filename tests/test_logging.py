"""Tests for the logging setup."""

import logging

import logfire

from utils.logger import configure_logging


def _logfire_handlers():
    return [
        handler
        for handler in logging.getLogger().handlers
        if isinstance(handler, logfire.LogfireLoggingHandler)
    ]


def test_stdlib_records_are_bridged_into_logfire(settings):
    configure_logging(settings)

    assert len(_logfire_handlers()) == 1


def test_repeated_configuration_does_not_duplicate_the_bridge(settings):
    configure_logging(settings)
    configure_logging(settings)

    assert len(_logfire_handlers()) == 1
