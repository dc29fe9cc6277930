"""
Shared pytest setup.

HumanLog emits at the custom HUMAN level, which needs the stdlib-backed
structlog configuration. Quiet mode installs no handlers.
"""

import logging

import pytest

from copilot_catalog.config.schema import LoggingConfig
from copilot_catalog.logging import configure_logging


@pytest.fixture(autouse=True)
def structured_logging():
    configure_logging(LoggingConfig(), quiet=True)
    yield
    logging.root.handlers.clear()
