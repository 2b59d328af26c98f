"""
Tests for centralized logging configuration.
"""

import logging
from contextlib import contextmanager

from feature_warehouse.logging_config import configure_logging


@contextmanager
def bare_root_logger():
    """Root logger with its handlers (pytest's included) removed inside the block."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers.clear()
    try:
        yield root
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


class TestConfigureLogging:
    def test_configure_logging_is_idempotent(self):
        with bare_root_logger() as root:
            # Act
            configure_logging("DEBUG")
            handlers_after_first = len(root.handlers)
            configure_logging("INFO")

            # Assert
            assert handlers_after_first == 1
            assert len(root.handlers) == 1
            assert root.level == logging.DEBUG

    def test_configure_logging_keeps_existing_handlers(self):
        with bare_root_logger() as root:
            # Arrange
            handler = logging.NullHandler()
            root.addHandler(handler)

            # Act
            configure_logging(logging.INFO)

            # Assert
            assert root.handlers == [handler]
