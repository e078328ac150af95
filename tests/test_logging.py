import json
import logging
import sys
import pytest

from clinic_booking.core.config import settings
from clinic_booking.core.logging_config import JSONFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    """configure_logging replaces the root handlers; put the originals back"""
    root_logger = logging.getLogger()
    handlers, level = root_logger.handlers[:], root_logger.level
    # Detach them first so configure_logging does not close them
    for handler in handlers:
        root_logger.removeHandler(handler)
    yield root_logger
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


@pytest.mark.unit
class TestLoggingConfig:
    """Root handler setup for the API and the workers."""

    def test_json_formatter(self) -> None:
        record = logging.LogRecord(
            "clinic_booking.domain.appointments.service", logging.INFO, __file__, 1,
            "Slot %s removed", ("abc",), None
        )

        body = json.loads(JSONFormatter().format(record))

        assert body["level"] == "INFO"
        assert body["logger"] == "clinic_booking.domain.appointments.service"
        assert body["message"] == "Slot abc removed"
        assert "timestamp" in body
        assert "exception" not in body

    def test_json_formatter_includes_traceback(self) -> None:
        try:
            raise RuntimeError("gateway down")
        except RuntimeError:
            record = logging.LogRecord("worker", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        body = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: gateway down" in body["exception"]

    def test_json_switch(self, restore_root_logger) -> None:
        configure_logging("DEBUG", use_json_format=True)

        (handler,) = restore_root_logger.handlers
        assert isinstance(handler.formatter, JSONFormatter)
        assert restore_root_logger.level == logging.DEBUG

        configure_logging("warning")

        (handler,) = restore_root_logger.handlers
        assert not isinstance(handler.formatter, JSONFormatter)
        assert restore_root_logger.level == logging.WARNING

    def test_json_is_off_by_default(self) -> None:
        assert type(settings).model_fields["LOG_JSON"].default is False
