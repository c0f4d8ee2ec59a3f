"""Unit tests for logging configuration."""

from loguru import logger

from plate_registry.core.logging import setup_logging


class TestLogging:
    """Tests for Loguru logging setup."""

    def test_setup_logging_does_not_raise(self) -> None:
        """setup_logging with valid log level does not raise."""
        setup_logging("DEBUG")
        setup_logging("INFO")
        setup_logging("WARNING")

    def test_setup_logging_case_insensitive(self) -> None:
        """setup_logging accepts case-insensitive log levels."""
        setup_logging("info")
        setup_logging("debug")

    def test_log_dir_adds_file_sink(self, tmp_path) -> None:
        """A log directory gets a log file with emitted records."""
        log_dir = tmp_path / "logs"
        setup_logging("INFO", str(log_dir))
        logger.info("Import job started")
        setup_logging("INFO")  # closes the file sink

        log_file = log_dir / "plate-registry.log"
        assert log_file.exists()
        assert "Import job started" in log_file.read_text()
