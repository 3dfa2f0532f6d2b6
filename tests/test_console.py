"""Tests for console.py module."""

from unittest.mock import patch

from telegraf_injector import console
from telegraf_injector.console import Reporter


class TestReporterOutput:
    """Tests for Reporter output methods."""

    def test_info_message(self):
        """Test info message format."""
        with patch.object(console.console, "log") as mock_log:
            Reporter("injector").info("Test message")
            mock_log.assert_called_once()
            call_arg = mock_log.call_args[0][0]
            assert "ℹ" in call_arg
            assert "injector" in call_arg
            assert "Test message" in call_arg

    def test_success_message(self):
        """Test success message format."""
        with patch.object(console.console, "log") as mock_log:
            Reporter().success("Operation complete")
            call_arg = mock_log.call_args[0][0]
            assert "✓" in call_arg
            assert "Operation complete" in call_arg

    def test_warning_message(self):
        """Test warning message format."""
        with patch.object(console.console, "log") as mock_log:
            Reporter().warning("Be careful")
            call_arg = mock_log.call_args[0][0]
            assert "⚠" in call_arg
            assert "Be careful" in call_arg

    def test_error_message_with_exception(self):
        """Test that the exception text is appended to error messages."""
        with patch.object(console.console, "log") as mock_log:
            Reporter().error("Something failed", ValueError("bad value"))
            call_arg = mock_log.call_args[0][0]
            assert "✗" in call_arg
            assert "Something failed: bad value" in call_arg

    def test_debug_only_when_verbose(self):
        """Test that debug messages are dropped unless verbose."""
        with patch.object(console.console, "log") as mock_log:
            Reporter().debug("hidden")
            mock_log.assert_not_called()

            Reporter(verbose=True).debug("shown")
            mock_log.assert_called_once()
            assert "shown" in mock_log.call_args[0][0]

    def test_markup_escaped(self, reporter, log_output):
        """Test that TOML table headers in messages are printed literally."""
        reporter.info("merged tags into [global_tags]")
        assert "[global_tags]" in log_output.getvalue()


class TestReporterChild:
    """Tests for Reporter.child."""

    def test_child_name_and_settings(self):
        """Test that children extend the name and keep verbosity."""
        child = Reporter("telegraf-injector", verbose=True).child("secrets")
        assert child.name == "telegraf-injector.secrets"
        assert child.verbose is True

    def test_child_shares_console(self, reporter, log_output):
        """Test that children write to the parent's console."""
        reporter.child("watcher").info("adding item to watch")
        assert "test.watcher" in log_output.getvalue()


class TestSummaryPanel:
    """Tests for summary panel."""

    def test_summary_panel(self):
        """Test summary panel creates a panel."""
        with patch.object(console.console, "print") as mock_print:
            console.summary_panel("Settings", {"Image": "telegraf:1.19", "Default class": "default"})
            mock_print.assert_called_once()
