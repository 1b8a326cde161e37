"""
Tests for the logging helpers
"""

import logging

from autoscaling.logger import ScalingLogger, configure_logging


class TestScalingLogger:
    """Test ScalingLogger levels and formatting"""

    def test_levels(self):
        assert ScalingLogger(name="t_quiet").logger.level == logging.WARNING
        assert ScalingLogger(name="t_verbose", verbose=True).logger.level == logging.INFO
        assert ScalingLogger(name="t_debug", debug=True).logger.level == logging.DEBUG

    def test_single_handler(self):
        """Test re-creating a logger does not duplicate handlers"""
        ScalingLogger(name="t_dup")
        again = ScalingLogger(name="t_dup")

        assert len(again.logger.handlers) == 1
        assert again.logger.propagate is False

    def test_message_prefixes(self, capsys):
        log = ScalingLogger(name="t_prefix", verbose=True)
        log.info("plain")
        log.success("done")
        log.warning("careful")
        log.error("broken")
        log.scaling("up")
        log.emergency("fire")

        out = capsys.readouterr().out
        assert "plain" in out
        assert "✓ done" in out
        assert "careful" in out
        assert "❌ Error: broken" in out
        assert "📈 up" in out
        assert "🚨 fire" in out

    def test_debug_hidden_unless_debug(self, capsys):
        ScalingLogger(name="t_hidden", verbose=True).debug("secret")

        assert "secret" not in capsys.readouterr().out

    def test_cli_console_is_fresh_per_command(self, capsys):
        """Test each CLI console writes to the stdout current at creation"""
        from autoscaling.cli import _console

        first = _console()
        second = _console(debug=True)

        assert first.verbose_mode is True
        assert second.debug_mode is True
        second.success("ready")
        assert "✓ ready" in capsys.readouterr().out


class TestConfigureLogging:
    """Test library logger configuration"""

    def teardown_method(self):
        package_logger = logging.getLogger("autoscaling")
        package_logger.handlers.clear()
        package_logger.setLevel(logging.NOTSET)

    def test_sets_package_level(self):
        configure_logging("WARNING")
        assert logging.getLogger("autoscaling").level == logging.WARNING

        configure_logging("INFO", debug=True)
        assert logging.getLogger("autoscaling").level == logging.DEBUG
        assert len(logging.getLogger("autoscaling").handlers) == 1
