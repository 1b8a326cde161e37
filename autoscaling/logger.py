"""
Logging utilities for the auto-scaling service
"""
import logging
import sys


def configure_logging(level: str = "INFO", debug: bool = False) -> None:
    """Configure the package's library loggers"""
    package_logger = logging.getLogger("autoscaling")
    package_logger.setLevel(logging.DEBUG if debug else getattr(logging, level))

    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
        ))
        package_logger.addHandler(handler)


class ScalingLogger:
    """Console logger for CLI output with debug mode support"""

    def __init__(self, name: str = "autoscaler", debug: bool = False, verbose: bool = False):
        self.logger = logging.getLogger(name)
        self.debug_mode = debug
        self.verbose_mode = verbose

        # Remove existing handlers to avoid duplication
        self.logger.handlers.clear()
        self.logger.propagate = False

        if debug:
            self.logger.setLevel(logging.DEBUG)
        elif verbose:
            self.logger.setLevel(logging.INFO)
        else:
            self.logger.setLevel(logging.WARNING)

        handler = logging.StreamHandler(sys.stdout)

        if debug:
            formatter = logging.Formatter('[%(levelname)s] %(name)s:%(lineno)d - %(message)s')
        else:
            formatter = logging.Formatter('%(message)s')

        handler.setFormatter(formatter)
        self.logger.addHandler(handler)

    def debug(self, message: str) -> None:
        """Log debug message"""
        self.logger.debug(f"DEBUG: {message}")

    def info(self, message: str) -> None:
        """Log info message"""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log warning message"""
        self.logger.warning(f"⚠️  {message}")

    def error(self, message: str) -> None:
        """Log error message"""
        self.logger.error(f"❌ Error: {message}")

    def success(self, message: str) -> None:
        """Log success message"""
        self.logger.info(f"✓ {message}")

    def scaling(self, message: str) -> None:
        """Log a scaling event line"""
        self.logger.info(f"📈 {message}")

    def emergency(self, message: str) -> None:
        """Log an emergency scaling line"""
        self.logger.warning(f"🚨 {message}")
