"""
Structured logging configuration for load test runs

Usage:
    from utils.logging import setup_logging

    # Setup logging (call once at process startup)
    setup_logging(level="INFO", log_file="/var/log/loadtest/run.log")

    logger = logging.getLogger(__name__)
    logger.info("Stage started", extra={"stage": 2, "target": 50})
"""

from .config import setup_logging, shutdown_logging
from .formatters import ConsoleFormatter, JSONFormatter
from .handlers import ContextLogger

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextLogger",
]
