"""
Logger wrappers that attach context to every record.

ContextLogger is what a virtual user logs through, so each line carries the
workload name, VU ordinal and current iteration.
"""

import logging
from typing import Any


class ContextLogger:
    """
    Logger wrapper that adds contextual information to all log messages

    Usage:
        logger = ContextLogger("loadtest.vu", workload="crud", vu=3)
        logger.info("Insert failed", iteration=12)
        # Output includes workload, vu and iteration
    """

    def __init__(self, name: str, **context):
        self.logger = logging.getLogger(name)
        self.context = context

    def _log(self, level: int, msg: str, *args, exc_info=None, **kwargs) -> None:
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(
            level,
            msg,
            *args,
            exc_info=exc_info,
            extra={**self.context, **kwargs},
            stacklevel=3,
        )

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, exc_info=None, **kwargs) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)

    def update_context(self, **context) -> None:
        """Merge new key-value pairs into the logger's context."""
        self.context.update(context)

    def get_context(self) -> dict[str, Any]:
        return self.context.copy()
