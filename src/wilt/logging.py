"""Structlog configuration.

The terminal belongs to the TUI while wilt runs, so log events go to a
rotating JSON Lines file instead of the console.
"""

from __future__ import annotations

import logging
import logging.handlers
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from wilt.config import Config


def configure(config: Config) -> None:
    """Configure structlog to write JSON lines to the log file.

    With logging disabled the root logger gets a NullHandler and nothing is
    written anywhere.

    Args:
        config: Application config with paths and logging settings
    """
    stdlib_root = logging.getLogger()
    stdlib_root.handlers.clear()

    if not config.logging.enabled:
        stdlib_root.addHandler(logging.NullHandler())
        stdlib_root.setLevel(logging.CRITICAL)
    else:
        level = getattr(logging, config.logging.level.upper())
        config.state_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_path,
            maxBytes=config.logging.max_bytes,
            backupCount=config.logging.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=[
                    structlog.contextvars.merge_contextvars,
                    structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                    structlog.processors.add_log_level,
                    structlog.processors.format_exc_info,
                ],
            )
        )
        stdlib_root.addHandler(file_handler)
        stdlib_root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
