"""Loguru sink configuration for ingestion jobs.

Library modules only ever call ``logger.<level>(...)``; sinks are installed
by the job entry point (DAG task, notebook, script) through
:func:`configure_logging`.
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel

CONSOLE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} - {message}"


class LogConfig(BaseModel):
    """Sink options.

    Parameters
    ----------
    level
        Minimum level for the console and the combined log file.
    serialize
        Emit JSON lines on the console instead of the human format.
    log_file
        Optional combined log file (JSON lines, every level >= ``level``).
    error_file
        Optional error-only log file (JSON lines).
    """

    level: str = "INFO"
    serialize: bool = False
    log_file: Optional[Path] = None
    error_file: Optional[Path] = None


def configure_logging(level: str = "INFO", **kwargs) -> list[int]:
    """Replace loguru's sinks according to :class:`LogConfig`.

    Returns
    -------
    list[int]
        Handler ids, usable with ``logger.remove``.
    """
    config = LogConfig(level=level, **kwargs)
    logger.remove()

    handler_ids = [
        logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            serialize=config.serialize,
        )
    ]
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(logger.add(config.log_file, level=config.level, serialize=True))
    if config.error_file is not None:
        config.error_file.parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(logger.add(config.error_file, level="ERROR", serialize=True))
    return handler_ids
