"""Utility functions."""

import logging
from collections.abc import MutableMapping
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False) -> None:
    """Setup logging with RichHandler for console output.

    Args:
        verbose: If True, sets logging to DEBUG level and shows file paths.
                If False, sets logging to INFO level and suppresses noisy loggers.
    """
    level = logging.DEBUG if verbose else logging.INFO

    handler = RichHandler(
        console=Console(stderr=True),  # stdout carries JSON results
        rich_tracebacks=True,
        markup=False,  # URLs contain brackets
        show_time=True,
        show_path=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,
    )

    # Suppress noisy loggers unless verbose
    if not verbose:
        logging.getLogger("asyncio").setLevel(logging.WARNING)
        logging.getLogger("playwright").setLevel(logging.WARNING)


class TaskLogger(logging.LoggerAdapter[logging.Logger]):
    """Logger adapter that prefixes messages with the crawler and task id.

    Messages read ``crawlkit:docs:task(1a2b3c4d) Finished runner 'title'``
    so interleaved output of concurrent page attempts stays traceable.
    """

    def __init__(self, logger: logging.Logger, task_id: str, name: str | None = None) -> None:
        prefix = f"crawlkit:{name}" if name else "crawlkit"
        super().__init__(logger, {"task_id": task_id, "prefix": f"{prefix}:task({task_id})"})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        assert self.extra is not None
        return f"{self.extra['prefix']} {msg}", kwargs


def get_task_logger(task_id: str, name: str | None = None) -> TaskLogger:
    return TaskLogger(logging.getLogger("crawlkit.task"), task_id, name)


def format_duration(seconds: float) -> str:
    """Human-readable duration.

    Examples:
        >>> format_duration(0.2)
        'less than a second'
        >>> format_duration(75)
        '1m 15s'
    """
    if seconds < 1:
        return "less than a second"
    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
