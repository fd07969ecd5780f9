# pyright: standard

"""backup-courier: backup_courier/__logger__.py
A common logger for displaying through rich.
"""

import logging
import logging.handlers
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

# Initialize basic console and handler
cons = Console(stderr=True)
rich_handler = RichHandler(console=cons, show_path=False)

LOG_FORMAT = "%(asctime)s %(levelname)s (%(threadName)s) %(name)s: %(message)s"


def create_logger(
    level: str | int = "INFO",
    log_file: str | Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Helper function to setup logging for console and optional log file."""
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = Console(stderr=True)
    rich_handler = RichHandler(console=cons, show_path=False)

    handlers: list[logging.Handler] = [rich_handler]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        format="(%(threadName)s) %(message)s",
        datefmt="%H:%M:%S",
        level=level,
        handlers=handlers,
        force=True,
    )
