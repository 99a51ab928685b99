from __future__ import annotations

import logging
import os
import platform
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_NAME = "log.txt"
LOG_FORMAT = "%(asctime)s %(name)s\n%(levelname)s: %(message)s"

_ROOT = "alloymodelsets"


def configure_logging(
    model_set_dir: Optional[Path] = None,
    *,
    level: int = logging.INFO,
    console: Optional[Console] = None,
) -> logging.Logger:
    """Console output through rich plus an appending ``log.txt`` in the model set."""
    logger = logging.getLogger(_ROOT)
    logger.setLevel(level)
    logger.propagate = False
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        rich_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
        rich_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(rich_handler)
    if model_set_dir is not None:
        log_path = (model_set_dir / LOG_NAME).resolve()
        for handler in logger.handlers:
            if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path:
                break
        else:
            file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(file_handler)
    return logger


def close_file_handlers() -> None:
    logger = logging.getLogger(_ROOT)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


def _memory_bytes() -> Optional[int]:
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
    except (AttributeError, ValueError, OSError):
        return None


def platform_summary() -> str:
    memory = _memory_bytes()
    lines = [
        "This program is running on the following platform:",
        f"Operating System: {platform.platform()} : {platform.machine()}",
        f"CPU: {platform.processor() or 'unknown'} ({os.cpu_count()} cores)",
        f"Memory: {memory // (1024 ** 2)} MiB" if memory is not None else "Memory: unknown",
        f"Python: {platform.python_version()}",
    ]
    return "\n".join(lines)
