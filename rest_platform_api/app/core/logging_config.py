"""
Logging setup for the platform.

``setup_logging`` attaches a console handler, and a file handler when a
log file is configured, to the root logger.  Platform modules log
through ``logging.getLogger(__name__)``; package imports and exports
report each finished phase at INFO and every tolerated failure at
WARNING, so the log of a single import reads as its audit trail.
"""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that log every request at DEBUG/INFO.
NOISY_LOGGERS = ("urllib3", "multipart")


def setup_logging(level: str = "INFO", logfile: Optional[str] = None) -> None:
    """Configure the root logger once.

    Parameters
    ----------
    level : str
        Level name such as ``"DEBUG"``; unknown names fall back to INFO.
    logfile : Optional[str]
        File receiving a copy of every record.  Missing parent
        directories are created.
    """
    root = logging.getLogger()
    if root.handlers:
        # Already configured (tests, or ``create_app`` called twice).
        return

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers = [logging.StreamHandler()]
    if logfile:
        log_path = Path(logfile).resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
