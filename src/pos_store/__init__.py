"""Local-first point-of-sale store.

Importing the package sets up ``log``: a size-rotated file under the log
directory plus warnings on stderr. ``POS_STORE_LOG_DIR`` moves the file and
``POS_STORE_LOG_LEVEL`` changes how much of it is written.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("POS_STORE_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "pos_store.log"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


def _level_from_env(default: int = logging.INFO) -> int:
    name = os.environ.get("POS_STORE_LOG_LEVEL", "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _level_from_env()
    logger.setLevel(level)
    # Sync and timer threads log too; the thread name tells them apart.
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        store_log = RotatingFileHandler(LOG_FILE, maxBytes=2_000_000, backupCount=3, encoding="utf-8")
    except OSError as exc:
        sys.stderr.write(f"pos_store: logging to stderr only ({LOG_FILE}: {exc})\n")
    else:
        store_log.setLevel(level)
        store_log.setFormatter(formatter)
        logger.addHandler(store_log)

    alerts = logging.StreamHandler(sys.stderr)
    alerts.setLevel(max(level, logging.WARNING))
    alerts.setFormatter(formatter)
    logger.addHandler(alerts)
    return logger


log = _configure_logging()
