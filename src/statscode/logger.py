from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


LOG_FORMAT = "%(asctime)s - %(levelname)s - %(process)d - %(name)s:%(lineno)d - %(message)s"
MAX_LOG_BYTES = 1024 * 1024
LOG_BACKUPS = 3


class ProjectFilter(logging.Filter):
    def __init__(self, project_name: str) -> None:
        super().__init__()
        self.project_name = project_name

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(self.project_name) or record.name in ("__main__", "py.warnings")


def setup_logging(log_dir: Path | str, *, debug: bool = False) -> None:
    """Attach rotating file handlers (and stderr when debugging) to the root logger.

    Hook processes share stdout with the host, so nothing is ever written there.
    """

    if isinstance(log_dir, str):
        log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)
    logging.captureWarnings(True)
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    info_handler = RotatingFileHandler(
        log_dir / "statscode.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    info_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    info_handler.setFormatter(formatter)
    info_handler.addFilter(ProjectFilter("statscode"))
    root_logger.addHandler(info_handler)

    error_handler = RotatingFileHandler(
        log_dir / "error.log",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    root_logger.addHandler(error_handler)

    if debug:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(ProjectFilter("statscode"))
        root_logger.addHandler(console_handler)
