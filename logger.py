import logging
import os
import sys
from datetime import datetime
from typing import Optional

LOG_FORMAT = "{asctime} - {levelname} - {message}"
LOG_DATEFMT = "%Y-%m-%d %H:%M"


def log_file_name(path: str) -> str:
    if os.path.isdir(path):
        file_name = datetime.now().strftime("%Y-%m-%d")
        return os.path.join(path, f"{file_name}.log")
    return path


def configure_logging(filename: Optional[str] = None, verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    if filename:
        # Opened before basicConfig so a bad path leaves the current handlers alone.
        handler = logging.FileHandler(log_file_name(filename), mode="a", encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)

    logging.basicConfig(
        handlers=[handler],
        format=LOG_FORMAT,
        style="{",
        datefmt=LOG_DATEFMT,
        level=level,
        force=True,
    )
