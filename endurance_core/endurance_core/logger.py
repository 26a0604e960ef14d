"""
Logging setup for the endurance tray runtime.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger

LOG_DIR = Path(os.environ.get("LOCALAPPDATA", str(Path.home() / "AppData" / "Local"))) / "GPU Endurance"
DEFAULT_LOG_PATH = LOG_DIR / "endurance.log"

_active_log_path: Optional[Path] = None


def configure(log_path: Optional[Path] = None) -> Path:
    """
    Install a console sink (when pythonw left us a stderr) and a rotating
    DEBUG file sink. Only the first call takes effect; the active log file
    path is returned either way.
    """
    global _active_log_path
    if _active_log_path is not None:
        return _active_log_path

    target = log_path or DEFAULT_LOG_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    _logger.remove()
    if sys.stderr is not None:
        _logger.add(sys.stderr, level="INFO")
    _logger.add(target, level="DEBUG", rotation="10 MB", retention=5, encoding="utf-8", diagnose=False)
    _active_log_path = target
    return target


def get_logger():
    configure()
    return _logger
