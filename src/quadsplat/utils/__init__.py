"""Utility modules for quadsplat."""
from __future__ import annotations

from .logging import setup_logging, get_logger, ProgressTracker
from .io import (
    SplatLoadError,
    fetch_bytes,
    save_json,
    load_json,
    save_arrays,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "ProgressTracker",
    # I/O
    "SplatLoadError",
    "fetch_bytes",
    "save_json",
    "load_json",
    "save_arrays",
]
