"""Logging and stage timing utilities."""
from __future__ import annotations

import json
import logging
import os
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


LOG_FORMAT_ENV = "QUADSPLAT_LOG_FORMAT"


class JSONFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "logger": record.name,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra"):
            log_entry.update(record.extra)

        return json.dumps(log_entry)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for interactive use."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.now().strftime("%H:%M:%S")

        msg = f"{color}[{timestamp}] {record.levelname:8s}{self.RESET} {record.getMessage()}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


def setup_logging(
    level: int = logging.INFO,
    json_format: Optional[bool] = None,
    scene: Optional[str] = None,
) -> logging.Logger:
    """Set up the package logger.

    Args:
        level: Logging level.
        json_format: Emit JSON records. If None, read QUADSPLAT_LOG_FORMAT.
        scene: Optional scene identifier attached to JSON records.

    Returns:
        Configured package logger.
    """
    if json_format is None:
        json_format = os.environ.get(LOG_FORMAT_ENV, "").lower() == "json"

    logger = logging.getLogger("quadsplat")
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())

    if scene:
        def add_scene(record: logging.LogRecord) -> bool:
            record.extra = {"scene": scene}
            return True

        handler.addFilter(add_scene)

    logger.addHandler(handler)
    return logger


def get_logger(name: str = "quadsplat") -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (will be prefixed with 'quadsplat.').

    Returns:
        Logger instance.
    """
    if not name.startswith("quadsplat"):
        name = f"quadsplat.{name}"
    return logging.getLogger(name)


@dataclass
class StageMetrics:
    """Metrics for a single processing stage."""
    stage_name: str
    start_time: float
    end_time: Optional[float] = None
    items_total: int = 0
    items_processed: int = 0
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return time.perf_counter() - self.start_time
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_name": self.stage_name,
            "duration_seconds": self.duration_seconds,
            "items_total": self.items_total,
            "items_processed": self.items_processed,
            "errors": self.errors,
            "metadata": self.metadata,
        }


class ProgressTracker:
    """Track timing and errors across the stages of a scene load.

    Each stage is opened with the ``stage`` context manager; failures are
    recorded on the stage and re-raised.
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or get_logger(name)
        self.stages: List[StageMetrics] = []
        self.start_time = time.perf_counter()

    @contextmanager
    def stage(self, name: str, total_items: int = 0):
        """Context manager for tracking a processing stage.

        Args:
            name: Stage name for logging.
            total_items: Expected number of items to process.

        Yields:
            StageMetrics object for the stage.
        """
        metrics = StageMetrics(
            stage_name=name,
            start_time=time.perf_counter(),
            items_total=total_items,
        )
        self.logger.debug("Starting stage: %s", name)

        try:
            yield metrics
        except Exception as e:
            metrics.errors.append(str(e))
            self.logger.error("Stage %s failed: %s", name, e)
            raise
        finally:
            metrics.end_time = time.perf_counter()
            self.logger.info(
                "Completed stage: %s (%d items in %.3fs)",
                name,
                metrics.items_processed,
                metrics.duration_seconds,
            )
            self.stages.append(metrics)

    def generate_report(self) -> Dict[str, Any]:
        """Summarize all recorded stages."""
        return {
            "name": self.name,
            "total_duration_seconds": time.perf_counter() - self.start_time,
            "stages": [s.to_dict() for s in self.stages],
            "success": all(len(s.errors) == 0 for s in self.stages),
        }
