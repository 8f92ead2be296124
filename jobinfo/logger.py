"""
Structured logging for the job info store.

Provides centralized logging with console and optional file output, plus
operation counters for monitoring info reads, writes and claim checks.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json

from .env import get_log_dir, get_log_level


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks counters for job info operations.
    """

    def __init__(
        self,
        name: str = "jobinfo",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files; file logging is off without one
            enable_file: Write logs to file when log_dir is set
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()
        self.logger.propagate = False

        self.metrics = {
            "info_reads": 0,
            "info_writes": 0,
            "info_iterations": 0,
            "keys_visited": 0,
            "claim_checks": 0,
            "claim_mismatches": 0,
            "unclaimed_writes": 0,
            "errors_by_type": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file and log_dir is not None:
            self.set_log_dir(log_dir)

    def set_log_dir(self, log_dir: Optional[Path]):
        """Replace any file handler with one writing under log_dir (None disables)."""
        for handler in list(self.logger.handlers):
            if isinstance(handler, logging.FileHandler):
                self.logger.removeHandler(handler)
                handler.close()
        if log_dir is None:
            return

        log_dir.mkdir(parents=True, exist_ok=True)

        log_file = log_dir / f"jobinfo_{datetime.now().strftime('%Y%m%d')}.log"
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)  # Always log everything to file
        file_formatter = logging.Formatter(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        self.logger.addHandler(file_handler)

    def set_level(self, level: str):
        """Change the logger and console handler level."""
        numeric = getattr(logging, level.upper())
        self.logger.setLevel(numeric)
        for handler in self.logger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setLevel(numeric)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if not self.logger.isEnabledFor(level):
            return
        if context:
            # Keys and session IDs are bytes; render them with repr.
            message = f"{message} | Context: {json.dumps(context, default=repr)}"
        self.logger.log(level, message)

    # Counters

    def record_info_read(self):
        self.metrics["info_reads"] += 1

    def record_info_write(self, claimed: bool = True):
        """Record a completed write; unclaimed writes are counted separately."""
        self.metrics["info_writes"] += 1
        if not claimed:
            self.metrics["unclaimed_writes"] += 1

    def record_iteration(self, keys_visited: int):
        self.metrics["info_iterations"] += 1
        self.metrics["keys_visited"] += keys_visited

    def record_claim_check(self, matched: bool):
        self.metrics["claim_checks"] += 1
        if not matched:
            self.metrics["claim_mismatches"] += 1

    def record_error(self, error_type: str):
        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def get_metrics(self) -> dict:
        """Return a copy of the current counters."""
        metrics_copy = self.metrics.copy()
        metrics_copy["errors_by_type"] = dict(self.metrics["errors_by_type"])
        checks = metrics_copy["claim_checks"]
        if checks > 0:
            metrics_copy["claim_mismatch_rate"] = round(
                metrics_copy["claim_mismatches"] / checks, 3
            )
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current counters."""
        metrics = self.get_metrics()

        self.info("=== Job Info Metrics ===")
        self.info(f"Reads: {metrics['info_reads']}")
        self.info(
            f"Writes: {metrics['info_writes']} ({metrics['unclaimed_writes']} without a claim session)"
        )
        self.info(f"Iterations: {metrics['info_iterations']} ({metrics['keys_visited']} keys visited)")
        self.info(f"Claim checks: {metrics['claim_checks']} ({metrics['claim_mismatches']} mismatched)")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "jobinfo",
    level: Optional[str] = None,
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level; defaults to JOBINFO_LOG_LEVEL
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        kwargs.setdefault("log_dir", get_log_dir())
        _global_logger = StructuredLogger(name=name, level=level or get_log_level(), **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
