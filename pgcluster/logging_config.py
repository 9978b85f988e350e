"""Logging configuration for the cluster orchestrator."""

import logging
import sys
import uuid
from dataclasses import dataclass, field
from pathlib import Path


def setup_logging(level: str = "INFO", log_file: Path | None = None, verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        verbose: If True, set level to DEBUG
    """
    if verbose:
        level = "DEBUG"

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    root_logger.handlers.clear()

    # Console handler (only for WARNING and above by default)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING if not verbose else logging.DEBUG)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except Exception as e:
            logging.warning(f"Failed to create log file handler: {e}")

    # Set levels for noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


class ContextAdapter(logging.LoggerAdapter):
    """Prefix every message with the operation context."""

    def process(self, msg, kwargs):
        return f"[{self.extra['prefix']}] {msg}", kwargs


@dataclass(frozen=True)
class OperationContext:
    """Correlation data threaded through one broker operation.

    Replaces per-process logging sessions: every workflow receives the context
    explicitly and derives its loggers from it.
    """

    operation: str
    instance_id: str | None = None
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def prefix(self) -> str:
        parts = [self.operation, f"corr={self.correlation_id}"]
        if self.instance_id:
            parts.append(f"instance={self.instance_id}")
        return " ".join(parts)

    def logger(self, name: str) -> ContextAdapter:
        return ContextAdapter(get_logger(name), {"prefix": self.prefix()})
