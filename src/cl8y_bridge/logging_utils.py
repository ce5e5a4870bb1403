"""
Logging utilities for bridge reconciliation.

Features:
- Timed operation contexts for ledger scans, batch fetches and transactions
- Structured JSON formatting
- Address masking
"""
from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar

from .config import LoggingConfig, get_config

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)


class OperationType(str, Enum):
    """Types of reconciliation operations."""
    LEDGER_SCAN = "ledger_scan"
    BATCH_FETCH = "batch_fetch"
    CORRELATION = "correlation"
    PERMISSION_CHECK = "permission_check"
    METADATA_RESOLVE = "metadata_resolve"
    VIEW_BUILD = "view_build"
    REFRESH = "refresh"
    TRANSACTION_SUBMIT = "transaction_submit"
    TRANSACTION_CONFIRM = "transaction_confirm"


@dataclass
class OperationContext:
    """Context for a reconciliation operation."""
    operation_id: str
    operation_type: OperationType
    chain_id: Optional[int]
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark operation as complete."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_ms = (
            (self.completed_at - self.started_at).total_seconds() * 1000
        )
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "chain_id": self.chain_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


class ReconLogger:
    """
    Logger for reconciliation operations.

    Wraps a standard logger and adds timed operation contexts so every scan,
    fetch and submission logs its outcome and duration.
    """

    def __init__(
        self,
        name: str = "cl8y_bridge",
        config: Optional[LoggingConfig] = None,
    ):
        self._logger = logging.getLogger(name)
        self._config = config or get_config().logging
        self._operation_counter = 0

    def _generate_operation_id(self) -> str:
        self._operation_counter += 1
        timestamp = int(time.time() * 1000)
        return f"op_{timestamp}_{self._operation_counter}"

    def _get_level(self, level_str: str) -> int:
        """Convert level string to logging level."""
        return getattr(logging, level_str.upper(), logging.INFO)

    @asynccontextmanager
    async def operation_context(
        self,
        operation_type: OperationType,
        chain_id: Optional[int] = None,
        **metadata,
    ):
        """
        Context manager for tracking an operation.

        Usage:
            async with recon_logger.operation_context(OperationType.LEDGER_SCAN, 56) as ctx:
                ids = await scan()
                ctx.metadata["count"] = len(ids)
        """
        ctx = OperationContext(
            operation_id=self._generate_operation_id(),
            operation_type=operation_type,
            chain_id=chain_id,
            metadata=metadata,
        )

        self._logger.debug(
            f"Starting {operation_type.value} on chain {chain_id}",
            extra={"operation": ctx.to_dict()},
        )

        try:
            yield ctx
            ctx.complete(success=True)

        except Exception as e:
            ctx.complete(success=False, error=str(e))
            raise

        finally:
            if not ctx.success:
                level = self._get_level(self._config.error_level)
            elif operation_type in (
                OperationType.TRANSACTION_SUBMIT,
                OperationType.TRANSACTION_CONFIRM,
            ):
                level = self._get_level(self._config.transaction_level)
            else:
                level = self._get_level(self._config.operation_level)

            latency = (
                f" in {ctx.duration_ms:.0f}ms"
                if self._config.log_operation_latency and ctx.duration_ms is not None
                else ""
            )
            self._logger.log(
                level,
                f"Completed {operation_type.value} on chain {chain_id}{latency} "
                f"(success={ctx.success})",
                extra={"operation": ctx.to_dict()},
            )

    @staticmethod
    def mask_address(address: str) -> str:
        """Mask middle portion of address for privacy."""
        if len(address) < 10:
            return address
        return f"{address[:6]}...{address[-4:]}"


_recon_logger: Optional[ReconLogger] = None


def get_recon_logger(
    name: str = "cl8y_bridge",
    config: Optional[LoggingConfig] = None,
) -> ReconLogger:
    """Get the global reconciliation logger instance."""
    global _recon_logger
    if _recon_logger is None:
        _recon_logger = ReconLogger(name, config)
    return _recon_logger


def log_operation(operation_type: OperationType):
    """
    Decorator for logging an async operation whose first argument after
    ``self`` is a chain id.

    Usage:
        @log_operation(OperationType.VIEW_BUILD)
        async def deposits_view(self, chain_id, actor=None):
            ...
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(self, chain_id, *args, **kwargs):
            recon_logger = get_recon_logger()
            async with recon_logger.operation_context(operation_type, chain_id):
                return await func(self, chain_id, *args, **kwargs)
        return wrapper  # type: ignore
    return decorator


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    _RESERVED = frozenset((
        "name", "msg", "args", "created", "filename", "funcName", "levelname",
        "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
        "processName", "relativeCreated", "thread", "threadName", "exc_info",
        "exc_text", "stack_info", "taskName",
    ))

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields (e.g. "operation")
        for key, value in record.__dict__.items():
            if key not in self._RESERVED:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
) -> None:
    """
    Set up logging configuration.

    Args:
        level: Log level
        json_format: Use JSON structured logging
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    root_logger.addHandler(handler)

    logging.getLogger("cl8y_bridge").setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
