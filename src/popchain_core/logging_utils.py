"""
Logging utilities for ledger operations.

Features:
- Structured logging for submissions, finality waits and reconciliation
- RPC call latency logging
- Sensitive data masking (key material, API keys, service tokens)
- JSON formatter for process-level setup
"""
from __future__ import annotations

import itertools
import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MASK_PATTERN = "***MASKED***"

SENSITIVE_FIELDS = frozenset({
    "private_key",
    "secret_key",
    "service_key",
    "api_key",
    "apikey",
    "authorization",
    "password",
    "seed",
    "mnemonic",
})


def mask_address(address: str) -> str:
    """Mask middle portion of an address for privacy."""
    if len(address) < 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    key_lower = key.lower().replace("-", "_")
    return key_lower in SENSITIVE_FIELDS or any(
        sensitive in key_lower
        for sensitive in ("secret", "password", "token", "private", "credential")
    )


def mask_sensitive_data(data: Any) -> Any:
    """Copy of ``data`` with values under sensitive keys replaced, at any depth."""
    if isinstance(data, dict):
        return {
            key: MASK_PATTERN if isinstance(key, str) and is_sensitive_key(key) else mask_sensitive_data(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [mask_sensitive_data(value) for value in data]
    return data


class OperationType(str, Enum):
    """Ledger-facing operations tracked with an operation context."""
    TRANSACTION_SUBMIT = "transaction_submit"
    FINALITY_WAIT = "finality_wait"
    FUNDING_CHECK = "funding_check"
    RECONCILE = "reconcile"
    BATCH_WHITELIST = "batch_whitelist"


@dataclass
class OperationContext:
    """Context for a single tracked operation."""
    operation_id: str
    operation_type: OperationType
    network: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark operation as complete."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_ms = (self.completed_at - self.started_at).total_seconds() * 1000
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "network": self.network,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": mask_sensitive_data(self.metadata),
        }


class ChainLogger:
    """
    Structured logger for ledger operations.

    Operations that report their own failure as data (the orchestrator
    returns a decoded error instead of raising) mark the context with
    ``fail(ctx, reason)`` so the completion line is logged at error level.
    """

    def __init__(self, name: str = "popchain_core", network: str = "testnet"):
        self._logger = logging.getLogger(name)
        self._network = network
        self._sequence = itertools.count(1)

    def _operation_id(self, operation_type: OperationType) -> str:
        return f"{operation_type.value}-{int(time.time())}-{next(self._sequence)}"

    @asynccontextmanager
    async def operation_context(self, operation_type: OperationType, **metadata):
        """
        Context manager for tracking an operation.

        Usage:
            async with chain_logger.operation_context(OperationType.TRANSACTION_SUBMIT) as ctx:
                ...
                ctx.metadata["digest"] = digest
        """
        ctx = OperationContext(
            operation_id=self._operation_id(operation_type),
            operation_type=operation_type,
            network=self._network,
            metadata=metadata,
        )
        self._logger.debug(
            "Starting %s on %s", operation_type.value, self._network,
            extra={"operation": ctx.to_dict()},
        )
        failure: Optional[str] = None
        try:
            yield ctx
        except Exception as e:
            failure = str(e)
            raise
        finally:
            if failure is None:
                failure = ctx.metadata.pop("_failure", None)
            ctx.complete(success=failure is None, error=failure)
            level = logging.INFO if ctx.success else logging.ERROR
            self._logger.log(
                level,
                "Completed %s on %s in %.0fms (success=%s)",
                operation_type.value, self._network, ctx.duration_ms, ctx.success,
                extra={"operation": ctx.to_dict()},
            )

    def log_rpc_call(
        self,
        method: str,
        endpoint_url: str,
        duration_ms: float,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        """Log one JSON-RPC round-trip."""
        if "?" in endpoint_url:
            endpoint_url = endpoint_url.split("?")[0] + "?<params_masked>"
        level = logging.DEBUG if success else logging.WARNING
        self._logger.log(
            level,
            "RPC %s in %.0fms (success=%s)", method, duration_ms, success,
            extra={"rpc_call": {
                "method": method,
                "endpoint_url": endpoint_url,
                "duration_ms": duration_ms,
                "success": success,
                "error_message": error_message,
            }},
        )


def fail(ctx: OperationContext, reason: str) -> None:
    """Record a failure reported as data on an open operation context."""
    ctx.metadata["_failure"] = reason


_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName",
})


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
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

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = mask_sensitive_data(value) if isinstance(value, dict) else value

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure root logging for the process."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
