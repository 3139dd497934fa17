"""
Structured logging for the entity graph indexers.

Loguru sinks with service names and correlation ids, plus helpers that attach
error classification and process state to error records.
"""

import os
import sys
import time
import uuid
import traceback
import threading
from typing import Dict, Any, Optional
from loguru import logger
import psutil


_correlation_context = threading.local()


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for batch tracing."""
    return f"batch_{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> Optional[str]:
    return getattr(_correlation_context, 'correlation_id', None)


def set_correlation_id(correlation_id: Optional[str]):
    _correlation_context.correlation_id = correlation_id


def get_system_state() -> Dict[str, Any]:
    """Get current process state for error context."""
    try:
        process = psutil.Process()
        return {
            "memory_usage_mb": round(process.memory_info().rss / 1024 / 1024, 2),
            "cpu_percent": process.cpu_percent(),
            "threads": process.num_threads(),
            "timestamp": time.time()
        }
    except Exception:
        return {"error": "unable_to_get_system_state"}


def setup_enhanced_logger(service_name: str, level: str = "INFO"):
    """
    Setup loguru with a JSON file sink and a console sink.

    Args:
        service_name: Name of the service (e.g., 'substrate-polkadot-entity-graph')
        level: Minimum level for both sinks
    """
    def patch_record(record):
        record["extra"]["service"] = service_name
        record["extra"]["correlation_id"] = get_correlation_id() or "no_correlation"
        return True

    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    logs_dir = os.path.join(project_root, "logs")
    os.makedirs(logs_dir, exist_ok=True)

    logger.remove()

    # JSON lines for Loki ingestion
    logger.add(
        os.path.join(logs_dir, f"{service_name}.log"),
        rotation="500 MB",
        level=level,
        filter=patch_record,
        serialize=True,
    )

    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level}</level> | <cyan>{extra[service]}</cyan> | <blue>{extra[correlation_id]}</blue> | <white>{message}</white>",
        level=level,
        filter=patch_record,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )


def log_error_with_context(message: str, error: Exception, **context):
    """Log an error together with its classification and the current correlation id."""
    logger.error(
        message,
        extra={
            "error_type": type(error).__name__,
            "error_message": str(error),
            "error_category": context.pop("error_category", None) or classify_error(error),
            "correlation_id": get_correlation_id(),
            **context
        }
    )


class ErrorContextManager:
    """
    Error and decision logging bound to one service.

    Error records carry correlation ids, process state and the stack trace of
    the exception being handled.
    """

    def __init__(self, service_name: str):
        self.service_name = service_name

    def start_operation(self, operation_name: str, **context) -> 'OperationContext':
        """
        Start a new operation with a fresh correlation id.

        Args:
            operation_name: Name of the operation being performed
            **context: Additional context logged if the operation fails

        Returns:
            OperationContext: Context manager for the operation
        """
        correlation_id = generate_correlation_id()
        set_correlation_id(correlation_id)
        return OperationContext(correlation_id, operation_name, context)

    def log_error(self, message: str, error: Exception, **context):
        logger.error(
            message,
            extra={
                "error_type": type(error).__name__,
                "error_message": str(error),
                "correlation_id": get_correlation_id(),
                "service": self.service_name,
                "system_state": get_system_state(),
                "stack_trace": traceback.format_exc(),
                **context
            }
        )

    def log_business_decision(self, decision: str, reason: str, **context):
        """
        Log a processing decision such as where ingestion resumes.

        Args:
            decision: The decision that was made
            reason: The reason for the decision
            **context: Additional context for the decision
        """
        logger.info(
            f"Business decision: {decision}",
            extra={
                "decision": decision,
                "reason": reason,
                "correlation_id": get_correlation_id(),
                "service": self.service_name,
                **context
            }
        )

    def log_service_lifecycle(self, event: str, **context):
        logger.info(
            f"Service lifecycle: {event}",
            extra={
                "lifecycle_event": event,
                "correlation_id": get_correlation_id(),
                "service": self.service_name,
                "timestamp": time.time(),
                **context
            }
        )


class OperationContext:
    """Context manager for tracking operations with correlation IDs."""

    def __init__(self, correlation_id: str, operation_name: str, context: Dict[str, Any]):
        self.correlation_id = correlation_id
        self.operation_name = operation_name
        self.context = context
        self.start_time = time.time()

    def __enter__(self):
        set_correlation_id(self.correlation_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_correlation_id(None)

        if exc_type is not None:
            logger.error(
                f"Operation failed: {self.operation_name}",
                extra={
                    "operation": self.operation_name,
                    "correlation_id": self.correlation_id,
                    "duration": time.time() - self.start_time,
                    "error_type": exc_type.__name__,
                    "error_message": str(exc_val),
                    "context": self.context,
                }
            )


def classify_error(error: Exception) -> str:
    """
    Classify errors into categories for metrics labels and alerting.

    Args:
        error: The exception to classify

    Returns:
        str: Error category
    """
    error_type = type(error).__name__.lower()
    error_message = str(error).lower()

    if any(name in error_type for name in ('referentialintegrity', 'duplicateentity', 'malformedname', 'blockorder')):
        return 'integrity_error'
    elif 'connection' in error_type or 'timeout' in error_type:
        return 'connection_error'
    elif 'validation' in error_type or 'valueerror' in error_type:
        return 'validation_error'
    elif 'database' in error_type or 'clickhouse' in error_type or 'sql' in error_message:
        return 'database_error'
    elif 'substrate' in error_type or 'rpc' in error_message:
        return 'substrate_error'
    else:
        return 'unknown_error'


def log_service_start(service_name: str, **config):
    """Log service startup with configuration."""
    error_ctx = ErrorContextManager(service_name)
    error_ctx.log_service_lifecycle(
        "service_start",
        configuration=config,
        pid=os.getpid()
    )


def log_service_stop(service_name: str, **context):
    error_ctx = ErrorContextManager(service_name)
    error_ctx.log_service_lifecycle(
        "service_stop",
        **context
    )
