import os
import signal
import threading
from loguru import logger
from .metrics import setup_metrics, get_metrics_registry, shutdown_metrics_servers, IndexerMetrics
from .enhanced_logging import (
    setup_enhanced_logger, ErrorContextManager, log_error_with_context, classify_error,
    generate_correlation_id, set_correlation_id, get_correlation_id,
    log_service_start, log_service_stop
)


def get_clickhouse_connection_string(network: str):
    connection_params = {
        "host": os.getenv(f"{network.upper()}_CLICKHOUSE_HOST", "localhost"),
        "port": os.getenv(f"{network.upper()}_CLICKHOUSE_PORT", "8123"),
        "database": os.getenv(f"{network.upper()}_CLICKHOUSE_DATABASE", f"{network}_entity_graph"),
        "user": os.getenv(f"{network.upper()}_CLICKHOUSE_USER", "default"),
        "password": os.getenv(f"{network.upper()}_CLICKHOUSE_PASSWORD", ""),
        "max_execution_time": int(os.getenv(f"{network.upper()}_CLICKHOUSE_MAX_EXECUTION_TIME", "1800")),
        "max_query_size": int(os.getenv(f"{network.upper()}_CLICKHOUSE_MAX_QUERY_SIZE", "5000000")),
    }

    return connection_params


def create_clickhouse_database(connection_params):
    from clickhouse_connect import get_client
    client = get_client(
        host=connection_params['host'],
        port=int(connection_params['port']),
        username=connection_params['user'],
        password=connection_params['password'],
        database='default'
    )

    client.command(f"CREATE DATABASE IF NOT EXISTS {connection_params['database']}")


terminate_event = threading.Event()


def shutdown_handler(signum, frame):
    logger.info("Shutdown signal received. Waiting for current batch to complete...")
    terminate_event.set()


signal.signal(signal.SIGINT, shutdown_handler)
signal.signal(signal.SIGTERM, shutdown_handler)
