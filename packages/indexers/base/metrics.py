import os
import socket
import threading
from typing import Dict, Optional, Any
from prometheus_client import (
    CollectorRegistry, Counter, Histogram, Gauge, Info,
    start_http_server
)
from loguru import logger

_service_registries: Dict[str, 'MetricsRegistry'] = {}
_metrics_servers: Dict[str, Any] = {}
_metrics_lock = threading.Lock()

DEFAULT_METRICS_PORT = 9105


class MetricsRegistry:
    """Per-service Prometheus registry, labelled after the service name"""

    def __init__(self, service_name: str, port: Optional[int] = None):
        self.service_name = service_name
        self.registry = CollectorRegistry()
        self.port = port
        self.server = None
        self._common_labels = self._extract_labels_from_service_name(service_name)

        self._init_common_metrics()

    def _extract_labels_from_service_name(self, service_name: str) -> Dict[str, str]:
        labels = {"service": service_name}

        # 'substrate-<network>-<indexer>'
        parts = service_name.split('-')
        if len(parts) >= 3 and parts[0] == 'substrate':
            labels["network"] = parts[1]
            labels["indexer"] = '-'.join(parts[2:])

        return labels

    def _init_common_metrics(self):
        self.service_info = Info(
            'service_info',
            'Service information',
            registry=self.registry
        )
        self.service_info.info({
            'service_name': self.service_name,
            'version': '1.0.0',
            **self._common_labels
        })

        self.service_start_time = Gauge(
            'service_start_time_seconds',
            'Service start time in Unix timestamp',
            registry=self.registry
        )
        self.service_start_time.set_to_current_time()

        self.errors_total = Counter(
            'service_errors_total',
            'Total number of errors by type',
            ['error_type', 'component'],
            registry=self.registry
        )

        self.health_status = Gauge(
            'service_health_status',
            'Service health status (1=healthy, 0=unhealthy)',
            registry=self.registry
        )
        self.health_status.set(1)

    def create_counter(self, name: str, description: str, labelnames: list = None) -> Counter:
        return Counter(
            name, description,
            labelnames or [],
            registry=self.registry
        )

    def create_histogram(self, name: str, description: str, labelnames: list = None,
                         buckets: tuple = None) -> Histogram:
        kwargs = {
            'name': name,
            'documentation': description,
            'labelnames': labelnames or [],
            'registry': self.registry
        }
        if buckets:
            kwargs['buckets'] = buckets
        return Histogram(**kwargs)

    def create_gauge(self, name: str, description: str, labelnames: list = None) -> Gauge:
        return Gauge(
            name, description,
            labelnames or [],
            registry=self.registry
        )

    def start_metrics_server(self, port: Optional[int] = None) -> bool:
        """Start HTTP server for the /metrics endpoint"""
        if self.server is not None:
            logger.warning(f"Metrics server already running for {self.service_name}")
            return True

        target_port = port or self.port or self._get_default_port()

        try:
            if not self._is_port_available(target_port):
                logger.warning(f"Port {target_port} not available, trying next available port")
                target_port = self._find_available_port(target_port)

            self.server = start_http_server(target_port, registry=self.registry)
            self.port = target_port
            logger.info(f"Metrics server started for {self.service_name} on port {target_port}")
            return True

        except Exception as e:
            logger.error(f"Failed to start metrics server for {self.service_name}: {e}")
            return False

    def _get_default_port(self) -> int:
        for env_var in ('ENTITY_GRAPH_METRICS_PORT', 'METRICS_PORT'):
            env_port = os.getenv(env_var)
            if env_port:
                try:
                    return int(env_port)
                except ValueError:
                    logger.warning(f"Invalid {env_var} value: {env_port}, using default")

        return DEFAULT_METRICS_PORT

    def _is_port_available(self, port: int) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(('localhost', port))
                return True
        except OSError:
            return False

    def _find_available_port(self, start_port: int) -> int:
        for port in range(start_port, start_port + 100):
            if self._is_port_available(port):
                return port
        raise RuntimeError(f"No available ports found starting from {start_port}")

    def record_error(self, error_type: str, component: str = "unknown"):
        self.errors_total.labels(error_type=error_type, component=component).inc()

    def set_health_status(self, healthy: bool):
        self.health_status.set(1 if healthy else 0)


def setup_metrics(service_name: str, port: Optional[int] = None,
                  start_server: bool = True) -> MetricsRegistry:
    """
    Setup metrics for a service, once per service name.

    Args:
        service_name: Name of the service (e.g., 'substrate-polkadot-entity-graph')
        port: Optional port for metrics server
        start_server: Whether to start HTTP server immediately

    Returns:
        MetricsRegistry: Configured metrics registry for the service
    """
    with _metrics_lock:
        if service_name in _service_registries:
            logger.debug(f"Metrics already setup for {service_name}")
            return _service_registries[service_name]

        metrics_registry = MetricsRegistry(service_name, port)
        _service_registries[service_name] = metrics_registry

        if start_server:
            success = metrics_registry.start_metrics_server()
            if success:
                _metrics_servers[service_name] = metrics_registry.server

        logger.info(f"Metrics setup completed for service: {service_name}")
        return metrics_registry


def get_metrics_registry(service_name: str) -> Optional[MetricsRegistry]:
    return _service_registries.get(service_name)


def shutdown_metrics_servers():
    with _metrics_lock:
        for service_name, server in _metrics_servers.items():
            try:
                if isinstance(server, tuple):
                    server = server[0]
                if hasattr(server, 'shutdown'):
                    server.shutdown()
                logger.info(f"Shutdown metrics server for {service_name}")
            except Exception as e:
                logger.error(f"Error shutting down metrics server for {service_name}: {e}")

        _metrics_servers.clear()


DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, float('inf'))


class IndexerMetrics:
    """Standard metrics for the entity graph indexer"""

    def __init__(self, registry: MetricsRegistry, network: str, indexer_type: str):
        self.registry = registry
        self.network = network
        self.indexer_type = indexer_type

        self.blocks_processed_total = registry.create_counter(
            'indexer_blocks_processed_total',
            'Total number of blocks processed',
            ['network', 'indexer']
        )

        self.current_block_height = registry.create_gauge(
            'indexer_current_block_height',
            'Current block height being processed',
            ['network', 'indexer']
        )

        self.blocks_behind_latest = registry.create_gauge(
            'indexer_blocks_behind_latest',
            'Number of blocks behind the latest block',
            ['network', 'indexer']
        )

        self.block_processing_duration = registry.create_histogram(
            'indexer_block_processing_duration_seconds',
            'Time spent processing blocks',
            ['network', 'indexer'],
            buckets=DURATION_BUCKETS
        )

        self.processing_rate = registry.create_gauge(
            'indexer_processing_rate_blocks_per_second',
            'Block processing rate',
            ['network', 'indexer']
        )

        self.entities_linked_total = registry.create_counter(
            'indexer_entities_linked_total',
            'Total entities linked into the graph',
            ['network', 'indexer', 'kind']
        )

        self.database_operations_total = registry.create_counter(
            'indexer_database_operations_total',
            'Total database operations',
            ['network', 'indexer', 'operation', 'table']
        )

        self.database_operation_duration = registry.create_histogram(
            'indexer_database_operation_duration_seconds',
            'Database operation duration',
            ['network', 'indexer', 'operation'],
            buckets=DURATION_BUCKETS
        )

        self.database_errors_total = registry.create_counter(
            'indexer_database_errors_total',
            'Total database errors',
            ['network', 'indexer', 'error_type']
        )

        self.failed_batches_total = registry.create_counter(
            'indexer_failed_batches_total',
            'Total batches aborted by an error',
            ['network', 'indexer', 'error_type']
        )

    def record_block_processed(self, block_height: int, processing_time: float):
        labels = {'network': self.network, 'indexer': self.indexer_type}
        self.blocks_processed_total.labels(**labels).inc()
        self.current_block_height.labels(**labels).set(block_height)
        self.block_processing_duration.labels(**labels).observe(processing_time)

    def record_entities_linked(self, kind: str, count: int = 1):
        labels = {'network': self.network, 'indexer': self.indexer_type, 'kind': kind}
        self.entities_linked_total.labels(**labels).inc(count)

    def record_database_operation(self, operation: str, table: str, duration: float, success: bool = True):
        labels = {'network': self.network, 'indexer': self.indexer_type, 'operation': operation, 'table': table}
        self.database_operations_total.labels(**labels).inc()

        duration_labels = {'network': self.network, 'indexer': self.indexer_type, 'operation': operation}
        self.database_operation_duration.labels(**duration_labels).observe(duration)

        if not success:
            error_labels = {'network': self.network, 'indexer': self.indexer_type, 'error_type': 'operation_failed'}
            self.database_errors_total.labels(**error_labels).inc()

    def record_failed_batch(self, error_type: str):
        labels = {'network': self.network, 'indexer': self.indexer_type, 'error_type': error_type}
        self.failed_batches_total.labels(**labels).inc()

    def update_blocks_behind(self, blocks_behind: int):
        labels = {'network': self.network, 'indexer': self.indexer_type}
        self.blocks_behind_latest.labels(**labels).set(blocks_behind)

    def update_processing_rate(self, rate: float):
        labels = {'network': self.network, 'indexer': self.indexer_type}
        self.processing_rate.labels(**labels).set(rate)
