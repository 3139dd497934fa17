import argparse
import signal
import time
from loguru import logger
from packages.indexers.base import (
    get_clickhouse_connection_string, create_clickhouse_database, terminate_event,
    setup_metrics, setup_enhanced_logger, ErrorContextManager, IndexerMetrics,
    log_service_start, log_service_stop, classify_error
)
from packages.indexers.substrate import networks, get_substrate_node_url
from packages.indexers.substrate.entity_graph.clickhouse_backend import ClickHouseBackend
from packages.indexers.substrate.entity_graph.entity_graph_indexer import EntityGraphIndexer
from packages.indexers.substrate.entity_graph.errors import EntityGraphError
from packages.indexers.substrate.entity_graph.store import EntityStore, MemoryBackend
from packages.indexers.substrate.node.abstract_node import Node


class EntityGraphConsumer:
    def __init__(
            self,
            node: Node,
            indexer: EntityGraphIndexer,
            terminate_event,
            network: str,
            batch_size: int = 10,
            service_name: str = None,
            start_height: int = None,
            end_height: int = None,
            sleep_time: int = 10,
            retry_delay: int = 5,
            metrics: IndexerMetrics = None
    ):
        self.node = node
        self.indexer = indexer
        self.terminate_event = terminate_event
        self.network = network
        self.batch_size = batch_size
        self.service_name = service_name or f'substrate-{network}-entity-graph'
        self.start_height = start_height
        self.end_height = end_height
        self.sleep_time = sleep_time
        self.retry_delay = retry_delay
        self.metrics = metrics
        self.error_ctx = ErrorContextManager(self.service_name)
        self._uncommitted_rows = False

        log_service_start(
            self.service_name,
            network=network,
            batch_size=batch_size,
            start_height=start_height,
            end_height=end_height,
            mode="range" if end_height is not None else "continuous"
        )

    def _wait(self, seconds: int) -> bool:
        """Sleep in one second steps; False when termination was requested"""
        for _ in range(seconds):
            if self.terminate_event.is_set():
                return False
            time.sleep(1)
        return not self.terminate_event.is_set()

    def _discard_uncommitted(self) -> int:
        """Drop rows a failed flush left above the checkpoint; returns the checkpoint height"""
        backend = self.indexer.store.backend
        last_block_height = backend.get_last_block_height()
        backend.discard_above(last_block_height)
        self.error_ctx.log_business_decision(
            "discard_uncommitted_rows",
            "failed_batch_retry",
            last_block_height=last_block_height
        )
        return last_block_height

    def _record_error(self, error: Exception):
        if self.metrics:
            self.metrics.registry.record_error(classify_error(error), component="entity_graph_consumer")
            self.metrics.registry.set_health_status(False)

    def _resume_height(self) -> int:
        backend = self.indexer.store.backend
        last_block_height = backend.get_last_block_height()

        # rows past the checkpoint come from a flush that did not complete
        backend.discard_above(last_block_height)
        if last_block_height > 0:
            self.indexer.last_block_height = last_block_height

        if self.start_height is not None and self.start_height > last_block_height:
            self.error_ctx.log_business_decision(
                "use_provided_start_height",
                "manual_override",
                start_height=self.start_height,
                last_block_height=last_block_height,
                end_height=self.end_height
            )
            return self.start_height

        current_height = last_block_height + 1 if last_block_height > 0 else (self.start_height or 0)
        self.error_ctx.log_business_decision(
            "resume_from_checkpoint",
            "continuous_mode_startup",
            last_block_height=last_block_height,
            current_height=current_height
        )
        return current_height

    def run(self):
        """Process blocks in ascending batches until end_height or termination"""
        if self.terminate_event.is_set():
            return

        try:
            current_height = self._resume_height()

            while not self.terminate_event.is_set():
                if self.end_height is not None and current_height > self.end_height:
                    self.error_ctx.log_business_decision(
                        "reached_end_height",
                        "range_completed",
                        end_height=self.end_height,
                        current_height=current_height
                    )
                    break

                try:
                    if self._uncommitted_rows:
                        # a failed flush may have written part of the batch
                        committed_height = self._discard_uncommitted()
                        self._uncommitted_rows = False
                        current_height = max(current_height, committed_height + 1)

                    chain_height = self.node.get_current_block_height()

                    if current_height > chain_height:
                        if not self._wait(self.sleep_time):
                            return
                        continue

                    end_height = min(current_height + self.batch_size - 1, chain_height)
                    if self.end_height is not None:
                        end_height = min(end_height, self.end_height)

                    extracts = self.node.get_block_extracts(current_height, end_height)
                    if self.terminate_event.is_set():
                        return
                    if not extracts:
                        logger.warning(
                            "No blocks returned from source",
                            extra={
                                "start_height": current_height,
                                "end_height": end_height,
                                "chain_height": chain_height,
                            }
                        )
                        if not self._wait(self.retry_delay):
                            return
                        continue

                    with self.error_ctx.start_operation(
                            "index_blocks", start_height=current_height, end_height=end_height):
                        self.indexer.index_blocks(extracts)

                    if self.metrics:
                        self.metrics.update_blocks_behind(max(0, chain_height - end_height))
                        self.metrics.registry.set_health_status(True)

                    current_height = extracts[-1].header.height + 1

                except EntityGraphError as e:
                    # the same batch would fail again; needs an operator
                    self._record_error(e)
                    self.error_ctx.log_error(
                        "Block batch violates graph integrity, stopping",
                        error=e,
                        operation="index_blocks",
                        current_height=current_height,
                        error_category=classify_error(e)
                    )
                    raise

                except Exception as e:
                    self._uncommitted_rows = True
                    self._record_error(e)
                    if self.terminate_event.is_set():
                        return

                    self.error_ctx.log_error(
                        "Block processing failed, retrying batch",
                        error=e,
                        operation="block_processing_loop",
                        current_height=current_height,
                        error_category=classify_error(e)
                    )
                    if not self._wait(self.retry_delay):
                        return

        except KeyboardInterrupt:
            log_service_stop(
                self.service_name,
                reason="keyboard_interrupt"
            )


def main(argv=None):
    parser = argparse.ArgumentParser(description='Entity Graph Consumer')
    parser.add_argument('--batch-size', type=int, default=16, help='Number of blocks to process in a batch')
    parser.add_argument('--start-height', type=int, help='Starting block height when nothing was indexed yet')
    parser.add_argument('--end-height', type=int, help='Last block height to index')
    parser.add_argument('--sleep-time', type=int, default=10, help='Sleep time in seconds when waiting for new blocks')
    parser.add_argument('--archive-file', action='append',
                        help='Replay archive-format JSON lines instead of reading from a node (repeatable)')
    parser.add_argument('--dry-run', action='store_true', help='Keep entities in memory instead of ClickHouse')
    parser.add_argument('--log-level', type=str, default='INFO')
    parser.add_argument(
        '--network',
        type=str,
        required=True,
        choices=networks,
        help='Network to index'
    )
    args = parser.parse_args(argv)

    service_name = f'substrate-{args.network}-entity-graph'
    setup_enhanced_logger(service_name, level=args.log_level)

    metrics_registry = setup_metrics(service_name, start_server=not args.dry_run)
    metrics = IndexerMetrics(metrics_registry, args.network, "entity_graph")

    def signal_handler(sig, frame):
        logger.info(
            "Shutdown signal received",
            extra={
                "signal": sig,
                "service": service_name,
                "graceful_shutdown": True
            }
        )
        terminate_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        if args.dry_run:
            backend = MemoryBackend()
        else:
            connection_params = get_clickhouse_connection_string(args.network)
            create_clickhouse_database(connection_params)
            backend = ClickHouseBackend(connection_params, metrics=metrics)

        if args.archive_file:
            from packages.indexers.substrate.node.archive_file_node import ArchiveFileNode
            node = ArchiveFileNode(args.archive_file)
            if args.end_height is None:
                args.end_height = node.get_current_block_height()
        else:
            from packages.indexers.substrate.node.substrate_node import SubstrateNode
            node = SubstrateNode(args.network, get_substrate_node_url(args.network), terminate_event)

        indexer = EntityGraphIndexer(EntityStore(backend), metrics=metrics)
        consumer = EntityGraphConsumer(
            node,
            indexer,
            terminate_event,
            args.network,
            args.batch_size,
            service_name,
            args.start_height,
            args.end_height,
            args.sleep_time,
            metrics=metrics
        )
        consumer.run()
        log_service_stop(service_name, reason="completed" if not terminate_event.is_set() else "terminated")
    except Exception as e:
        error_ctx = ErrorContextManager(service_name)
        error_ctx.log_error(
            "Fatal consumer error",
            error=e,
            operation="main",
            error_category=classify_error(e)
        )
        raise SystemExit(1)


if __name__ == "__main__":
    main()
