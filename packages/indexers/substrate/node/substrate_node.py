import asyncio
import time
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Any
from loguru import logger

from packages.indexers.base import (
    generate_correlation_id, set_correlation_id, log_error_with_context, classify_error
)
from packages.indexers.substrate.block_processor import BlockDataProcessor, find_timestamp
from packages.indexers.substrate.entity_graph.model import BlockExtract
from packages.indexers.substrate.node.abstract_node import Node
from packages.indexers.substrate.node.substrate_interface_factory import SubstrateInterfaceFactory


def with_infinite_retry(method):
    """
    Retry a SubstrateNode method until it succeeds or termination is requested.

    Connections are rebuilt between attempts with a constant one second backoff;
    connection errors are logged on every 10th attempt only.
    """
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        retry_count = 0
        backoff_time = 1
        correlation_id = generate_correlation_id()
        set_correlation_id(correlation_id)

        while True:
            try:
                return method(self, *args, **kwargs)

            except Exception as e:
                retry_count += 1

                error_category = classify_error(e)
                if error_category in ['connection_error', 'substrate_error'] and retry_count % 10 == 1:
                    log_error_with_context(
                        f"Substrate operation retry {retry_count} for {method.__name__}",
                        e,
                        method=method.__name__,
                        retry_count=retry_count,
                        error_category=error_category,
                        endpoint=getattr(self, 'node_ws_url', 'unknown'),
                        network=getattr(self, 'network', 'unknown')
                    )

                if hasattr(self, 'terminate_event') and self.terminate_event.is_set():
                    logger.info(
                        f"Operation {method.__name__} terminated during retry",
                        extra={
                            "correlation_id": correlation_id,
                            "method": method.__name__,
                            "retry_count": retry_count
                        }
                    )
                    raise RuntimeError(f"Operation {method.__name__} terminated during retry")

                self._reinitialize_substrate_interfaces()
                time.sleep(backoff_time)
    return wrapper


class SubstrateNode(Node):
    def __init__(self, network: str, node_ws_url: str, terminate_event):
        super().__init__()
        self.network = network
        self.node_ws_url = node_ws_url
        self.terminate_event = terminate_event

        logger.info(
            "Substrate node initialized",
            extra={
                "network": network,
                "endpoint": node_ws_url
            }
        )

        # one interface for blocks and runtime versions, one for events
        self._get_block_data_substrate = None
        self._get_events_substrate = None
        self._reinitialize_substrate_interfaces()

        self.executor = ThreadPoolExecutor(max_workers=4)

    def _ensure_metadata(self, substrate):
        if substrate.metadata is None:
            substrate.init_runtime()
            if substrate.metadata is None:
                raise RuntimeError("Failed to initialize metadata for substrate instance")

    def _get_block_data(self, block_hash: str) -> Dict[str, Any]:
        try:
            block_data = self._get_block_data_substrate.get_block(block_hash)
            runtime_version = self._get_block_data_substrate.get_block_runtime_version(block_hash)
            return {"block_data": block_data, "runtime_version": runtime_version}
        except Exception as e:
            log_error_with_context(
                "Failed to fetch block data via RPC",
                e,
                block_hash=block_hash,
                endpoint=self.node_ws_url,
                network=self.network,
                rpc_method="get_block"
            )
            raise RuntimeError(f"Failed to fetch block data for {block_hash}: {e}")

    def _get_events(self, block_hash: str) -> Any:
        try:
            self._ensure_metadata(self._get_events_substrate)
            return self._get_events_substrate.get_events(block_hash)
        except Exception as e:
            log_error_with_context(
                "Failed to fetch events via RPC",
                e,
                block_hash=block_hash,
                endpoint=self.node_ws_url,
                network=self.network,
                rpc_method="get_events",
                metadata_available=self._get_events_substrate.metadata is not None
            )
            raise RuntimeError(f"Failed to fetch events for {block_hash}: {e}")

    async def _fetch_concurrently(self, block_hash: str) -> Dict[str, Any]:
        """Fetch block data and events concurrently"""
        loop = asyncio.get_event_loop()

        block_data_future = loop.run_in_executor(self.executor, self._get_block_data, block_hash)
        events_future = loop.run_in_executor(self.executor, self._get_events, block_hash)

        block_result, events = await asyncio.gather(
            block_data_future, events_future,
            return_exceptions=True
        )
        if isinstance(block_result, Exception):
            raise block_result
        if isinstance(events, Exception):
            raise events

        return {**block_result, "events": events}

    @with_infinite_retry
    def get_block_extract(self, block_height: int) -> BlockExtract | None:
        """Get the extract of a block by height with infinite retry"""
        try:
            block_hash = self._get_block_data_substrate.get_block_hash(block_height)
            if not block_hash:
                return None

            self._ensure_metadata(self._get_block_data_substrate)

            try:
                loop = asyncio.get_event_loop()
            except RuntimeError:
                loop = asyncio.new_event_loop()
                asyncio.set_event_loop(loop)

            result = loop.run_until_complete(self._fetch_concurrently(block_hash))

            return BlockDataProcessor.process_block({
                "block_height": block_height,
                "block_hash": block_hash,
                "timestamp": find_timestamp(result["block_data"]["extrinsics"]),
                "runtime_version": result["runtime_version"],
                "block_data": result["block_data"],
                "events": result["events"],
            })

        except Exception as e:
            log_error_with_context(
                f"Block fetch failed for height {block_height}",
                e,
                block_height=block_height,
                endpoint=self.node_ws_url,
                network=self.network,
            )
            raise RuntimeError(f"Error getting block {block_height}: {e}")

    @with_infinite_retry
    def get_current_block_height(self) -> int:
        """Get current block height with infinite retry"""
        try:
            return self._get_block_data_substrate.get_block_number(None)
        except Exception as e:
            log_error_with_context(
                "Failed to fetch current block height",
                e,
                endpoint=self.node_ws_url,
                network=self.network,
                rpc_method="get_block_number"
            )
            raise RuntimeError(f"Failed to fetch current block height: {e}")

    def _close_interface(self, substrate):
        try:
            if substrate is not None and getattr(substrate, 'websocket', None):
                substrate.close()
        except Exception as e:
            if not any(err in str(e).lower() for err in ['closed', 'disconnected', 'none']):
                log_error_with_context(
                    "Error closing substrate connection",
                    e,
                    endpoint=self.node_ws_url,
                    network=self.network,
                )

    def _reinitialize_substrate_interfaces(self):
        """Recreate both SubstrateInterface instances to recover from connection or metadata issues"""
        self._close_interface(self._get_block_data_substrate)
        self._close_interface(self._get_events_substrate)

        try:
            self._get_block_data_substrate = SubstrateInterfaceFactory.create_substrate_interface(
                self.network, self.node_ws_url
            )
            time.sleep(0.5)
            self._get_events_substrate = SubstrateInterfaceFactory.create_substrate_interface(
                self.network, self.node_ws_url
            )
            self._ensure_metadata(self._get_block_data_substrate)
            self._ensure_metadata(self._get_events_substrate)

            logger.info(
                "Substrate interfaces reinitialized",
                extra={
                    "endpoint": self.node_ws_url,
                    "network": self.network
                }
            )
            return True
        except Exception as e:
            log_error_with_context(
                "Failed to reinitialize SubstrateInterface instances",
                e,
                endpoint=self.node_ws_url,
                network=self.network,
                operation="reinitialize_interfaces"
            )
            return False

    def get_block_extracts(self, start_height: int, end_height: int):
        extracts = []
        for height in range(start_height, end_height + 1):
            extract = self.get_block_extract(height)
            if extract is None:
                raise ValueError(f"No block found at height {height}")
            extracts.append(extract)

            if self.terminate_event.is_set():
                logger.info(
                    "Block range fetch terminated",
                    extra={
                        "current_height": height,
                        "start_height": start_height,
                        "end_height": end_height,
                        "blocks_fetched": len(extracts)
                    }
                )
                break

        return extracts
