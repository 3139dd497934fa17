import json
import os
import time
import traceback
from typing import Any, Dict, List, Optional, Type

import clickhouse_connect
from loguru import logger

from packages.indexers.base import IndexerMetrics
from packages.indexers.substrate import retry_with_backoff
from packages.indexers.substrate.entity_graph import rows
from packages.indexers.substrate.entity_graph.model import decode_hex, encode_hex
from packages.indexers.substrate.entity_graph.store import EntityBackend

DEFAULT_PARTITION_SIZE = 1_000_000

TABLES = {
    'Block': 'entity_graph_blocks',
    'Extrinsic': 'entity_graph_extrinsics',
    'Call': 'entity_graph_calls',
    'Event': 'entity_graph_events',
}

COLUMNS = {
    'Block': [
        'id', 'height', 'hash', 'parent_hash', 'state_root', 'extrinsics_root', 'timestamp',
        'spec_name', 'spec_version', 'impl_name', 'impl_version', 'validator',
        'extrinsics_count', 'calls_count', 'events_count',
    ],
    'Extrinsic': [
        'id', 'block_id', 'block_height', 'index', 'hash', 'version', 'success',
        'signature', 'error', 'fee', 'tip', 'call_id',
    ],
    'Call': [
        'id', 'block_id', 'block_height', 'extrinsic_id', 'parent_id', 'address',
        'pallet', 'name', 'success', 'args', 'error',
    ],
    'Event': [
        'id', 'block_id', 'block_number', 'index', 'phase', 'pallet', 'name',
        'args', 'args_str', 'extrinsic_id', 'call_id',
    ],
}

BYTES_COLUMNS = {'hash', 'parent_hash', 'state_root', 'extrinsics_root', 'validator'}
JSON_COLUMNS = {'signature', 'error', 'args'}


def encode_value(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in BYTES_COLUMNS:
        return encode_hex(value)
    if column in JSON_COLUMNS:
        return json.dumps(value, separators=(',', ':'), ensure_ascii=False)
    return value


def decode_value(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in BYTES_COLUMNS:
        return decode_hex(value)
    if column in JSON_COLUMNS:
        return json.loads(value)
    return value


class ClickHouseBackend(EntityBackend):
    def __init__(self, connection_params: Dict[str, Any], metrics: Optional[IndexerMetrics] = None,
                 partition_size: int = DEFAULT_PARTITION_SIZE, client=None):
        self.metrics = metrics
        self.partition_size = partition_size
        self.client = client or clickhouse_connect.get_client(
            host=connection_params['host'],
            port=int(connection_params['port']),
            username=connection_params['user'],
            password=connection_params['password'],
            database=connection_params['database'],
            settings={
                'max_execution_time': connection_params.get('max_execution_time', 3600),
                'async_insert': 0,
                'wait_for_async_insert': 1
            }
        )
        self._init_tables()

    def _init_tables(self):
        start_time = time.time()
        logger.info("Creating entity graph tables if not exist")

        schema_path = os.path.join(os.path.dirname(__file__), 'schema.sql')
        with open(schema_path, 'r') as f:
            schema_sql = f.read()

        schema_sql = schema_sql.replace('{partition_size}', str(self.partition_size))
        for statement in schema_sql.split(';'):
            if statement.strip():
                self.client.command(statement)

        logger.info(f"Entity graph tables initialization completed in {time.time() - start_time:.2f}s")

    def _record(self, operation: str, table: str, start_time: float, success: bool):
        if self.metrics:
            self.metrics.record_database_operation(operation, table, time.time() - start_time, success)

    def load(self, kind: Type, ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not ids:
            return {}

        table = TABLES[kind.kind]
        columns = COLUMNS[kind.kind]
        start_time = time.time()
        try:
            result = self.client.query(
                f"SELECT {', '.join(columns)} FROM {table} FINAL WHERE id IN %(ids)s",
                parameters={'ids': list(ids)}
            )
            self._record("select", table, start_time, True)
        except Exception:
            self._record("select", table, start_time, False)
            raise

        loaded = {}
        for result_row in result.result_rows:
            row = {column: decode_value(column, value) for column, value in zip(columns, result_row)}
            loaded[row['id']] = row
        return loaded

    def write(self, kind: Type, entity_rows: List[Dict[str, Any]]):
        if not entity_rows:
            return

        table = TABLES[kind.kind]
        columns = COLUMNS[kind.kind]
        version = time.time_ns()
        data = [
            [encode_value(column, row[column]) for column in columns] + [version]
            for row in entity_rows
        ]

        start_time = time.time()
        try:
            self._insert(table, data, columns + ['_version'])
            self._record("insert", table, start_time, True)
        except Exception as e:
            self._record("insert", table, start_time, False)
            logger.error(f"Failed writing {len(entity_rows)} rows to {table}",
                         error=e,
                         traceback=traceback.format_exc())
            raise

    @retry_with_backoff(retries=3, backoff_in_seconds=2)
    def _insert(self, table: str, data: List[list], column_names: List[str]):
        # rows carry one _version, so a retried insert replaces rather than duplicates
        self.client.insert(table, data, column_names=column_names)

    def commit_checkpoint(self, block_height: int):
        self.client.insert('entity_graph_checkpoint', [[block_height]], column_names=['height'])

    def get_last_block_height(self) -> int:
        start_time = time.time()
        try:
            result = self.client.query("SELECT max(height) FROM entity_graph_checkpoint")
            self._record("select", "entity_graph_checkpoint", start_time, True)
        except Exception:
            self._record("select", "entity_graph_checkpoint", start_time, False)
            raise

        if result.result_rows and result.result_rows[0][0] is not None:
            return int(result.result_rows[0][0])
        return 0

    def discard_above(self, block_height: int):
        for kind_name, table in TABLES.items():
            height_column = rows.HEIGHT_COLUMNS[kind_name]
            self.client.command(
                f"ALTER TABLE {table} DELETE WHERE {height_column} > {int(block_height)}",
                settings={'mutations_sync': 1}
            )
        logger.info(f"Discarded uncommitted rows above block {block_height}")
