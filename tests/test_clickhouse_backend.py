from types import SimpleNamespace

from block_factories import batch_block
from packages.indexers.substrate.entity_graph.clickhouse_backend import (
    COLUMNS, ClickHouseBackend, decode_value, encode_value
)
from packages.indexers.substrate.entity_graph.entity_graph_indexer import EntityGraphIndexer
from packages.indexers.substrate.entity_graph.model import Block, BlockExtract, Call
from packages.indexers.substrate.entity_graph.store import EntityStore


class FakeClient:
    """Captures statements and serves inserted rows back to SELECT ... WHERE id IN"""

    def __init__(self):
        self.commands = []
        self.inserts = []
        self.queries = []

    def command(self, statement, settings=None):
        self.commands.append((statement.strip(), settings))

    def insert(self, table, data, column_names=None):
        self.inserts.append((table, [list(row) for row in data], list(column_names)))

    def query(self, sql, parameters=None):
        self.queries.append((sql, parameters))
        if 'entity_graph_checkpoint' in sql:
            heights = [row[0] for table, data, _ in self.inserts
                       if table == 'entity_graph_checkpoint' for row in data]
            return SimpleNamespace(result_rows=[(max(heights) if heights else None,)])

        table = sql.split(' FROM ')[1].split()[0]
        ids = set(parameters['ids'])
        rows = {}
        for insert_table, data, column_names in self.inserts:
            if insert_table != table:
                continue
            for row in data:
                record = dict(zip(column_names, row))
                if record['id'] in ids:
                    rows[record['id']] = tuple(record[c] for c in column_names if c != '_version')
        return SimpleNamespace(result_rows=list(rows.values()))


def test_init_creates_tables_with_partition_size():
    client = FakeClient()
    ClickHouseBackend({}, partition_size=500, client=client)

    statements = [statement for statement, _ in client.commands]
    assert len(statements) == 5
    assert all(statement.startswith('CREATE TABLE IF NOT EXISTS') for statement in statements)
    assert 'intDiv(height, 500)' in statements[0]
    assert not any('{partition_size}' in statement for statement in statements)


def test_value_encoding():
    assert encode_value('hash', b'\xab\xcd') == '0xabcd'
    assert decode_value('hash', '0xabcd') == b'\xab\xcd'
    assert encode_value('args', {'value': 'ü'}) == '{"value":"ü"}'
    assert decode_value('error', '{"Module":{"index":5}}') == {'Module': {'index': 5}}
    assert encode_value('validator', None) is None
    assert encode_value('name', 'transfer') == 'transfer'


def test_flush_writes_versioned_rows_and_checkpoint():
    client = FakeClient()
    backend = ClickHouseBackend({}, client=client)

    EntityGraphIndexer(EntityStore(backend)).index_blocks([BlockExtract.from_archive(batch_block(100))])

    tables = [table for table, _, _ in client.inserts]
    assert tables == [
        'entity_graph_blocks',
        'entity_graph_extrinsics',
        'entity_graph_calls',
        'entity_graph_events',
        'entity_graph_checkpoint',
    ]

    _, block_rows, column_names = client.inserts[0]
    assert column_names == COLUMNS['Block'] + ['_version']
    assert len(block_rows) == 1
    assert block_rows[0][column_names.index('hash')].startswith('0x')
    assert block_rows[0][column_names.index('events_count')] == 4
    assert backend.get_last_block_height() == 100


def test_load_round_trips_through_client():
    client = FakeClient()
    backend = ClickHouseBackend({}, client=client)
    extract = BlockExtract.from_archive(batch_block(100))
    EntityGraphIndexer(EntityStore(backend)).index_blocks([extract])

    reloaded = EntityStore(backend)
    transfer = reloaded.get_or_fail(Call, f'{extract.header.id}-000001-000000-000000')

    assert transfer.args == {'dest': '5FHn', 'value': 10}
    assert transfer.parent.parent.extrinsic.call is transfer.parent.parent
    assert isinstance(reloaded.get_or_fail(Block, extract.header.id).hash, bytes)
    sql, parameters = client.queries[-1]
    assert 'FINAL' in sql
    assert isinstance(parameters['ids'], list)


def test_discard_above_deletes_each_table():
    client = FakeClient()
    backend = ClickHouseBackend({}, client=client)
    client.commands.clear()

    backend.discard_above(42)

    statements = [statement for statement, _ in client.commands]
    assert statements == [
        'ALTER TABLE entity_graph_blocks DELETE WHERE height > 42',
        'ALTER TABLE entity_graph_extrinsics DELETE WHERE block_height > 42',
        'ALTER TABLE entity_graph_calls DELETE WHERE block_height > 42',
        'ALTER TABLE entity_graph_events DELETE WHERE block_number > 42',
    ]
    assert all(settings == {'mutations_sync': 1} for _, settings in client.commands)


def test_empty_database_has_no_checkpoint():
    assert ClickHouseBackend({}, client=FakeClient()).get_last_block_height() == 0
