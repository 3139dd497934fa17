from types import SimpleNamespace

from packages.indexers.substrate.block_processor import BlockDataProcessor, find_timestamp, walk_call_tree
from packages.indexers.substrate.entity_graph.entity_graph_indexer import EntityGraphIndexer
from packages.indexers.substrate.entity_graph.model import Block, Extrinsic
from packages.indexers.substrate.entity_graph.store import EntityStore, MemoryBackend

BLOCK_HASH = '0x' + '12' * 32


def call(module, function, args):
    return {
        'call_module': module,
        'call_function': function,
        'call_args': [{'name': name, 'type': 'T', 'value': value} for name, value in args.items()],
    }


def raw(value):
    return SimpleNamespace(value=value)


def substrate_block():
    transfer = call('Balances', 'transfer_keep_alive', {'dest': '5FHn', 'value': 10})
    remark = call('System', 'remark', {'remark': '0x00'})
    batch = call('Utility', 'batch', {'calls': [call('Proxy', 'proxy', {'real': '5Grw', 'call': transfer}), remark]})

    extrinsics = [
        raw({'extrinsic_hash': '0x' + '01' * 32, 'call': call('Timestamp', 'set', {'now': 1_700_000_000_000})}),
        raw({'extrinsic_hash': '0x' + '02' * 32, 'address': '5Grw', 'signature': {'Sr25519': '0x99'},
             'era': '00', 'nonce': 7, 'tip': 5, 'call': batch}),
    ]
    events = [
        raw({'phase': 'ApplyExtrinsic', 'extrinsic_idx': 0, 'module_id': 'System', 'event_id': 'ExtrinsicSuccess',
             'attributes': {'dispatch_info': {'weight': 1}}}),
        raw({'phase': 'ApplyExtrinsic', 'extrinsic_idx': 1, 'module_id': 'TransactionPayment',
             'event_id': 'TransactionFeePaid', 'attributes': {'who': '5Grw', 'actual_fee': 1234, 'tip': 5}}),
        raw({'phase': 'ApplyExtrinsic', 'extrinsic_idx': 1, 'module_id': 'System', 'event_id': 'ExtrinsicFailed',
             'attributes': {'dispatch_error': {'Module': {'index': 5, 'error': '0x02000000'}}}}),
        raw({'phase': 'Finalization', 'extrinsic_idx': None, 'module_id': 'ParaInclusion',
             'event_id': 'CandidateIncluded', 'attributes': ['0x01', 2]}),
    ]
    return {
        'block_height': 55,
        'block_hash': BLOCK_HASH,
        'timestamp': find_timestamp(extrinsics),
        'runtime_version': {'specName': 'polkadot', 'specVersion': 9430, 'implName': 'parity-polkadot', 'implVersion': 0},
        'block_data': {
            'header': {'parentHash': '0x' + '11' * 32, 'stateRoot': '0x' + '22' * 32, 'extrinsicsRoot': '0x' + '33' * 32},
            'extrinsics': extrinsics,
        },
        'events': events,
    }


def test_walk_call_tree_preorder():
    leaf = call('Balances', 'transfer', {'value': 1})
    tree = call('Utility', 'batch', {'calls': [call('Proxy', 'proxy', {'call': leaf}), leaf]})

    addresses = [address for address, _ in walk_call_tree(tree)]

    assert addresses == [(), (0,), (0, 0), (1,)]


def test_timestamp_from_inherent():
    assert substrate_block()['timestamp'] == 1_700_000_000_000


def test_process_block_builds_records():
    extract = BlockDataProcessor.process_block(substrate_block())

    assert extract.header.id == '0000000055-12121'
    assert extract.header.spec_name == 'polkadot'

    signed = extract.extrinsics[1]
    assert signed.success is False
    assert signed.error == {'Module': {'index': 5, 'error': '0x02000000'}}
    assert signed.fee == 1234
    assert signed.tip == 5
    assert signed.signature['address'] == '5Grw'
    assert extract.extrinsics[0].signature is None

    names = [(c.extrinsic_index, c.address, c.name) for c in extract.calls]
    assert names == [
        (0, [], 'Timestamp.set'),
        (1, [], 'Utility.batch'),
        (1, [0], 'Proxy.proxy'),
        (1, [0, 0], 'Balances.transfer_keep_alive'),
        (1, [1], 'System.remark'),
    ]
    assert all(not c.success for c in extract.calls if c.extrinsic_index == 1)
    assert extract.calls[3].args == {'dest': '5FHn', 'value': 10}

    assert extract.events[1].call_id == extract.calls[1].id
    assert extract.events[3].extrinsic_id is None
    assert extract.events[3].phase == 'Finalization'


def test_processed_block_links_into_graph():
    store = EntityStore(MemoryBackend())
    extract = BlockDataProcessor.process_block(substrate_block())

    EntityGraphIndexer(store).process_block(extract)

    block = store.get_or_fail(Block, extract.header.id)
    assert (block.extrinsics_count, block.calls_count, block.events_count) == (2, 5, 4)
    assert store.get_or_fail(Extrinsic, extract.extrinsics[1].id).call.name == 'batch'
