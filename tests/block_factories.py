"""Archive-format block builders shared by the tests"""


def block_hash(height: int) -> str:
    return '0x' + f"{height:064x}"


def archive_block(height, extrinsics=None, calls=None, events=None):
    """Archive-format block dict with sensible header defaults"""
    return {
        'header': {
            'height': height,
            'hash': block_hash(height),
            'parentHash': block_hash(height - 1) if height > 0 else '0x' + '00' * 32,
            'stateRoot': '0x' + 'aa' * 32,
            'extrinsicsRoot': '0x' + 'bb' * 32,
            'specName': 'polkadot',
            'specVersion': 9430,
            'implName': 'parity-polkadot',
            'implVersion': 0,
            'timestamp': 1_700_000_000_000 + height * 6000,
        },
        'extrinsics': extrinsics or [],
        'calls': calls or [],
        'events': events or [],
    }


def archive_extrinsic(index, success=True, signature=None, fee=None, tip=None):
    return {
        'index': index,
        'version': 4,
        'success': success,
        'hash': '0x' + f"{index + 1:064x}",
        'signature': signature,
        'fee': fee,
        'tip': tip,
    }


def archive_call(extrinsic_index, address, name, args=None, success=True):
    return {
        'extrinsicIndex': extrinsic_index,
        'address': address,
        'name': name,
        'args': args,
        'success': success,
    }


def archive_event(index, name, args=None, extrinsic_index=None, call_address=None, phase='ApplyExtrinsic'):
    event = {'index': index, 'name': name, 'args': args, 'phase': phase}
    if extrinsic_index is not None:
        event['extrinsicIndex'] = extrinsic_index
    if call_address is not None:
        event['callAddress'] = call_address
    return event


def batch_block(height):
    """Block with a 3-level call tree listed child-before-parent, plus a timestamp inherent"""
    return archive_block(
        height,
        extrinsics=[archive_extrinsic(0), archive_extrinsic(1, signature={'address': '5Grw'}, fee='1000', tip='0')],
        calls=[
            archive_call(1, [0, 0], 'Balances.transfer_keep_alive', {'dest': '5FHn', 'value': 10}),
            archive_call(1, [0], 'Proxy.proxy', {'real': '5Grw'}),
            archive_call(1, [1], 'System.remark', {'remark': '0x00'}),
            archive_call(1, [], 'Utility.batch_all', {'calls': []}),
            archive_call(0, [], 'Timestamp.set', {'now': 1_700_000_000_000}),
        ],
        events=[
            archive_event(0, 'System.ExtrinsicSuccess', {'dispatchInfo': {'weight': 1}}, extrinsic_index=0),
            archive_event(1, 'Balances.Transfer', {'from': '5Grw', 'to': '5FHn', 'amount': 10},
                          extrinsic_index=1, call_address=[0, 0]),
            archive_event(2, 'System.ExtrinsicSuccess', None, extrinsic_index=1, call_address=[]),
            archive_event(3, 'ParaInclusion.CandidateIncluded', ['0x01', {'x': 1}], phase='Finalization'),
        ],
    )
