import pytest
from loguru import logger

from packages.indexers.base import (
    ErrorContextManager, classify_error, get_correlation_id, set_correlation_id
)
from packages.indexers.substrate.entity_graph.errors import (
    BlockOrderError, DuplicateEntityError, MalformedNameError, ReferentialIntegrityError
)


@pytest.fixture
def records():
    captured = []
    handler_id = logger.add(lambda message: captured.append(message.record), level="DEBUG")
    yield captured
    logger.remove(handler_id)


@pytest.mark.parametrize("error", [
    ReferentialIntegrityError('Block', 'x'),
    DuplicateEntityError('Event', 'y'),
    MalformedNameError('Balances'),
    BlockOrderError(5, 7),
])
def test_graph_errors_are_integrity_errors(error):
    assert classify_error(error) == 'integrity_error'


@pytest.mark.parametrize("error, category", [
    (ConnectionError("refused"), 'connection_error'),
    (TimeoutError("slow"), 'connection_error'),
    (ValueError("bad"), 'validation_error'),
    (RuntimeError("sql syntax"), 'database_error'),
    (RuntimeError("rpc request failed"), 'substrate_error'),
    (KeyError("x"), 'unknown_error'),
])
def test_other_error_categories(error, category):
    assert classify_error(error) == category


def test_operation_context_scopes_correlation_id(records):
    set_correlation_id(None)
    error_ctx = ErrorContextManager('substrate-polkadot-entity-graph')

    with pytest.raises(DuplicateEntityError):
        with error_ctx.start_operation("index_blocks", start_height=1) as operation:
            assert get_correlation_id() == operation.correlation_id
            raise DuplicateEntityError('Block', '0000000001-00000')

    assert get_correlation_id() is None
    failed = [r for r in records if r["message"] == "Operation failed: index_blocks"]
    assert len(failed) == 1
    assert failed[0]["extra"]["extra"]["error_type"] == 'DuplicateEntityError'
    assert failed[0]["extra"]["extra"]["context"] == {'start_height': 1}


def test_business_decision_carries_service(records):
    ErrorContextManager('svc').log_business_decision("resume_from_checkpoint", "startup", current_height=3)

    record = records[-1]
    assert record["extra"]["extra"]["decision"] == "resume_from_checkpoint"
    assert record["extra"]["extra"]["service"] == "svc"
    assert record["extra"]["extra"]["current_height"] == 3
