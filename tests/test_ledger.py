import pytest

from errors import InsufficientStockError, NotFoundError, StoreError
from ledger import StockLedger, consumption_deltas, low_stock, reconciliation_deltas
from models import PARTS, Part, PartUsage


@pytest.fixture
def ledger(engine):
    return engine.ledger


def test_consumption_deltas_sum_repeated_parts():
    parts = [PartUsage('P1', 2), {'part_id': 'P1', 'quantity': 1}, PartUsage('P2', 4)]
    assert consumption_deltas(parts) == {'P1': -3, 'P2': -4}


def test_reconciliation_deltas_return_removed_and_take_added():
    old = [PartUsage('P1', 2), PartUsage('P3', 1)]
    new = [PartUsage('P1', 5), PartUsage('P2', 1), PartUsage('P3', 1)]
    assert reconciliation_deltas(old, new) == {'P1': -3, 'P2': -1}
    assert reconciliation_deltas(new, old) == {'P1': 3, 'P2': 1}


def test_apply_delta_moves_stock(ledger, store):
    assert ledger.apply_delta('P2', -4) == 6
    assert ledger.apply_delta('P2', 1) == 7
    assert store.get(PARTS, 'P2')['stock'] == 7


def test_underflow_names_part_and_shortfall(ledger, store):
    with pytest.raises(InsufficientStockError) as exc_info:
        ledger.consume([PartUsage('P1', 5)])

    assert exc_info.value.part_id == 'P1'
    assert exc_info.value.shortfall == 2
    assert store.get(PARTS, 'P1')['stock'] == 3


def test_apply_all_writes_nothing_when_one_part_is_short(ledger, store):
    with pytest.raises(InsufficientStockError):
        ledger.apply_all({'P2': -5, 'P1': -4})

    assert store.get(PARTS, 'P2')['stock'] == 10
    assert store.get(PARTS, 'P1')['stock'] == 3


def test_missing_parts_are_skipped(ledger, store):
    result = ledger.consume([PartUsage('GONE', 1), PartUsage('P2', 2)])
    assert result == {'P2': -2}
    assert store.get(PARTS, 'P2')['stock'] == 8
    assert store.get(PARTS, 'GONE') is None


def test_stock_of_unknown_part(ledger):
    with pytest.raises(NotFoundError):
        ledger.stock_of('GONE')


def test_stock_is_read_from_the_store_not_a_cache(engine, store):
    store.upsert(PARTS, 'P1', {'stock': 1}, merge=True)
    with pytest.raises(InsufficientStockError):
        StockLedger(store).apply_delta('P1', -2)


def test_low_stock():
    parts = [Part('A', stock=1, min_stock=1), Part('B', stock=5, min_stock=2), Part('C', stock=0)]
    assert [p.id for p in low_stock(parts)] == ['A', 'C']


def test_failed_write_returns_earlier_movements(ledger, store):
    store.failing.add((PARTS, 'P2'))
    with pytest.raises(StoreError):
        ledger.apply_all({'P1': -1, 'P2': -1})

    assert store.get(PARTS, 'P1')['stock'] == 3
    assert store.get(PARTS, 'P2')['stock'] == 10


def test_revert_undoes_applied_movements(ledger, store):
    moved = ledger.reconcile([PartUsage('P1', 1)], [PartUsage('P1', 3), PartUsage('P2', 2)])
    assert moved == {'P1': -2, 'P2': -2}

    ledger.revert(moved)
    assert store.get(PARTS, 'P1')['stock'] == 3
    assert store.get(PARTS, 'P2')['stock'] == 10
