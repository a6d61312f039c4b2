from datetime import date, timedelta

import pytest

from conftest import START, order_form
from errors import InsufficientStockError, InvalidTransitionError, StoreError, ValidationError
from models import PARTS, REQUESTS, WORK_ORDERS, OrderStatus, PartUsage, WorkInterval, WorkOrder
from work_orders import elapsed_duration, next_work_order_id, total_worked


@pytest.fixture
def orders(engine):
    return engine.work_orders


@pytest.fixture
def pending(orders):
    return orders.save(order_form(), is_new=True)


def test_next_id_follows_highest_sequence_of_the_year():
    existing = ['MA-25-0001', 'MA-25-0007', 'MA-24-0099', 'junk']
    assert next_work_order_id(existing, 2025) == 'MA-25-0008'
    assert next_work_order_id(existing, 2026) == 'MA-26-0001'


def test_next_id_uses_the_clock_year(orders, pending):
    assert orders.next_id() == 'MA-25-0002'
    assert orders.next_id(2024) == 'MA-24-0001'


def test_new_order_is_pending_with_creation_time(pending):
    assert pending.status == OrderStatus.PENDING
    assert pending.created_at == START
    assert pending.work_intervals == []


def test_start_opens_an_interval(orders, pending, clock):
    order = orders.start(pending.id)

    assert order.status == OrderStatus.IN_PROGRESS
    assert order.start_time == clock.now()
    assert order.date == clock.now().date()
    assert len(order.work_intervals) == 1
    assert order.open_interval is not None


def test_start_twice_is_rejected(orders, pending):
    orders.start(pending.id)
    with pytest.raises(InvalidTransitionError):
        orders.start(pending.id)
    assert len(orders.get(pending.id).work_intervals) == 1


def test_start_requires_a_responsible_technician(orders, store):
    store.upsert(WORK_ORDERS, 'MA-25-0009', {'id': 'MA-25-0009', 'type': 'Preventive',
                                             'maintenance_type': 'Lubrication', 'status': 'Pending'})
    with pytest.raises(ValidationError):
        orders.start('MA-25-0009')
    assert orders.get('MA-25-0009').status == OrderStatus.PENDING


def test_pause_resume_complete_accumulates_closed_intervals(orders, pending, clock):
    orders.start(pending.id)
    clock.advance(hours=1)
    paused = orders.pause(pending.id)
    assert paused.open_interval is None

    clock.advance(hours=3)
    orders.resume(pending.id)
    clock.advance(minutes=30)
    done = orders.complete(pending.id)

    assert done.status == OrderStatus.COMPLETED
    assert [i.duration for i in done.work_intervals] == [timedelta(hours=1), timedelta(minutes=30)]
    assert total_worked(done) == timedelta(hours=1, minutes=30)
    assert done.end_time == clock.now()


def test_resume_only_from_paused(orders, pending):
    with pytest.raises(InvalidTransitionError):
        orders.resume(pending.id)


def test_pending_order_cannot_be_paused_or_completed(orders, pending):
    with pytest.raises(InvalidTransitionError):
        orders.pause(pending.id)
    with pytest.raises(InvalidTransitionError):
        orders.complete(pending.id)


def test_completed_order_is_final(orders, pending):
    orders.start(pending.id)
    orders.complete(pending.id)
    for action in (orders.start, orders.pause, orders.cancel):
        with pytest.raises(InvalidTransitionError):
            action(pending.id)
    with pytest.raises(InvalidTransitionError):
        orders.save({'id': pending.id, 'status': OrderStatus.IN_PROGRESS})


def test_cancel_closes_the_running_interval(orders, pending, clock):
    orders.start(pending.id)
    clock.advance(minutes=45)
    order = orders.cancel(pending.id)

    assert order.status == OrderStatus.CANCELLED
    assert order.open_interval is None
    assert total_worked(order) == timedelta(minutes=45)


def test_manual_start_in_the_past_is_used(orders, pending, clock):
    earlier = clock.now() - timedelta(hours=2)
    order = orders.start(pending.id, manual_start=earlier)
    assert order.work_intervals[0].start == earlier
    assert order.start_time == earlier


def test_manual_start_in_the_future_is_ignored(orders, pending, clock):
    order = orders.start(pending.id, manual_start=clock.now() + timedelta(hours=2))
    assert order.work_intervals[0].start == clock.now()


def test_manual_start_cannot_overlap_earlier_work(orders, pending, clock):
    orders.start(pending.id)
    clock.advance(hours=2)
    orders.pause(pending.id)
    clock.advance(hours=1)
    order = orders.start(pending.id, manual_start=START + timedelta(hours=1))
    assert order.work_intervals[-1].start == clock.now()


def test_elapsed_includes_the_running_interval(orders, pending, clock):
    orders.start(pending.id)
    clock.advance(hours=1)
    orders.pause(pending.id)
    clock.advance(hours=1)
    order = orders.resume(pending.id)
    clock.advance(minutes=20)

    assert total_worked(order) == timedelta(hours=1)
    assert elapsed_duration(order, clock.now()) == timedelta(hours=1, minutes=20)


def test_complete_consumes_parts(orders, store):
    orders.save(order_form(parts_used=[{'part_id': 'P1', 'quantity': 2}]), is_new=True)
    orders.start('MA-25-0001')
    orders.complete('MA-25-0001')
    assert store.get(PARTS, 'P1')['stock'] == 1


def test_complete_with_insufficient_stock_changes_nothing(orders, store):
    orders.save(order_form(parts_used=[{'part_id': 'P1', 'quantity': 5}]), is_new=True)
    orders.start('MA-25-0001')

    with pytest.raises(InsufficientStockError) as exc_info:
        orders.complete('MA-25-0001')

    assert exc_info.value.part_id == 'P1'
    assert exc_info.value.shortfall == 2
    assert store.get(PARTS, 'P1')['stock'] == 3
    assert orders.get('MA-25-0001').status == OrderStatus.IN_PROGRESS


def test_save_completed_with_explicit_times_replaces_timeline(orders, store):
    order = orders.save(order_form(
        status=OrderStatus.COMPLETED,
        start_time='2025-03-07T09:00:00Z',
        end_time='2025-03-07T11:30:00Z',
        parts_used=[{'part_id': 'P2', 'quantity': 3}],
    ), is_new=True)

    assert order.date == date(2025, 3, 7)
    assert total_worked(order) == timedelta(hours=2, minutes=30)
    assert store.get(PARTS, 'P2')['stock'] == 7


def test_editing_a_completed_order_reconciles_stock(orders, store):
    orders.save(order_form(status=OrderStatus.COMPLETED, start_time='2025-03-07T09:00:00Z',
                           end_time='2025-03-07T10:00:00Z',
                           parts_used=[{'part_id': 'P2', 'quantity': 3}]), is_new=True)
    orders.save({'id': 'MA-25-0001', 'parts_used': [{'part_id': 'P2', 'quantity': 1},
                                                    {'part_id': 'P1', 'quantity': 1}]})

    assert store.get(PARTS, 'P2')['stock'] == 9
    assert store.get(PARTS, 'P1')['stock'] == 2


def test_update_parts_on_open_order_only_records(orders, pending, store):
    order = orders.update_parts(pending.id, [{'part_id': 'P1', 'quantity': 2}])
    assert order.parts_used == [PartUsage('P1', 2)]
    assert store.get(PARTS, 'P1')['stock'] == 3
    assert orders.get(pending.id).description == 'Noisy bearing'


def test_update_parts_on_completed_order(orders, pending, store):
    orders.update_parts(pending.id, [{'part_id': 'P2', 'quantity': 2}])
    orders.start(pending.id)
    orders.complete(pending.id)
    assert store.get(PARTS, 'P2')['stock'] == 8

    orders.update_parts(pending.id, [{'part_id': 'P2', 'quantity': 5}])
    assert store.get(PARTS, 'P2')['stock'] == 5


def test_update_parts_rejects_non_positive_quantities(orders, pending):
    with pytest.raises(ValidationError):
        orders.update_parts(pending.id, [{'part_id': 'P1', 'quantity': 0}])


@pytest.mark.parametrize('fields', [
    {'id': 'WO-1'},
    {'failure_type': None},
    {'type': 'Preventive', 'maintenance_type': None},
    {'lead_technician': ''},
    {'start_time': '2025-03-07T10:00:00Z', 'end_time': '2025-03-07T09:00:00Z'},
    {'parts_used': [{'part_id': 'P1', 'quantity': -1}]},
    {'start_time': 'yesterday'},
    {'parts_used': [{'quantity': 1}]},
    {'work_intervals': [{'end': '2025-03-07T09:00:00Z'}]},
])
def test_save_rejects_invalid_orders(orders, store, fields):
    with pytest.raises(ValidationError):
        orders.save(order_form(**fields), is_new=True)
    assert store.query(WORK_ORDERS) == []


def test_save_rejects_duplicate_ids(orders, pending):
    with pytest.raises(ValidationError):
        orders.save(order_form(), is_new=True)


def test_switching_type_clears_the_other_classification(orders, pending):
    order = orders.save({'id': pending.id, 'type': 'Preventive', 'maintenance_type': 'Inspection'})
    assert order.failure_type is None
    assert order.maintenance_type == 'Inspection'


def test_completing_links_the_source_request(orders, store):
    store.upsert(REQUESTS, 'SOL-0001', {'id': 'SOL-0001', 'machine_id': 'M1', 'description': 'x',
                                        'requester': 'op', 'status': 'Pending'})
    orders.save(order_form(), is_new=True, source_request_id='SOL-0001')
    request = store.get(REQUESTS, 'SOL-0001')
    assert request['status'] == 'Approved'
    assert request['work_order_id'] == 'MA-25-0001'


def test_order_survives_a_round_trip():
    order = WorkOrder(
        id='MA-25-0003',
        status=OrderStatus.PAUSED,
        lead_technician='ana',
        support_technicians=['luis', 'ana'],
        work_intervals=[WorkInterval(START, START + timedelta(hours=1)), WorkInterval(START + timedelta(hours=2))],
        parts_used=[PartUsage('P1', 2)],
        date=START.date(),
    )
    data = order.to_dict()
    assert data['technicians'] == ['ana', 'luis']
    assert WorkOrder.from_dict(data) == order


def test_order_completed_the_instant_it_started_stays_editable(orders, pending):
    orders.start(pending.id)
    done = orders.complete(pending.id)
    assert done.end_time == done.start_time

    order = orders.save({'id': pending.id, 'description': 'Bearing replaced'})

    assert order.description == 'Bearing replaced'
    assert order.status == OrderStatus.COMPLETED


def test_typed_times_are_still_checked_on_edit(orders, pending, clock):
    orders.start(pending.id)
    clock.advance(hours=1)
    orders.complete(pending.id)
    with pytest.raises(ValidationError):
        orders.save({'id': pending.id, 'end_time': START.isoformat()})


@pytest.mark.parametrize('parts_used', [
    [{'part_id': 'P1', 'quantity': 'two'}],
    [{'quantity': 1}],
    [None],
])
def test_update_parts_rejects_malformed_entries(orders, pending, parts_used):
    with pytest.raises(ValidationError):
        orders.update_parts(pending.id, parts_used)
    assert orders.get(pending.id).parts_used == []


def test_failed_completion_returns_the_stock(orders, store):
    orders.save(order_form(parts_used=[{'part_id': 'P1', 'quantity': 2}]), is_new=True)
    orders.start('MA-25-0001')

    store.failing.add(WORK_ORDERS)
    with pytest.raises(StoreError):
        orders.complete('MA-25-0001')
    store.failing.clear()

    assert store.get(PARTS, 'P1')['stock'] == 3
    assert orders.get('MA-25-0001').status == OrderStatus.IN_PROGRESS

    orders.complete('MA-25-0001')
    assert store.get(PARTS, 'P1')['stock'] == 1


def test_failed_parts_edit_returns_the_stock(orders, pending, store):
    orders.update_parts(pending.id, [{'part_id': 'P2', 'quantity': 2}])
    orders.start(pending.id)
    orders.complete(pending.id)

    store.failing.add(WORK_ORDERS)
    with pytest.raises(StoreError):
        orders.update_parts(pending.id, [{'part_id': 'P2', 'quantity': 6}])
    store.failing.clear()

    assert store.get(PARTS, 'P2')['stock'] == 8
    assert orders.get(pending.id).parts_used == [PartUsage('P2', 2)]


def add_request(store, status='Pending'):
    store.upsert(REQUESTS, 'SOL-0001', {'id': 'SOL-0001', 'machine_id': 'M1', 'description': 'x',
                                        'requester': 'op', 'status': status})


def test_complete_approves_a_pending_source_request(orders, store):
    add_request(store)
    orders.save(order_form(source_request_id='SOL-0001'), is_new=True)
    assert store.get(REQUESTS, 'SOL-0001')['status'] == 'Pending'

    orders.start('MA-25-0001')
    orders.complete('MA-25-0001')

    request = store.get(REQUESTS, 'SOL-0001')
    assert request['status'] == 'Approved'
    assert request['work_order_id'] == 'MA-25-0001'


def test_complete_leaves_a_closed_source_request_alone(orders, store):
    add_request(store, status='Rejected')
    orders.save(order_form(), is_new=True, source_request_id='SOL-0001')
    orders.start('MA-25-0001')
    orders.complete('MA-25-0001')

    request = store.get(REQUESTS, 'SOL-0001')
    assert request['status'] == 'Rejected'
    assert 'work_order_id' not in request
