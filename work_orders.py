"""Work order lifecycle: status transitions and the worked-time timeline.

Allowed status changes:

    Pending     -> In Progress, Cancelled
    In Progress -> Paused, Completed, Cancelled
    Paused      -> In Progress, Completed, Cancelled

Completed and Cancelled are final. Every stretch of active work is a
`WorkInterval`; only an In Progress order has an open one, and never more
than one. Parts listed on an order leave stock when the order is completed.
"""
import logging
import re
from datetime import timedelta

from clock import system_clock
from errors import InvalidTransitionError, NotFoundError, StoreError, ValidationError
from models import (REQUESTS, WORK_ORDERS, OrderStatus, OrderType, PartUsage,
                    RequestStatus, WorkInterval, WorkOrder)

log = logging.getLogger(__name__)

ORDER_ID_RE = re.compile(r'^MA-\d{2}-\d{4}$')

TRANSITIONS = {
    OrderStatus.PENDING: (OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED),
    OrderStatus.IN_PROGRESS: (OrderStatus.PAUSED, OrderStatus.COMPLETED, OrderStatus.CANCELLED),
    OrderStatus.PAUSED: (OrderStatus.IN_PROGRESS, OrderStatus.COMPLETED, OrderStatus.CANCELLED),
    OrderStatus.COMPLETED: (),
    OrderStatus.CANCELLED: (),
}


def total_worked(order):
    """Authoritative worked time: the sum of closed intervals."""
    total = timedelta(0)
    for interval in order.work_intervals:
        total += interval.duration
    return total


def elapsed_duration(order, now):
    """Worked time including the running interval of an In Progress order."""
    total = total_worked(order)
    if order.status == OrderStatus.IN_PROGRESS:
        interval = order.open_interval
        if interval is not None and now > interval.start:
            total += now - interval.start
    return total


def next_work_order_id(existing_ids, year):
    prefix = f"MA-{year % 100:02d}-"
    sequences = []
    for order_id in existing_ids:
        if order_id.startswith(prefix):
            try:
                sequences.append(int(order_id.split('-')[2]))
            except (IndexError, ValueError):
                continue
    return f"{prefix}{max(sequences, default=0) + 1:04d}"


def validate_parts(parts_used):
    for usage in parts_used:
        if not usage.part_id:
            raise ValidationError("Every part used needs a part id.")
        if usage.quantity <= 0:
            raise ValidationError(f"Quantity for part {usage.part_id} must be positive.")


def validate_order(order, check_times=True):
    """Business rules checked before any work order is written.

    `check_times=False` skips the end-after-start rule for timestamps that
    were recorded by the lifecycle rather than typed in.
    """
    if not ORDER_ID_RE.match(order.id or ''):
        raise ValidationError("Work order id must look like MA-YY-NNNN (e.g. MA-25-0001).")
    if order.type not in OrderType.ALL:
        raise ValidationError(f"Unknown work order type '{order.type}'.")
    if order.status not in OrderStatus.ALL:
        raise ValidationError(f"Unknown work order status '{order.status}'.")
    if order.type == OrderType.CORRECTIVE and not order.failure_type:
        raise ValidationError("Corrective orders need a failure type.")
    if order.type == OrderType.PREVENTIVE and not order.maintenance_type:
        raise ValidationError("Preventive orders need a maintenance type.")
    if not order.lead_technician and order.status != OrderStatus.CANCELLED:
        raise ValidationError("A responsible technician must be assigned.")
    if check_times and order.start_time and order.end_time and order.end_time <= order.start_time:
        raise ValidationError("The end date/time must be after the start date/time.")
    validate_parts(order.parts_used)


class WorkOrderService:

    def __init__(self, store, ledger, clock=system_clock):
        self.store = store
        self.ledger = ledger
        self.clock = clock

    # ---------- reads ----------

    def get(self, order_id):
        data = self.store.get(WORK_ORDERS, order_id)
        if data is None:
            raise NotFoundError(WORK_ORDERS, order_id)
        return WorkOrder.from_dict(data)

    def existing_ids(self):
        return [doc_id for doc_id, _ in self.store.query(WORK_ORDERS)]

    def next_id(self, year=None):
        if year is None:
            year = self.clock.now().year
        return next_work_order_id(self.existing_ids(), year)

    # ---------- transitions ----------

    def start(self, order_id, manual_start=None):
        order = self.get(order_id)
        self._check_transition(order, OrderStatus.IN_PROGRESS,
                               allowed_from=(OrderStatus.PENDING, OrderStatus.PAUSED))
        return self._open(order, manual_start)

    def resume(self, order_id):
        order = self.get(order_id)
        self._check_transition(order, OrderStatus.IN_PROGRESS, allowed_from=(OrderStatus.PAUSED,))
        return self._open(order)

    def pause(self, order_id):
        order = self.get(order_id)
        self._check_transition(order, OrderStatus.PAUSED)
        self._close_open_interval(order, self.clock.now())
        order.status = OrderStatus.PAUSED
        self._save(order)
        log.info("Work order %s paused", order.id)
        return order

    def complete(self, order_id):
        order = self.get(order_id)
        self._check_transition(order, OrderStatus.COMPLETED)
        now = self.clock.now()
        closed = self._close_open_interval(order, now)
        if order.end_time is None:
            order.end_time = closed.end if closed else self._last_interval_end(order, now)
        order.status = OrderStatus.COMPLETED
        moved = self.ledger.consume(order.parts_used)
        self._save_or_revert(order, moved)
        self._link_source_request(order)
        log.info("Work order %s completed after %s of work", order.id, total_worked(order))
        return order

    def cancel(self, order_id):
        order = self.get(order_id)
        self._check_transition(order, OrderStatus.CANCELLED)
        # Worked time stops with the cancellation; only In Progress orders may hold an open interval
        self._close_open_interval(order, self.clock.now())
        order.status = OrderStatus.CANCELLED
        self._save(order)
        log.info("Work order %s cancelled", order.id)
        return order

    # ---------- edits ----------

    def save(self, form, is_new=False, source_request_id=None):
        """Save a work order from a full form.

        `form` holds work order fields as in `WorkOrder.to_dict()`; missing
        fields keep their stored values. Returns the saved order.
        """
        order_id = (form.get('id') or '').strip()
        if not ORDER_ID_RE.match(order_id):
            raise ValidationError("Work order id must look like MA-YY-NNNN (e.g. MA-25-0001).")

        existing = self.store.get(WORK_ORDERS, order_id)
        if is_new and existing is not None:
            raise ValidationError(f"Work order {order_id} already exists.")

        merged = dict(existing or {})
        merged.update(form)
        merged['id'] = order_id
        merged.setdefault('type', OrderType.PREVENTIVE)
        if source_request_id:
            merged['source_request_id'] = source_request_id
        if merged.get('type') != OrderType.CORRECTIVE:
            merged['failure_type'] = None
        if merged.get('type') != OrderType.PREVENTIVE:
            merged['maintenance_type'] = None

        try:
            order = WorkOrder.from_dict(merged)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid work order data: {e!r}") from e

        previous = WorkOrder.from_dict(existing) if existing else None
        old_status = previous.status if previous else None
        if old_status in OrderStatus.TERMINAL and order.status != old_status:
            raise InvalidTransitionError(order_id, old_status, order.status)
        validate_order(order, check_times='start_time' in form or 'end_time' in form)

        now = self.clock.now()
        self._recompute_intervals(order, old_status, now)

        if order.status == OrderStatus.COMPLETED and order.end_time is None:
            order.end_time = self._last_interval_end(order, now)
        if order.date is None and order.start_time is not None:
            order.date = order.start_time.date()
        if previous is None and order.created_at is None:
            order.created_at = now

        moved = {}
        if order.status == OrderStatus.COMPLETED and old_status != OrderStatus.COMPLETED:
            moved = self.ledger.consume(order.parts_used)
        elif order.status == OrderStatus.COMPLETED:
            moved = self.ledger.reconcile(previous.parts_used, order.parts_used)
        self._save_or_revert(order, moved)
        if source_request_id or order.status == OrderStatus.COMPLETED:
            self._link_source_request(order)
        log.info("Work order %s saved (%s -> %s)", order.id, old_status, order.status)
        return order

    def update_parts(self, order_id, parts_used):
        """Replace the parts list of an order outside of a status change.

        A completed order already took its parts out of stock, so the
        difference is reconciled against inventory; other orders only record
        the list, which is consumed when they complete.
        """
        order = self.get(order_id)
        try:
            new_parts = [p if isinstance(p, PartUsage) else PartUsage.from_dict(p) for p in parts_used]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid parts list: {e!r}") from e
        validate_parts(new_parts)
        moved = {}
        if order.status == OrderStatus.COMPLETED:
            moved = self.ledger.reconcile(order.parts_used, new_parts)
        order.parts_used = new_parts
        self._save_or_revert(order, moved, fields=('parts_used',))
        log.info("Parts of work order %s updated", order.id)
        return order

    # ---------- internals ----------

    def _check_transition(self, order, target, allowed_from=None):
        allowed = order.status in (allowed_from or TRANSITIONS)
        if not allowed or target not in TRANSITIONS.get(order.status, ()):
            raise InvalidTransitionError(order.id, order.status, target)

    def _open(self, order, manual_start=None):
        if not order.lead_technician:
            raise ValidationError("Assign a responsible technician before starting the work order.")
        now = self.clock.now()
        start = now
        if manual_start is not None and manual_start <= now and self._fits_after_last_interval(order, manual_start):
            start = manual_start
        order.work_intervals.append(WorkInterval(start=start))
        if order.status == OrderStatus.PENDING:
            order.start_time = start
            order.date = start.date()
        order.status = OrderStatus.IN_PROGRESS
        self._save(order)
        log.info("Work order %s in progress from %s", order.id, start.isoformat())
        return order

    @staticmethod
    def _fits_after_last_interval(order, start):
        ends = [i.end for i in order.work_intervals if i.end is not None]
        return not ends or start >= max(ends)

    @staticmethod
    def _close_open_interval(order, now):
        interval = order.open_interval
        if interval is not None:
            interval.end = max(now, interval.start)
        return interval

    @staticmethod
    def _last_interval_end(order, now):
        if order.work_intervals and order.work_intervals[-1].end is not None:
            return order.work_intervals[-1].end
        return now

    def _recompute_intervals(self, order, old_status, now):
        new_status = order.status
        if new_status == OrderStatus.COMPLETED and order.start_time and order.end_time:
            # Explicit start and end replace the recorded timeline
            order.work_intervals = [WorkInterval(start=order.start_time, end=order.end_time)]
            return
        if new_status == old_status:
            return
        if new_status == OrderStatus.IN_PROGRESS:
            start = now
            manual = order.start_time
            if (order.open_interval is None and manual is not None and manual <= now
                    and self._fits_after_last_interval(order, manual)):
                start = manual
            if order.open_interval is None:
                order.work_intervals.append(WorkInterval(start=start))
            if old_status in (None, OrderStatus.PENDING) and order.start_time is None:
                order.start_time = start
                order.date = start.date()
        elif old_status == OrderStatus.IN_PROGRESS:
            self._close_open_interval(order, now)

    def _save(self, order, fields=None):
        data = order.to_dict()
        if fields is None:
            self.store.upsert(WORK_ORDERS, order.id, data)
        else:
            self.store.upsert(WORK_ORDERS, order.id, {name: data[name] for name in fields}, merge=True)

    def _save_or_revert(self, order, moved, fields=None):
        """Write the order; if that fails, undo the stock movements made for it."""
        try:
            self._save(order, fields)
        except StoreError:
            log.error("Saving work order %s failed, returning stock movements %s", order.id, moved)
            self.ledger.revert(moved)
            raise

    def _link_source_request(self, order):
        """Approve the originating request, unless someone already moved it on."""
        if not order.source_request_id:
            return
        data = self.store.get(REQUESTS, order.source_request_id)
        if data is None:
            log.warning("Work order %s refers to missing request %s", order.id, order.source_request_id)
            return
        if data.get('status') != RequestStatus.PENDING:
            return
        self.store.upsert(REQUESTS, order.source_request_id, {
            'status': RequestStatus.APPROVED,
            'work_order_id': order.id,
        }, merge=True)
        log.info("Request %s approved as work order %s", order.source_request_id, order.id)
