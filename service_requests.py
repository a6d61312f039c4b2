"""Operator service requests and their promotion into work orders."""
import logging
import re

from clock import system_clock
from errors import InvalidTransitionError, NotFoundError, ValidationError
from models import REQUESTS, OrderType, RequestStatus, ServiceRequest

log = logging.getLogger(__name__)

REQUEST_ID_RE = re.compile(r'^SOL-(\d{4,})$')

PLANNING = 'Planning'


def next_request_id(existing_ids):
    """SOL-NNNN one past the highest sequence in use, so deleted ids are never handed out again."""
    sequences = [int(m.group(1)) for m in map(REQUEST_ID_RE.match, existing_ids) if m]
    return f"SOL-{max(sequences, default=0) + 1:04d}"


def display_status(request, orders_by_id):
    """Status an operator sees: the work order's once one exists."""
    if request.work_order_id:
        order = orders_by_id.get(request.work_order_id)
        if order is not None:
            return order.status
    if request.status == RequestStatus.APPROVED:
        return PLANNING
    return request.status


class RequestService:

    def __init__(self, store, work_orders, clock=system_clock):
        self.store = store
        self.work_orders = work_orders
        self.clock = clock

    def get(self, request_id):
        data = self.store.get(REQUESTS, request_id)
        if data is None:
            raise NotFoundError(REQUESTS, request_id)
        return ServiceRequest.from_dict(data)

    def submit(self, requester, machine_id, description):
        if not machine_id or not (description or '').strip():
            raise ValidationError("A machine and a description are required.")
        existing = [doc_id for doc_id, _ in self.store.query(REQUESTS)]
        request = ServiceRequest(
            id=next_request_id(existing),
            machine_id=machine_id,
            description=description.strip(),
            requester=requester,
            created_at=self.clock.now(),
        )
        self.store.upsert(REQUESTS, request.id, request.to_dict())
        log.info("Request %s submitted by %s for machine %s", request.id, requester, machine_id)
        return request

    def convert(self, request_id, form=None):
        """Turn a request into a new work order and link the two.

        `form` carries the work order fields chosen by the planner; the
        machine, description and requester default to the request's.
        """
        request = self.get(request_id)
        if request.status != RequestStatus.PENDING:
            raise InvalidTransitionError(request_id, request.status, RequestStatus.APPROVED)

        form = dict(form or {})
        form.setdefault('id', self.work_orders.next_id())
        form.setdefault('machine_id', request.machine_id)
        form.setdefault('description', request.description)
        form.setdefault('requester', request.requester)
        form.setdefault('type', OrderType.CORRECTIVE)

        order = self.work_orders.save(form, is_new=True, source_request_id=request.id)
        log.info("Request %s converted into work order %s", request.id, order.id)
        return order

    def reject(self, request_id):
        return self._close(request_id, RequestStatus.REJECTED)

    def cancel(self, request_id):
        return self._close(request_id, RequestStatus.CANCELLED)

    def _close(self, request_id, status):
        request = self.get(request_id)
        if request.status != RequestStatus.PENDING:
            raise InvalidTransitionError(request_id, request.status, status)
        request.status = status
        self.store.upsert(REQUESTS, request.id, {'status': status}, merge=True)
        log.info("Request %s %s", request.id, status.lower())
        return request
