"""What each user gets to see.

`visible_scope(user)` returns one set of predicates that every query path
applies, so a supervisor's dashboard, KPIs and lists all agree on the same
machines.
"""
from models import Role


class Scope:
    """Predicates over machines, work orders, parts and requests."""

    def __init__(self, machine_ids=None, requester=None):
        # None means unrestricted
        self.machine_ids = set(machine_ids) if machine_ids is not None else None
        self.requester = requester

    def machine(self, machine):
        return self.machine_ids is None or machine.id in self.machine_ids

    def work_order(self, order):
        return self.machine_ids is None or order.machine_id in self.machine_ids

    def part(self, part):
        if self.machine_ids is None:
            return True
        return bool(self.machine_ids.intersection(part.machine_ids))

    def request(self, request):
        if self.requester is not None and request.requester != self.requester:
            return False
        return self.machine_ids is None or request.machine_id in self.machine_ids

    def filter(self, kind, items):
        predicate = getattr(self, kind)
        return [item for item in items if predicate(item)]


EVERYTHING = Scope()


def visible_scope(user):
    """Scope for `user`. Internal callers pass None and see everything."""
    if user is None:
        return EVERYTHING
    if user.role == Role.AREA_SUPERVISOR:
        return Scope(machine_ids=user.managed_machine_ids)
    if user.role == Role.OPERATOR:
        return Scope(requester=user.username)
    return EVERYTHING
