"""Parts, labor and total cost of work orders."""
from collections import namedtuple

from work_orders import total_worked

HOURS_PER_MONTH = 160


class CostBreakdown(namedtuple('CostBreakdown', 'parts labor additional')):

    @property
    def total(self):
        return self.parts + self.labor + self.additional

    def __add__(self, other):
        return CostBreakdown(
            self.parts + other.parts,
            self.labor + other.labor,
            self.additional + other.additional,
        )

    def to_dict(self):
        return {
            'parts_cost': self.parts,
            'labor_cost': self.labor,
            'additional_cost': self.additional,
            'total_cost': self.total,
        }


ZERO_COST = CostBreakdown(0.0, 0.0, 0.0)


def worked_hours(order):
    return total_worked(order).total_seconds() / 3600


def parts_cost(order, parts_by_id):
    """Uses current part prices; parts that no longer exist cost nothing."""
    cost = 0.0
    for usage in order.parts_used:
        part = parts_by_id.get(usage.part_id)
        if part is not None:
            cost += part.cost * usage.quantity
    return cost


def labor_cost(order, technicians_by_username, hours_per_month=HOURS_PER_MONTH):
    hours = worked_hours(order)
    if hours <= 0:
        return 0.0
    rate = 0.0
    for username in order.technicians:
        technician = technicians_by_username.get(username)
        if technician is not None:
            rate += technician.hourly_rate(hours_per_month)
    return hours * rate


def order_cost(order, parts_by_id, technicians_by_username, hours_per_month=HOURS_PER_MONTH):
    return CostBreakdown(
        parts_cost(order, parts_by_id),
        labor_cost(order, technicians_by_username, hours_per_month),
        float(order.additional_cost or 0),
    )


def orders_cost(orders, parts_by_id, technicians_by_username, hours_per_month=HOURS_PER_MONTH):
    """Component-wise sum over many orders."""
    totals = ZERO_COST
    for order in orders:
        totals = totals + order_cost(order, parts_by_id, technicians_by_username, hours_per_month)
    return totals
