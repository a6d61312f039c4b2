"""Reliability and cost indicators over a date window.

Every indicator that lacks the data it needs comes back as NOT_AVAILABLE
rather than 0, so "no failures recorded" never reads as "perfectly reliable".
"""
from collections import namedtuple
from datetime import date, datetime, time, timedelta, timezone

from costs import HOURS_PER_MONTH, orders_cost
from models import FAILURE_TYPES, OrderStatus, OrderType, RequestStatus
from schedules import DEFAULT_DAILY_UPTIME_HOURS, month_bounds, scheduled_uptime, week_bounds
from scoping import EVERYTHING
from work_orders import total_worked


class _NotAvailable:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'N/A'

    __str__ = __repr__

    def __bool__(self):
        return False


NOT_AVAILABLE = _NotAvailable()


def is_available(value):
    return value is not NOT_AVAILABLE


def as_json(value, digits=2):
    """JSON-friendly value: rounded numbers, 'N/A' for missing indicators."""
    if value is NOT_AVAILABLE:
        return 'N/A'
    return round(value, digits)


KpiReport = namedtuple('KpiReport', 'mtbf_days mttr_hours availability_pct preventive_ratio_pct average_cost')


# ---------- windows ----------

def period_bounds(period, reference):
    """First and last day of the day/week/month/year containing `reference`."""
    day = reference.date() if isinstance(reference, datetime) else reference
    if period == 'day':
        return day, day
    if period == 'week':
        return week_bounds(day)
    if period == 'month':
        return month_bounds(day.year, day.month)
    if period == 'year':
        return date(day.year, 1, 1), date(day.year, 12, 31)
    raise ValueError(f"Unknown period '{period}'")


def orders_in_window(orders, start, end, machine_id=None, scope=EVERYTHING):
    """Orders whose calendar date falls within [start, end]."""
    selected = []
    for order in orders:
        if order.date is None or not start <= order.date <= end:
            continue
        if machine_id is not None and order.machine_id != machine_id:
            continue
        if not scope.work_order(order):
            continue
        selected.append(order)
    return selected


def _failure_moment(order):
    if order.created_at is not None:
        return order.created_at
    return datetime.combine(order.date, time.min, tzinfo=timezone.utc)


def _corrective(orders):
    return [o for o in orders if o.type == OrderType.CORRECTIVE]


def _completed(orders):
    return [o for o in orders if o.status == OrderStatus.COMPLETED]


# ---------- indicators ----------

def mtbf_days(orders):
    """Mean days between corrective orders, ordered by when they were raised."""
    failures = sorted(
        (o for o in _corrective(orders) if o.created_at is not None or o.date is not None),
        key=_failure_moment,
    )
    if len(failures) < 2:
        return NOT_AVAILABLE
    span = _failure_moment(failures[-1]) - _failure_moment(failures[0])
    if span <= timedelta(0):
        return NOT_AVAILABLE
    return span.total_seconds() / (len(failures) - 1) / 86400


def mttr_hours(orders):
    repairs = _completed(_corrective(orders))
    if not repairs:
        return NOT_AVAILABLE
    total = sum((total_worked(o) for o in repairs), timedelta(0))
    return total.total_seconds() / len(repairs) / 3600


def availability_pct(orders, machines, start, end, default_hours=DEFAULT_DAILY_UPTIME_HOURS):
    if not machines:
        return NOT_AVAILABLE
    scheduled = scheduled_uptime(machines, start, end, default_hours)
    if scheduled <= timedelta(0):
        return NOT_AVAILABLE
    downtime = sum((total_worked(o) for o in _completed(_corrective(orders))), timedelta(0))
    uptime = max(timedelta(0), scheduled - downtime)
    return uptime / scheduled * 100


def preventive_ratio_pct(orders):
    completed = _completed(orders)
    if not completed:
        return NOT_AVAILABLE
    preventive = [o for o in completed if o.type == OrderType.PREVENTIVE]
    return len(preventive) / len(completed) * 100


def average_cost(orders, parts_by_id, technicians_by_username, hours_per_month=HOURS_PER_MONTH):
    completed = _completed(orders)
    if not completed:
        return NOT_AVAILABLE
    return orders_cost(completed, parts_by_id, technicians_by_username, hours_per_month).total / len(completed)


def compute_kpis(orders, machines, parts_by_id, technicians_by_username, start, end,
                 machine_id=None, scope=EVERYTHING, hours_per_month=HOURS_PER_MONTH,
                 default_hours=DEFAULT_DAILY_UPTIME_HOURS):
    """All indicators for the orders dated within [start, end].

    `machine_id` narrows both the orders and the machines whose scheduled time
    counts toward availability; `scope` applies the viewer's visibility.
    """
    start = start.date() if isinstance(start, datetime) else start
    end = end.date() if isinstance(end, datetime) else end
    window = orders_in_window(orders, start, end, machine_id, scope)
    in_scope = [m for m in machines
                if (machine_id is None or m.id == machine_id) and scope.machine(m)]
    return KpiReport(
        mtbf_days=mtbf_days(window),
        mttr_hours=mttr_hours(window),
        availability_pct=availability_pct(window, in_scope, start, end, default_hours),
        preventive_ratio_pct=preventive_ratio_pct(window),
        average_cost=average_cost(window, parts_by_id, technicians_by_username, hours_per_month),
    )


# ---------- dashboard ----------

def dashboard_stats(orders, machines, requests, parts_by_id, technicians_by_username,
                    start, end, scope=EVERYTHING, hours_per_month=HOURS_PER_MONTH):
    window = orders_in_window(orders, start, end, scope=scope)
    completed = _completed(window)
    planned = [o for o in window if o.status != OrderStatus.CANCELLED]
    corrective = _corrective(window)

    return {
        'machines': len(scope.filter('machine', machines)),
        'pending_requests': len([r for r in scope.filter('request', requests)
                                 if r.status == RequestStatus.PENDING]),
        'preventive': len([o for o in window if o.type == OrderType.PREVENTIVE]),
        'corrective': len(corrective),
        'executed_cost': orders_cost(completed, parts_by_id, technicians_by_username, hours_per_month).total,
        'planned_cost': orders_cost(planned, parts_by_id, technicians_by_username, hours_per_month).total,
        'by_status': {status: len([o for o in window if o.status == status]) for status in OrderStatus.ALL},
        'by_failure_type': {kind: len([o for o in corrective if o.failure_type == kind])
                            for kind in FAILURE_TYPES},
    }


def monthly_trend(orders, reference, months=12, scope=EVERYTHING):
    """Preventive and corrective counts for the `months` months ending with `reference`'s month."""
    day = reference.date() if isinstance(reference, datetime) else reference
    year, month = day.year, day.month
    buckets = []
    for _ in range(months):
        buckets.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    buckets.reverse()

    counts = {bucket: {'preventive': 0, 'corrective': 0} for bucket in buckets}
    for order in orders:
        if order.date is None or not scope.work_order(order):
            continue
        bucket = counts.get((order.date.year, order.date.month))
        if bucket is None:
            continue
        if order.type == OrderType.PREVENTIVE:
            bucket['preventive'] += 1
        elif order.type == OrderType.CORRECTIVE:
            bucket['corrective'] += 1

    return [
        {'month': f"{y:04d}-{m:02d}", **counts[(y, m)]}
        for y, m in buckets
    ]
