"""Scheduled operating time of machines."""
from datetime import date, datetime, timedelta

from errors import ValidationError

DEFAULT_DAILY_UPTIME_HOURS = 10


def _as_date(value):
    return value.date() if isinstance(value, datetime) else value


def daily_minutes(machine, day, default_hours=DEFAULT_DAILY_UPTIME_HOURS):
    """Minutes `machine` is scheduled to run on `day`."""
    if machine.schedule_disabled:
        return 0
    if machine.schedule is None:
        return default_hours * 60
    group = machine.schedule.group_for(day)
    if group is None:
        return 0
    return group.span_minutes()


def scheduled_uptime(machines, start, end, default_hours=DEFAULT_DAILY_UPTIME_HOURS):
    """Total scheduled time of `machines` over the days from `start` to `end`, inclusive."""
    first = _as_date(start)
    last = _as_date(end)
    minutes = 0
    for machine in machines:
        day = first
        while day <= last:
            minutes += daily_minutes(machine, day, default_hours)
            day += timedelta(days=1)
    return timedelta(minutes=minutes)


def validate_schedule(schedule):
    if schedule is None:
        return
    for name, group in schedule.active_groups():
        if not group.start_time or not group.end_time:
            raise ValidationError(f"The {name} schedule needs a start and an end time.")
        if group.end_time <= group.start_time:
            raise ValidationError(f"The {name} schedule must end after it starts.")
    invalid = [d for d in schedule.weekday.active_days if d not in range(1, 6)]
    if invalid:
        raise ValidationError(f"Weekday schedule days must be 1 (Monday) to 5 (Friday), got {invalid}.")


def week_bounds(day):
    """Monday and Sunday of the week containing `day`."""
    day = _as_date(day)
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def month_bounds(year, month):
    first = date(year, month, 1)
    if month == 12:
        last = date(year, 12, 31)
    else:
        last = date(year, month + 1, 1) - timedelta(days=1)
    return first, last
