from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Collection names shared by the stores, the cache and the services
MACHINES = 'machines'
PARTS = 'parts'
SUPPLIERS = 'suppliers'
TECHNICIANS = 'technicians'
WORK_ORDERS = 'work_orders'
REQUESTS = 'requests'

COLLECTIONS = (MACHINES, PARTS, SUPPLIERS, TECHNICIANS, WORK_ORDERS, REQUESTS)


class StoredDocument(db.Model):
    """One JSON document of a collection; backs store.SqlStore."""
    __tablename__ = 'document'

    collection = db.Column(db.String(50), primary_key=True)
    doc_id = db.Column(db.String(100), primary_key=True)
    data = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())
    updated_at = db.Column(db.DateTime, default=db.func.current_timestamp(),
                           onupdate=db.func.current_timestamp())


class OrderStatus:
    PENDING = 'Pending'
    IN_PROGRESS = 'In Progress'
    PAUSED = 'Paused'
    COMPLETED = 'Completed'
    CANCELLED = 'Cancelled'

    ALL = (PENDING, IN_PROGRESS, PAUSED, COMPLETED, CANCELLED)
    TERMINAL = (COMPLETED, CANCELLED)


class OrderType:
    PREVENTIVE = 'Preventive'
    CORRECTIVE = 'Corrective'

    ALL = (PREVENTIVE, CORRECTIVE)


FAILURE_TYPES = ('Mechanical', 'Electrical', 'Electronic', 'Operational')


class RequestStatus:
    PENDING = 'Pending'
    APPROVED = 'Approved'
    REJECTED = 'Rejected'
    CANCELLED = 'Cancelled'


class Role:
    ADMIN = 'Admin'
    AREA_SUPERVISOR = 'AreaSupervisor'
    TECHNICIAN = 'Technician'
    GUEST = 'Guest'
    OPERATOR = 'Operator'

    ALL = (ADMIN, AREA_SUPERVISOR, TECHNICIAN, GUEST, OPERATOR)


MACHINE_TYPES = ('equipment', 'installation')
PART_CLASSIFICATIONS = ('consumable', 'spare')


# ---------- timestamp helpers ----------

def parse_datetime(value):
    """Return an aware UTC datetime for an ISO string or datetime; None stays None."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_date(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return parse_datetime(value).date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def to_iso(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return parse_datetime(value).isoformat()
    return value.isoformat()


def _minutes(hhmm):
    hours, minutes = str(hhmm).split(':')[:2]
    return int(hours) * 60 + int(minutes)


# ---------- machines ----------

@dataclass
class DayGroup:
    """Operating hours shared by a group of days.

    The weekday group lists its days in `active_days` (ISO numbers, Monday=1);
    the Saturday and Sunday groups use the `active` flag.
    """
    start_time: str = ''
    end_time: str = ''
    active: bool = False
    active_days: List[int] = field(default_factory=list)

    def span_minutes(self) -> int:
        """Scheduled minutes for one day, 0 when the times do not describe a positive span."""
        if not self.start_time or not self.end_time:
            return 0
        try:
            span = _minutes(self.end_time) - _minutes(self.start_time)
        except ValueError:
            return 0
        return span if span > 0 else 0

    def to_dict(self):
        return {
            'start_time': self.start_time,
            'end_time': self.end_time,
            'active': self.active,
            'active_days': list(self.active_days),
        }

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            start_time=data.get('start_time') or '',
            end_time=data.get('end_time') or '',
            active=bool(data.get('active', False)),
            active_days=sorted(int(d) for d in data.get('active_days') or []),
        )


@dataclass
class Schedule:
    weekday: DayGroup = field(default_factory=DayGroup)
    saturday: DayGroup = field(default_factory=DayGroup)
    sunday: DayGroup = field(default_factory=DayGroup)

    def group_for(self, day: date) -> Optional[DayGroup]:
        """The day-group that applies to `day`, or None when the machine is idle."""
        iso_day = day.isoweekday()
        if iso_day <= 5:
            return self.weekday if iso_day in self.weekday.active_days else None
        if iso_day == 6:
            return self.saturday if self.saturday.active else None
        return self.sunday if self.sunday.active else None

    def active_groups(self):
        groups = []
        if self.weekday.active_days:
            groups.append(('weekday', self.weekday))
        if self.saturday.active:
            groups.append(('saturday', self.saturday))
        if self.sunday.active:
            groups.append(('sunday', self.sunday))
        return groups

    def to_dict(self):
        return {
            'weekday': self.weekday.to_dict(),
            'saturday': self.saturday.to_dict(),
            'sunday': self.sunday.to_dict(),
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            weekday=DayGroup.from_dict(data.get('weekday')),
            saturday=DayGroup.from_dict(data.get('saturday')),
            sunday=DayGroup.from_dict(data.get('sunday')),
        )


@dataclass
class Machine:
    id: str
    name: str = ''
    location: str = ''
    type: str = 'equipment'  # 'equipment' or 'installation'
    schedule: Optional[Schedule] = None
    schedule_disabled: bool = False

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'location': self.location,
            'type': self.type,
            'schedule': self.schedule.to_dict() if self.schedule else None,
            'schedule_disabled': self.schedule_disabled,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            name=data.get('name') or '',
            location=data.get('location') or '',
            type=data.get('type') or 'equipment',
            schedule=Schedule.from_dict(data.get('schedule')),
            schedule_disabled=bool(data.get('schedule_disabled', False)),
        )


# ---------- inventory ----------

@dataclass
class Supplier:
    id: str
    name: str = ''
    tax_id: str = ''
    phone: str = ''
    email: str = ''
    address: str = ''

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'tax_id': self.tax_id,
            'phone': self.phone,
            'email': self.email,
            'address': self.address,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            name=data.get('name') or '',
            tax_id=data.get('tax_id') or '',
            phone=data.get('phone') or '',
            email=data.get('email') or '',
            address=data.get('address') or '',
        )


@dataclass
class Part:
    id: str
    description: str = ''
    classification: str = 'spare'  # 'consumable' or 'spare'
    supplier_id: Optional[str] = None
    machine_ids: List[str] = field(default_factory=list)
    cost: float = 0.0
    stock: int = 0
    min_stock: int = 0
    location: str = ''

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    def to_dict(self):
        return {
            'id': self.id,
            'description': self.description,
            'classification': self.classification,
            'supplier_id': self.supplier_id,
            'machine_ids': list(self.machine_ids),
            'cost': self.cost,
            'stock': self.stock,
            'min_stock': self.min_stock,
            'location': self.location,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            description=data.get('description') or '',
            classification=data.get('classification') or 'spare',
            supplier_id=data.get('supplier_id'),
            machine_ids=list(data.get('machine_ids') or []),
            cost=float(data.get('cost') or 0),
            stock=int(data.get('stock') or 0),
            min_stock=int(data.get('min_stock') or 0),
            location=data.get('location') or '',
        )


# ---------- people ----------

@dataclass
class Technician:
    """Any user of the system; the role decides what they can do."""
    username: str
    password: str = ''  # werkzeug hash, never the plain secret
    role: str = Role.TECHNICIAN
    permissions: List[str] = field(default_factory=list)
    managed_machine_ids: List[str] = field(default_factory=list)
    salary: float = 0.0  # monthly

    def hourly_rate(self, hours_per_month=160) -> float:
        if not self.salary:
            return 0.0
        return self.salary / hours_per_month

    def to_dict(self, include_password=True):
        data = {
            'username': self.username,
            'role': self.role,
            'permissions': list(self.permissions),
            'managed_machine_ids': list(self.managed_machine_ids),
            'salary': self.salary,
        }
        if include_password:
            data['password'] = self.password
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            username=data['username'],
            password=data.get('password') or '',
            role=data.get('role') or Role.TECHNICIAN,
            permissions=list(data.get('permissions') or []),
            managed_machine_ids=list(data.get('managed_machine_ids') or []),
            salary=float(data.get('salary') or 0),
        )


@dataclass
class ServiceRequest:
    id: str
    machine_id: str
    description: str
    requester: str
    status: str = RequestStatus.PENDING
    created_at: Optional[datetime] = None
    work_order_id: Optional[str] = None

    def to_dict(self):
        return {
            'id': self.id,
            'machine_id': self.machine_id,
            'description': self.description,
            'requester': self.requester,
            'status': self.status,
            'created_at': to_iso(self.created_at),
            'work_order_id': self.work_order_id,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            machine_id=data.get('machine_id') or '',
            description=data.get('description') or '',
            requester=data.get('requester') or '',
            status=data.get('status') or RequestStatus.PENDING,
            created_at=parse_datetime(data.get('created_at')),
            work_order_id=data.get('work_order_id'),
        )


# ---------- work orders ----------

@dataclass
class WorkInterval:
    start: datetime
    end: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def duration(self) -> timedelta:
        if self.end is None:
            return timedelta(0)
        return self.end - self.start

    def to_dict(self):
        data = {'start': to_iso(self.start)}
        if self.end is not None:
            data['end'] = to_iso(self.end)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(start=parse_datetime(data['start']), end=parse_datetime(data.get('end')))


@dataclass
class PartUsage:
    part_id: str
    quantity: int

    def to_dict(self):
        return {'part_id': self.part_id, 'quantity': self.quantity}

    @classmethod
    def from_dict(cls, data):
        return cls(part_id=data['part_id'], quantity=int(data.get('quantity') or 0))


@dataclass
class WorkOrder:
    id: str
    machine_id: str = ''
    type: str = OrderType.PREVENTIVE
    description: str = ''
    status: str = OrderStatus.PENDING
    requester: str = ''
    lead_technician: str = ''
    support_technicians: List[str] = field(default_factory=list)
    failure_type: Optional[str] = None  # corrective orders only
    maintenance_type: Optional[str] = None  # preventive orders only
    date: Optional[date] = None  # calendar anchor
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    work_intervals: List[WorkInterval] = field(default_factory=list)
    parts_used: List[PartUsage] = field(default_factory=list)
    created_at: Optional[datetime] = None
    additional_cost: float = 0.0
    source_request_id: Optional[str] = None

    @property
    def technicians(self) -> List[str]:
        """Lead first, then support technicians, without blanks or repeats."""
        seen = []
        for username in [self.lead_technician, *self.support_technicians]:
            if username and username not in seen:
                seen.append(username)
        return seen

    @property
    def open_interval(self) -> Optional[WorkInterval]:
        for interval in self.work_intervals:
            if interval.is_open:
                return interval
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'machine_id': self.machine_id,
            'type': self.type,
            'description': self.description,
            'status': self.status,
            'requester': self.requester,
            'lead_technician': self.lead_technician,
            'support_technicians': list(self.support_technicians),
            'technicians': self.technicians,
            'failure_type': self.failure_type,
            'maintenance_type': self.maintenance_type,
            'date': to_iso(self.date),
            'start_time': to_iso(self.start_time),
            'end_time': to_iso(self.end_time),
            'work_intervals': [i.to_dict() for i in self.work_intervals],
            'parts_used': [p.to_dict() for p in self.parts_used],
            'created_at': to_iso(self.created_at),
            'additional_cost': self.additional_cost,
            'source_request_id': self.source_request_id,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            machine_id=data.get('machine_id') or '',
            type=data.get('type') or OrderType.PREVENTIVE,
            description=data.get('description') or '',
            status=data.get('status') or OrderStatus.PENDING,
            requester=data.get('requester') or '',
            lead_technician=data.get('lead_technician') or '',
            support_technicians=list(data.get('support_technicians') or []),
            failure_type=data.get('failure_type') or None,
            maintenance_type=data.get('maintenance_type') or None,
            date=parse_date(data.get('date')),
            start_time=parse_datetime(data.get('start_time')),
            end_time=parse_datetime(data.get('end_time')),
            work_intervals=[WorkInterval.from_dict(i) for i in data.get('work_intervals') or []],
            parts_used=[PartUsage.from_dict(p) for p in data.get('parts_used') or []],
            created_at=parse_datetime(data.get('created_at')),
            additional_cost=float(data.get('additional_cost') or 0),
            source_request_id=data.get('source_request_id'),
        )
