from datetime import datetime, timedelta, timezone

import pytest

from app import create_app
from clock import Clock
from config import TestingConfig
from engine import MaintenanceEngine
from errors import StoreError
from models import MACHINES, PARTS, TECHNICIANS
from store import MemoryStore

# A Monday
START = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)


class FixedClock(Clock):

    def __init__(self, current=START):
        self.current = current

    def now(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FailingStore(MemoryStore):
    """Memory store whose writes to chosen documents fail."""

    def __init__(self):
        super().__init__()
        self.failing = set()

    def _write(self, collection, doc_id, data):
        if collection in self.failing or (collection, doc_id) in self.failing:
            raise StoreError(f"Could not save {collection}/{doc_id}")
        return super()._write(collection, doc_id, data)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return FailingStore()


def seed(store):
    store.upsert(MACHINES, 'M1', {
        'id': 'M1',
        'name': 'Press 1',
        'type': 'equipment',
        'schedule': {
            'weekday': {'start_time': '08:00', 'end_time': '17:00', 'active_days': [1, 2, 3, 4, 5]},
            'saturday': {'active': False},
            'sunday': {'active': False},
        },
    })
    store.upsert(MACHINES, 'M2', {'id': 'M2', 'name': 'Boiler', 'type': 'installation'})
    store.upsert(PARTS, 'P1', {'id': 'P1', 'description': 'Bearing', 'cost': 50, 'stock': 3,
                               'min_stock': 1, 'machine_ids': ['M1']})
    store.upsert(PARTS, 'P2', {'id': 'P2', 'description': 'Belt', 'cost': 20, 'stock': 10,
                               'min_stock': 2, 'machine_ids': ['M2']})
    store.upsert(TECHNICIANS, 'u-ana', {'username': 'ana', 'role': 'Technician', 'salary': 16000})
    store.upsert(TECHNICIANS, 'u-luis', {'username': 'luis', 'role': 'Technician', 'salary': 24000})


@pytest.fixture
def engine(store, clock):
    seed(store)
    engine = MaintenanceEngine(store, clock=clock)
    yield engine
    engine.close()


def order_form(order_id='MA-25-0001', **fields):
    form = {
        'id': order_id,
        'machine_id': 'M1',
        'type': 'Corrective',
        'failure_type': 'Mechanical',
        'description': 'Noisy bearing',
        'lead_technician': 'ana',
    }
    form.update(fields)
    return form


@pytest.fixture
def app(clock):
    app = create_app(TestingConfig, clock=clock)
    with app.app_context():
        seed(app.extensions['cmms'].store)
    yield app
    app.extensions['cmms'].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    response = client.post('/login', json={'username': 'admin', 'password': 'admin123'})
    assert response.status_code == 200
    return client
