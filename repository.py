"""In-memory mirrors of the store's collections, kept current by its change feed.

The feed only carries writes made through this process's store, so with
several worker processes each cache misses the others' writes until restart.
Run the SQL-backed app as a single process.
"""
import logging
import threading

from models import (MACHINES, PARTS, REQUESTS, TECHNICIANS, WORK_ORDERS,
                    Machine, Part, ServiceRequest, Technician, WorkOrder)
from store import REMOVED

log = logging.getLogger(__name__)

ENTITY_TYPES = {
    MACHINES: Machine,
    PARTS: Part,
    TECHNICIANS: Technician,
    WORK_ORDERS: WorkOrder,
    REQUESTS: ServiceRequest,
}


class CollectionCache:
    """Entities of one collection indexed by document id."""

    def __init__(self, entity_type):
        self.entity_type = entity_type
        self.items = {}
        self.version = 0
        # Request threads read while store listeners write
        self._lock = threading.Lock()

    def apply(self, event):
        if event.kind == REMOVED:
            with self._lock:
                self.items.pop(event.doc_id, None)
                self.version += 1
            return
        try:
            item = self.entity_type.from_dict(event.data)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Ignoring malformed %s document %s: %s",
                        event.collection, event.doc_id, e)
            return
        with self._lock:
            self.items[event.doc_id] = item
            self.version += 1

    def get(self, doc_id):
        with self._lock:
            return self.items.get(doc_id)

    def values(self):
        with self._lock:
            return list(self.items.values())


class Repository:
    """Snapshot view of every collection the engine reads.

    Reads are served from memory and may lag behind concurrent writers;
    anything that must see the latest value (stock) goes to the store.
    """

    def __init__(self, store, collections=None):
        self.store = store
        self.caches = {}
        self._subscriptions = []
        for name in collections or ENTITY_TYPES:
            cache = CollectionCache(ENTITY_TYPES[name])
            self.caches[name] = cache
            self._subscriptions.append(store.subscribe(name, cache.apply))

    def close(self):
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []

    def machines(self):
        return self.caches[MACHINES].values()

    def parts(self):
        return self.caches[PARTS].values()

    def technicians(self):
        return self.caches[TECHNICIANS].values()

    def work_orders(self):
        return self.caches[WORK_ORDERS].values()

    def requests(self):
        return self.caches[REQUESTS].values()

    def machine(self, machine_id):
        return self.caches[MACHINES].get(machine_id)

    def technician(self, username):
        for technician in self.caches[TECHNICIANS].values():
            if technician.username == username:
                return technician
        return None

    def parts_by_id(self):
        return {part.id: part for part in self.parts()}

    def technicians_by_username(self):
        return {t.username: t for t in self.technicians()}

    def machine_name(self, machine_id):
        """Display name for a machine; unknown ids show as themselves."""
        machine = self.machine(machine_id)
        return machine.name if machine and machine.name else machine_id
