"""Document store contract and its two implementations.

The engine only talks to `DocumentStore`: collections of JSON documents keyed
by id, plus a change feed. `MemoryStore` keeps everything in dictionaries and
is what the tests and embedded callers use; `SqlStore` persists documents in
the `document` table through Flask-SQLAlchemy and must be used inside an
application context.
"""
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from collections import namedtuple

from sqlalchemy.exc import SQLAlchemyError

from errors import StoreError
from models import StoredDocument, db

log = logging.getLogger(__name__)

ADDED = 'added'
MODIFIED = 'modified'
REMOVED = 'removed'

ChangeEvent = namedtuple('ChangeEvent', 'kind collection doc_id data')


def _matches(data, where):
    return all(data.get(key) == value for key, value in where.items())


class Subscription:
    """Handle returned by `subscribe`; call `cancel()` to stop receiving events."""

    def __init__(self, store, collection, listener, where):
        self.store = store
        self.collection = collection
        self.listener = listener
        self.where = where
        self.active = True

    def deliver(self, event):
        if not self.active:
            return
        if event.kind != REMOVED and not _matches(event.data, self.where):
            return
        self.listener(event)

    def cancel(self):
        self.active = False
        self.store._forget(self)


class DocumentStore(ABC):

    def __init__(self):
        self._subscriptions = []

    @abstractmethod
    def get(self, collection, doc_id):
        """Return a copy of the document, or None."""

    @abstractmethod
    def query(self, collection, **where):
        """Return (doc_id, data) pairs whose fields equal the keyword arguments."""

    @abstractmethod
    def _write(self, collection, doc_id, data):
        """Persist `data` as the full document. Returns True if it already existed."""

    @abstractmethod
    def _remove(self, collection, doc_id):
        """Delete the document. Returns True if it existed."""

    def create(self, collection, data):
        doc_id = uuid.uuid4().hex
        self._write(collection, doc_id, copy.deepcopy(data))
        self._notify(ChangeEvent(ADDED, collection, doc_id, copy.deepcopy(data)))
        return doc_id

    def upsert(self, collection, doc_id, data, merge=False):
        """Write a document under `doc_id`.

        With `merge=True` the given fields are laid over the stored document
        (last write wins per field); otherwise the document is replaced.
        """
        if merge:
            current = self.get(collection, doc_id) or {}
            current.update(copy.deepcopy(data))
            data = current
        else:
            data = copy.deepcopy(data)
        existed = self._write(collection, doc_id, data)
        kind = MODIFIED if existed else ADDED
        self._notify(ChangeEvent(kind, collection, doc_id, copy.deepcopy(data)))

    def delete(self, collection, doc_id):
        previous = self.get(collection, doc_id)
        if self._remove(collection, doc_id):
            self._notify(ChangeEvent(REMOVED, collection, doc_id, previous))

    def subscribe(self, collection, listener, **where):
        """Call `listener(event)` for every change in `collection`.

        Existing documents are replayed first as `added` events.
        """
        subscription = Subscription(self, collection, listener, where)
        for doc_id, data in self.query(collection, **where):
            subscription.deliver(ChangeEvent(ADDED, collection, doc_id, data))
        self._subscriptions.append(subscription)
        return subscription

    def _forget(self, subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _notify(self, event):
        for subscription in list(self._subscriptions):
            if subscription.collection == event.collection:
                subscription.deliver(event)


class MemoryStore(DocumentStore):

    def __init__(self):
        super().__init__()
        self._collections = {}

    def get(self, collection, doc_id):
        data = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    def query(self, collection, **where):
        return [
            (doc_id, copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
            if _matches(data, where)
        ]

    def _write(self, collection, doc_id, data):
        docs = self._collections.setdefault(collection, {})
        existed = doc_id in docs
        docs[doc_id] = data
        return existed

    def _remove(self, collection, doc_id):
        return self._collections.get(collection, {}).pop(doc_id, None) is not None


class SqlStore(DocumentStore):
    """Documents in the `document` table. Every write commits immediately."""

    def get(self, collection, doc_id):
        try:
            row = db.session.get(StoredDocument, (collection, doc_id))
        except SQLAlchemyError as e:
            raise StoreError(f"Could not read {collection}/{doc_id}: {e}") from e
        return copy.deepcopy(row.data) if row else None

    def query(self, collection, **where):
        try:
            rows = (StoredDocument.query
                    .filter_by(collection=collection)
                    .order_by(StoredDocument.doc_id)
                    .all())
        except SQLAlchemyError as e:
            raise StoreError(f"Could not read {collection}: {e}") from e
        return [(row.doc_id, copy.deepcopy(row.data)) for row in rows if _matches(row.data, where)]

    def _write(self, collection, doc_id, data):
        try:
            row = db.session.get(StoredDocument, (collection, doc_id))
            existed = row is not None
            if row is None:
                row = StoredDocument(collection=collection, doc_id=doc_id, data=data)
                db.session.add(row)
            else:
                row.data = data
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            log.error("Write to %s/%s failed: %s", collection, doc_id, e)
            raise StoreError(f"Could not save {collection}/{doc_id}: {e}") from e
        return existed

    def _remove(self, collection, doc_id):
        try:
            row = db.session.get(StoredDocument, (collection, doc_id))
            if row is None:
                return False
            db.session.delete(row)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            log.error("Delete of %s/%s failed: %s", collection, doc_id, e)
            raise StoreError(f"Could not delete {collection}/{doc_id}: {e}") from e
        return True
