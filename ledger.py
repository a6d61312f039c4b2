"""Stock ledger: keeps part inventory non-negative under consumption and edits."""
import logging

from errors import InsufficientStockError, NotFoundError, StoreError
from models import PARTS

log = logging.getLogger(__name__)


def _quantities(parts_used):
    """Sum quantities per part id from PartUsage objects or plain dicts."""
    totals = {}
    for usage in parts_used or []:
        if isinstance(usage, dict):
            part_id, quantity = usage['part_id'], int(usage.get('quantity') or 0)
        else:
            part_id, quantity = usage.part_id, usage.quantity
        totals[part_id] = totals.get(part_id, 0) + quantity
    return totals


def consumption_deltas(parts_used):
    """Stock movements for consuming every positive usage."""
    return {part_id: -qty for part_id, qty in _quantities(parts_used).items() if qty > 0}


def reconciliation_deltas(old_parts, new_parts):
    """Stock movements that turn the old parts list into the new one.

    delta = old quantity - new quantity, so removed parts go back to stock and
    added parts come out of it. Unchanged parts are left out.
    """
    old = _quantities(old_parts)
    new = _quantities(new_parts)
    deltas = {}
    for part_id in list(old) + [p for p in new if p not in old]:
        delta = old.get(part_id, 0) - new.get(part_id, 0)
        if delta != 0:
            deltas[part_id] = delta
    return deltas


def low_stock(parts):
    return [part for part in parts if part.is_low_stock]


class StockLedger:

    def __init__(self, store):
        self.store = store

    def stock_of(self, part_id):
        data = self.store.get(PARTS, part_id)
        if data is None:
            raise NotFoundError(PARTS, part_id)
        return int(data.get('stock') or 0)

    def apply_delta(self, part_id, delta):
        """Move `delta` units in (positive) or out (negative) of stock.

        Reads the stock persisted right now rather than any cached copy.
        Returns the new stock.
        """
        stock = self.stock_of(part_id)
        new_stock = stock + delta
        if new_stock < 0:
            raise InsufficientStockError(part_id, stock, -delta)
        self.store.upsert(PARTS, part_id, {'stock': new_stock}, merge=True)
        log.info("Stock of %s: %s -> %s (%+d)", part_id, stock, new_stock, delta)
        return new_stock

    def apply_all(self, deltas):
        """Apply several movements, checking all of them before writing any.

        Parts missing from the store are skipped. Either every movement is
        applied or, when one would underflow or a write fails, none is.
        Returns the movements that were applied, keyed by part id.
        """
        applicable = {}
        for part_id, delta in deltas.items():
            try:
                stock = self.stock_of(part_id)
            except NotFoundError:
                log.warning("Part %s no longer exists; skipping stock movement %+d", part_id, delta)
                continue
            if stock + delta < 0:
                raise InsufficientStockError(part_id, stock, -delta)
            applicable[part_id] = delta

        applied = {}
        try:
            for part_id, delta in applicable.items():
                self.apply_delta(part_id, delta)
                applied[part_id] = delta
        except StoreError:
            self.revert(applied)
            raise
        return applied

    def revert(self, deltas):
        """Undo movements made by `apply_all`."""
        for part_id, delta in deltas.items():
            stock = self.stock_of(part_id)
            self.store.upsert(PARTS, part_id, {'stock': stock - delta}, merge=True)
            log.warning("Stock of %s returned: %s -> %s", part_id, stock, stock - delta)

    def consume(self, parts_used):
        return self.apply_all(consumption_deltas(parts_used))

    def reconcile(self, old_parts, new_parts):
        return self.apply_all(reconciliation_deltas(old_parts, new_parts))
