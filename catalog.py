"""Machines, parts and suppliers maintained by the administrator."""
import logging

from errors import ValidationError
from models import (MACHINE_TYPES, MACHINES, PART_CLASSIFICATIONS, PARTS, SUPPLIERS,
                    Machine, Part, Supplier)
from schedules import validate_schedule

log = logging.getLogger(__name__)


def _to_int(value, name):
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a whole number.") from e


class CatalogService:

    def __init__(self, store):
        self.store = store

    def _write(self, collection, entity, original_id=None):
        """Save under the entity id; a renamed id moves the document."""
        self.store.upsert(collection, entity.id, entity.to_dict(), merge=True)
        if original_id and original_id != entity.id:
            self.store.delete(collection, original_id)
            log.info("%s %s renamed to %s", collection, original_id, entity.id)

    def save_machine(self, data, original_id=None):
        try:
            machine = Machine.from_dict({**data, 'id': (data.get('id') or '').strip()})
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid machine data: {e}") from e
        if not machine.id:
            raise ValidationError("The machine id cannot be empty.")
        if machine.type not in MACHINE_TYPES:
            raise ValidationError(f"Unknown machine type '{machine.type}'.")
        validate_schedule(machine.schedule)
        self._write(MACHINES, machine, original_id)
        return machine

    def save_part(self, data, original_id=None):
        part_id = (data.get('id') or '').strip()
        if not part_id:
            raise ValidationError("The part id cannot be empty.")
        stock = _to_int(data.get('stock', 0), 'Stock')
        min_stock = _to_int(data.get('min_stock', 0), 'Minimum stock')
        try:
            cost = float(data.get('cost') or 0)
        except (TypeError, ValueError) as e:
            raise ValidationError("Cost must be a number.") from e
        if cost < 0:
            raise ValidationError("Cost cannot be negative.")
        if stock < 0:
            raise ValidationError("Stock cannot be negative.")
        if min_stock < 0:
            raise ValidationError("Minimum stock cannot be negative.")

        part = Part.from_dict({**data, 'id': part_id, 'stock': stock, 'min_stock': min_stock, 'cost': cost})
        if part.classification not in PART_CLASSIFICATIONS:
            raise ValidationError(f"Unknown part classification '{part.classification}'.")
        self._write(PARTS, part, original_id)
        if part.is_low_stock:
            log.warning("Low stock for %s. Current: %s, minimum: %s", part.description or part.id,
                        part.stock, part.min_stock)
        return part

    def save_supplier(self, data, original_id=None):
        supplier_id = (data.get('id') or '').strip()
        if not supplier_id:
            raise ValidationError("The supplier code cannot be empty.")
        supplier = Supplier.from_dict({**data, 'id': supplier_id})
        self._write(SUPPLIERS, supplier, original_id)
        return supplier

    def delete(self, collection, doc_id):
        # References from parts or orders are kept and display the raw id
        self.store.delete(collection, doc_id)
        log.info("%s %s deleted", collection, doc_id)
