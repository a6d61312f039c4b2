"""Exceptions raised by the maintenance engine."""


class MaintenanceError(Exception):
    """Base class for every error the engine raises."""


class ValidationError(MaintenanceError):
    """A business rule rejected the input. Nothing was persisted."""


class InvalidTransitionError(ValidationError):
    """The requested status change is not allowed from the current status."""

    def __init__(self, order_id, current, target):
        self.order_id = order_id
        self.current = current
        self.target = target
        super().__init__(
            f"{order_id} cannot go from '{current}' to '{target}'."
        )


class InsufficientStockError(MaintenanceError):
    """Applying a stock movement would leave a part below zero."""

    def __init__(self, part_id, stock, requested):
        self.part_id = part_id
        self.stock = stock
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {part_id}. "
            f"Stock: {stock}, needed: {requested}, short by {self.shortfall}."
        )

    @property
    def shortfall(self):
        return self.requested - self.stock


class NotFoundError(MaintenanceError):
    """A referenced document does not exist."""

    def __init__(self, collection, doc_id):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found.")


class StoreError(MaintenanceError):
    """The persistence layer failed; the operation was not applied."""
