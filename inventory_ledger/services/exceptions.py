"""Error taxonomy shared by the ledger, the registry and the inventory service.

Route handlers never catch these individually; ``main.py`` maps each class to
an HTTP status in one place.
"""


class InventoryError(Exception):
    """Base class for every error raised by the inventory core."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(InventoryError):
    """Malformed or missing input."""

    status_code = 400


class NotFoundError(InventoryError):
    """A referenced SKU or transaction id does not exist."""

    status_code = 404


class DuplicateSkuError(InventoryError):
    status_code = 409


class InsufficientStockError(InventoryError):
    """An OUT movement would drive projected stock below zero."""

    status_code = 409

    def __init__(self, sku: str, current_stock: int, requested: int):
        super().__init__(
            f"Insufficient stock for SKU '{sku}'. "
            f"Current stock: {current_stock}, attempting to remove: {requested}."
        )
        self.sku = sku
        self.current_stock = current_stock
        self.requested = requested


class StorageError(InventoryError):
    """The backing store failed or returned data that does not verify."""

    status_code = 500


class KeyNotFoundError(LookupError):
    """Raised by the ledger store when a key has never been written."""
