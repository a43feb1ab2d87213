import logging
import uuid
from decimal import Decimal

from inventory_ledger.schemas.product import (
    ProductCreate,
    ProductCreated,
    ProductDetails,
    ProductSummary,
    SnapshotItem,
    TimeTravelResult,
)
from inventory_ledger.schemas.transaction import (
    HistoryEntry,
    Transaction,
    TransactionRecorded,
    TransactionType,
    VerificationResult,
)
from inventory_ledger.services.exceptions import InsufficientStockError, ValidationError
from inventory_ledger.services.ledger_store import LedgerStore
from inventory_ledger.services.locks import KeyedLock
from inventory_ledger.services.product_registry import ProductRegistry
from inventory_ledger.services.projection import Projection, StockProjectionEngine
from inventory_ledger.services.transaction_repository import make_transaction_repository
from inventory_ledger.timestamps import format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

SEED_REASON = "Initial Stock"
SYSTEM_ACTOR = "System"
TIMESTAMP_FORMAT_HINT = "YYYY-MM-DDTHH:mm:ss.sssZ"

# Shared by every service instance in the process
_sku_locks = KeyedLock()


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


def _verification_status(verified: bool) -> str:
    return "Verified" if verified else "Verification Failed"


def _details(projection: Projection) -> ProductDetails:
    return ProductDetails(
        **projection.product.model_dump(),
        current_stock=projection.balance,
        last_transaction_timestamp=projection.last_transaction_timestamp,
    )


class InventoryService:
    """Write and query operations over the product registry and the transaction ledger.

    Built per request around a ledger handle. ``add_product`` and
    ``record_transaction`` hold a per-SKU lock across their check-then-append
    sequence, so two OUT movements for one SKU in the same process cannot both
    pass the stock check.
    """

    def __init__(self, store: LedgerStore, clock=utcnow, indexed: bool | None = None, locks: KeyedLock | None = None):
        self.store = store
        self.products = ProductRegistry(store)
        self.transactions = make_transaction_repository(store, indexed)
        self.projections = StockProjectionEngine(self.products, self.transactions)
        self.clock = clock
        self.locks = locks if locks is not None else _sku_locks

    def _now(self) -> str:
        return format_timestamp(self.clock())

    # --- writes ---

    def add_product(self, data: ProductCreate, actor: str = SYSTEM_ACTOR) -> ProductCreated:
        if _blank(data.sku) or _blank(data.name) or data.price is None or data.quantity is None:
            raise ValidationError("Missing required product fields (sku, name, price, quantity)")
        if not isinstance(data.price, Decimal) or not data.price.is_finite() or data.price < 0:
            raise ValidationError("Price must be a non-negative number")
        if not _is_int(data.quantity) or data.quantity < 0:
            raise ValidationError("Quantity must be a non-negative integer")

        with self.locks.hold(data.sku):
            # Product and seed share one instant so a time-travel query at
            # created_at sees exactly the seed.
            now = self._now()
            product, proof = self.products.create_product(data, created_at=now)
            seed = Transaction(
                transaction_id=str(uuid.uuid4()),
                sku=product.sku,
                type=TransactionType.IN,
                quantity_change=data.quantity,
                reason=SEED_REASON,
                performed_by=actor,
                timestamp=now,
            )
            self.transactions.append(seed)

        logger.info("Product %s created with initial stock %d by %s", product.sku, data.quantity, actor)
        return ProductCreated(product=product, proof=proof)

    def record_transaction(self, sku, tx_type, quantity, reason, actor: str = SYSTEM_ACTOR) -> TransactionRecorded:
        if _blank(sku) or _blank(tx_type) or quantity is None or _blank(reason):
            raise ValidationError(
                "Missing or invalid transaction fields (sku, type, quantity, reason). Quantity must be positive."
            )
        if not _is_int(quantity) or quantity <= 0:
            raise ValidationError("Quantity must be a positive integer")
        try:
            movement = TransactionType(tx_type.strip().upper())
        except ValueError:
            valid = ", ".join(t.value for t in TransactionType)
            raise ValidationError(f"Invalid transaction type. Must be one of: {valid}") from None

        # Products are never removed; unknown SKUs stay out of the lock table
        self.products.get_product(sku)

        with self.locks.hold(sku):
            current_stock = self.projections.project(sku).balance
            if movement is TransactionType.OUT:
                change = -quantity
                if current_stock + change < 0:
                    logger.warning("Rejected OUT of %d for %s: stock is %d", quantity, sku, current_stock)
                    raise InsufficientStockError(sku, current_stock, quantity)
            else:
                # ADJUSTMENT is added as given, same as IN
                change = quantity

            tx = Transaction(
                transaction_id=str(uuid.uuid4()),
                sku=sku,
                type=movement,
                quantity_change=change,
                reason=reason,
                performed_by=actor,
                timestamp=self._now(),
            )
            proof = self.transactions.append(tx)

        logger.info("Recorded %s %+d for %s (%s)", tx.type.value, change, sku, tx.transaction_id)
        return TransactionRecorded(transaction=tx, proof=proof)

    # --- reads ---

    def get_product_details(self, sku: str) -> ProductDetails:
        return _details(self.projections.project(sku))

    def list_products(self) -> list[ProductDetails]:
        details = [_details(p) for p in self.projections.project_all()]
        return sorted(details, key=lambda d: d.sku)

    def get_history(self, sku: str) -> list[HistoryEntry]:
        projection = self.projections.project(sku)
        return [
            HistoryEntry(
                **entry.transaction.model_dump(),
                running_balance=entry.running_balance,
                ledger_tx_id=entry.tx_id,
                verification_status=_verification_status(entry.verified),
            )
            for entry in projection.entries
        ]

    def get_snapshot(self) -> list[SnapshotItem]:
        items = [
            SnapshotItem(
                sku=p.product.sku,
                name=p.product.name,
                current_stock=p.balance,
                last_transaction_timestamp=p.last_transaction_timestamp,
            )
            for p in self.projections.project_all()
        ]
        return sorted(items, key=lambda i: i.sku)

    def time_travel(self, sku: str, as_of: str | None) -> TimeTravelResult:
        if _blank(as_of):
            raise ValidationError(f"Timestamp parameter is required. Use format: {TIMESTAMP_FORMAT_HINT}")
        try:
            cutoff = parse_timestamp(as_of)
        except ValueError:
            raise ValidationError(f"Invalid timestamp format. Use ISO 8601 format: {TIMESTAMP_FORMAT_HINT}") from None

        projection = self.projections.project(sku, as_of=cutoff)
        return TimeTravelResult(
            product=ProductSummary(**projection.product.model_dump(exclude={"initial_quantity"})),
            historical_stock_at_timestamp=projection.balance,
            target_timestamp=as_of,
            last_transaction_before_timestamp=projection.last_transaction_timestamp,
            transactions_included=projection.transactions_included,
            message=f"Inventory state for SKU '{sku}' at {as_of}",
        )

    def verify_transaction(self, transaction_id: str) -> VerificationResult:
        tx, proof = self.transactions.get(transaction_id)
        return VerificationResult(
            transaction=tx,
            proof=proof,
            verified=proof.verified,
            verification_status=_verification_status(proof.verified),
        )
