import logging

from pydantic import ValidationError as SchemaError

from inventory_ledger.schemas.ledger import Proof
from inventory_ledger.schemas.product import Product, ProductCreate
from inventory_ledger.services.exceptions import DuplicateSkuError, KeyNotFoundError, NotFoundError, StorageError
from inventory_ledger.services.ledger_store import LedgerStore, to_bytes

logger = logging.getLogger(__name__)

PRODUCT_PREFIX = "product:"


def product_key(sku: str) -> str:
    return f"{PRODUCT_PREFIX}{sku}"


class ProductRegistry:
    """SKU -> product metadata. One write per SKU, never updated."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def create_product(self, data: ProductCreate, created_at: str) -> tuple[Product, Proof]:
        key = product_key(data.sku)
        if self.store.exists(key):
            raise DuplicateSkuError(f"Product with SKU '{data.sku}' already exists.")
        product = Product(
            sku=data.sku,
            name=data.name,
            description=data.description,
            price=data.price,
            initial_quantity=data.quantity,
            category=data.category,
            supplier=data.supplier,
            created_at=created_at,
        )
        proof = self.store.put(key, to_bytes(product.model_dump(mode="json")))
        return product, proof

    def get_product(self, sku: str) -> Product:
        try:
            record = self.store.get(product_key(sku))
        except KeyNotFoundError:
            raise NotFoundError(f"Product with SKU '{sku}' not found.") from None
        try:
            return Product.model_validate_json(record.value)
        except SchemaError as e:
            raise StorageError(f"Stored product '{sku}' is unreadable") from e

    def list_products(self) -> list[Product]:
        products = []
        for record in self.store.scan(PRODUCT_PREFIX):
            try:
                products.append(Product.model_validate_json(record.value))
            except SchemaError as e:
                logger.warning("Skipping malformed product record %s: %s", record.key, e)
        return products
