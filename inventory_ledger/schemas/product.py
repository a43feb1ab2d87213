from decimal import Decimal

from pydantic import BaseModel

from inventory_ledger.schemas.ledger import Proof


class ProductCreate(BaseModel):
    # Required fields are checked by the inventory service so that missing
    # values surface as a ValidationError instead of a schema error.
    sku: str | None = None
    name: str | None = None
    description: str = ""
    price: Decimal | None = None
    quantity: int | None = None
    category: str = ""
    supplier: str = ""


class ProductSummary(BaseModel):
    sku: str
    name: str
    description: str = ""
    price: Decimal
    category: str = ""
    supplier: str = ""
    created_at: str


class Product(ProductSummary):
    """Registry record, written once per SKU."""

    initial_quantity: int


class ProductDetails(Product):
    current_stock: int
    last_transaction_timestamp: str


class ProductCreated(BaseModel):
    product: Product
    proof: Proof
    message: str = "Product added and initial stock recorded successfully."


class SnapshotItem(BaseModel):
    sku: str
    name: str
    current_stock: int
    last_transaction_timestamp: str


class TimeTravelResult(BaseModel):
    product: ProductSummary
    historical_stock_at_timestamp: int
    target_timestamp: str
    last_transaction_before_timestamp: str
    transactions_included: int
    message: str = ""
