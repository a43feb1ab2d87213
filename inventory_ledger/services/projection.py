"""Stock projection: stock levels derived by replaying the transaction log.

Stock is never stored. For a SKU and a cutoff T it is the sum of
``quantity_change`` over every transaction of the SKU stamped at or before T.
Replay order is (timestamp, transaction_id); the order only affects the
per-entry running balances, never the final sum.
"""
from dataclasses import dataclass, field
from datetime import datetime

from inventory_ledger.schemas.product import Product
from inventory_ledger.schemas.transaction import Transaction
from inventory_ledger.services.product_registry import ProductRegistry
from inventory_ledger.services.transaction_repository import StoredTransaction, TransactionRepository


@dataclass
class ProjectedEntry:
    transaction: Transaction
    running_balance: int
    tx_id: int
    verified: bool


@dataclass
class Projection:
    product: Product
    balance: int
    last_transaction_timestamp: str
    transactions_included: int
    entries: list[ProjectedEntry] = field(default_factory=list)


def replay(product: Product, stored: list[StoredTransaction], as_of: datetime | None = None) -> Projection:
    """Fold ``stored`` (any order) into a projection as of ``as_of`` (None = everything)."""
    keyed = [(s.transaction.instant, s.transaction.transaction_id, s) for s in stored]
    if as_of is not None:
        keyed = [k for k in keyed if k[0] <= as_of]
    keyed.sort(key=lambda k: (k[0], k[1]))

    balance = 0
    entries = []
    for _, _, s in keyed:
        balance += s.transaction.quantity_change
        entries.append(ProjectedEntry(s.transaction, balance, s.tx_id, s.verified))

    last = entries[-1].transaction.timestamp if entries else product.created_at
    return Projection(
        product=product,
        balance=balance,
        last_transaction_timestamp=last,
        transactions_included=len(entries),
        entries=entries,
    )


class StockProjectionEngine:
    def __init__(self, products: ProductRegistry, transactions: TransactionRepository):
        self.products = products
        self.transactions = transactions

    def project(self, sku: str, as_of: datetime | None = None) -> Projection:
        product = self.products.get_product(sku)
        return replay(product, self.transactions.find_by_sku(sku), as_of)

    def project_all(self, as_of: datetime | None = None) -> list[Projection]:
        """Current projection of every registered product, from a single scan."""
        groups = self.transactions.group_by_sku()
        return [replay(p, groups.get(p.sku, []), as_of) for p in self.products.list_products()]
