"""Access to the transaction keyspace.

``find_by_sku`` is the only read the projection engine depends on. The scan
implementation walks every ``transaction:`` key; the indexed one also keeps
``transaction_by_sku:<sku>:<id>`` pointers and reads through them.
"""
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass

from pydantic import ValidationError as SchemaError

from inventory_ledger.config import settings
from inventory_ledger.schemas.ledger import Proof
from inventory_ledger.schemas.transaction import Transaction
from inventory_ledger.services.exceptions import KeyNotFoundError, NotFoundError, StorageError
from inventory_ledger.services.ledger_store import LedgerStore, Record, from_bytes, to_bytes

logger = logging.getLogger(__name__)

TRANSACTION_PREFIX = "transaction:"
SKU_INDEX_PREFIX = "transaction_by_sku:"


@dataclass(frozen=True)
class StoredTransaction:
    transaction: Transaction
    tx_id: int
    verified: bool


def transaction_key(transaction_id: str) -> str:
    return f"{TRANSACTION_PREFIX}{transaction_id}"


def _decode(record: Record) -> StoredTransaction | None:
    try:
        tx = Transaction.model_validate_json(record.value)
    except SchemaError as e:
        logger.warning("Skipping malformed transaction record %s: %s", record.key, e)
        return None
    return StoredTransaction(transaction=tx, tx_id=record.tx_id, verified=record.verified)


class TransactionRepository(ABC):
    def __init__(self, store: LedgerStore):
        self.store = store

    def append(self, tx: Transaction) -> Proof:
        return self.store.put(transaction_key(tx.transaction_id), to_bytes(tx.model_dump(mode="json")))

    def get(self, transaction_id: str) -> tuple[Transaction, Proof]:
        try:
            record, proof = self.store.verified_get(transaction_key(transaction_id))
        except KeyNotFoundError:
            raise NotFoundError(f"Transaction with ID '{transaction_id}' not found.") from None
        try:
            return Transaction.model_validate_json(record.value), proof
        except SchemaError as e:
            raise StorageError(f"Stored transaction '{transaction_id}' is unreadable") from e

    def all_transactions(self) -> list[StoredTransaction]:
        stored = (_decode(r) for r in self.store.scan(TRANSACTION_PREFIX))
        return [s for s in stored if s is not None]

    def group_by_sku(self) -> dict[str, list[StoredTransaction]]:
        groups: dict[str, list[StoredTransaction]] = defaultdict(list)
        for s in self.all_transactions():
            groups[s.transaction.sku].append(s)
        return groups

    @abstractmethod
    def find_by_sku(self, sku: str) -> list[StoredTransaction]:
        """Every readable transaction of ``sku``, in no particular order."""


class ScanTransactionRepository(TransactionRepository):
    def find_by_sku(self, sku: str) -> list[StoredTransaction]:
        return [s for s in self.all_transactions() if s.transaction.sku == sku]


class IndexedTransactionRepository(TransactionRepository):
    def append(self, tx: Transaction) -> Proof:
        proof = super().append(tx)
        self._write_index(tx)
        return proof

    def _write_index(self, tx: Transaction) -> None:
        self.store.put(
            f"{SKU_INDEX_PREFIX}{tx.sku}:{tx.transaction_id}",
            to_bytes({"transaction_id": tx.transaction_id}),
        )

    def find_by_sku(self, sku: str) -> list[StoredTransaction]:
        found = []
        for pointer in self.store.scan(f"{SKU_INDEX_PREFIX}{sku}:"):
            try:
                transaction_id = from_bytes(pointer.value)["transaction_id"]
                record = self.store.get(transaction_key(transaction_id))
            except (ValueError, KeyError, TypeError, KeyNotFoundError) as e:
                logger.warning("Skipping dangling index entry %s: %s", pointer.key, e)
                continue
            stored = _decode(record)
            # "A:" also prefixes the pointers of SKU "A:B"
            if stored is not None and stored.transaction.sku == sku:
                found.append(stored)
        return found

    def rebuild_index(self) -> int:
        """Write pointers for transactions appended without one. Returns how many."""
        indexed = {r.key for r in self.store.scan(SKU_INDEX_PREFIX)}
        written = 0
        for s in self.all_transactions():
            tx = s.transaction
            if f"{SKU_INDEX_PREFIX}{tx.sku}:{tx.transaction_id}" not in indexed:
                self._write_index(tx)
                written += 1
        if written:
            logger.info("Backfilled %d transaction index entries", written)
        return written


def make_transaction_repository(store: LedgerStore, indexed: bool | None = None) -> TransactionRepository:
    if indexed is None:
        indexed = settings.TRANSACTION_INDEX
    if indexed:
        return IndexedTransactionRepository(store)
    return ScanTransactionRepository(store)
