from datetime import datetime
from enum import Enum as PyEnum

from pydantic import BaseModel, field_validator

from inventory_ledger.schemas.ledger import Proof
from inventory_ledger.timestamps import parse_timestamp


class TransactionType(str, PyEnum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"


class TransactionCreate(BaseModel):
    sku: str | None = None
    type: str | None = None
    quantity: int | None = None
    reason: str | None = None


class Transaction(BaseModel):
    """Ledger entry for one stock movement. Never edited after it is written."""

    transaction_id: str
    sku: str
    type: TransactionType
    quantity_change: int
    reason: str
    performed_by: str
    timestamp: str

    @field_validator("timestamp")
    @classmethod
    def check_timestamp(cls, v):
        parse_timestamp(v)
        return v

    @property
    def instant(self) -> datetime:
        return parse_timestamp(self.timestamp)


class TransactionRecorded(BaseModel):
    transaction: Transaction
    proof: Proof
    message: str = "Inventory transaction recorded successfully."


class HistoryEntry(Transaction):
    running_balance: int
    ledger_tx_id: int
    verification_status: str


class VerificationResult(BaseModel):
    transaction: Transaction
    proof: Proof
    verified: bool
    verification_status: str
