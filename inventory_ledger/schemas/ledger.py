from pydantic import BaseModel


class Proof(BaseModel):
    """Integrity handle returned by the ledger store for a read or a write."""

    tx_id: int
    digest: str
    verified: bool = True
