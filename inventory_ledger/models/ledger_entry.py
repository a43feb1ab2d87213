from datetime import datetime

from sqlalchemy import DateTime, Integer, LargeBinary, String, func
from sqlalchemy.orm import Mapped, mapped_column

from inventory_ledger.database import Base


class LedgerEntry(Base):
    """One immutable key/value revision. Rows are only ever inserted."""

    __tablename__ = "ledger_entries"

    # Ledger transaction id, also the position in the digest chain
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String, nullable=False, index=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    prev_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    digest: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
