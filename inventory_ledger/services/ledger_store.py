"""Append-only key/value ledger on top of a SQLAlchemy session.

Each ``put`` inserts a new row; nothing is updated or deleted. Rows are linked
by a SHA-256 digest chain so a reader can check that a value is the one that
was written and that it sits where it was written in the chain.
"""
import hashlib
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_ledger.models.ledger_entry import LedgerEntry
from inventory_ledger.schemas.ledger import Proof
from inventory_ledger.services.exceptions import KeyNotFoundError, StorageError

logger = logging.getLogger(__name__)

GENESIS_DIGEST = "0" * 64

# Appends read the chain head and insert after it
_append_lock = threading.Lock()


@dataclass(frozen=True)
class Record:
    key: str
    value: bytes
    tx_id: int
    digest: str
    verified: bool


def compute_digest(prev_digest: str, key: str, value: bytes) -> str:
    h = hashlib.sha256()
    h.update(prev_digest.encode())
    h.update(b"\x00")
    h.update(key.encode())
    h.update(b"\x00")
    h.update(value)
    return h.hexdigest()


def to_bytes(obj) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode()


def from_bytes(buf: bytes):
    return json.loads(buf.decode())


def _to_record(entry: LedgerEntry) -> Record:
    return Record(
        key=entry.key,
        value=entry.value,
        tx_id=entry.id,
        digest=entry.digest,
        verified=compute_digest(entry.prev_digest, entry.key, entry.value) == entry.digest,
    )


class LedgerStore:
    """Ledger handle bound to one database session."""

    def __init__(self, db: Session):
        self.db = db

    def put(self, key: str, value: bytes) -> Proof:
        with _append_lock:
            try:
                head = self.db.execute(
                    select(LedgerEntry.digest).order_by(LedgerEntry.id.desc()).limit(1)
                ).scalar_one_or_none()
                prev_digest = head or GENESIS_DIGEST
                entry = LedgerEntry(
                    key=key,
                    value=value,
                    prev_digest=prev_digest,
                    digest=compute_digest(prev_digest, key, value),
                )
                self.db.add(entry)
                self.db.flush()
                proof = Proof(tx_id=entry.id, digest=entry.digest)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Ledger write failed for key %s: %s", key, e)
                raise StorageError(f"Failed to write key '{key}'") from e
        return proof

    def _latest(self, key: str) -> LedgerEntry | None:
        try:
            return self.db.execute(
                select(LedgerEntry).where(LedgerEntry.key == key).order_by(LedgerEntry.id.desc()).limit(1)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read key '{key}'") from e

    def exists(self, key: str) -> bool:
        return self._latest(key) is not None

    def get(self, key: str) -> Record:
        """Latest revision of ``key``."""
        entry = self._latest(key)
        if entry is None:
            raise KeyNotFoundError(key)
        return _to_record(entry)

    def scan(self, prefix: str) -> list[Record]:
        """Latest revision of every key starting with ``prefix``, in key order."""
        try:
            rows = self.db.execute(
                select(LedgerEntry)
                .where(LedgerEntry.key.startswith(prefix, autoescape=True))
                .order_by(LedgerEntry.id)
            ).scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to scan prefix '{prefix}'") from e
        latest: dict[str, LedgerEntry] = {}
        for row in rows:
            latest[row.key] = row
        return [_to_record(latest[k]) for k in sorted(latest)]

    def verified_get(self, key: str) -> tuple[Record, Proof]:
        """Latest revision of ``key`` with its own digest and its chain link checked."""
        entry = self._latest(key)
        if entry is None:
            raise KeyNotFoundError(key)
        try:
            prev = self.db.execute(
                select(LedgerEntry.digest).where(LedgerEntry.id < entry.id).order_by(LedgerEntry.id.desc()).limit(1)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to verify key '{key}'") from e
        record = _to_record(entry)
        linked = entry.prev_digest == (prev or GENESIS_DIGEST)
        verified = record.verified and linked
        if not verified:
            logger.warning("Ledger verification failed for key %s at tx %d", key, entry.id)
        return record, Proof(tx_id=entry.id, digest=entry.digest, verified=verified)

    def verify_chain(self) -> tuple[bool, int]:
        """Walk the whole chain. Returns (ok, number of entries checked)."""
        try:
            rows = self.db.execute(select(LedgerEntry).order_by(LedgerEntry.id)).scalars().all()
        except SQLAlchemyError as e:
            raise StorageError("Failed to read ledger chain") from e
        prev_digest = GENESIS_DIGEST
        for count, row in enumerate(rows, start=1):
            if row.prev_digest != prev_digest or compute_digest(row.prev_digest, row.key, row.value) != row.digest:
                logger.warning("Ledger chain broken at tx %d", row.id)
                return False, count
            prev_digest = row.digest
        return True, len(rows)


@contextmanager
def ledger_session(session_factory=None):
    """Open a session, yield a store bound to it, always close it."""
    if session_factory is None:
        from inventory_ledger.database import SessionLocal

        session_factory = SessionLocal
    db = session_factory()
    try:
        yield LedgerStore(db)
    finally:
        db.close()
