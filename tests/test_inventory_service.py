"""
Inventory service tests
Product creation, stock movements, history, snapshots and time travel
"""

from decimal import Decimal

import pytest

from inventory_ledger.schemas.product import ProductCreate
from inventory_ledger.services.exceptions import (
    DuplicateSkuError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from inventory_ledger.services.inventory_service import SEED_REASON, InventoryService
from inventory_ledger.services.ledger_store import LedgerStore
from inventory_ledger.services.transaction_repository import TRANSACTION_PREFIX
from inventory_ledger.timestamps import format_timestamp


def _create(service: InventoryService, sku="SKU-1", quantity=10, **kwargs):
    data = ProductCreate(sku=sku, name=kwargs.pop("name", "Widget"), price=kwargs.pop("price", "19.99"),
                         quantity=quantity, **kwargs)
    return service.add_product(data, actor="tester")


def _ledger_size(store: LedgerStore) -> int:
    return len(store.scan(TRANSACTION_PREFIX))


class TestAddProduct:

    def test_scenario_a_new_product_has_initial_stock(self, service):
        result = _create(service, "SKU-1", quantity=10)

        assert result.product.sku == "SKU-1"
        assert result.product.initial_quantity == 10
        assert result.product.price == Decimal("19.99")
        assert result.proof.verified is True
        assert service.get_product_details("SKU-1").current_stock == 10

    def test_seed_transaction_is_recorded(self, service, clock):
        _create(service, "SKU-1", quantity=7)

        history = service.get_history("SKU-1")
        assert len(history) == 1
        seed = history[0]
        assert seed.type.value == "IN"
        assert seed.quantity_change == 7
        assert seed.reason == SEED_REASON
        assert seed.performed_by == "tester"
        assert seed.timestamp == format_timestamp(clock.now)

    def test_zero_quantity_still_seeds(self, service):
        _create(service, "SKU-0", quantity=0)

        assert len(service.get_history("SKU-0")) == 1
        assert service.get_product_details("SKU-0").current_stock == 0

    def test_scenario_e_duplicate_sku_rejected(self, service, store):
        _create(service, "SKU-1", quantity=10)

        with pytest.raises(DuplicateSkuError):
            _create(service, "SKU-1", quantity=99, name="Other")

        seeds = [h for h in service.get_history("SKU-1") if h.reason == SEED_REASON]
        assert len(seeds) == 1
        assert _ledger_size(store) == 1
        assert service.get_product_details("SKU-1").name == "Widget"

    @pytest.mark.parametrize("fields", [
        {"sku": None, "name": "W", "price": "1", "quantity": 1},
        {"sku": "  ", "name": "W", "price": "1", "quantity": 1},
        {"sku": "S", "name": "", "price": "1", "quantity": 1},
        {"sku": "S", "name": "W", "price": None, "quantity": 1},
        {"sku": "S", "name": "W", "price": "1", "quantity": None},
        {"sku": "S", "name": "W", "price": "-0.01", "quantity": 1},
        {"sku": "S", "name": "W", "price": "1", "quantity": -1},
    ])
    def test_invalid_input_rejected(self, service, store, fields):
        with pytest.raises(ValidationError):
            service.add_product(ProductCreate(**fields))
        assert store.scan("") == []


class TestRecordTransaction:

    def test_scenario_b_out_reduces_stock(self, service, clock):
        _create(service, "SKU-1", quantity=10)
        clock.advance(minutes=1)

        result = service.record_transaction("SKU-1", "OUT", 4, "Customer order", actor="clerk")

        assert result.transaction.quantity_change == -4
        assert result.transaction.type.value == "OUT"
        assert result.transaction.performed_by == "clerk"
        assert service.get_product_details("SKU-1").current_stock == 6

    def test_scenario_c_overdraw_rejected_and_not_appended(self, service, store, clock):
        _create(service, "SKU-1", quantity=10)
        clock.advance(minutes=1)
        service.record_transaction("SKU-1", "OUT", 4, "Customer order")
        before = _ledger_size(store)

        with pytest.raises(InsufficientStockError) as exc_info:
            service.record_transaction("SKU-1", "OUT", 100, "Too many")

        assert exc_info.value.current_stock == 6
        assert exc_info.value.requested == 100
        assert _ledger_size(store) == before
        assert service.get_product_details("SKU-1").current_stock == 6

    def test_out_down_to_exactly_zero_is_allowed(self, service):
        _create(service, "SKU-1", quantity=3)

        service.record_transaction("SKU-1", "OUT", 3, "Clear out")

        assert service.get_product_details("SKU-1").current_stock == 0

    def test_in_adds_stock(self, service):
        _create(service, "SKU-1", quantity=1)

        result = service.record_transaction("SKU-1", "in", 5, "Restock")

        assert result.transaction.type.value == "IN"
        assert service.get_product_details("SKU-1").current_stock == 6

    def test_adjustment_adds_quantity_as_given(self, service):
        _create(service, "SKU-1", quantity=10)

        result = service.record_transaction("SKU-1", "Adjustment", 2, "Stock count")

        assert result.transaction.type.value == "ADJUSTMENT"
        assert result.transaction.quantity_change == 2
        assert service.get_product_details("SKU-1").current_stock == 12

    def test_unknown_sku(self, service):
        with pytest.raises(NotFoundError):
            service.record_transaction("GHOST", "IN", 1, "Restock")

    @pytest.mark.parametrize("sku,tx_type,quantity,reason", [
        ("", "IN", 1, "r"),
        ("SKU-1", "", 1, "r"),
        ("SKU-1", "MOVE", 1, "r"),
        ("SKU-1", "IN", 0, "r"),
        ("SKU-1", "IN", -3, "r"),
        ("SKU-1", "IN", 1.5, "r"),
        ("SKU-1", "IN", True, "r"),
        ("SKU-1", "IN", None, "r"),
        ("SKU-1", "IN", 1, ""),
        ("SKU-1", "IN", 1, None),
    ])
    def test_invalid_input_rejected(self, service, store, sku, tx_type, quantity, reason):
        _create(service, "SKU-1", quantity=10)

        with pytest.raises(ValidationError):
            service.record_transaction(sku, tx_type, quantity, reason)
        assert _ledger_size(store) == 1

    def test_record_transaction_holds_the_sku_lock(self, store, clock):
        from inventory_ledger.services.locks import KeyedLock

        class RecordingLock(KeyedLock):
            def __init__(self):
                super().__init__()
                self.held = []

            def hold(self, key):
                self.held.append(key)
                return super().hold(key)

        locks = RecordingLock()
        service = InventoryService(store, clock=clock, indexed=False, locks=locks)
        _create(service, "SKU-1", quantity=5)
        service.record_transaction("SKU-1", "OUT", 1, "Order")

        assert locks.held == ["SKU-1", "SKU-1"]

    def test_injected_empty_lock_table_is_used(self, store, clock):
        from inventory_ledger.services.locks import KeyedLock

        locks = KeyedLock()
        service = InventoryService(store, clock=clock, indexed=False, locks=locks)

        assert service.locks is locks
        _create(service, "SKU-1", quantity=5)
        assert len(locks) == 1

    def test_unknown_sku_does_not_grow_the_lock_table(self, service):
        for i in range(3):
            with pytest.raises(NotFoundError):
                service.record_transaction(f"GHOST-{i}", "OUT", 1, "Order")

        assert len(service.locks) == 0


class TestReads:

    def test_product_details_reads_are_idempotent(self, service):
        _create(service, "SKU-1", quantity=10)
        service.record_transaction("SKU-1", "OUT", 3, "Order")

        first = service.get_product_details("SKU-1")
        second = service.get_product_details("SKU-1")
        assert first.current_stock == second.current_stock == 7
        assert first == second

    def test_product_details_carry_static_fields(self, service, clock):
        _create(service, "SKU-1", quantity=2, description="Blue", category="Tools", supplier="ACME")
        clock.advance(seconds=30)
        tx = service.record_transaction("SKU-1", "IN", 1, "Restock").transaction

        details = service.get_product_details("SKU-1")
        assert details.category == "Tools"
        assert details.supplier == "ACME"
        assert details.description == "Blue"
        assert details.last_transaction_timestamp == tx.timestamp

    def test_unknown_sku_details(self, service):
        with pytest.raises(NotFoundError):
            service.get_product_details("GHOST")

    def test_history_is_chronological_with_running_balance(self, service, clock):
        _create(service, "SKU-1", quantity=10)
        clock.advance(minutes=1)
        service.record_transaction("SKU-1", "OUT", 4, "Order")
        clock.advance(minutes=1)
        service.record_transaction("SKU-1", "IN", 5, "Restock")

        history = service.get_history("SKU-1")
        assert [h.quantity_change for h in history] == [10, -4, 5]
        assert [h.running_balance for h in history] == [10, 6, 11]
        assert all(h.verification_status == "Verified" for h in history)
        assert [h.ledger_tx_id for h in history] == sorted(h.ledger_tx_id for h in history)

    def test_history_only_contains_the_requested_sku(self, service):
        _create(service, "SKU-1", quantity=1)
        _create(service, "SKU-2", quantity=2)
        service.record_transaction("SKU-2", "IN", 3, "Restock")

        assert [h.sku for h in service.get_history("SKU-1")] == ["SKU-1"]
        assert len(service.get_history("SKU-2")) == 2

    def test_history_unknown_sku(self, service):
        with pytest.raises(NotFoundError):
            service.get_history("GHOST")

    def test_snapshot_sorted_by_sku(self, service, clock):
        _create(service, "SKU-B", quantity=2)
        clock.advance(seconds=1)
        _create(service, "SKU-A", quantity=5)
        clock.advance(seconds=1)
        tx = service.record_transaction("SKU-A", "OUT", 1, "Order").transaction

        snapshot = service.get_snapshot()
        assert [(s.sku, s.current_stock) for s in snapshot] == [("SKU-A", 4), ("SKU-B", 2)]
        assert snapshot[0].last_transaction_timestamp == tx.timestamp

    def test_snapshot_empty(self, service):
        assert service.get_snapshot() == []

    def test_list_products_matches_details(self, service):
        _create(service, "SKU-2", quantity=2)
        _create(service, "SKU-1", quantity=1)

        listed = service.list_products()
        assert [p.sku for p in listed] == ["SKU-1", "SKU-2"]
        assert listed[0] == service.get_product_details("SKU-1")


class TestTimeTravel:

    def test_scenario_d_stock_at_two_instants(self, service, clock):
        t0 = format_timestamp(clock.now)
        _create(service, "SKU-2", quantity=5)
        t1 = format_timestamp(clock.advance(minutes=5))
        service.record_transaction("SKU-2", "IN", 3, "Restock")

        assert service.time_travel("SKU-2", t0).historical_stock_at_timestamp == 5
        assert service.time_travel("SKU-2", t1).historical_stock_at_timestamp == 8

    def test_at_created_at_only_the_seed_is_included(self, service, clock):
        product = _create(service, "SKU-1", quantity=10).product
        clock.advance(milliseconds=1)
        service.record_transaction("SKU-1", "OUT", 2, "Order")

        result = service.time_travel("SKU-1", product.created_at)
        assert result.historical_stock_at_timestamp == 10
        assert result.transactions_included == 1
        assert result.last_transaction_before_timestamp == product.created_at

    def test_before_creation_stock_is_zero(self, service, clock):
        product = _create(service, "SKU-1", quantity=10).product

        result = service.time_travel("SKU-1", "2000-01-01T00:00:00.000Z")
        assert result.historical_stock_at_timestamp == 0
        assert result.transactions_included == 0
        assert result.last_transaction_before_timestamp == product.created_at

    def test_result_shape(self, service, clock):
        _create(service, "SKU-1", quantity=10, category="Tools")
        clock.advance(hours=1)
        tx = service.record_transaction("SKU-1", "OUT", 4, "Order").transaction
        target = format_timestamp(clock.advance(hours=1))

        result = service.time_travel("SKU-1", target)
        assert result.product.sku == "SKU-1"
        assert result.product.category == "Tools"
        assert not hasattr(result.product, "initial_quantity")
        assert result.historical_stock_at_timestamp == 6
        assert result.target_timestamp == target
        assert result.last_transaction_before_timestamp == tx.timestamp
        assert result.transactions_included == 2

    def test_now_or_later_equals_sum_of_all_changes(self, service, clock):
        _create(service, "SKU-1", quantity=10)
        for qty, kind in [(3, "IN"), (5, "OUT"), (2, "ADJUSTMENT"), (1, "OUT")]:
            clock.advance(seconds=10)
            service.record_transaction("SKU-1", kind, qty, "move")

        total = sum(h.quantity_change for h in service.get_history("SKU-1"))
        future = format_timestamp(clock.advance(days=365))
        assert service.time_travel("SKU-1", future).historical_stock_at_timestamp == total == 9

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2024-13-45T00:00:00Z"])
    def test_invalid_timestamp(self, service, value):
        _create(service, "SKU-1", quantity=1)

        with pytest.raises(ValidationError):
            service.time_travel("SKU-1", value)

    def test_invalid_timestamp_checked_before_sku(self, service):
        with pytest.raises(ValidationError):
            service.time_travel("GHOST", "not-a-date")

    def test_unknown_sku(self, service):
        with pytest.raises(NotFoundError):
            service.time_travel("GHOST", "2024-01-01T00:00:00.000Z")


class TestVerifyTransaction:

    def test_verify_recorded_transaction(self, service):
        _create(service, "SKU-1", quantity=10)
        recorded = service.record_transaction("SKU-1", "OUT", 1, "Order")

        result = service.verify_transaction(recorded.transaction.transaction_id)
        assert result.verified is True
        assert result.verification_status == "Verified"
        assert result.transaction == recorded.transaction
        assert result.proof.tx_id == recorded.proof.tx_id

    def test_verify_unknown_id(self, service):
        with pytest.raises(NotFoundError):
            service.verify_transaction("does-not-exist")

    def test_verify_tampered_transaction(self, service, db_session, clock):
        from sqlalchemy import update

        from inventory_ledger.models.ledger_entry import LedgerEntry

        _create(service, "SKU-1", quantity=10)
        clock.advance(seconds=1)
        recorded = service.record_transaction("SKU-1", "IN", 1, "Restock")
        forged = recorded.transaction.model_copy(update={"quantity_change": 1000})
        db_session.execute(
            update(LedgerEntry)
            .where(LedgerEntry.id == recorded.proof.tx_id)
            .values(value=forged.model_dump_json().encode())
        )
        db_session.commit()

        result = service.verify_transaction(recorded.transaction.transaction_id)
        assert result.verified is False
        assert result.verification_status == "Verification Failed"
        statuses = {h.transaction_id: h.verification_status for h in service.get_history("SKU-1")}
        assert statuses[recorded.transaction.transaction_id] == "Verification Failed"
        assert list(statuses.values()).count("Verified") == 1


class TestMalformedRecords:

    def test_unparseable_transaction_is_skipped(self, service, store, caplog):
        _create(service, "SKU-1", quantity=10)
        store.put(f"{TRANSACTION_PREFIX}garbage", b"{not json")
        store.put(f"{TRANSACTION_PREFIX}partial", b'{"sku": "SKU-1", "quantity_change": 50}')

        with caplog.at_level("WARNING"):
            details = service.get_product_details("SKU-1")

        assert details.current_stock == 10
        assert "Skipping malformed transaction record" in caplog.text

    def test_bad_timestamp_record_is_skipped(self, service, store):
        _create(service, "SKU-1", quantity=10)
        bogus = (
            b'{"transaction_id":"x","sku":"SKU-1","type":"IN","quantity_change":5,'
            b'"reason":"r","performed_by":"p","timestamp":"someday"}'
        )
        store.put(f"{TRANSACTION_PREFIX}x", bogus)

        assert service.get_product_details("SKU-1").current_stock == 10
        assert len(service.get_snapshot()) == 1

    def test_unparseable_product_is_skipped_in_snapshot(self, service, store):
        _create(service, "SKU-1", quantity=10)
        store.put("product:broken", b"nope")

        assert [s.sku for s in service.get_snapshot()] == ["SKU-1"]


class TestIndexedRepository:

    def _populate(self, service, clock):
        _create(service, "A", quantity=5)
        _create(service, "A:B", quantity=7)
        clock.advance(minutes=1)
        service.record_transaction("A", "OUT", 2, "Order")
        service.record_transaction("A:B", "IN", 1, "Restock")

    def test_indexed_reads_match_scan_reads(self, store, clock, service, indexed_service):
        self._populate(indexed_service, clock)

        for sku in ("A", "A:B"):
            assert indexed_service.get_history(sku) == service.get_history(sku)
            assert indexed_service.get_product_details(sku) == service.get_product_details(sku)
        assert indexed_service.get_history("A")[-1].running_balance == 3
        assert indexed_service.get_snapshot() == service.get_snapshot()

    def test_rebuild_index_backfills_unindexed_transactions(self, store, clock, service, indexed_service):
        # Written without the index, then read through it
        self._populate(service, clock)
        assert indexed_service.get_history("A") == []

        written = indexed_service.transactions.rebuild_index()

        assert written == 4
        assert indexed_service.get_history("A") == service.get_history("A")
        assert indexed_service.transactions.rebuild_index() == 0

    def test_repository_base_cannot_be_instantiated(self, store):
        from inventory_ledger.services.transaction_repository import TransactionRepository

        with pytest.raises(TypeError):
            TransactionRepository(store)


class TestConcurrentWrites:

    def test_concurrent_out_movements_never_overdraw(self, tmp_path):
        import threading

        from sqlalchemy import create_engine
        from sqlalchemy.orm import Session

        from inventory_ledger.database import init_db
        from inventory_ledger.services.locks import KeyedLock

        engine = create_engine(
            f"sqlite:///{tmp_path / 'ledger.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        init_db(bind=engine)
        locks = KeyedLock()
        with Session(bind=engine) as setup:
            _create(InventoryService(LedgerStore(setup), indexed=False, locks=locks), "SKU-1", quantity=5)

        workers = 10
        barrier = threading.Barrier(workers)
        outcomes = []
        outcomes_guard = threading.Lock()

        def take_one():
            with Session(bind=engine) as db:
                service = InventoryService(LedgerStore(db), indexed=False, locks=locks)
                barrier.wait()
                try:
                    service.record_transaction("SKU-1", "OUT", 1, "Order")
                    outcome = "ok"
                except InsufficientStockError:
                    outcome = "short"
                with outcomes_guard:
                    outcomes.append(outcome)

        threads = [threading.Thread(target=take_one) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        try:
            assert sorted(outcomes) == ["ok"] * 5 + ["short"] * 5
            with Session(bind=engine) as db:
                service = InventoryService(LedgerStore(db), indexed=False, locks=locks)
                assert service.get_product_details("SKU-1").current_stock == 0
                assert len(service.get_history("SKU-1")) == 6
        finally:
            engine.dispose()
