from decimal import Decimal

import pytest

from models.notification import Notification
from models.stock_ledger import StockLedgerEntry
from services import stock_service
from utils.exceptions import (
    ValidationError,
    NotFoundError,
    ConflictError,
    InsufficientStockError,
    ImmutabilityError,
)
from utils.transactions import uow


def _entries(db, farmer_id):
    return db.query(StockLedgerEntry).filter(StockLedgerEntry.farmer_id == farmer_id).order_by(StockLedgerEntry.entry_id).all()


def _assert_conserved(db, farmer):
    db.refresh(farmer)
    assert farmer.main_stock == stock_service.ledger_balance(db, farmer.farmer_id)


def test_initial_stock_is_booked_as_initial_entry(db, make_farmer):
    farmer = make_farmer(stock=Decimal("25"))

    entries = _entries(db, farmer.farmer_id)
    assert [e.kind for e in entries] == ["INITIAL"]
    assert entries[0].amount == Decimal("25")
    _assert_conserved(db, farmer)


def test_add_then_deduct_yields_net_balance_with_two_entries(db, make_farmer):
    farmer = make_farmer()

    stock_service.add_stock(db, farmer.farmer_id, 50)
    stock_service.deduct_stock(db, farmer.farmer_id, 20, note="Spoiled bags")
    db.commit()

    db.refresh(farmer)
    assert farmer.main_stock == Decimal("30")
    entries = _entries(db, farmer.farmer_id)
    assert [(e.kind, e.amount) for e in entries] == [
        ("RESTOCK", Decimal("50")),
        ("CORRECTION", Decimal("-20")),
    ]
    assert entries[1].note == "Spoiled bags"
    _assert_conserved(db, farmer)


def test_deduct_may_drive_balance_negative(db, make_farmer):
    farmer = make_farmer(stock=Decimal("3"))

    stock_service.deduct_stock(db, farmer.farmer_id, 10)
    db.commit()

    db.refresh(farmer)
    assert farmer.main_stock == Decimal("-7")
    _assert_conserved(db, farmer)


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amounts_are_rejected(db, make_farmer, amount):
    farmer = make_farmer(stock=Decimal("10"))

    with pytest.raises(ValidationError):
        stock_service.add_stock(db, farmer.farmer_id, amount)
    with pytest.raises(ValidationError):
        stock_service.deduct_stock(db, farmer.farmer_id, amount)


def test_unknown_farmer_is_not_found(db):
    with pytest.raises(NotFoundError):
        stock_service.add_stock(db, 999, 5)


def test_transfer_and_revert_restore_both_balances(db, make_farmer):
    source = make_farmer(stock=Decimal("40"), name="Source")
    target = make_farmer(stock=Decimal("10"), name="Target")

    reference_id, out_entry, in_entry = stock_service.transfer_stock(db, source.farmer_id, target.farmer_id, 15)
    db.commit()

    db.refresh(source)
    db.refresh(target)
    assert (source.main_stock, target.main_stock) == (Decimal("25"), Decimal("25"))
    assert out_entry.note == "Transferred to Target"
    assert in_entry.note == "Received from Source"

    reversals = stock_service.revert_transfer(db, reference_id)
    db.commit()

    db.refresh(source)
    db.refresh(target)
    assert (source.main_stock, target.main_stock) == (Decimal("40"), Decimal("10"))
    assert [r.kind for r in reversals] == ["REVERSAL", "REVERSAL"]

    by_reference = db.query(StockLedgerEntry).filter(StockLedgerEntry.reference_id == reference_id).all()
    assert len(by_reference) == 4
    assert sorted(e.kind for e in by_reference) == ["REVERSAL", "REVERSAL", "TRANSFER", "TRANSFER"]
    _assert_conserved(db, source)
    _assert_conserved(db, target)


def test_revert_unknown_transfer_is_not_found(db):
    with pytest.raises(NotFoundError):
        stock_service.revert_transfer(db, "does-not-exist")


def test_revert_twice_is_a_conflict(db, make_farmer):
    source = make_farmer(stock=Decimal("40"))
    target = make_farmer(stock=Decimal("0"))
    reference_id, _, _ = stock_service.transfer_stock(db, source.farmer_id, target.farmer_id, 5)
    stock_service.revert_transfer(db, reference_id)
    db.commit()

    with pytest.raises(ConflictError):
        stock_service.revert_transfer(db, reference_id)


def test_revert_refuses_to_leave_receiver_negative(db, make_farmer):
    source = make_farmer(stock=Decimal("20"))
    target = make_farmer(stock=Decimal("0"))
    reference_id, _, _ = stock_service.transfer_stock(db, source.farmer_id, target.farmer_id, 10)
    stock_service.deduct_stock(db, target.farmer_id, 8)
    db.commit()

    with pytest.raises(InsufficientStockError):
        with uow(db):
            stock_service.revert_transfer(db, reference_id)

    db.refresh(target)
    assert target.main_stock == Decimal("2")


def test_transfer_checks_source_balance_and_organization(db, make_farmer):
    source = make_farmer(stock=Decimal("5"))
    same_org = make_farmer(stock=Decimal("0"))
    other_org = make_farmer(stock=Decimal("0"), organization_id=2)

    with pytest.raises(InsufficientStockError) as exc:
        stock_service.transfer_stock(db, source.farmer_id, same_org.farmer_id, 6)
    assert exc.value.requested == Decimal("6")
    assert exc.value.available == Decimal("5")

    with pytest.raises(ValidationError):
        stock_service.transfer_stock(db, source.farmer_id, other_org.farmer_id, 1)
    with pytest.raises(ValidationError):
        stock_service.transfer_stock(db, source.farmer_id, source.farmer_id, 1)


def test_ledger_entries_are_immutable(db, make_farmer):
    farmer = make_farmer(stock=Decimal("10"))
    entry = _entries(db, farmer.farmer_id)[0]

    entry.amount = Decimal("999")
    with pytest.raises(ImmutabilityError):
        db.flush()
    db.rollback()

    db.delete(_entries(db, farmer.farmer_id)[0])
    with pytest.raises(ImmutabilityError):
        db.flush()
    db.rollback()


# ==================== ENTRY REVERTS ====================

def test_reverting_a_restock_books_a_linked_reversal(db, make_farmer):
    farmer = make_farmer(stock=Decimal("10"))
    restock = stock_service.add_stock(db, farmer.farmer_id, 5)
    db.commit()

    reversal = stock_service.revert_stock_entry(db, restock.entry_id, user_id=3)
    db.commit()

    assert reversal.kind == "REVERSAL"
    assert reversal.amount == Decimal("-5")
    assert reversal.reference_id == f"entry-{restock.entry_id}"
    assert reversal.note == "Revert: Manual Restock"
    assert reversal.created_by == 3
    assert db.get(StockLedgerEntry, restock.entry_id).amount == Decimal("5")
    _assert_conserved(db, farmer)
    assert farmer.main_stock == Decimal("10")

    with pytest.raises(ConflictError):
        stock_service.revert_stock_entry(db, restock.entry_id)


def test_reverting_a_deduction_gives_the_bags_back(db, make_farmer):
    farmer = make_farmer(stock=Decimal("10"))
    deduction = stock_service.deduct_stock(db, farmer.farmer_id, 4, note="Wet bags")
    db.commit()

    reversal = stock_service.revert_stock_entry(db, deduction.entry_id, note="Bags were fine")
    db.commit()

    assert reversal.amount == Decimal("4")
    assert reversal.note == "Bags were fine"
    _assert_conserved(db, farmer)
    assert farmer.main_stock == Decimal("10")


def test_entry_revert_refuses_negative_balance(db, make_farmer):
    farmer = make_farmer(stock=Decimal("10"))
    restock = stock_service.add_stock(db, farmer.farmer_id, 5)
    stock_service.deduct_stock(db, farmer.farmer_id, 12)
    db.commit()

    with pytest.raises(InsufficientStockError) as exc:
        with uow(db):
            stock_service.revert_stock_entry(db, restock.entry_id)

    assert exc.value.requested == Decimal("5")
    assert exc.value.available == Decimal("3")
    db.refresh(farmer)
    assert farmer.main_stock == Decimal("3")
    assert [e.kind for e in _entries(db, farmer.farmer_id)] == ["INITIAL", "RESTOCK", "CORRECTION"]


def test_cycle_close_transfer_and_reversal_entries_cannot_be_reverted(db, make_farmer):
    farmer = make_farmer(stock=Decimal("40"))
    other = make_farmer(stock=Decimal("0"), name="Salam")
    close = stock_service.record_cycle_close(db, farmer, 3, 99, note="Cycle closed")
    _, transfer_out, _ = stock_service.transfer_stock(db, farmer.farmer_id, other.farmer_id, 2)
    restock = stock_service.add_stock(db, farmer.farmer_id, 1)
    reversal = stock_service.revert_stock_entry(db, restock.entry_id)
    db.commit()

    for entry in (close, transfer_out, reversal):
        with pytest.raises(ValidationError):
            stock_service.revert_stock_entry(db, entry.entry_id)


def test_revert_unknown_entry_is_not_found(db):
    with pytest.raises(NotFoundError):
        stock_service.revert_stock_entry(db, 4242)


# ==================== NOTIFICATIONS ====================

def _titles(db):
    return [n.title for n in db.query(Notification).order_by(Notification.notification_id)]


def test_stock_movements_notify_managers(db, make_farmer):
    farmer = make_farmer(stock=Decimal("20"), name="Source")
    other = make_farmer(stock=Decimal("0"), name="Target")

    restock = stock_service.add_stock(db, farmer.farmer_id, 5)
    assert _titles(db) == []
    db.commit()
    stock_service.deduct_stock(db, farmer.farmer_id, 2, note="Spoiled")
    db.commit()
    reference_id, _, _ = stock_service.transfer_stock(db, farmer.farmer_id, other.farmer_id, 3)
    db.commit()
    stock_service.revert_transfer(db, reference_id)
    db.commit()
    stock_service.revert_stock_entry(db, restock.entry_id)
    db.commit()

    assert _titles(db) == [
        "Stock Added", "Stock Deducted", "Stock Transfer", "Transfer Reverted", "Stock Log Reverted",
    ]
    added = db.query(Notification).filter(Notification.title == "Stock Added").one()
    assert added.organization_id == farmer.organization_id
    assert added.meta["entry_id"] == restock.entry_id
    moved = db.query(Notification).filter(Notification.title == "Stock Transfer").one()
    assert moved.meta["reference_id"] == reference_id
    assert "Source" in moved.message and "Target" in moved.message


def test_failed_stock_movement_sends_nothing(db, make_farmer):
    farmer = make_farmer(stock=Decimal("2"))
    other = make_farmer(stock=Decimal("0"))

    with pytest.raises(InsufficientStockError):
        with uow(db):
            stock_service.add_stock(db, farmer.farmer_id, 1)
            stock_service.transfer_stock(db, farmer.farmer_id, other.farmer_id, 10)
    db.commit()

    assert _titles(db) == []
