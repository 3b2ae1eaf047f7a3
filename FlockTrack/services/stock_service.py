"""
Stock ledger service.

Every movement of a farmer's feed stock goes through this module: the
balance on Farmer.main_stock and the StockLedgerEntry row are written in
the same flush, with the farmer row locked (SELECT ... FOR UPDATE), so
main_stock == Σ entries.amount holds at every commit.

Functions only flush; the caller owns the transaction (utils.transactions.uow).
"""
import uuid
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from enums.enums import StockEntryKindEnum, FarmerStatusEnum, NotificationSeverityEnum
from models.farmer import Farmer
from models.stock_ledger import StockLedgerEntry
from services.notification_service import notify_after_commit
from utils.exceptions import NotFoundError, ValidationError, ConflictError, InsufficientStockError
from utils.logging_config import get_logger

logger = get_logger("stock")


def _to_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _require_positive(amount) -> Decimal:
    amount = _to_decimal(amount)
    if amount <= 0:
        raise ValidationError(f"Amount must be greater than 0 (got {amount})", amount=amount)
    return amount


# ==================== LOOKUPS ====================

def lock_farmer(db: Session, farmer_id: int, require_active: bool = False) -> Farmer:
    """
    Load a farmer with a row lock.

    Raises:
        NotFoundError: missing farmer, or archived when require_active
    """
    farmer = db.execute(
        select(Farmer).where(Farmer.farmer_id == farmer_id).with_for_update()
    ).scalar_one_or_none()
    if farmer is None:
        raise NotFoundError("Farmer", farmer_id)
    if require_active and not farmer.is_active:
        raise NotFoundError("Farmer", farmer_id, f"Farmer {farmer_id} is archived")
    return farmer


def get_farmer(db: Session, farmer_id: int) -> Farmer:
    farmer = db.get(Farmer, farmer_id)
    if farmer is None:
        raise NotFoundError("Farmer", farmer_id)
    return farmer


def get_ledger(db: Session, farmer_id: int) -> list[StockLedgerEntry]:
    """Ledger entries of a farmer, oldest first."""
    get_farmer(db, farmer_id)
    return list(
        db.execute(
            select(StockLedgerEntry)
            .where(StockLedgerEntry.farmer_id == farmer_id)
            .order_by(StockLedgerEntry.entry_id)
        ).scalars()
    )


def ledger_balance(db: Session, farmer_id: int) -> Decimal:
    """Σ amount of the farmer's ledger entries (should equal main_stock)."""
    total = db.execute(
        select(func.coalesce(func.sum(StockLedgerEntry.amount), 0))
        .where(StockLedgerEntry.farmer_id == farmer_id)
    ).scalar_one()
    return _to_decimal(total)


# ==================== CORE ====================

def _append_entry(
    db: Session,
    farmer: Farmer,
    amount: Decimal,
    kind: StockEntryKindEnum,
    note: str | None,
    reference_id: str | None = None,
    user_id: int | None = None,
) -> StockLedgerEntry:
    farmer.main_stock = _to_decimal(farmer.main_stock or 0) + amount
    entry = StockLedgerEntry(
        farmer_id=farmer.farmer_id,
        amount=amount,
        kind=kind.value,
        reference_id=reference_id,
        note=note,
        created_by=user_id,
    )
    db.add(entry)
    db.flush()
    return entry


def create_farmer(
    db: Session,
    organization_id: int,
    name: str,
    officer_id: int | None = None,
    initial_stock=Decimal("0"),
    user_id: int | None = None,
) -> Farmer:
    """
    Register a farmer account.

    A positive initial_stock is booked as an INITIAL ledger entry.
    """
    initial_stock = _to_decimal(initial_stock)
    if initial_stock < 0:
        raise ValidationError("Initial stock cannot be negative", amount=initial_stock)

    farmer = Farmer(
        organization_id=organization_id,
        officer_id=officer_id,
        name=name.strip(),
        status=FarmerStatusEnum.active.value,
        main_stock=Decimal("0"),
        total_consumed=Decimal("0"),
    )
    db.add(farmer)
    db.flush()

    if initial_stock > 0:
        _append_entry(db, farmer, initial_stock, StockEntryKindEnum.INITIAL, "Initial Stock Assignment", user_id=user_id)

    logger.info("farmer_created", extra={"farmer_id": farmer.farmer_id, "initial_stock": initial_stock})
    return farmer


def add_stock(db: Session, farmer_id: int, amount, note: str | None = None, user_id: int | None = None) -> StockLedgerEntry:
    """Balance += amount. RESTOCK entry."""
    amount = _require_positive(amount)
    farmer = lock_farmer(db, farmer_id)
    entry = _append_entry(db, farmer, amount, StockEntryKindEnum.RESTOCK, note or "Manual Restock", user_id=user_id)
    notify_after_commit(
        db,
        farmer.organization_id,
        "Stock Added",
        f"{amount:.2f} bags added to {farmer.name}. Balance: {farmer.main_stock:.2f} bags.",
        severity=NotificationSeverityEnum.SUCCESS,
        link=f"/farmers/{farmer.farmer_id}",
        metadata={"farmer_id": farmer.farmer_id, "entry_id": entry.entry_id, "amount": float(amount)},
    )
    logger.info("stock_added", extra={"farmer_id": farmer_id, "amount": amount, "balance": farmer.main_stock})
    return entry


def deduct_stock(db: Session, farmer_id: int, amount, note: str | None = None, user_id: int | None = None) -> StockLedgerEntry:
    """
    Balance -= amount. CORRECTION entry with the negated amount.

    No floor at zero: manual book corrections may leave the balance negative.
    """
    amount = _require_positive(amount)
    farmer = lock_farmer(db, farmer_id)
    entry = _append_entry(db, farmer, -amount, StockEntryKindEnum.CORRECTION, note or "Manual Deduction", user_id=user_id)
    notify_after_commit(
        db,
        farmer.organization_id,
        "Stock Deducted",
        f"{amount:.2f} bags deducted from {farmer.name}. Balance: {farmer.main_stock:.2f} bags.",
        details=note,
        severity=NotificationSeverityEnum.WARNING,
        link=f"/farmers/{farmer.farmer_id}",
        metadata={"farmer_id": farmer.farmer_id, "entry_id": entry.entry_id, "amount": float(amount)},
    )
    logger.info("stock_deducted", extra={"farmer_id": farmer_id, "amount": amount, "balance": farmer.main_stock})
    return entry


def transfer_stock(
    db: Session,
    source_farmer_id: int,
    target_farmer_id: int,
    amount,
    note: str | None = None,
    user_id: int | None = None,
) -> tuple[str, StockLedgerEntry, StockLedgerEntry]:
    """
    Move bags between two farmers of the same organization.

    Writes a TRANSFER pair (−amount on source, +amount on target) sharing a
    fresh UUID reference. Both rows are locked in id order.

    Returns:
        (reference_id, source_entry, target_entry)
    """
    amount = _require_positive(amount)
    if source_farmer_id == target_farmer_id:
        raise ValidationError("Cannot transfer stock to the same farmer", farmer_id=source_farmer_id)

    locked = {fid: lock_farmer(db, fid, require_active=True) for fid in sorted((source_farmer_id, target_farmer_id))}
    source, target = locked[source_farmer_id], locked[target_farmer_id]

    if source.organization_id != target.organization_id:
        raise ValidationError(
            "Farmers belong to different organizations",
            source_farmer_id=source_farmer_id,
            target_farmer_id=target_farmer_id,
        )
    available = _to_decimal(source.main_stock)
    if available < amount:
        raise InsufficientStockError(source_farmer_id, amount, available)

    reference_id = str(uuid.uuid4())
    out_note = f"Transfer to {target.name}: {note}" if note else f"Transferred to {target.name}"
    in_note = f"Received from {source.name}: {note}" if note else f"Received from {source.name}"

    source_entry = _append_entry(db, source, -amount, StockEntryKindEnum.TRANSFER, out_note, reference_id, user_id)
    target_entry = _append_entry(db, target, amount, StockEntryKindEnum.TRANSFER, in_note, reference_id, user_id)
    notify_after_commit(
        db,
        source.organization_id,
        "Stock Transfer",
        f"{amount:.2f} bags transferred from {source.name} to {target.name}.",
        details=note,
        severity=NotificationSeverityEnum.INFO,
        link=f"/farmers/{source.farmer_id}",
        metadata={"reference_id": reference_id, "source_farmer_id": source.farmer_id,
                  "target_farmer_id": target.farmer_id, "amount": float(amount)},
    )

    logger.info(
        "stock_transferred",
        extra={
            "reference_id": reference_id,
            "source_farmer_id": source_farmer_id,
            "target_farmer_id": target_farmer_id,
            "amount": amount,
        },
    )
    return reference_id, source_entry, target_entry


def revert_transfer(
    db: Session,
    reference_id: str,
    note: str | None = None,
    user_id: int | None = None,
) -> list[StockLedgerEntry]:
    """
    Undo a transfer with two compensating REVERSAL entries.

    The original TRANSFER pair is never touched.

    Raises:
        NotFoundError: no TRANSFER pair with this reference
        ConflictError: the transfer was already reverted
        InsufficientStockError: a side would end up negative
    """
    pair = list(
        db.execute(
            select(StockLedgerEntry)
            .where(
                StockLedgerEntry.reference_id == reference_id,
                StockLedgerEntry.kind == StockEntryKindEnum.TRANSFER.value,
            )
            .order_by(StockLedgerEntry.entry_id)
        ).scalars()
    )
    if len(pair) != 2:
        raise NotFoundError("Transfer", reference_id)

    already = db.execute(
        select(func.count(StockLedgerEntry.entry_id)).where(
            StockLedgerEntry.reference_id == reference_id,
            StockLedgerEntry.kind == StockEntryKindEnum.REVERSAL.value,
        )
    ).scalar_one()
    if already:
        raise ConflictError(f"Transfer {reference_id} has already been reverted", reference_id=reference_id)

    farmers = {fid: lock_farmer(db, fid) for fid in sorted({e.farmer_id for e in pair})}

    for original in pair:
        farmer = farmers[original.farmer_id]
        resulting = _to_decimal(farmer.main_stock) - _to_decimal(original.amount)
        if resulting < 0:
            raise InsufficientStockError(
                farmer.farmer_id,
                _to_decimal(original.amount),
                _to_decimal(farmer.main_stock),
                message=f"Cannot revert transfer: farmer {farmer.farmer_id} would end at {resulting:.2f} bags",
            )

    reversals = []
    for original in pair:
        reversals.append(
            _append_entry(
                db,
                farmers[original.farmer_id],
                -_to_decimal(original.amount),
                StockEntryKindEnum.REVERSAL,
                note or f"Revert: {original.note or 'Transfer'}",
                reference_id,
                user_id,
            )
        )

    source_entry = pair[0] if _to_decimal(pair[0].amount) < 0 else pair[1]
    target_entry = pair[1] if source_entry is pair[0] else pair[0]
    source, target = farmers[source_entry.farmer_id], farmers[target_entry.farmer_id]
    notify_after_commit(
        db,
        source.organization_id,
        "Transfer Reverted",
        f"{abs(_to_decimal(source_entry.amount)):.2f} bags returned from {target.name} to {source.name}.",
        details=note,
        severity=NotificationSeverityEnum.UPDATE,
        link=f"/farmers/{source.farmer_id}",
        metadata={"reference_id": reference_id, "source_farmer_id": source.farmer_id,
                  "target_farmer_id": target.farmer_id},
    )

    logger.info("transfer_reverted", extra={"reference_id": reference_id})
    return reversals


REVERTIBLE_KINDS = {
    StockEntryKindEnum.INITIAL.value,
    StockEntryKindEnum.RESTOCK.value,
    StockEntryKindEnum.CORRECTION.value,
}


def revert_stock_entry(
    db: Session,
    entry_id: int,
    note: str | None = None,
    user_id: int | None = None,
) -> StockLedgerEntry:
    """
    Undo a manual entry (INITIAL, RESTOCK or CORRECTION) with a REVERSAL of
    the opposite amount. The reversal's reference_id is "entry-<entry_id>".

    Cycle closes are undone by reopening the cycle, transfers by
    revert_transfer.

    Raises:
        NotFoundError: no such entry
        ValidationError: entry kind cannot be reverted
        ConflictError: already reverted
        InsufficientStockError: the balance would end up negative
    """
    original = db.get(StockLedgerEntry, entry_id)
    if original is None:
        raise NotFoundError("StockLedgerEntry", entry_id)
    if original.kind == StockEntryKindEnum.CYCLE_CLOSE.value:
        raise ValidationError(
            "Cannot revert a cycle close entry directly. Reopen the cycle from its history instead.",
            entry_id=entry_id,
        )
    if original.kind == StockEntryKindEnum.TRANSFER.value:
        raise ValidationError("Transfers are reverted as a pair by their reference", entry_id=entry_id,
                              reference_id=original.reference_id)
    if original.kind not in REVERTIBLE_KINDS:
        raise ValidationError(f"{original.kind} entries cannot be reverted", entry_id=entry_id)

    reference_id = f"entry-{entry_id}"
    already = db.execute(
        select(func.count(StockLedgerEntry.entry_id)).where(
            StockLedgerEntry.reference_id == reference_id,
            StockLedgerEntry.kind == StockEntryKindEnum.REVERSAL.value,
        )
    ).scalar_one()
    if already:
        raise ConflictError(f"Stock entry {entry_id} has already been reverted", entry_id=entry_id)

    farmer = lock_farmer(db, original.farmer_id)
    amount = _to_decimal(original.amount)
    balance = _to_decimal(farmer.main_stock)
    resulting = balance - amount
    if resulting < 0:
        raise InsufficientStockError(
            farmer.farmer_id,
            amount,
            balance,
            message=f"Cannot revert entry {entry_id}: it would result in negative stock ({resulting:.2f} bags)",
        )

    reversal = _append_entry(
        db,
        farmer,
        -amount,
        StockEntryKindEnum.REVERSAL,
        note or f"Revert: {original.note or 'Original Entry'}",
        reference_id,
        user_id,
    )
    notify_after_commit(
        db,
        farmer.organization_id,
        "Stock Log Reverted",
        f"{original.kind.title()} of {abs(amount):.2f} bags on {farmer.name} was reverted.",
        details=f"Balance: {farmer.main_stock:.2f} bags.",
        severity=NotificationSeverityEnum.UPDATE,
        link=f"/farmers/{farmer.farmer_id}",
        metadata={"farmer_id": farmer.farmer_id, "entry_id": entry_id, "reversal_id": reversal.entry_id},
    )
    logger.info("stock_entry_reverted", extra={"entry_id": entry_id, "farmer_id": farmer.farmer_id, "amount": amount})
    return reversal


# ==================== CYCLE HOOKS ====================
# Only called by services.cycle_service inside an end/reopen transition.

def record_cycle_close(
    db: Session,
    farmer: Farmer,
    bags,
    history_id: int,
    note: str,
    user_id: int | None = None,
) -> StockLedgerEntry | None:
    """
    Realize a cycle's intake: CYCLE_CLOSE entry (−bags), total_consumed += bags.

    Zero intake books nothing.
    """
    bags = _to_decimal(bags)
    farmer.total_consumed = _to_decimal(farmer.total_consumed or 0) + bags
    if bags == 0:
        db.flush()
        return None
    return _append_entry(db, farmer, -bags, StockEntryKindEnum.CYCLE_CLOSE, note, str(history_id), user_id)


def record_cycle_reopen(
    db: Session,
    farmer: Farmer,
    bags,
    history_id: int,
    note: str,
    user_id: int | None = None,
) -> StockLedgerEntry | None:
    """Reverse a CYCLE_CLOSE: REVERSAL entry (+bags), total_consumed -= bags."""
    bags = _to_decimal(bags)
    farmer.total_consumed = _to_decimal(farmer.total_consumed or 0) - bags
    if bags == 0:
        db.flush()
        return None
    return _append_entry(db, farmer, bags, StockEntryKindEnum.REVERSAL, note, str(history_id), user_id)
