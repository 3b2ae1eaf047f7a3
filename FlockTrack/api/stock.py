"""
Stock ledger endpoints.
"""
from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from utils.db import get_db
from utils.dependencies import get_actor, Actor
from utils.transactions import uow
from schemas.stock import StockChange, StockTransfer, RevertRequest, LedgerEntryOut, TransferOut
from services import stock_service

router = APIRouter(prefix="/stock", tags=["Stock"])


@router.get("/farmers/{farmer_id}/ledger", response_model=list[LedgerEntryOut], summary="Ledger of a farmer")
def get_farmer_ledger(farmer_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return stock_service.get_ledger(db, farmer_id)


@router.post("/farmers/{farmer_id}/restock", response_model=LedgerEntryOut, status_code=201, summary="Add stock")
def post_restock(
    payload: StockChange,
    farmer_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    with uow(db):
        entry = stock_service.add_stock(db, farmer_id, payload.amount, payload.note, user_id=actor.user_id)
    return entry


@router.post("/farmers/{farmer_id}/deduct", response_model=LedgerEntryOut, status_code=201, summary="Deduct stock")
def post_deduct(
    payload: StockChange,
    farmer_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Manual correction; may leave the balance negative."""
    with uow(db):
        entry = stock_service.deduct_stock(db, farmer_id, payload.amount, payload.note, user_id=actor.user_id)
    return entry


@router.post("/transfers", response_model=TransferOut, status_code=201, summary="Transfer stock between farmers")
def post_transfer(
    payload: StockTransfer,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    with uow(db):
        reference_id, source, target = stock_service.transfer_stock(
            db,
            payload.source_farmer_id,
            payload.target_farmer_id,
            payload.amount,
            payload.note,
            user_id=actor.user_id,
        )
    return TransferOut(
        reference_id=reference_id,
        source=LedgerEntryOut.model_validate(source),
        target=LedgerEntryOut.model_validate(target),
    )


@router.post(
    "/transfers/{reference_id}/revert",
    response_model=list[LedgerEntryOut],
    status_code=201,
    summary="Revert a transfer",
)
def post_revert_transfer(
    payload: RevertRequest | None = None,
    reference_id: str = Path(..., min_length=1, max_length=64),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    with uow(db):
        entries = stock_service.revert_transfer(
            db, reference_id, note=payload.note if payload else None, user_id=actor.user_id
        )
    return entries


@router.post(
    "/entries/{entry_id}/revert",
    response_model=LedgerEntryOut,
    status_code=201,
    summary="Revert a restock, deduction or initial assignment",
)
def post_revert_entry(
    payload: RevertRequest | None = None,
    entry_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    with uow(db):
        entry = stock_service.revert_stock_entry(
            db, entry_id, note=payload.note if payload else None, user_id=actor.user_id
        )
    return entry
