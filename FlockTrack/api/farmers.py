from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from utils.db import get_db
from utils.dependencies import get_actor, Actor
from utils.transactions import uow
from schemas.farmer import FarmerCreate, FarmerOut
from schemas.cycle import CycleHistoryOut
from services import stock_service, cycle_service

router = APIRouter(prefix="/farmers", tags=["Farmers"])


@router.post("", response_model=FarmerOut, status_code=201, summary="Register farmer")
def post_farmer(
    payload: FarmerCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Creates the farmer account; a positive initial_stock is booked as an INITIAL ledger entry."""
    with uow(db):
        farmer = stock_service.create_farmer(
            db,
            organization_id=payload.organization_id,
            name=payload.name,
            officer_id=payload.officer_id,
            initial_stock=payload.initial_stock,
            user_id=actor.user_id,
        )
    return farmer


@router.get("/{farmer_id}", response_model=FarmerOut, summary="Get farmer")
def get_farmer(farmer_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return stock_service.get_farmer(db, farmer_id)


@router.get("/{farmer_id}/history", response_model=list[CycleHistoryOut], summary="Past cycles")
def get_farmer_history(
    farmer_id: int = Path(..., gt=0),
    include_deleted: bool = False,
    db: Session = Depends(get_db),
):
    stock_service.get_farmer(db, farmer_id)
    return cycle_service.list_histories(db, farmer_id, include_deleted=include_deleted)
