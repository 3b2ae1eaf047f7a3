from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from utils.db import get_db
from utils.dependencies import get_actor, Actor
from utils.transactions import uow
from schemas.sale import SaleCreate, SaleAdjust, SaleEventOut, SaleReportOut
from services import sale_service

router = APIRouter(prefix="/sales", tags=["Sales"])


@router.post("/cycles/{cycle_id}", response_model=SaleEventOut, status_code=201, summary="Record sale")
def post_sale(
    payload: SaleCreate,
    cycle_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Creates the sale with its first revision and rebuilds the cycle metrics."""
    with uow(db):
        sale = sale_service.create_sale_event(db, cycle_id, payload, user_id=actor.user_id)
    return sale


@router.get("/cycles/{cycle_id}", response_model=list[SaleEventOut], summary="Sales of an active cycle")
def get_cycle_sales(cycle_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return sale_service.list_sales(db, cycle_id=cycle_id)


@router.get("/history/{history_id}", response_model=list[SaleEventOut], summary="Sales of an archived cycle")
def get_history_sales(history_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return sale_service.list_sales(db, history_id=history_id)


@router.post("/{sale_event_id}/adjust", response_model=SaleReportOut, status_code=201, summary="Adjust sale")
def post_adjust_sale(
    payload: SaleAdjust,
    sale_event_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Appends a new revision and selects it. Earlier revisions stay untouched."""
    with uow(db):
        report = sale_service.adjust_sale(db, sale_event_id, payload, user_id=actor.user_id)
    return report


@router.get("/{sale_event_id}/reports", response_model=list[SaleReportOut], summary="Revisions of a sale")
def get_sale_reports(sale_event_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return sale_service.list_sale_reports(db, sale_event_id)
