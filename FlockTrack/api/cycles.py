"""
Endpoints for the cycle lifecycle.
"""
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from utils.db import get_db
from utils.dependencies import get_actor, Actor
from utils.transactions import uow
from schemas.cycle import (
    CycleCreate, CycleEnd, CycleCorrection, MortalityCreate,
    CycleOut, CycleHistoryOut, CycleLogOut, CycleEndOut, CycleReopenOut, FeedUpdateOut,
)
from schemas.sale import SaleMetricsOut
from services import cycle_service
from services.cycle_service import ActiveCycle
from services.feed_service import update_cycle_feed
from models.sale import SaleMetrics

router = APIRouter(prefix="/cycles", tags=["Cycles"])


# ==========================================
# Queries
# ==========================================

@router.get("", response_model=list[CycleOut], summary="Active cycles")
def get_active_cycles(
    officer_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    return cycle_service.list_active_cycles(db, officer_id=officer_id)


@router.get("/logs", response_model=list[CycleLogOut], summary="Logs of a cycle or history")
def get_logs(
    cycle_id: int | None = Query(None, gt=0),
    history_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    return cycle_service.list_logs(db, cycle_id=cycle_id, history_id=history_id)


@router.get("/metrics", response_model=SaleMetricsOut | None, summary="Sale metrics of a cycle or history")
def get_metrics(
    cycle_id: int | None = Query(None, gt=0),
    history_id: int | None = Query(None, gt=0),
    db: Session = Depends(get_db),
):
    state = cycle_service.get_cycle_state(db, cycle_id=cycle_id, history_id=history_id)
    if isinstance(state, ActiveCycle):
        return db.query(SaleMetrics).filter(SaleMetrics.cycle_id == state.cycle.cycle_id).first()
    return db.query(SaleMetrics).filter(SaleMetrics.history_id == state.history.history_id).first()


@router.get("/{cycle_id}", response_model=CycleOut, summary="Get active cycle")
def get_cycle(cycle_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return cycle_service.get_cycle_state(db, cycle_id=cycle_id).cycle


@router.get("/history/{history_id}", response_model=CycleHistoryOut, summary="Get archived cycle")
def get_history(history_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    return cycle_service.get_cycle_state(db, history_id=history_id).history


# ==========================================
# Transitions
# ==========================================

@router.post("", response_model=CycleOut, status_code=201, summary="Start cycle")
def post_cycle(
    payload: CycleCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    with uow(db):
        cycle = cycle_service.create_cycle(
            db, payload.farmer_id, payload.name, payload.doc, payload.age, user_id=actor.user_id
        )
    return cycle


@router.post("/{cycle_id}/end", response_model=CycleEndOut, summary="End cycle (archive)")
def post_end_cycle(
    payload: CycleEnd,
    cycle_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """
    Archives the cycle and deducts `intake` bags from the farmer's stock.

    Fails with 400 when intake exceeds the available stock.
    """
    with uow(db):
        result = cycle_service.end_cycle(db, cycle_id, payload.intake, actor.user_id, actor.user_name)
    return result


@router.post("/history/{history_id}/reopen", response_model=CycleReopenOut, summary="Reopen archived cycle")
def post_reopen_cycle(
    history_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    with uow(db):
        result = cycle_service.reopen_cycle(db, history_id, user_id=actor.user_id)
    return result


@router.delete("/history/{history_id}", response_model=CycleHistoryOut, summary="Soft delete archived cycle")
def delete_history(history_id: int = Path(..., gt=0), db: Session = Depends(get_db)):
    with uow(db):
        history = cycle_service.soft_delete_history(db, history_id)
    return history


@router.post("/corrections", response_model=dict, summary="Correct DOC, mortality or age")
def post_correction(
    payload: CycleCorrection,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    with uow(db):
        result = cycle_service.correct_cycle(
            db,
            payload.field,
            payload.new_value,
            payload.reason,
            user_id=actor.user_id,
            cycle_id=payload.cycle_id,
            history_id=payload.history_id,
        )
    return result


@router.post("/{cycle_id}/mortality", response_model=CycleOut, summary="Report mortality")
def post_mortality(
    payload: MortalityCreate,
    cycle_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    with uow(db):
        cycle = cycle_service.add_mortality(db, cycle_id, payload.amount, user_id=actor.user_id, reason=payload.reason)
    return cycle


@router.post("/logs/{log_id}/revert", response_model=CycleLogOut, status_code=201, summary="Revert a mortality report")
def post_revert_mortality(
    log_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    with uow(db):
        entry = cycle_service.revert_mortality(db, log_id, user_id=actor.user_id)
    return entry


@router.post("/{cycle_id}/feed/sync", response_model=FeedUpdateOut | None, summary="Run feed accrual for one cycle")
def post_feed_sync(
    cycle_id: int = Path(..., gt=0),
    force: bool = False,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Returns null when the checkpoint is already current."""
    with uow(db):
        cycle = cycle_service.get_cycle_state(db, cycle_id=cycle_id).cycle
        result = update_cycle_feed(db, cycle, actor.user_id, force_update=force)
    return result.as_dict() if result else None
