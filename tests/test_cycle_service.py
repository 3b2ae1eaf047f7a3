from datetime import timedelta
from decimal import Decimal

import pytest

from models.cycle import Cycle, CycleHistory, CycleLog
from models.notification import Notification
from models.stock_ledger import StockLedgerEntry
from services import cycle_service, stock_service, notification_service
from services.cycle_service import ActiveCycle, ArchivedCycle
from utils.exceptions import ValidationError, NotFoundError, ConflictError, InsufficientStockError
from utils.transactions import uow

from conftest import TODAY, TEST_USER_ID


def _logs(db, cycle_id=None, history_id=None):
    q = db.query(CycleLog)
    q = q.filter(CycleLog.cycle_id == cycle_id) if cycle_id else q.filter(CycleLog.history_id == history_id)
    return q.order_by(CycleLog.log_id).all()


# ==================== CREATE ====================

def test_create_back_dates_start_and_computes_initial_intake(db, make_farmer, make_cycle):
    farmer = make_farmer()
    cycle = make_cycle(farmer, doc=1000, age=5, today=TODAY)

    assert cycle.created_at.date() == TODAY - timedelta(days=4)
    assert cycle.age == 5
    assert cycle.intake == Decimal("2.4")
    kinds = [log.kind for log in _logs(db, cycle_id=cycle.cycle_id)]
    assert kinds[0] == "SYSTEM"
    assert "NOTE" in kinds


def test_create_rejects_archived_farmer(db, make_farmer):
    farmer = make_farmer()
    farmer.status = "archived"
    db.commit()

    with pytest.raises(NotFoundError):
        cycle_service.create_cycle(db, farmer.farmer_id, "Batch", 100, today=TODAY)


@pytest.mark.parametrize("age", [0, 41])
def test_create_rejects_age_outside_schedule(db, make_farmer, age):
    farmer = make_farmer()

    with pytest.raises(ValidationError):
        cycle_service.create_cycle(db, farmer.farmer_id, "Batch", 100, age=age, today=TODAY)


# ==================== END ====================

def test_end_cycle_fails_when_intake_exceeds_stock(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("5"))
    cycle = make_cycle(farmer)

    with pytest.raises(ValidationError) as exc:
        with uow(db):
            cycle_service.end_cycle(db, cycle.cycle_id, 6, TEST_USER_ID, "Rahim")

    assert isinstance(exc.value, InsufficientStockError)
    assert exc.value.requested == Decimal("6")
    assert exc.value.available == Decimal("5")

    db.refresh(farmer)
    assert farmer.main_stock == Decimal("5")
    assert db.get(Cycle, cycle.cycle_id) is not None
    assert db.query(CycleHistory).count() == 0


def test_end_cycle_archives_and_realizes_intake(db, make_farmer, make_cycle, captured_logs):
    farmer = make_farmer(stock=Decimal("50"))
    cycle = make_cycle(farmer, doc=1000, age=12)
    cycle_id = cycle.cycle_id
    log_count = len(_logs(db, cycle_id=cycle_id))

    result = cycle_service.end_cycle(db, cycle_id, Decimal("12.5"), TEST_USER_ID, "Rahim")
    db.commit()

    assert result["success"] is True
    history = db.get(CycleHistory, result["history_id"])
    assert history.final_intake == Decimal("12.5")
    assert history.status == "archived"
    assert history.doc == 1000 and history.age == 12
    assert db.get(Cycle, cycle_id) is None

    # logs moved to the history, plus the closing SYSTEM log
    assert _logs(db, cycle_id=cycle_id) == []
    history_logs = _logs(db, history_id=history.history_id)
    assert len(history_logs) == log_count + 1
    assert history_logs[-1].note == "Cycle Ended. Total Consumption: 12.50 bags."

    db.refresh(farmer)
    assert farmer.main_stock == Decimal("37.5")
    assert farmer.total_consumed == Decimal("12.5")
    close = db.query(StockLedgerEntry).filter(StockLedgerEntry.kind == "CYCLE_CLOSE").one()
    assert close.amount == Decimal("-12.5")
    assert close.reference_id == str(history.history_id)
    assert farmer.main_stock == stock_service.ledger_balance(db, farmer.farmer_id)

    assert any(r["message"] == "cycle_ended" for r in captured_logs())


def test_end_missing_cycle_is_not_found(db):
    with pytest.raises(NotFoundError):
        cycle_service.end_cycle(db, 404, 1, TEST_USER_ID, "Rahim")


def test_end_cycle_of_archived_farmer_is_not_found(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("50"))
    cycle = make_cycle(farmer)
    farmer.status = "archived"
    db.commit()

    with pytest.raises(NotFoundError):
        cycle_service.end_cycle(db, cycle.cycle_id, 1, TEST_USER_ID, "Rahim")


# ==================== NOTIFICATIONS ====================

def test_end_cycle_notifies_managers_after_commit(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("50"))
    cycle = make_cycle(farmer)

    result = cycle_service.end_cycle(db, cycle.cycle_id, 3, TEST_USER_ID, "Rahim")
    assert db.query(Notification).filter(Notification.title == "Cycle Ended").count() == 0
    db.commit()

    notification = db.query(Notification).filter(Notification.title == "Cycle Ended").one()
    assert notification.title == "Cycle Ended"
    assert notification.organization_id == farmer.organization_id
    assert notification.audience == "ORG_MANAGERS"
    assert notification.meta["history_id"] == result["history_id"]
    assert "Rahim" in notification.message


def test_new_cycle_is_announced(db, make_farmer, make_cycle):
    farmer = make_farmer()
    cycle = make_cycle(farmer, doc=800, age=2)

    notification = db.query(Notification).one()
    assert notification.title == "New Cycle Started"
    assert notification.meta == {"cycle_id": cycle.cycle_id, "farmer_id": farmer.farmer_id}


def test_rolled_back_transition_sends_nothing(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("50"))
    cycle = make_cycle(farmer)

    cycle_service.end_cycle(db, cycle.cycle_id, 3, TEST_USER_ID, "Rahim")
    db.rollback()
    db.commit()

    assert db.query(Notification).filter(Notification.title == "Cycle Ended").count() == 0
    assert db.get(Cycle, cycle.cycle_id) is not None


def test_notification_failure_never_undoes_the_transition(db, make_farmer, make_cycle, monkeypatch):
    farmer = make_farmer(stock=Decimal("50"))
    cycle = make_cycle(farmer)

    def _broken(**kwargs):
        raise RuntimeError("sink unavailable")

    monkeypatch.setattr(notification_service, "Notification", _broken)

    result = cycle_service.end_cycle(db, cycle.cycle_id, 3, TEST_USER_ID, "Rahim")
    db.commit()

    assert db.get(CycleHistory, result["history_id"]) is not None
    assert db.query(Notification).filter(Notification.title == "Cycle Ended").count() == 0


# ==================== REOPEN ====================

def test_end_then_reopen_round_trip(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("100"))
    cycle = make_cycle(farmer, doc=500, age=10)
    cycle_service.add_mortality(db, cycle.cycle_id, 7, TEST_USER_ID, today=TODAY)
    db.commit()
    before = (cycle.doc, cycle.mortality, cycle.age)
    start = cycle.created_at
    log_count = len(_logs(db, cycle_id=cycle.cycle_id))

    ended = cycle_service.end_cycle(db, cycle.cycle_id, 20, TEST_USER_ID, "Rahim")
    db.commit()
    reopened = cycle_service.reopen_cycle(db, ended["history_id"], TEST_USER_ID)
    db.commit()

    new_cycle = db.get(Cycle, reopened["cycle_id"])
    assert (new_cycle.doc, new_cycle.mortality, new_cycle.age) == before
    assert new_cycle.created_at == start
    assert new_cycle.intake == Decimal("20")
    assert db.get(CycleHistory, ended["history_id"]) is None

    db.refresh(farmer)
    assert farmer.main_stock == Decimal("100")
    assert farmer.total_consumed == Decimal("0")
    assert farmer.main_stock == stock_service.ledger_balance(db, farmer.farmer_id)

    reversal = db.query(StockLedgerEntry).filter(StockLedgerEntry.kind == "REVERSAL").one()
    assert reversal.amount == Decimal("20")
    assert reversal.reference_id == str(ended["history_id"])

    # every log followed the episode back, plus closing and reopening SYSTEM logs
    assert len(_logs(db, cycle_id=new_cycle.cycle_id)) == log_count + 2


def test_reopen_deleted_or_missing_history_is_not_found(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("10"))
    cycle = make_cycle(farmer)
    ended = cycle_service.end_cycle(db, cycle.cycle_id, 1, TEST_USER_ID, "Rahim")
    cycle_service.soft_delete_history(db, ended["history_id"])
    db.commit()

    with pytest.raises(NotFoundError):
        cycle_service.reopen_cycle(db, ended["history_id"], TEST_USER_ID)
    with pytest.raises(NotFoundError):
        cycle_service.reopen_cycle(db, 12345, TEST_USER_ID)


def test_reopen_for_archived_farmer_is_not_found(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("10"))
    cycle = make_cycle(farmer)
    ended = cycle_service.end_cycle(db, cycle.cycle_id, 2, TEST_USER_ID, "Rahim")
    db.commit()
    farmer.status = "archived"
    db.commit()

    with pytest.raises(NotFoundError):
        with uow(db):
            cycle_service.reopen_cycle(db, ended["history_id"], TEST_USER_ID)

    assert db.get(CycleHistory, ended["history_id"]) is not None
    assert db.query(Cycle).count() == 0
    db.refresh(farmer)
    assert farmer.main_stock == Decimal("8")


def test_reopen_notifies_managers(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("10"))
    cycle = make_cycle(farmer)
    ended = cycle_service.end_cycle(db, cycle.cycle_id, 2, TEST_USER_ID, "Rahim")
    db.commit()

    reopened = cycle_service.reopen_cycle(db, ended["history_id"], TEST_USER_ID)
    db.commit()

    notification = db.query(Notification).filter(Notification.title == "Cycle Reopened").one()
    assert notification.meta["cycle_id"] == reopened["cycle_id"]
    assert notification.meta["history_id"] == ended["history_id"]


# ==================== SOFT DELETE ====================

def test_soft_delete_is_terminal(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("10"))
    cycle = make_cycle(farmer)
    ended = cycle_service.end_cycle(db, cycle.cycle_id, 1, TEST_USER_ID, "Rahim")
    db.commit()

    history = cycle_service.soft_delete_history(db, ended["history_id"])
    db.commit()
    assert history.status == "deleted"
    assert cycle_service.list_histories(db, farmer.farmer_id) == []
    assert len(cycle_service.list_histories(db, farmer.farmer_id, include_deleted=True)) == 1

    with pytest.raises(ConflictError):
        cycle_service.soft_delete_history(db, ended["history_id"])


# ==================== STATE ====================

def test_cycle_state_is_a_tagged_union(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("10"))
    cycle = make_cycle(farmer)
    assert isinstance(cycle_service.get_cycle_state(db, cycle_id=cycle.cycle_id), ActiveCycle)

    ended = cycle_service.end_cycle(db, cycle.cycle_id, 1, TEST_USER_ID, "Rahim")
    db.commit()
    state = cycle_service.get_cycle_state(db, history_id=ended["history_id"])
    assert isinstance(state, ArchivedCycle)
    assert not state.is_deleted

    with pytest.raises(ValidationError):
        cycle_service.get_cycle_state(db)


# ==================== CORRECTIONS ====================

@pytest.mark.parametrize("reason", ["", "  ", "ok"])
def test_correction_requires_a_reason(db, make_farmer, make_cycle, reason):
    farmer = make_farmer()
    cycle = make_cycle(farmer)

    with pytest.raises(ValidationError):
        cycle_service.correct_cycle(db, "doc", 900, reason, TEST_USER_ID, cycle_id=cycle.cycle_id)


def test_correct_doc_on_active_cycle_logs_and_recalculates(db, make_farmer, make_cycle):
    farmer = make_farmer()
    cycle = make_cycle(farmer, doc=1000, age=5)

    cycle_service.correct_cycle(db, "doc", 500, "Miscounted at placement", TEST_USER_ID,
                                cycle_id=cycle.cycle_id, today=TODAY)
    db.commit()

    assert cycle.doc == 500
    assert cycle.intake == Decimal("1.2")
    correction = [log for log in _logs(db, cycle_id=cycle.cycle_id) if log.kind == "CORRECTION"][0]
    assert correction.previous_value == Decimal("1000")
    assert correction.new_value == Decimal("500")
    assert "Miscounted at placement" in correction.note


def test_correct_age_moves_cycle_start(db, make_farmer, make_cycle):
    farmer = make_farmer()
    cycle = make_cycle(farmer, doc=1000, age=5)

    cycle_service.correct_cycle(db, "age", 8, "Chicks arrived earlier", TEST_USER_ID,
                                cycle_id=cycle.cycle_id, today=TODAY)
    db.commit()

    assert cycle.age == 8
    assert cycle.created_at.date() == TODAY - timedelta(days=7)
    assert cycle.intake == Decimal("4.8")  # 240 g × 1000 / 50 000


@pytest.mark.parametrize("field,value", [("mortality", 1001), ("doc", 0), ("age", 0), ("age", 41)])
def test_correction_rejects_impossible_values(db, make_farmer, make_cycle, field, value):
    farmer = make_farmer()
    cycle = make_cycle(farmer, doc=1000)

    with pytest.raises(ValidationError):
        cycle_service.correct_cycle(db, field, value, "Valid reason", TEST_USER_ID, cycle_id=cycle.cycle_id)


def test_correct_archived_history(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("10"))
    cycle = make_cycle(farmer, doc=1000)
    ended = cycle_service.end_cycle(db, cycle.cycle_id, 1, TEST_USER_ID, "Rahim")
    db.commit()

    cycle_service.correct_cycle(db, "mortality", 40, "Late death report", TEST_USER_ID,
                                history_id=ended["history_id"])
    db.commit()
    assert db.get(CycleHistory, ended["history_id"]).mortality == 40

    cycle_service.soft_delete_history(db, ended["history_id"])
    db.commit()
    with pytest.raises(ConflictError):
        cycle_service.correct_cycle(db, "mortality", 41, "Another one", TEST_USER_ID,
                                    history_id=ended["history_id"])


# ==================== MORTALITY ====================

def test_add_mortality_reduces_live_birds_and_intake(db, make_farmer, make_cycle):
    farmer = make_farmer()
    cycle = make_cycle(farmer, doc=1000, age=5)

    cycle_service.add_mortality(db, cycle.cycle_id, 250, TEST_USER_ID, today=TODAY)
    db.commit()

    assert cycle.mortality == 250
    assert cycle.intake == Decimal("1.8")
    kinds = [log.kind for log in _logs(db, cycle_id=cycle.cycle_id)]
    assert "MORTALITY" in kinds

    with pytest.raises(ValidationError):
        cycle_service.add_mortality(db, cycle.cycle_id, 751, TEST_USER_ID, today=TODAY)


def test_list_active_cycles_filters_by_officer(db, make_farmer, make_cycle):
    mine = make_farmer(officer_id=7)
    other = make_farmer(officer_id=8)
    make_cycle(mine)
    make_cycle(other)

    assert len(cycle_service.list_active_cycles(db)) == 2
    assert [c.farmer_id for c in cycle_service.list_active_cycles(db, officer_id=7)] == [mine.farmer_id]


# ==================== MORTALITY REVERT ====================

def _mortality_logs(db, cycle_id):
    return [log for log in _logs(db, cycle_id=cycle_id) if log.kind == "MORTALITY"]


def test_revert_mortality_restores_birds_and_intake(db, make_farmer, make_cycle):
    farmer = make_farmer()
    cycle = make_cycle(farmer, doc=1000, age=5)
    cycle_service.add_mortality(db, cycle.cycle_id, 250, TEST_USER_ID, today=TODAY)
    db.commit()
    [report] = _mortality_logs(db, cycle.cycle_id)

    revert = cycle_service.revert_mortality(db, report.log_id, TEST_USER_ID, today=TODAY)
    db.commit()

    assert cycle.mortality == 0
    assert cycle.intake == Decimal("2.4")
    assert revert.kind == "MORTALITY"
    assert revert.value_change == Decimal("-250")
    assert revert.reverts_log_id == report.log_id
    assert (revert.previous_value, revert.new_value) == (Decimal("250"), Decimal("0"))
    assert db.get(CycleLog, report.log_id).value_change == Decimal("250")

    notification = db.query(Notification).filter(Notification.title == "Mortality Reverted").one()
    assert notification.meta == {"cycle_id": cycle.cycle_id, "log_id": report.log_id, "amount": 250}

    with pytest.raises(ConflictError):
        cycle_service.revert_mortality(db, report.log_id, TEST_USER_ID, today=TODAY)
    with pytest.raises(ValidationError):
        cycle_service.revert_mortality(db, revert.log_id, TEST_USER_ID, today=TODAY)


def test_only_mortality_logs_can_be_reverted(db, make_farmer, make_cycle):
    farmer = make_farmer()
    cycle = make_cycle(farmer)
    system_log = _logs(db, cycle_id=cycle.cycle_id)[0]

    with pytest.raises(ValidationError):
        cycle_service.revert_mortality(db, system_log.log_id, TEST_USER_ID)
    with pytest.raises(NotFoundError):
        cycle_service.revert_mortality(db, 98765, TEST_USER_ID)


def test_revert_mortality_of_ended_cycle_asks_for_reopen(db, make_farmer, make_cycle):
    farmer = make_farmer(stock=Decimal("10"))
    cycle = make_cycle(farmer, doc=1000, age=5)
    cycle_service.add_mortality(db, cycle.cycle_id, 30, TEST_USER_ID, today=TODAY)
    db.commit()
    [report] = _mortality_logs(db, cycle.cycle_id)
    ended = cycle_service.end_cycle(db, cycle.cycle_id, 1, TEST_USER_ID, "Rahim")
    db.commit()

    with pytest.raises(ValidationError) as exc:
        cycle_service.revert_mortality(db, report.log_id, TEST_USER_ID, today=TODAY)
    assert "Reopen the cycle first" in exc.value.message
    assert db.get(CycleHistory, ended["history_id"]).mortality == 30


def test_revert_mortality_cannot_go_below_zero(db, make_farmer, make_cycle):
    farmer = make_farmer()
    cycle = make_cycle(farmer, doc=1000, age=5)
    cycle_service.add_mortality(db, cycle.cycle_id, 100, TEST_USER_ID, today=TODAY)
    cycle_service.correct_cycle(db, "mortality", 40, "Recount at shed", TEST_USER_ID,
                                cycle_id=cycle.cycle_id, today=TODAY)
    db.commit()
    [report] = _mortality_logs(db, cycle.cycle_id)

    with pytest.raises(ValidationError):
        with uow(db):
            cycle_service.revert_mortality(db, report.log_id, TEST_USER_ID, today=TODAY)

    db.refresh(cycle)
    assert cycle.mortality == 40
    assert len(_mortality_logs(db, cycle.cycle_id)) == 1
