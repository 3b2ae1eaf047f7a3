"""
ORM-level immutability for append-only records.

Ledger entries, cycle logs and sale report revisions are never edited or
deleted through the ORM; corrections are new rows. The before_update /
before_delete listeners below raise ImmutabilityError before any SQL is sent.

Moving cycle logs between a cycle and its history is done with bulk
`UPDATE` statements, which do not fire mapper events.
"""
from sqlalchemy import event

from utils.exceptions import ImmutabilityError
from utils.logging_config import get_logger

logger = get_logger("immutability")


_registered = False


def _blocker(entity_type: str, pk_attr: str, operation: str):
    def _check(mapper, connection, target):
        entity_id = getattr(target, pk_attr, None)
        logger.error(
            "immutability_violation_blocked",
            extra={"entity_type": entity_type, "entity_id": entity_id, "operation": operation},
        )
        raise ImmutabilityError(entity_type, entity_id, "updated" if operation == "UPDATE" else "deleted")

    return _check


def _targets():
    from models.stock_ledger import StockLedgerEntry
    from models.cycle import CycleLog
    from models.sale import SaleReport

    return [
        (StockLedgerEntry, "StockLedgerEntry", "entry_id"),
        (CycleLog, "CycleLog", "log_id"),
        (SaleReport, "SaleReport", "report_id"),
    ]


def register_immutability_listeners() -> None:
    """Register before_update/before_delete guards (idempotent)."""
    global _registered
    if _registered:
        return
    for model, entity_type, pk_attr in _targets():
        for identifier, operation in (("before_update", "UPDATE"), ("before_delete", "DELETE")):
            fn = _blocker(entity_type, pk_attr, operation)
            event.listen(model, identifier, fn)
    _registered = True

