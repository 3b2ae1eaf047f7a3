# utils/transactions.py
from contextlib import contextmanager
from typing import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

from utils.db import SessionLocal
from utils.logging_config import get_logger

logger = get_logger("transactions")

_ON_COMMIT_KEY = "on_commit_callbacks"


@contextmanager
def uow(session: Session | None = None):
    """
    Usage:
        with uow() as db:
            ... # operations
        # automatic commit/rollback
    If you already have a session from get_db(), pass it to avoid opening another.
    """
    owns_session = session is None
    db = session or SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        if owns_session:
            db.close()


def on_commit(db: Session, callback: Callable[[], None]) -> None:
    """
    Run `callback` once the current transaction of `db` commits.

    Callbacks are discarded on rollback. They run outside the transaction,
    so they must open their own session (e.g. bound to db.get_bind()).
    """
    db.info.setdefault(_ON_COMMIT_KEY, []).append(callback)


@event.listens_for(Session, "after_commit")
def _run_on_commit(session: Session):
    callbacks = session.info.pop(_ON_COMMIT_KEY, [])
    for callback in callbacks:
        try:
            callback()
        except Exception:
            logger.exception("on_commit_callback_failed", extra={"callback": getattr(callback, "__name__", repr(callback))})


@event.listens_for(Session, "after_soft_rollback")
def _discard_on_commit(session: Session, previous_transaction):
    session.info.pop(_ON_COMMIT_KEY, None)
