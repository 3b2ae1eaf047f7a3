"""
Best-effort notifications to an organization's managers.

Delivery is never part of the triggering transaction: notify_after_commit
queues the write until the caller's unit of work commits, and every failure
is logged and swallowed.
"""
from typing import Any

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

from config.settings import settings
from enums.enums import NotificationAudienceEnum, NotificationSeverityEnum
from models.notification import Notification
from utils.transactions import on_commit
from utils.logging_config import get_logger

logger = get_logger("notifications")


def send_to_org_managers(
    bind: Engine | Connection,
    organization_id: int,
    title: str,
    message: str,
    details: str | None = None,
    severity: NotificationSeverityEnum = NotificationSeverityEnum.INFO,
    link: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    Write one broadcast notification in its own session.

    Returns True when stored, False when disabled or failed.
    """
    if not settings.NOTIFICATIONS_ENABLED:
        return False

    try:
        with Session(bind=bind) as db:
            db.add(Notification(
                organization_id=organization_id,
                audience=NotificationAudienceEnum.ORG_MANAGERS.value,
                title=title,
                message=message,
                details=details,
                severity=NotificationSeverityEnum(severity).value,
                link=link,
                meta=metadata,
            ))
            db.commit()
        return True
    except Exception:
        logger.exception(
            "notification_failed",
            extra={"organization_id": organization_id, "title": title},
        )
        return False


def notify_after_commit(db: Session, organization_id: int, title: str, message: str, **kwargs: Any) -> None:
    """Queue send_to_org_managers until `db` commits; dropped on rollback."""
    bind = db.get_bind()

    def _send():
        send_to_org_managers(bind, organization_id, title, message, **kwargs)

    _send.__name__ = "send_to_org_managers"
    on_commit(db, _send)
