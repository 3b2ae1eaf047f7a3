from __future__ import annotations

from datetime import datetime
from sqlalchemy import BigInteger, String, Text, DateTime, Boolean, JSON
from sqlalchemy.orm import Mapped, mapped_column

from utils.db import Base, BigIntPK
from utils.datetime_utils import now_local
from enums.enums import NotificationAudienceEnum, NotificationSeverityEnum


class Notification(Base):
    __tablename__ = "notification"

    notification_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    audience: Mapped[str] = mapped_column(
        String(32), default=NotificationAudienceEnum.ORG_MANAGERS.value, nullable=False
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    details: Mapped[str | None] = mapped_column(Text)
    severity: Mapped[str] = mapped_column(String(16), default=NotificationSeverityEnum.INFO.value, nullable=False)
    link: Mapped[str | None] = mapped_column(String(255))
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict | None] = mapped_column("metadata", JSON)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=now_local, nullable=False)
