from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from medstock.db.base import Base
from medstock.models.enums import EventStatus


class StockEvent(Base):
    """
    Outbox for domain events consumed by the notification collaborator.

    Written in the same transaction as the change that produced it; the
    consumer reads PENDING rows and acks them.
    """

    __tablename__ = "stock_events"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    topic: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    key: Mapped[str | None] = mapped_column(sa.String(128), nullable=True)
    payload: Mapped[dict] = mapped_column(sa.JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default=EventStatus.PENDING.value
    )
    occurred_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        sa.Index("ix_stock_events_status_id", "status", "id"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<StockEvent id={self.id} topic={self.topic} key={self.key} status={self.status}>"
