from __future__ import annotations

from datetime import date, datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from medstock.db.base import Base
from medstock.models.enums import ExpiryState


class Batch(Base):
    """
    A dated lot of one medicine.

    - quantity >= 0 always (CHECK constraint backs the service checks)
    - quantity changes only through the stock ledger; the opening stock is
      itself an ADDED transaction, so sum(ledger.change) == quantity
    - quantity == 0 means exhausted, the row stays for the audit trail
    - expired (expiry_date < today) batches are kept until deleted explicitly
    - expiry_state is the last state announced by the expiry sweep
    """

    __tablename__ = "batches"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    medicine_id: Mapped[int] = mapped_column(
        sa.Integer,
        sa.ForeignKey("medicines.id", ondelete="RESTRICT", onupdate="RESTRICT"),
        nullable=False,
    )
    batch_name: Mapped[str] = mapped_column(sa.String(64), nullable=False)

    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    expiry_date: Mapped[date] = mapped_column(sa.Date, nullable=False)

    expiry_state: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default=ExpiryState.OK.value
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        sa.UniqueConstraint("medicine_id", "batch_name", name="uq_batches_medicine_name"),
        sa.CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
        sa.Index("ix_batches_medicine_expiry", "medicine_id", "expiry_date"),
        sa.Index("ix_batches_expiry_date", "expiry_date"),
        # ids are never reused: the ledger keys on batch_id without a foreign key
        {"sqlite_autoincrement": True},
    )

    def is_expired(self, as_of: date) -> bool:
        return self.expiry_date < as_of

    def __repr__(self) -> str:
        return (
            f"<Batch id={self.id} medicine={self.medicine_id} "
            f"name={self.batch_name} qty={self.quantity} exp={self.expiry_date}>"
        )
