from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from medstock.db.base import Base


class StockTransaction(Base):
    """
    Stock ledger row (append-only, never updated or deleted).

    - change > 0 for ADDED, < 0 for REMOVED; after_quantity is the batch
      balance right after this row
    - batch_id is a plain indexed column (no FK): rows outlive a deleted batch,
      batch_name keeps the label
    - prescription rows carry treatment_ref + ref_line; idempotency key is
      (treatment_ref, ref_line, batch_id, reason)
    """

    __tablename__ = "stock_transactions"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    medicine_id: Mapped[int] = mapped_column(
        sa.Integer,
        sa.ForeignKey("medicines.id", ondelete="RESTRICT"),
        nullable=False,
    )
    batch_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    batch_name: Mapped[str] = mapped_column(sa.String(64), nullable=False)

    change: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    type: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    reason: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    after_quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    # attribution
    patient_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    family_member_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)

    # prescription reference
    treatment_ref: Mapped[str | None] = mapped_column(sa.String(128), nullable=True)
    ref_line: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        sa.CheckConstraint("change <> 0", name="ck_stock_tx_change_nonzero"),
        sa.CheckConstraint(
            "(type = 'ADDED' AND change > 0) OR (type = 'REMOVED' AND change < 0)",
            name="ck_stock_tx_type_sign",
        ),
        sa.UniqueConstraint(
            "treatment_ref",
            "ref_line",
            "batch_id",
            "reason",
            name="uq_stock_tx_treatment_line_batch",
        ),
        sa.Index("ix_stock_tx_medicine_created", "medicine_id", "created_at"),
        sa.Index("ix_stock_tx_batch", "batch_id"),
        sa.Index("ix_stock_tx_treatment_ref", "treatment_ref"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return (
            f"<StockTransaction id={self.id} {self.type} medicine={self.medicine_id} "
            f"batch={self.batch_id} change={self.change} after={self.after_quantity} "
            f"reason={self.reason}>"
        )
