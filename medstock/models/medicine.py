from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medstock.db.base import Base


class Medicine(Base):
    """
    Catalog entry (reference data).

    - unit is descriptive only (no conversion)
    - rows referenced by batches / transactions are never cascade-deleted
      (FK RESTRICT + service-level ReferencedError)
    """

    __tablename__ = "medicines"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    category_id: Mapped[int | None] = mapped_column(
        sa.Integer,
        sa.ForeignKey("medicine_categories.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    unit: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    category = relationship("MedicineCategory", lazy="selectin")

    __table_args__ = (sa.Index("ix_medicines_name", "name"),)

    def __repr__(self) -> str:
        return f"<Medicine id={self.id} name={self.name} unit={self.unit}>"
