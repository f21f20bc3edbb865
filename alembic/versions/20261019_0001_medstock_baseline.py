"""medstock baseline: catalog, batches, stock ledger, outbox

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "medicine_categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(128), nullable=False, unique=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    )

    op.create_table(
        "medicines",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("medicine_categories.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("unit", sa.String(32), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    )
    op.create_index("ix_medicines_name", "medicines", ["name"])
    op.create_index("ix_medicines_category_id", "medicines", ["category_id"])

    op.create_table(
        "batches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "medicine_id",
            sa.Integer(),
            sa.ForeignKey("medicines.id", ondelete="RESTRICT", onupdate="RESTRICT"),
            nullable=False,
        ),
        sa.Column("batch_name", sa.String(64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column("expiry_state", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("medicine_id", "batch_name", name="uq_batches_medicine_name"),
        sa.CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_batches_medicine_expiry", "batches", ["medicine_id", "expiry_date"])
    op.create_index("ix_batches_expiry_date", "batches", ["expiry_date"])

    op.create_table(
        "stock_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "medicine_id",
            sa.Integer(),
            sa.ForeignKey("medicines.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("batch_id", sa.Integer(), nullable=False),
        sa.Column("batch_name", sa.String(64), nullable=False),
        sa.Column("change", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("reason", sa.String(200), nullable=False),
        sa.Column("after_quantity", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.String(64), nullable=True),
        sa.Column("family_member_id", sa.String(64), nullable=True),
        sa.Column("treatment_ref", sa.String(128), nullable=True),
        sa.Column("ref_line", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
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
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_stock_tx_medicine_created", "stock_transactions", ["medicine_id", "created_at"]
    )
    op.create_index("ix_stock_tx_batch", "stock_transactions", ["batch_id"])
    op.create_index("ix_stock_tx_treatment_ref", "stock_transactions", ["treatment_ref"])

    op.create_table(
        "stock_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("topic", sa.String(64), nullable=False),
        sa.Column("key", sa.String(128), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_events_status_id", "stock_events", ["status", "id"])


def downgrade() -> None:
    op.drop_index("ix_stock_events_status_id", table_name="stock_events")
    op.drop_table("stock_events")
    op.drop_index("ix_stock_tx_treatment_ref", table_name="stock_transactions")
    op.drop_index("ix_stock_tx_batch", table_name="stock_transactions")
    op.drop_index("ix_stock_tx_medicine_created", table_name="stock_transactions")
    op.drop_table("stock_transactions")
    op.drop_index("ix_batches_expiry_date", table_name="batches")
    op.drop_index("ix_batches_medicine_expiry", table_name="batches")
    op.drop_table("batches")
    op.drop_index("ix_medicines_category_id", table_name="medicines")
    op.drop_index("ix_medicines_name", table_name="medicines")
    op.drop_table("medicines")
    op.drop_table("medicine_categories")
