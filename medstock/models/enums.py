from __future__ import annotations

from enum import StrEnum


class TransactionType(StrEnum):
    """
    Ledger direction (stock_transactions.type):

    - ADDED    change > 0 (opening stock, restock, positive correction, compensation)
    - REMOVED  change < 0 (prescription, manual removal, negative correction, disposal)

    The aliases below are business wording; only the two core values are stored.
    """

    ADDED = "ADDED"
    REMOVED = "REMOVED"

    # === inbound (positive change) ===
    RECEIVE = "ADDED"
    RESTOCK = "ADDED"

    # === outbound (negative change) ===
    DISPENSE = "REMOVED"
    DISPOSE = "REMOVED"


class TransactionReason(StrEnum):
    """Reason codes the core writes itself; admin entries may carry free text."""

    OPENING_STOCK = "opening_stock"
    RESTOCK = "restock"
    PRESCRIPTION = "prescription"
    CORRECTION = "correction"
    DISPOSAL = "disposal"


class ExpiryState(StrEnum):
    """
    Expiry classification of a batch relative to a day:

    - OK             expiry_date >= as_of + soon window
    - EXPIRING_SOON  as_of <= expiry_date < as_of + soon window
    - EXPIRED        expiry_date < as_of
    """

    OK = "OK"
    EXPIRING_SOON = "EXPIRING_SOON"
    EXPIRED = "EXPIRED"


class EventStatus(StrEnum):
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"


class EventTopic(StrEnum):
    BATCH_EXPIRING_SOON = "batch.expiring_soon"
    BATCH_EXPIRED = "batch.expired"
    MEDICINE_OUT_OF_STOCK = "medicine.out_of_stock"


__all__ = ["TransactionType", "TransactionReason", "ExpiryState", "EventStatus", "EventTopic"]
