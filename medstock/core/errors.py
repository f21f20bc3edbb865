"""
Typed errors for the stock core.

Every error carries a machine-readable ``code``, the HTTP ``status`` the API
layer answers with, and structured ``details``; callers catch by type, never
by message.

    StockError
    +-- NotFoundError            not_found           404
    +-- InvalidArgumentError     invalid_argument    422
    +-- InsufficientStockError   insufficient_stock  409
    +-- ConflictError            conflict            409  (retryable)
    |   +-- ReferencedError      referenced          409
    |   +-- DuplicateError       duplicate           409
    +-- BusyError                busy                503  (retryable)
    +-- InternalError            internal            500
    +-- InconsistentStateError   inconsistent_state  500

Contract: NotFound / InvalidArgument are raised before any lock is taken;
InsufficientStock / Conflict / Busy / Internal mean nothing changed.
InconsistentState is the only error after which stock may differ from the
ledger; the affected batches refuse writes until reconciled.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class StockError(Exception):
    code = "stock_error"
    status = 400
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Sequence[Dict[str, Any]]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details: List[Dict[str, Any]] = list(details or [])
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.code,
            "message": self.message,
            "http_status": self.status,
            "retryable": self.retryable,
        }
        if self.context:
            out["context"] = self.context
        if self.details:
            out["details"] = self.details
        return out


class NotFoundError(StockError):
    code = "not_found"
    status = 404

    def __init__(self, kind: str, ref: Any):
        super().__init__(
            f"{kind} not found: {ref}",
            context={"kind": kind, "ref": ref},
        )
        self.kind = kind
        self.ref = ref


class InvalidArgumentError(StockError):
    code = "invalid_argument"
    status = 422


class InsufficientStockError(StockError):
    """
    Requested quantity exceeds what is available.

    ``shortages`` always holds every failing line, never just the first one:
    {medicine_id, medicine_name, requested_qty, available_qty, short_qty}
    """

    code = "insufficient_stock"
    status = 409

    def __init__(self, shortages: Sequence[Dict[str, Any]], *, phase: str = "validating"):
        self.shortages = [dict(s) for s in shortages]
        names = ", ".join(
            f"{s.get('medicine_name') or s['medicine_id']}: "
            f"requested {s['requested_qty']}, available {s['available_qty']}"
            for s in self.shortages
        )
        super().__init__(
            f"insufficient stock ({names})",
            details=[{"type": "shortage", **s} for s in self.shortages],
            context={"phase": phase},
        )


class ConflictError(StockError):
    code = "conflict"
    status = 409
    retryable = True


class ReferencedError(ConflictError):
    """Delete refused because other records still point at the row."""

    code = "referenced"
    retryable = False


class DuplicateError(ConflictError):
    """Unique name already taken."""

    code = "duplicate"
    retryable = False


class BusyError(StockError):
    code = "busy"
    status = 503
    retryable = True

    def __init__(self, batch_ids: Sequence[int], timeout: float):
        super().__init__(
            f"batch lock not acquired within {timeout:g}s",
            context={"batch_ids": list(batch_ids), "timeout_seconds": timeout},
        )
        self.batch_ids = list(batch_ids)


class InternalError(StockError):
    code = "internal"
    status = 500


class InconsistentStateError(StockError):
    code = "inconsistent_state"
    status = 500

    def __init__(self, message: str, batch_ids: Sequence[int]):
        super().__init__(message, context={"batch_ids": sorted(set(batch_ids))})
        self.batch_ids = sorted(set(batch_ids))


__all__ = [
    "StockError",
    "NotFoundError",
    "InvalidArgumentError",
    "InsufficientStockError",
    "ConflictError",
    "ReferencedError",
    "DuplicateError",
    "BusyError",
    "InternalError",
    "InconsistentStateError",
]
