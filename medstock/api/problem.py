# medstock/api/problem.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, TypedDict

from fastapi import HTTPException

from medstock.core.errors import StockError


class ProblemDetail(TypedDict, total=False):
    # required
    type: str  # validation|shortage|state
    # optional: where in the request
    path: str  # e.g. lines[2]
    reason: str

    medicine_id: int
    medicine_name: Optional[str]
    requested_qty: int
    available_qty: int
    short_qty: int


class NextAction(TypedDict, total=False):
    action: str
    label: str


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Optional[Dict[str, Any]] = None
    details: Optional[List[ProblemDetail]] = None
    next_actions: Optional[List[NextAction]] = None
    trace_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
        }
        if self.context:
            out["context"] = self.context
        if self.details:
            out["details"] = self.details
        if self.next_actions:
            out["next_actions"] = self.next_actions
        if self.trace_id:
            out["trace_id"] = self.trace_id
        return out


def make_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    next_actions: Optional[Sequence[NextAction]] = None,
    trace_id: Optional[str] = None,
) -> Dict[str, Any]:
    p = Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=context,
        details=list(details) if details else None,
        next_actions=list(next_actions) if next_actions else None,
        trace_id=trace_id,
    )
    return p.to_dict()


# what a client can do about each error code
_NEXT_ACTIONS: Dict[str, List[NextAction]] = {
    "insufficient_stock": [
        {"action": "edit_prescription", "label": "Reduce the short lines or pick other medicines"},
        {"action": "restock", "label": "Receive stock for the short medicines"},
    ],
    "busy": [{"action": "retry", "label": "Retry in a moment"}],
    "conflict": [{"action": "retry", "label": "Retry the request"}],
    "inconsistent_state": [
        {"action": "reconcile", "label": "Reconcile the affected batches"},
    ],
    "referenced": [{"action": "remove_references", "label": "Remove dependent records first"}],
}


def problem_from_stock_error(exc: StockError, *, trace_id: Optional[str] = None) -> Dict[str, Any]:
    ctx = dict(exc.context)
    if exc.retryable:
        ctx["retryable"] = True
    return make_problem(
        status_code=exc.status,
        error_code=exc.code,
        message=exc.message,
        context=ctx or None,
        details=exc.details or None,
        next_actions=_NEXT_ACTIONS.get(exc.code),
        trace_id=trace_id,
    )


def raise_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    next_actions: Optional[Sequence[NextAction]] = None,
    trace_id: Optional[str] = None,
) -> None:
    raise HTTPException(
        status_code=int(status_code),
        detail=make_problem(
            status_code=int(status_code),
            error_code=error_code,
            message=message,
            context=context,
            details=details,
            next_actions=next_actions,
            trace_id=trace_id,
        ),
    )
