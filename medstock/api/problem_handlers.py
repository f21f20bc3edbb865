# medstock/api/problem_handlers.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from medstock.api.problem import make_problem, problem_from_stock_error
from medstock.core.errors import StockError

logger = logging.getLogger("medstock.http")


def _new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def _req_ctx(req: Request) -> Dict[str, Any]:
    return {"path": getattr(req.url, "path", ""), "method": req.method}


def _problem_from_http_exc(req: Request, exc: HTTPException) -> Dict[str, Any]:
    """
    HTTPException.detail → Problem shape.
    - already a Problem: fill http_status / trace_id / context
    - list: validation details
    - str / other: generic http_error
    """
    status_code = int(exc.status_code)
    trace_id = _new_trace_id()
    ctx = _req_ctx(req)
    d = exc.detail

    if isinstance(d, dict) and "error_code" in d and "message" in d:
        out = dict(d)
        out.setdefault("http_status", status_code)
        out.setdefault("trace_id", trace_id)
        if isinstance(out.get("context"), dict):
            merged = dict(ctx)
            merged.update(out["context"])
            out["context"] = merged
        else:
            out["context"] = ctx
        return out

    if isinstance(d, list):
        details: List[Dict[str, Any]] = []
        for i, e in enumerate(d):
            reason = str(e.get("msg") or e.get("type") or "invalid") if isinstance(e, dict) else str(e)
            details.append({"type": "validation", "path": f"validation[{i}]", "reason": reason})
        return make_problem(
            status_code=status_code,
            error_code="request_validation_error",
            message="invalid request",
            context=ctx,
            details=details,
            trace_id=trace_id,
        )

    msg = str(d) if d is not None else "request rejected"
    return make_problem(
        status_code=status_code,
        error_code="http_error",
        message=msg,
        context=ctx,
        details=[{"type": "state", "reason": msg}],
        trace_id=trace_id,
    )


def _loc(e: Dict[str, Any], i: int) -> str:
    loc = [str(p) for p in (e.get("loc") or ()) if p != "body"]
    return ".".join(loc) if loc else f"validation[{i}]"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StockError)
    async def _stock_exc(req: Request, exc: StockError):
        trace_id = _new_trace_id()
        if exc.status >= 500:
            logger.error("STOCK_ERROR[%s] %s: %s", trace_id, exc.code, exc.message)
        content = problem_from_stock_error(exc, trace_id=trace_id)
        content["context"] = {**_req_ctx(req), **(content.get("context") or {})}
        headers = {"Retry-After": "1"} if exc.code == "busy" else None
        return JSONResponse(status_code=exc.status, content=content, headers=headers)

    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = _new_trace_id()
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        content = make_problem(
            status_code=500,
            error_code="internal",
            message="internal error, please retry later",
            context=_req_ctx(req),
            trace_id=trace_id,
        )
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        details: List[Dict[str, Any]] = []
        for i, e in enumerate(exc.errors()):
            if not isinstance(e, dict):
                continue
            details.append(
                {
                    "type": "validation",
                    "path": _loc(e, i),
                    "reason": str(e.get("msg") or e.get("type") or "invalid"),
                }
            )
        content = make_problem(
            status_code=422,
            error_code="request_validation_error",
            message="invalid request",
            context=_req_ctx(req),
            details=details,
            trace_id=_new_trace_id(),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        content = _problem_from_http_exc(req, exc)
        return JSONResponse(status_code=int(exc.status_code), content=content)
