# tests/unit/test_errors_and_lines.py
from __future__ import annotations

import json
import logging

import pytest

from medstock.api.problem import problem_from_stock_error
from medstock.core.errors import (
    BusyError,
    InsufficientStockError,
    InvalidArgumentError,
    NotFoundError,
    ReferencedError,
)
from medstock.core.logging import JsonLineFormatter
from medstock.services.fefo_allocator import shortage_detail
from medstock.services.prescription_coordinator import PrescriptionLine, merge_lines
from medstock.services.stock_ledger import compose_reason, parse_type

pytestmark = pytest.mark.contract


def test_insufficient_stock_names_every_failing_line():
    err = InsufficientStockError(
        [
            shortage_detail(medicine_id=1, medicine_name="Amoxicillin", requested_qty=80, available_qty=70),
            shortage_detail(medicine_id=2, medicine_name="Ibuprofen", requested_qty=5, available_qty=0),
        ]
    )
    assert "Amoxicillin" in err.message and "Ibuprofen" in err.message
    assert [s["medicine_id"] for s in err.shortages] == [1, 2]
    assert all(d["type"] == "shortage" for d in err.details)
    assert err.status == 409 and not err.retryable


def test_problem_shape_from_stock_error():
    p = problem_from_stock_error(BusyError([3, 1], 5.0), trace_id="t_x")
    assert p["error_code"] == "busy"
    assert p["http_status"] == 503
    assert p["context"]["retryable"] is True
    assert p["next_actions"][0]["action"] == "retry"
    assert p["trace_id"] == "t_x"


def test_not_found_and_referenced_codes():
    assert NotFoundError("batch", 9).to_dict()["error_code"] == "not_found"
    ref = ReferencedError("in use")
    assert ref.code == "referenced" and ref.status == 409 and not ref.retryable


def test_merge_lines_sums_duplicates_in_first_seen_order():
    lines = merge_lines(
        [
            {"medicine_id": 2, "quantity": 3},
            (1, 4),
            PrescriptionLine(medicine_id=2, quantity=5),
        ]
    )
    assert lines == [PrescriptionLine(2, 8), PrescriptionLine(1, 4)]


@pytest.mark.parametrize(
    "bad",
    [
        [],
        [{"medicine_id": 1, "quantity": 0}],
        [{"medicine_id": 1, "quantity": -2}],
        [{"medicine_id": 1, "quantity": 1.5}],
        [{"medicine_id": "1", "quantity": 2}],
        [{"medicine_id": 1, "quantity": True}],
    ],
)
def test_merge_lines_rejects_bad_input(bad):
    with pytest.raises(InvalidArgumentError):
        merge_lines(bad)


def test_compose_reason():
    assert compose_reason("restock") == "restock"
    assert compose_reason("restock", "  ") == "restock"
    assert compose_reason("disposal", "broken vial") == "disposal: broken vial"


def test_parse_type_accepts_aliases():
    assert parse_type("added").value == "ADDED"
    assert parse_type("DISPENSE").value == "REMOVED"
    with pytest.raises(InvalidArgumentError):
        parse_type("SIDEWAYS")


def test_json_log_lines():
    fmt = JsonLineFormatter()
    rec = logging.LogRecord("medstock.ledger", logging.INFO, __file__, 1, "batch=%s", (7,), None)
    out = json.loads(fmt.format(rec))
    assert out["level"] == "INFO"
    assert out["logger"] == "medstock.ledger"
    assert out["msg"] == "batch=7"
