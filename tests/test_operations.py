# tests/test_operations.py

from __future__ import annotations

import json

import pytest

from daysync.sync.operations import (
    CreatePayload,
    DeletePayload,
    OperationType,
    PayloadError,
    RepositionPayload,
    ToggleDonePayload,
    decode_payload,
    encode_payload,
)


def test_payloads_use_wire_field_names() -> None:
    assert json.loads(encode_payload(CreatePayload("a", "2025-10-17"))) == {
        "text": "a",
        "current_date": "2025-10-17",
    }
    assert json.loads(encode_payload(RepositionPayload("2025-10-18", 2))) == {
        "current_date": "2025-10-18",
        "position": 2,
    }
    assert json.loads(encode_payload(ToggleDonePayload(True))) == {"done": True}
    assert encode_payload(DeletePayload()) == "{}"


def test_decode_reads_stored_json() -> None:
    p = decode_payload(OperationType.REPOSITION, '{"current_date":"2025-10-18","position":3}')
    assert p == RepositionPayload("2025-10-18", 3)
    assert p.type is OperationType.REPOSITION

    # Stored rows always carry a position.
    with pytest.raises(PayloadError):
        decode_payload(OperationType.REPOSITION, '{"current_date":"2025-10-18"}')


@pytest.mark.parametrize(
    ("op_type", "raw"),
    [
        (OperationType.UPDATE, "not json"),
        (OperationType.UPDATE, "[1, 2]"),
        (OperationType.UPDATE, '{"text": 5}'),
        (OperationType.TOGGLE_DONE, '{"done": "yes"}'),
        (OperationType.REPOSITION, '{"current_date": "2025-10-18", "position": true}'),
        ("BOGUS", "{}"),
    ],
)
def test_decode_rejects_malformed_payloads(op_type, raw: str) -> None:
    with pytest.raises(PayloadError):
        decode_payload(op_type, raw)
