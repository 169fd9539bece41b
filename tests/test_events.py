from __future__ import annotations

import logging
from datetime import datetime

from backoffice.services.events import emit_db_event, emit_file_event


def test_db_event_formats_details(caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="backoffice.events")

    emit_db_event(
        "books.find",
        payload={"rows": 3, "sql": "x" * 250, "skipped": None, "tags": ["a", "b"]},
        correlation={"request_id": "req-1"},
        duration_ms=1.23456,
    )

    (record,) = caplog.records
    assert record.levelno == logging.DEBUG
    assert record.event_type == "DB_QUERY"
    assert record.event == "books.find"
    details = record.event_details
    assert list(details)[0] == "request_id"
    assert details["rows"] == 3
    assert details["tags"] == "a, b"
    assert details["sql"].endswith("…")
    assert len(details["sql"]) == 201
    assert "skipped" not in details
    assert details["duration_ms"] == 1.23
    assert record.getMessage().startswith("[DB_QUERY] books.find (request_id=req-1, rows=3")


def test_file_event_defaults_to_info(caplog) -> None:
    caplog.set_level(logging.INFO, logger="backoffice.events")

    emit_file_event("upload.save", payload={"at": datetime(2024, 5, 1, 12, 0)})

    (record,) = caplog.records
    assert record.levelno == logging.INFO
    assert record.event_details == {"at": "2024-05-01T12:00:00"}
    assert record.getMessage() == "[FILE_OP] upload.save (at=2024-05-01T12:00:00)"
