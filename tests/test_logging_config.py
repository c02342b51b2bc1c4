"""
Tests: log formatting, request-id stamping and approval-link masking.
"""

import json
import logging

from flask import g

from app.middleware.logging_config import (
    ConsoleFormatter,
    JsonLineFormatter,
    WorkflowContextFilter,
    mask_approval_links,
)

TOKEN = "Zx9_kq2LmN4pR7sT1uVw3yA5bC8dE0fG"


def _record(msg, *args, **extra):
    record = logging.LogRecord("app.services.workflow_service", logging.INFO, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_line_lifts_workflow_context():
    record = _record("Approval requested", project_id="proj-1", stage_id=3, approval_id=7)
    entry = json.loads(JsonLineFormatter().format(record))
    assert entry["message"] == "Approval requested"
    assert entry["level"] == "INFO"
    assert entry["project_id"] == "proj-1"
    assert entry["stage_id"] == 3
    assert entry["approval_id"] == 7
    assert "event_type" not in entry


def test_console_line_appends_context_and_duration():
    record = _record("Request: %s", "GET", stage_id=3, duration_ms=12.4)
    line = ConsoleFormatter(use_color=False).format(record)
    assert "app.services.workflow_service: Request: GET" in line
    assert line.endswith("stage_id=3 [12ms]")


def test_filter_masks_approval_links_in_messages():
    record = _record("Share link https://workflow.test/approval/%s created", TOKEN)
    assert WorkflowContextFilter().filter(record) is True
    assert TOKEN not in record.getMessage()
    assert "https://workflow.test/approval/***" in record.getMessage()
    assert mask_approval_links("/approval/short") == "/approval/short"


def test_filter_stamps_request_id_inside_a_request(app):
    with app.test_request_context("/api/v1/health/ready"):
        g.request_id = "req-42"
        record = _record("inside")
        WorkflowContextFilter().filter(record)
    assert record.request_id == "req-42"

    outside = _record("outside")
    WorkflowContextFilter().filter(outside)
    assert getattr(outside, "request_id", None) is None
