# tests/test_sse_format.py
from __future__ import annotations

import json

import pytest

from smart_intake.domain.pipeline_types import EVENT_TYPES, create_pipeline_event


def test_sse_block_shape():
    ev = create_pipeline_event("phase_started", "abc", {"phase": "ingest", "label": "Ingest"})
    block = ev.to_sse()

    assert block.endswith("\n\n")
    lines = block.rstrip("\n").split("\n")
    assert lines[0] == "event: phase_started"
    assert lines[1].startswith("data: ")

    body = json.loads(lines[1][len("data: "):])
    assert body["type"] == "phase_started"
    assert body["sessionId"] == "abc"
    assert body["data"] == {"phase": "ingest", "label": "Ingest"}
    assert "T" in body["timestamp"]


def test_payload_is_single_line():
    ev = create_pipeline_event("field_extracted", "abc", {"field": "noi", "value": 1.5, "source": "a\nb.pdf"})
    assert ev.to_sse().count("\n") == 3


def test_unknown_event_type_rejected():
    with pytest.raises(ValueError):
        create_pipeline_event("pipeline_paused", "abc", {})


def test_event_enumeration_is_fixed():
    assert len(EVENT_TYPES) == 18
    assert EVENT_TYPES[0] == "pipeline_started"
    assert "heartbeat" in EVENT_TYPES
