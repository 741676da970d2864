"""Tests for event parsing."""

import logging

import pytest

from buildtrack.core.events import (
    EventKind,
    EventValidationError,
    event_from_dict,
    kind_for_type,
    parse_event,
)


def test_kind_mapping():
    """Test wire types map onto the closed set of kinds."""
    assert kind_for_type("start") == EventKind.START
    assert kind_for_type("tool-input-available") == EventKind.TOOL_INPUT
    assert kind_for_type("data-reasoning") == EventKind.REASONING
    assert kind_for_type("codex-phase-start") == EventKind.CODEX
    assert kind_for_type("step-start") == EventKind.UNKNOWN


def test_parse_tool_input():
    """Test a tool input payload is decoded into its fields."""
    event = parse_event(
        '{"type":"tool-input-available","toolCallId":"t1","toolName":"Read","input":{"path":"a.py"}}'
    )

    assert event.kind == EventKind.TOOL_INPUT
    assert event.tool_call_id == "t1"
    assert event.tool_name == "Read"
    assert event.input == {"path": "a.py"}


def test_unknown_type_is_kept():
    """Test unknown types parse as UNKNOWN instead of failing."""
    event = parse_event('{"type":"source-url","url":"https://example.com"}')
    assert event.kind == EventKind.UNKNOWN
    assert event.raw["url"] == "https://example.com"


def test_malformed_json_logged(caplog):
    """Test malformed JSON is dropped with a warning."""
    with caplog.at_level(logging.WARNING):
        assert parse_event('{"type": "start"') is None
    assert "Failed to parse event payload" in caplog.text


def test_non_object_payload():
    """Test payloads that are not objects are dropped."""
    assert parse_event("[1, 2]") is None
    assert parse_event('"text"') is None


def test_missing_required_field():
    """Test events missing a required field are rejected."""
    assert parse_event('{"type":"tool-output-available","output":"ok"}') is None
    assert parse_event('{"type":"text-delta","id":"t"}') is None

    with pytest.raises(EventValidationError, match="missing toolName"):
        event_from_dict({"type": "tool-input-available", "toolCallId": "t1"})


def test_missing_type():
    """Test payloads without a type are rejected."""
    with pytest.raises(EventValidationError, match="no type"):
        event_from_dict({"id": "x"})


def test_reasoning_message():
    """Test narration text is read from data.message or the payload."""
    assert parse_event('{"type":"data-reasoning","data":{"message":"Planning"}}').message == "Planning"
    assert parse_event('{"type":"reasoning","text":"Thinking"}').message == "Thinking"
    assert parse_event('{"type":"reasoning"}').message == ""
