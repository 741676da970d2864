"""Tests for session dataclasses."""

import pytest

from buildtrack.core.session import (
    CODEX_AGENT_ID,
    CODEX_PHASE_ORDER,
    GenerationSession,
    TodoItem,
    ToolCall,
    active_index_for,
    create_fresh_session,
    detect_operation_type,
    enforce_single_in_progress,
)


def test_fresh_session_defaults():
    """Test a fresh session is active, empty and carries a build id."""
    session = create_fresh_session("p1", "My App")

    assert session.id.startswith("build-")
    assert session.project_id == "p1"
    assert session.project_name == "My App"
    assert session.operation_type == "initial-build"
    assert session.todos == []
    assert session.tools_by_todo == {}
    assert session.text_by_todo == {}
    assert session.active_todo_index == -1
    assert session.is_active is True
    assert session.end_time is None
    assert session.codex is None


def test_fresh_session_codex_agent_gets_phases():
    """Test codex agents start with six phases, prompt analysis active."""
    session = create_fresh_session("p1", "My App", agent_id=CODEX_AGENT_ID)

    assert session.codex is not None
    assert [p.id for p in session.codex.phases] == CODEX_PHASE_ORDER
    assert session.codex.phases[0].status == "active"
    assert session.codex.phases[0].started_at is not None
    assert all(p.status == "pending" for p in session.codex.phases[1:])


def test_fresh_session_explicit_id():
    """Test an explicit session id is kept."""
    session = create_fresh_session("p1", "My App", session_id="build-42")
    assert session.id == "build-42"


def test_invalid_operation_type():
    """Test that an unknown operation type raises ValueError."""
    with pytest.raises(ValueError, match="Invalid operation type"):
        GenerationSession(id="b1", project_id="p1", project_name="x", operation_type="rebuild")


def test_invalid_todo_status():
    """Test that an unknown todo status raises ValueError."""
    with pytest.raises(ValueError, match="Invalid todo status"):
        TodoItem("Do it", status="done")


def test_todo_active_form_defaults_to_content():
    """Test activeForm falls back to the todo content."""
    assert TodoItem("Write tests").active_form == "Write tests"
    assert TodoItem("Write tests", active_form="Writing tests").active_form == "Writing tests"


def test_multiple_in_progress_rejected():
    """Test that two in-progress todos violate the session invariant."""
    todos = [TodoItem("a", "in_progress"), TodoItem("b", "in_progress")]
    with pytest.raises(ValueError, match="Multiple todos in progress"):
        GenerationSession(
            id="b1", project_id="p1", project_name="x", todos=todos, active_todo_index=0
        )


def test_active_index_must_match_todos():
    """Test that active_todo_index must point at the in-progress todo."""
    todos = [TodoItem("a", "completed"), TodoItem("b", "in_progress")]
    with pytest.raises(ValueError, match="active_todo_index"):
        GenerationSession(
            id="b1", project_id="p1", project_name="x", todos=todos, active_todo_index=0
        )

    session = GenerationSession(
        id="b1", project_id="p1", project_name="x", todos=todos, active_todo_index=1
    )
    assert session.current_bucket == 1


def test_current_bucket_defaults_to_zero():
    """Test tools land in bucket 0 while no todo is active."""
    session = create_fresh_session("p1", "x")
    assert session.current_bucket == 0


def test_find_tool_across_buckets():
    """Test find_tool locates a call in any bucket."""
    session = create_fresh_session("p1", "x")
    session.tools_by_todo = {
        0: [ToolCall(id="t1", name="Read")],
        2: [ToolCall(id="t2", name="Edit"), ToolCall(id="t3", name="Bash")],
    }

    assert session.find_tool("t3") == (2, 1)
    assert session.find_tool("t1") == (0, 0)
    assert session.find_tool("missing") is None


def test_tool_call_completion():
    """Test is_complete tracks the output-available state."""
    tool = ToolCall(id="t1", name="Read")
    assert not tool.is_complete
    assert ToolCall(id="t1", name="Read", state="output-available").is_complete

    with pytest.raises(ValueError, match="Invalid tool state"):
        ToolCall(id="t1", name="Read", state="running")


def test_enforce_single_in_progress():
    """Test later in-progress todos are demoted to pending."""
    todos = enforce_single_in_progress(
        [
            TodoItem("a", "completed"),
            TodoItem("b", "in_progress"),
            TodoItem("c", "in_progress"),
        ]
    )

    assert [t.status for t in todos] == ["completed", "in_progress", "pending"]
    assert active_index_for(todos) == 1
    assert active_index_for([TodoItem("a")]) == -1


def test_detect_operation_type():
    """Test operation type detection precedence."""
    assert detect_operation_type(None) == "initial-build"
    assert detect_operation_type("draft") == "initial-build"
    assert detect_operation_type("completed") == "enhancement"
    assert detect_operation_type("in_progress") == "enhancement"
    assert detect_operation_type("completed", is_element_change=True) == "focused-edit"
    assert detect_operation_type("completed", is_element_change=True, is_retry=True) == "continuation"
