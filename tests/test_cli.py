"""Tests for the buildtrack CLI commands."""

import orjson

from buildtrack.cli import main
from buildtrack.core.channel import publish_snapshot, read_pending
from buildtrack.core.reducer import TODO_TOOL_NAME, finalize
from buildtrack.core.session import TodoItem, ToolCall, create_fresh_session
from buildtrack.core.store import load_orphans, load_snapshots, record_orphan, save_snapshot

STREAM = "".join(
    f"data: {orjson.dumps(p).decode()}\n\n"
    for p in [
        {"type": "start", "messageId": "m1"},
        {
            "type": "tool-input-available",
            "toolCallId": "todo-1",
            "toolName": TODO_TOOL_NAME,
            "input": {"todos": [{"content": "Scaffold app", "status": "in_progress"}]},
        },
        {"type": "tool-input-available", "toolCallId": "t1", "toolName": "Bash", "input": {}},
        {"type": "tool-output-available", "toolCallId": "t1", "output": "ok"},
        {"type": "text-delta", "id": "b1", "delta": "All set."},
        {"type": "finish"},
    ]
) + "data: [DONE]\n\n"


def _write_stream(tmp_path):
    path = tmp_path / "build.sse"
    path.write_text(STREAM)
    return path


def _seed(project_id, session_id, active=False):
    session = create_fresh_session(project_id, "My App", session_id=session_id)
    if not active:
        session = finalize(session)
    save_snapshot(project_id, session)
    return session


def test_help(runner):
    """Test the group lists every command."""
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for name in ("replay", "show", "history", "push", "watch", "config", "delete"):
        assert name in result.output


def test_replay_prints_final_session(runner, mock_buildtrack_base, tmp_path):
    """Test replay runs the stream and prints the finalized session."""
    path = _write_stream(tmp_path)
    result = runner.invoke(main, ["replay", str(path), "--project", "p1", "--chunk-size", "7"])

    assert result.exit_code == 0, result.output
    data = orjson.loads(result.output)
    assert data["todos"] == [
        {"content": "Scaffold app", "status": "completed", "activeForm": "Scaffold app"}
    ]
    assert data["toolsByTodo"]["0"][0]["output"] == "ok"
    assert data["isActive"] is False
    assert data["replyText"] == "All set."
    assert load_snapshots("p1") == []


def test_replay_save(runner, mock_buildtrack_base, tmp_path):
    """Test replay --save persists the session."""
    path = _write_stream(tmp_path)
    result = runner.invoke(
        main, ["replay", str(path), "--project", "p1", "--agent", "openai-codex", "--save"]
    )

    assert result.exit_code == 0, result.output
    entries = load_snapshots("p1")
    assert len(entries) == 1
    assert entries[0]["hydratedState"]["agentId"] == "openai-codex"
    assert entries[0]["hydratedState"]["codex"]["phases"][0]["id"] == "prompt-analysis"


def test_replay_missing_file(runner, mock_buildtrack_base):
    """Test replay with a missing stream file fails."""
    result = runner.invoke(main, ["replay", "nope.sse", "--project", "p1"])
    assert result.exit_code != 0


def test_show(runner, mock_buildtrack_base):
    """Test show prints the current session and its history."""
    _seed("p1", "build-1")
    _seed("p1", "build-2", active=True)

    result = runner.invoke(main, ["show", "p1"])

    assert result.exit_code == 0, result.output
    data = orjson.loads(result.output)
    assert data["current"]["id"] == "build-2"
    assert [s["id"] for s in data["history"]] == ["build-1"]


def test_show_current_only_empty(runner, mock_buildtrack_base):
    """Test show --current-only fails for a project with no sessions."""
    result = runner.invoke(main, ["show", "p1", "--current-only"])
    assert result.exit_code == 1
    assert "No sessions for project p1" in result.output


def test_show_invalid_project(runner, mock_buildtrack_base):
    """Test a path-like project id is rejected."""
    result = runner.invoke(main, ["show", ".."])
    assert result.exit_code == 1
    assert "Invalid project id" in result.output


def test_history(runner, mock_buildtrack_base):
    """Test history lists archived sessions."""
    _seed("p1", "build-1")
    _seed("p1", "build-2", active=True)

    result = runner.invoke(main, ["history", "p1", "--json"])

    assert result.exit_code == 0, result.output
    data = orjson.loads(result.output)
    assert [s["id"] for s in data] == ["build-1"]
    assert data[0]["todos"] == "0/0"


def test_history_empty(runner, mock_buildtrack_base):
    """Test history for a project without archives."""
    result = runner.invoke(main, ["history", "p1"])
    assert result.exit_code == 0
    assert "No archived sessions for project p1" in result.output


def test_push(runner, mock_buildtrack_base, tmp_path):
    """Test push publishes a snapshot file."""
    path = tmp_path / "snap.json"
    path.write_bytes(orjson.dumps({"id": "build-1", "todos": []}))

    result = runner.invoke(main, ["push", "p1", str(path)])

    assert result.exit_code == 0, result.output
    assert [s["id"] for _, s in read_pending("p1")] == ["build-1"]


def test_push_stdin(runner, mock_buildtrack_base):
    """Test push reads a snapshot from stdin."""
    result = runner.invoke(main, ["push", "p1", "-"], input='{"id": "build-9"}')
    assert result.exit_code == 0, result.output
    assert [s["id"] for _, s in read_pending("p1")] == ["build-9"]


def test_push_rejects_non_object(runner, mock_buildtrack_base):
    """Test push refuses JSON that is not an object."""
    result = runner.invoke(main, ["push", "p1", "-"], input="[1]")
    assert result.exit_code == 1
    assert "Snapshot must be a JSON object" in result.output


def test_watch_merges_pending(runner, mock_buildtrack_base):
    """Test watch merges a pushed snapshot into the stored session."""
    _seed("p1", "build-1", active=True)
    publish_snapshot(
        "p1", {"id": "build-1", "todos": [{"content": "Remote step", "status": "in_progress"}]}
    )

    result = runner.invoke(main, ["watch", "p1", "--count", "1"])

    assert result.exit_code == 0, result.output
    data = orjson.loads(result.output.strip().splitlines()[-1])
    assert data["id"] == "build-1"
    assert data["projectName"] == "My App"
    assert data["todos"][0]["content"] == "Remote step"


def test_config_show_and_set(runner, mock_buildtrack_base):
    """Test config prints and updates settings."""
    result = runner.invoke(main, ["config"])
    assert result.exit_code == 0
    assert orjson.loads(result.output)["max_execution_insights"] == 20

    result = runner.invoke(main, ["config", "max_execution_insights", "7"])
    assert result.exit_code == 0
    assert "max_execution_insights = 7" in result.output

    result = runner.invoke(main, ["config", "max_execution_insights"])
    assert result.output.strip() == "7"


def test_config_invalid(runner, mock_buildtrack_base):
    """Test config rejects unknown keys and bad values."""
    result = runner.invoke(main, ["config", "colour"])
    assert result.exit_code == 1
    assert "Unknown setting colour" in result.output

    result = runner.invoke(main, ["config", "max_execution_insights", "0"])
    assert result.exit_code == 1
    assert "Invalid value" in result.output


def test_delete_sessions(runner, mock_buildtrack_base):
    """Test delete removes the named sessions and reports missing ones."""
    _seed("p1", "build-1")
    _seed("p1", "build-2")

    result = runner.invoke(main, ["delete", "p1", "build-1"])
    assert result.exit_code == 0, result.output
    assert "Removed 1 session(s) for project p1" in result.output
    assert [e["session"]["buildId"] for e in load_snapshots("p1")] == ["build-2"]

    result = runner.invoke(main, ["delete", "p1", "build-1"])
    assert result.exit_code == 1
    assert "Session build-1 not found" in result.output


def test_delete_pushes(runner, mock_buildtrack_base):
    """Test delete --pushes only clears the push channel."""
    _seed("p1", "build-1")
    publish_snapshot("p1", {"id": "build-1"})
    publish_snapshot("p1", {"id": "build-1"})

    result = runner.invoke(main, ["delete", "p1", "--pushes"])

    assert result.exit_code == 0, result.output
    assert "Removed 2 pushed snapshot(s)" in result.output
    assert read_pending("p1") == []
    assert len(load_snapshots("p1")) == 1


def test_delete_project(runner, mock_buildtrack_base):
    """Test deleting a whole project asks first unless -y is given."""
    _seed("p1", "build-1")

    result = runner.invoke(main, ["delete", "p1"], input="n\n")
    assert result.exit_code == 0
    assert "Delete cancelled." in result.output
    assert len(load_snapshots("p1")) == 1

    result = runner.invoke(main, ["delete", "p1", "-y"])
    assert result.exit_code == 0, result.output
    assert load_snapshots("p1") == []

    result = runner.invoke(main, ["delete", "p1", "-y"])
    assert "did not exist" in result.output


def test_read_only_commands_leave_store_alone(runner, mock_buildtrack_base):
    """Test show and history do not reconcile pending orphans."""
    session = create_fresh_session("p1", "My App", session_id="build-1")
    session.todos = [TodoItem("A", "in_progress")]
    session.active_todo_index = 0
    session.tools_by_todo = {0: [ToolCall(id="t9", name="Bash")]}
    save_snapshot("p1", session)
    record_orphan("p1", "build-1", "tool-output", {"toolCallId": "t9", "output": "late"})

    assert runner.invoke(main, ["show", "p1"]).exit_code == 0
    assert runner.invoke(main, ["history", "p1"]).exit_code == 0

    assert [o["toolCallId"] for o in load_orphans("p1")] == ["t9"]
    tool = load_snapshots("p1", reconcile=False)[0]["hydratedState"]["toolsByTodo"]["0"][0]
    assert tool["state"] == "input-available"
