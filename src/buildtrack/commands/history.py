"""History command for buildtrack.

Lists a project's archived sessions.
"""

import click
import orjson

from buildtrack.core.engine import open_engine
from buildtrack.core.session import GenerationSession


def summarize(session: GenerationSession) -> dict:
    """One-line summary of an archived session."""
    completed = sum(1 for t in session.todos if t.status == "completed")
    tool_count = sum(len(tools) for tools in session.tools_by_todo.values())
    duration = None
    if session.end_time is not None:
        duration = round((session.end_time - session.start_time).total_seconds(), 3)
    return {
        "id": session.id,
        "operationType": session.operation_type,
        "agentId": session.agent_id,
        "todos": f"{completed}/{len(session.todos)}",
        "tools": tool_count,
        "startTime": session.start_time.isoformat(),
        "durationSeconds": duration,
    }


@click.command()
@click.argument("project_id")
@click.option("--json", "output_json", is_flag=True, help="Output summaries as JSON")
def history(project_id: str, output_json: bool) -> None:
    """List archived sessions for a project, newest first.

    PROJECT_ID is the project to list.

    Examples:

        buildtrack history p1

        buildtrack history p1 --json
    """
    try:
        engine = open_engine(project_id, persist=False)
    except ValueError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)

    summaries = [summarize(s) for s in engine.history]
    if output_json:
        click.echo(orjson.dumps(summaries).decode())
        return

    if not summaries:
        click.echo(f"No archived sessions for project {project_id}")
        return

    for summary in summaries:
        click.echo(
            f"{summary['id']}  {summary['operationType']:<14} "
            f"todos {summary['todos']:<6} tools {summary['tools']:<4} {summary['startTime']}"
        )
