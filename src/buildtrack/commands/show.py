"""Show command for buildtrack.

Prints a project's hydrated state as JSON.
"""

import click
import orjson

from buildtrack.core.engine import open_engine
from buildtrack.core.snapshot import to_snapshot


@click.command()
@click.argument("project_id")
@click.option("--current-only", is_flag=True, help="Only print the current session")
def show(project_id: str, current_only: bool) -> None:
    """Show a project's current session and history.

    The current session is the active build, or the most recently started
    completed one when nothing is running.

    PROJECT_ID is the project to show.

    Examples:

        buildtrack show p1

        buildtrack show p1 --current-only
    """
    try:
        engine = open_engine(project_id, persist=False)
    except ValueError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)

    current = to_snapshot(engine.session) if engine.session else None
    if current_only:
        if current is None:
            click.echo(f"No sessions for project {project_id}", err=True)
            raise SystemExit(1)
        click.echo(orjson.dumps(current, option=orjson.OPT_INDENT_2, default=str).decode())
        return

    result = {
        "current": current,
        "history": [to_snapshot(s) for s in engine.history],
    }
    click.echo(orjson.dumps(result, option=orjson.OPT_INDENT_2, default=str).decode())
