"""Delete command for buildtrack.

Removes stored sessions, pending pushed snapshots, or a whole project.
"""

import click

from buildtrack.core.channel import clear_pushes
from buildtrack.core.store import delete_project, delete_snapshot, get_project_dir


@click.command()
@click.argument("project_id")
@click.argument("session_ids", nargs=-1)
@click.option("--pushes", is_flag=True, help="Only clear pushed snapshots")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def delete(project_id: str, session_ids: tuple[str, ...], pushes: bool, yes: bool) -> None:
    """Delete stored data for a project.

    With SESSION_IDS, only those sessions are removed. With --pushes, only
    the snapshots waiting on the push channel are removed. Otherwise the
    whole project directory is removed after confirmation.

    Examples:

        buildtrack delete p1 build-1733-ab12    # One session

        buildtrack delete p1 --pushes           # Pending pushes

        buildtrack delete p1 -y                 # Everything, no prompt
    """
    try:
        project_dir = get_project_dir(project_id)
        if pushes:
            count = clear_pushes(project_id)
            click.echo(f"Removed {count} pushed snapshot(s) for project {project_id}")
            return

        if session_ids:
            missing = [s for s in session_ids if not delete_snapshot(project_id, s)]
            for session_id in missing:
                click.echo(f"Session {session_id} not found", err=True)
            removed = len(session_ids) - len(missing)
            click.echo(f"Removed {removed} session(s) for project {project_id}")
            if missing:
                raise SystemExit(1)
            return
    except ValueError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)

    if not yes:
        if not click.confirm(f"Delete all data in {project_dir}?"):
            click.echo("Delete cancelled.")
            raise SystemExit(0)

    if delete_project(project_id):
        click.echo(f"Removed {project_dir}")
    else:
        click.echo(f"{project_dir} did not exist.")
