"""Push command for buildtrack.

Publishes a session snapshot on the out-of-band channel.
"""

import sys
from pathlib import Path

import click
import orjson

from buildtrack.core.channel import publish_snapshot


@click.command()
@click.argument("project_id")
@click.argument("snapshot_file", type=click.Path(allow_dash=True, path_type=Path))
def push(project_id: str, snapshot_file: Path) -> None:
    """Publish a snapshot for subscribers of a project.

    SNAPSHOT_FILE is a JSON session snapshot, or - to read stdin.

    Examples:

        buildtrack push p1 snapshot.json

        buildtrack show p1 --current-only | buildtrack push p1 -
    """
    try:
        if str(snapshot_file) == "-":
            content = sys.stdin.buffer.read()
        else:
            content = snapshot_file.read_bytes()
        snapshot = orjson.loads(content)
    except OSError as e:
        click.echo(f"Cannot read {snapshot_file}: {e}", err=True)
        raise SystemExit(1)
    except orjson.JSONDecodeError as e:
        click.echo(f"Invalid snapshot JSON: {e}", err=True)
        raise SystemExit(1)

    if not isinstance(snapshot, dict):
        click.echo("Snapshot must be a JSON object", err=True)
        raise SystemExit(1)

    try:
        path = publish_snapshot(project_id, snapshot)
    except ValueError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)
    click.echo(path.name)
