"""Watch command for buildtrack.

Follows the push channel and prints the merged session after each snapshot.
"""

import asyncio

import click
import orjson

from buildtrack.core.channel import watch_snapshots
from buildtrack.core.engine import SessionEngine, open_engine
from buildtrack.core.snapshot import to_snapshot


async def _follow(engine: SessionEngine, count: int | None, include_pending: bool) -> None:
    seen = 0
    stop_event = asyncio.Event()
    async for snapshot in watch_snapshots(
        engine.project_id, stop_event=stop_event, include_pending=include_pending
    ):
        seen += 1
        if engine.apply_snapshot(snapshot) and engine.session is not None:
            click.echo(orjson.dumps(to_snapshot(engine.session), default=str).decode())
        if count is not None and seen >= count:
            stop_event.set()
            break


@click.command()
@click.argument("project_id")
@click.option("--count", type=int, default=None, help="Exit after this many snapshots")
@click.option("--new-only", is_flag=True, help="Ignore snapshots published before watching")
def watch(project_id: str, count: int | None, new_only: bool) -> None:
    """Follow pushed snapshots for a project.

    Each snapshot is merged into the project's hydrated state and the
    resulting session is printed as one JSON line.

    PROJECT_ID is the project to follow.

    Examples:

        buildtrack watch p1

        buildtrack watch p1 --count 1
    """
    try:
        engine = open_engine(project_id, persist=False)
    except ValueError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)

    try:
        asyncio.run(_follow(engine, count, include_pending=not new_only))
    except KeyboardInterrupt:
        pass
