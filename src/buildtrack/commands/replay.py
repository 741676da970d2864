"""Replay command for buildtrack.

Runs a recorded build event stream through the session engine.
"""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import click
import orjson

from buildtrack.core.engine import SessionEngine, open_engine
from buildtrack.core.guard import GenerationInProgress
from buildtrack.core.session import VALID_OPERATION_TYPES
from buildtrack.core.snapshot import to_snapshot


async def _chunks(path: Path, chunk_size: int) -> AsyncIterator[bytes]:
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            yield chunk
            await asyncio.sleep(0)


@click.command()
@click.argument("stream_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--project", "project_id", required=True, help="Project ID the build belongs to")
@click.option("--name", "project_name", default=None, help="Project display name")
@click.option("--agent", "agent_id", default=None, help="Agent backend (e.g. openai-codex)")
@click.option("--model", "model_id", default=None, help="Model selected for the agent")
@click.option(
    "--operation",
    "operation_type",
    type=click.Choice(sorted(VALID_OPERATION_TYPES)),
    default=None,
    help="Operation type (detected when omitted)",
)
@click.option("--save", is_flag=True, help="Persist the session to the store")
@click.option("--chunk-size", default=4096, show_default=True, help="Bytes per replayed chunk")
def replay(
    stream_file: Path,
    project_id: str,
    project_name: str | None,
    agent_id: str | None,
    model_id: str | None,
    operation_type: str | None,
    save: bool,
    chunk_size: int,
) -> None:
    """Replay a recorded build stream and print the final session.

    STREAM_FILE is a server-sent event stream as captured from a build.

    Examples:

        buildtrack replay build.sse --project p1

        buildtrack replay build.sse --project p1 --agent openai-codex --save
    """
    if chunk_size < 1:
        click.echo("--chunk-size must be positive", err=True)
        raise SystemExit(1)

    try:
        if save:
            engine = open_engine(project_id, project_name)
        else:
            engine = SessionEngine(project_id, project_name)
    except ValueError as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)

    try:
        session = asyncio.run(
            engine.build(
                _chunks(stream_file, chunk_size),
                operation_type=operation_type,
                agent_id=agent_id,
                model_id=model_id,
            )
        )
    except GenerationInProgress as e:
        click.echo(str(e), err=True)
        raise SystemExit(1)

    if session is None:
        click.echo("No session produced", err=True)
        raise SystemExit(1)

    result = to_snapshot(session)
    reply = engine.state.envelope.reply_text or engine.last_reply
    if reply:
        result["replyText"] = reply
    click.echo(orjson.dumps(result, option=orjson.OPT_INDENT_2, default=str).decode())
