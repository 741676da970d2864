"""CLI entry point for buildtrack.

Usage:
    buildtrack replay stream.sse --project p1     # Run a recorded build stream
    buildtrack show p1                            # Current session and history
    buildtrack history p1                         # Archived session summaries
    buildtrack push p1 snapshot.json              # Publish a snapshot
    buildtrack watch p1                           # Follow pushed snapshots
    buildtrack config                             # Show or set configuration
    buildtrack delete p1 --pushes                 # Remove stored data
"""

import logging

import click

from buildtrack.commands.delete import delete
from buildtrack.commands.history import history
from buildtrack.commands.push import push
from buildtrack.commands.replay import replay
from buildtrack.commands.settings import config
from buildtrack.commands.show import show
from buildtrack.commands.watch import watch


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.version_option(package_name="buildtrack")
def main(verbose: bool) -> None:
    """buildtrack - Generation session state for agent builds.

    Folds build event streams and pushed snapshots into one consistent
    session per project, with history and persistence.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Register commands
main.add_command(replay)
main.add_command(show)
main.add_command(history)
main.add_command(push)
main.add_command(watch)
main.add_command(config)
main.add_command(delete)
