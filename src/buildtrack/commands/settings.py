"""Config command for buildtrack.

Reads and writes ~/.buildtrack/config.json.
"""

import click
import orjson

from buildtrack.core.config import (
    get_config_path,
    get_max_execution_insights,
    get_persist_debounce_seconds,
    set_max_execution_insights,
    set_persist_debounce_seconds,
)

# key -> (getter, setter, value type)
SETTINGS = {
    "persist_debounce_seconds": (get_persist_debounce_seconds, set_persist_debounce_seconds, float),
    "max_execution_insights": (get_max_execution_insights, set_max_execution_insights, int),
}


@click.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
def config(key: str | None, value: str | None) -> None:
    """Show or set configuration values.

    With no arguments prints every setting. With KEY prints one setting.
    With KEY and VALUE updates it.

    Examples:

        buildtrack config

        buildtrack config max_execution_insights

        buildtrack config persist_debounce_seconds 0.5
    """
    if key is None:
        values = {name: getter() for name, (getter, _, _) in SETTINGS.items()}
        values["path"] = str(get_config_path())
        click.echo(orjson.dumps(values, option=orjson.OPT_INDENT_2).decode())
        return

    if key not in SETTINGS:
        click.echo(f"Unknown setting {key}. Choose from: {', '.join(SETTINGS)}", err=True)
        raise SystemExit(1)

    getter, setter, value_type = SETTINGS[key]
    if value is None:
        click.echo(getter())
        return

    try:
        setter(value_type(value))
    except ValueError as e:
        click.echo(f"Invalid value for {key}: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"{key} = {getter()}")
