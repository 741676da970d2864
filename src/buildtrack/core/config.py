"""buildtrack configuration management.

Handles ~/.buildtrack/config.json for persistence and stream tuning.
The base directory can be moved with the BUILDTRACK_HOME environment variable.
"""

import os
from pathlib import Path

import orjson

DEFAULT_PERSIST_DEBOUNCE_SECONDS = 1.0
DEFAULT_MAX_EXECUTION_INSIGHTS = 20


def get_buildtrack_base() -> Path:
    """Get the root directory for buildtrack storage.

    Returns:
        $BUILDTRACK_HOME if set, otherwise ~/.buildtrack
    """
    override = os.environ.get("BUILDTRACK_HOME", "")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".buildtrack"


def get_config_path() -> Path:
    """Get the path to buildtrack's config file."""
    return get_buildtrack_base() / "config.json"


def read_config() -> dict:
    """Read buildtrack config, returning empty dict if not found."""
    config_path = get_config_path()
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_bytes()
        return orjson.loads(content) if content else {}
    except (orjson.JSONDecodeError, OSError):
        return {}


def write_config(config: dict) -> None:
    """Write buildtrack config."""
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_bytes(orjson.dumps(config, option=orjson.OPT_INDENT_2))


def get_persist_debounce_seconds() -> float:
    """Get the window used to coalesce persistence writes.

    Successive state changes inside this window produce a single write.

    Returns:
        The debounce window in seconds (default: 1.0).
    """
    config = read_config()
    value = config.get("persist_debounce_seconds", DEFAULT_PERSIST_DEBOUNCE_SECONDS)
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
        return DEFAULT_PERSIST_DEBOUNCE_SECONDS
    return float(value)


def set_persist_debounce_seconds(seconds: float) -> None:
    """Set the persistence debounce window.

    Args:
        seconds: The new window (must be >= 0; 0 writes on every change).
    """
    if seconds < 0:
        raise ValueError("persist_debounce_seconds must be >= 0")
    config = read_config()
    config["persist_debounce_seconds"] = seconds
    write_config(config)


def get_max_execution_insights() -> int:
    """Get how many codex execution insights are kept per session.

    Returns:
        The insight cap (default: 20).
    """
    config = read_config()
    value = config.get("max_execution_insights", DEFAULT_MAX_EXECUTION_INSIGHTS)
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        return DEFAULT_MAX_EXECUTION_INSIGHTS
    return value


def set_max_execution_insights(n: int) -> None:
    """Set how many codex execution insights are kept per session.

    Args:
        n: The new cap (must be >= 1).
    """
    if n < 1:
        raise ValueError("max_execution_insights must be >= 1")
    config = read_config()
    config["max_execution_insights"] = n
    write_config(config)
