"""Merge out-of-band snapshots into locally streamed state.

The push channel and the byte stream write the same session independently
and carry no sequence numbers, so the last observed write wins per field.
"""

import logging
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from buildtrack.core.hydrate import (
    METADATA_FIELDS,
    HydrationError,
    hydrate_session,
    snapshot_fields,
)
from buildtrack.core.session import GenerationSession

log = logging.getLogger(__name__)


def apply_snapshot(
    local: GenerationSession | None, snapshot: Mapping[str, Any]
) -> GenerationSession | None:
    """Reconcile a pushed snapshot with the local session.

    - No local session: the snapshot is adopted as-is.
    - Pushed snapshots may be partial; a missing todo list adopts as an
      empty plan.
    - Different session id: the snapshot replaces local state, with the
      metadata it lacks (agent, model, project, operation type) backfilled
      from local.
    - Same session id: fields the snapshot carries overwrite local ones;
      metadata the snapshot leaves empty keeps the local value. A session
      that already ended locally is never reactivated.

    Args:
        local: Current session, if any.
        snapshot: Snapshot in the wire shape.

    Returns:
        The merged session. When the snapshot cannot be used, ``local`` is
        returned unchanged.
    """
    if not isinstance(snapshot, Mapping):
        log.warning("Ignoring non-object snapshot")
        return local

    if local is None:
        adopted = hydrate_session(snapshot, require_todos=False)
        if adopted is None:
            log.warning("Ignoring snapshot that could not be hydrated")
        return adopted

    snapshot_id = snapshot.get("id")
    if snapshot_id is not None and str(snapshot_id) != local.id:
        defaults = {name: getattr(local, name) for name in METADATA_FIELDS}
        replacement = hydrate_session(snapshot, defaults=defaults, require_todos=False)
        if replacement is None:
            log.warning("Ignoring snapshot %s that could not be hydrated", snapshot_id)
            return local
        log.info("Session %s superseded by %s", local.id, replacement.id)
        return replacement

    try:
        fields = snapshot_fields(snapshot)
    except (HydrationError, ValueError, TypeError) as e:
        log.warning("Ignoring snapshot for %s: %s", local.id, e)
        return local

    fields.pop("id", None)
    for name in METADATA_FIELDS:
        if not fields.get(name):
            fields.pop(name, None)
    if not local.is_active and fields.get("is_active"):
        # Terminal is final for a given id
        fields["is_active"] = False
        fields.pop("end_time", None)

    try:
        return replace(local, **fields)
    except (ValueError, TypeError) as e:
        log.warning("Ignoring snapshot for %s: %s", local.id, e)
        return local
