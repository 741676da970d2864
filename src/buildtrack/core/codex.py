"""Sub-reducer for phased agent events (``codex-*``).

Pure functions: each event returns a new CodexSessionState and leaves the
input untouched.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any

from buildtrack.core.config import DEFAULT_MAX_EXECUTION_INSIGHTS
from buildtrack.core.hydrate import coerce_timestamp
from buildtrack.core.session import (
    CODEX_PHASE_ORDER,
    VALID_INSIGHT_TONES,
    CodexExecutionInsight,
    CodexPhase,
    CodexSessionState,
    CodexTaskSummary,
    CodexTemplateDecision,
    CodexWorkspaceVerification,
    utcnow,
)

log = logging.getLogger(__name__)


def sort_phases(phases: list[CodexPhase]) -> list[CodexPhase]:
    """Order phases canonically; unknown phases go last, ordered by title."""
    unknown = len(CODEX_PHASE_ORDER) + 1

    def key(phase: CodexPhase) -> tuple[int, str]:
        try:
            rank = CODEX_PHASE_ORDER.index(phase.id)
        except ValueError:
            rank = unknown
        return rank, phase.title

    return sorted(phases, key=key)


def apply_codex_event(
    state: CodexSessionState,
    event: dict[str, Any],
    max_insights: int = DEFAULT_MAX_EXECUTION_INSIGHTS,
) -> CodexSessionState:
    """Fold one ``codex-*`` event into the codex sub-state.

    Args:
        state: Current sub-state.
        event: Raw event payload (``type`` plus type-specific fields).
        max_insights: How many execution insights to keep.

    Returns:
        The next sub-state, with last_updated_at refreshed.
    """
    event_type = event.get("type", "")
    timestamp = coerce_timestamp(event.get("timestamp"))
    handler = _HANDLERS.get(event_type)

    if handler is None:
        log.debug("Ignoring unknown codex event %s", event_type)
        next_state = state
    elif event_type == "codex-execution-insight":
        next_state = handler(state, event, timestamp, max_insights)
    else:
        next_state = handler(state, event, timestamp)

    return replace(next_state, last_updated_at=utcnow())


def _phase_start(
    state: CodexSessionState, event: dict[str, Any], timestamp: datetime
) -> CodexSessionState:
    phase_id = event.get("phaseId")
    if not phase_id:
        return state

    found = False
    phases = []
    for phase in state.phases:
        if phase.id == phase_id:
            found = True
            phases.append(
                replace(
                    phase,
                    title=event.get("title") or phase.title,
                    description=event.get("description") or phase.description,
                    status="active",
                    started_at=phase.started_at or timestamp,
                    spotlight=event.get("spotlight") or phase.spotlight,
                )
            )
        elif phase.status == "active" and phase.completed_at is None:
            phases.append(replace(phase, status="completed", completed_at=timestamp))
        else:
            phases.append(phase)

    if not found:
        phases.append(
            CodexPhase(
                id=phase_id,
                title=event.get("title") or "In Progress",
                description=event.get("description") or "",
                status="active",
                started_at=timestamp,
                spotlight=event.get("spotlight"),
            )
        )
    return replace(state, phases=sort_phases(phases))


def _phase_complete(
    state: CodexSessionState, event: dict[str, Any], timestamp: datetime
) -> CodexSessionState:
    phase_id = event.get("phaseId")
    if not phase_id:
        return state

    phases = [
        replace(
            phase,
            title=event.get("title") or phase.title,
            description=event.get("description") or phase.description,
            status="completed",
            completed_at=timestamp,
            spotlight=event.get("spotlight") or phase.spotlight,
        )
        if phase.id == phase_id
        else phase
        for phase in state.phases
    ]
    return replace(state, phases=sort_phases(phases))


def _phase_blocked(
    state: CodexSessionState, event: dict[str, Any], timestamp: datetime
) -> CodexSessionState:
    phase_id = event.get("phaseId")
    if not phase_id:
        return state

    reason = event.get("reason") or event.get("spotlight")
    phases = [
        replace(phase, status="blocked", spotlight=reason or phase.spotlight)
        if phase.id == phase_id
        else phase
        for phase in state.phases
    ]
    return replace(state, phases=phases)


def _phase_spotlight(
    state: CodexSessionState, event: dict[str, Any], timestamp: datetime
) -> CodexSessionState:
    phase_id = event.get("phaseId")
    spotlight = event.get("spotlight")
    if not phase_id or not spotlight:
        return state

    phases = [
        replace(phase, spotlight=spotlight) if phase.id == phase_id else phase
        for phase in state.phases
    ]
    return replace(state, phases=phases)


def _template_decision(
    state: CodexSessionState, event: dict[str, Any], timestamp: datetime
) -> CodexSessionState:
    confidence = event.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = None

    decision = CodexTemplateDecision(
        template_id=event.get("templateId") or "unknown-template",
        template_name=event.get("templateName") or event.get("displayName") or "Selected Template",
        repository=event.get("repository"),
        branch=event.get("branch"),
        confidence=confidence,
        rationale=event.get("rationale") or event.get("reason"),
        decided_at=timestamp,
    )
    return replace(state, template_decision=decision)


def _workspace_verified(
    state: CodexSessionState, event: dict[str, Any], timestamp: datetime
) -> CodexSessionState:
    entries = event.get("entries")
    exists = event.get("exists")
    verification = CodexWorkspaceVerification(
        directory=event.get("directory") or event.get("path") or "",
        exists=bool(exists) if exists is not None else True,
        discovered_entries=list(entries) if isinstance(entries, list) else None,
        verified_at=timestamp,
        notes=event.get("notes") or event.get("summary"),
    )
    return replace(state, workspace_verification=verification)


def _task_summary(
    state: CodexSessionState, event: dict[str, Any], timestamp: datetime
) -> CodexSessionState:
    bullets = event.get("bullets")
    summary = event.get("summary")
    if isinstance(bullets, list):
        bullets = [str(b) for b in bullets]
    elif isinstance(summary, str):
        bullets = [line.strip() for line in summary.split("\n") if line.strip()]
    else:
        bullets = []

    task_summary = CodexTaskSummary(
        headline=event.get("headline") or event.get("title") or "Key Tasks Identified",
        bullets=bullets,
        captured_at=timestamp,
    )
    return replace(state, task_summary=task_summary)


def _execution_insight(
    state: CodexSessionState, event: dict[str, Any], timestamp: datetime, max_insights: int
) -> CodexSessionState:
    text = event.get("text") or event.get("message") or ""
    if not text:
        return state

    tone = event.get("tone")
    if tone not in VALID_INSIGHT_TONES:
        tone = "info"

    insight = CodexExecutionInsight(
        id=event.get("id") or f"insight-{int(utcnow().timestamp() * 1000)}",
        text=text,
        timestamp=timestamp,
        tone=tone,
    )

    existing = state.execution_insights
    if any(item.id == insight.id for item in existing):
        insights = [insight if item.id == insight.id else item for item in existing]
    else:
        insights = existing[-(max_insights - 1) :] if max_insights > 1 else []
        insights = [*insights, insight]
    return replace(state, execution_insights=insights)


_HANDLERS = {
    "codex-phase-start": _phase_start,
    "codex-phase-complete": _phase_complete,
    "codex-phase-blocked": _phase_blocked,
    "codex-phase-spotlight": _phase_spotlight,
    "codex-template-decision": _template_decision,
    "codex-workspace-verified": _workspace_verified,
    "codex-task-summary": _task_summary,
    "codex-execution-insight": _execution_insight,
}
