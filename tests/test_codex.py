"""Tests for the codex phase sub-reducer."""

from buildtrack.core.codex import apply_codex_event, sort_phases
from buildtrack.core.session import CodexPhase, CodexSessionState, create_initial_codex_state


def _statuses(state):
    return {p.id: p.status for p in state.phases}


def test_phase_start_completes_previous():
    """Test starting a phase completes whichever phase was active."""
    state = apply_codex_event(
        create_initial_codex_state(), {"type": "codex-phase-start", "phaseId": "template-clone"}
    )

    statuses = _statuses(state)
    assert statuses["prompt-analysis"] == "completed"
    assert statuses["template-clone"] == "active"
    assert statuses["template-selection"] == "pending"


def test_phase_start_unknown_phase_appended():
    """Test an unknown phase is added after the canonical ones."""
    state = apply_codex_event(
        create_initial_codex_state(),
        {"type": "codex-phase-start", "phaseId": "deploy", "title": "Deploy"},
    )

    assert state.phases[-1].id == "deploy"
    assert state.phases[-1].title == "Deploy"
    assert state.phases[-1].status == "active"


def test_phase_complete_and_blocked():
    """Test completing and blocking phases."""
    state = create_initial_codex_state()
    state = apply_codex_event(state, {"type": "codex-phase-complete", "phaseId": "prompt-analysis"})
    state = apply_codex_event(
        state,
        {"type": "codex-phase-blocked", "phaseId": "template-clone", "reason": "git unavailable"},
    )

    assert _statuses(state)["prompt-analysis"] == "completed"
    assert state.phases[0].completed_at is not None
    blocked = next(p for p in state.phases if p.id == "template-clone")
    assert blocked.status == "blocked"
    assert blocked.spotlight == "git unavailable"


def test_phase_spotlight():
    """Test the spotlight text is replaced on the named phase."""
    state = apply_codex_event(
        create_initial_codex_state(),
        {"type": "codex-phase-spotlight", "phaseId": "prompt-analysis", "spotlight": "Reading prompt"},
    )
    assert state.phases[0].spotlight == "Reading prompt"


def test_template_decision():
    """Test the template decision is recorded with its rationale."""
    state = apply_codex_event(
        CodexSessionState(),
        {
            "type": "codex-template-decision",
            "templateId": "vite-react",
            "templateName": "Vite + React",
            "confidence": 0.82,
            "reason": "SPA requested",
        },
    )

    decision = state.template_decision
    assert decision.template_id == "vite-react"
    assert decision.confidence == 0.82
    assert decision.rationale == "SPA requested"


def test_workspace_verified():
    """Test workspace verification keeps discovered entries."""
    state = apply_codex_event(
        CodexSessionState(),
        {"type": "codex-workspace-verified", "directory": "/w/app", "entries": ["package.json"]},
    )

    assert state.workspace_verification.directory == "/w/app"
    assert state.workspace_verification.exists is True
    assert state.workspace_verification.discovered_entries == ["package.json"]


def test_execution_insights_capped():
    """Test only the most recent insights are kept."""
    state = CodexSessionState()
    for i in range(25):
        state = apply_codex_event(
            state, {"type": "codex-execution-insight", "id": f"i{i}", "text": f"step {i}"}
        )

    assert len(state.execution_insights) == 20
    assert state.execution_insights[0].id == "i5"
    assert state.execution_insights[-1].id == "i24"


def test_execution_insight_upsert():
    """Test an insight with a known id replaces the existing one."""
    state = CodexSessionState()
    state = apply_codex_event(state, {"type": "codex-execution-insight", "id": "i1", "text": "a"})
    state = apply_codex_event(
        state, {"type": "codex-execution-insight", "id": "i1", "text": "b", "tone": "shout"}
    )

    assert [(i.id, i.text, i.tone) for i in state.execution_insights] == [("i1", "b", "info")]


def test_unknown_event_refreshes_timestamp():
    """Test every event refreshes last_updated_at, even an unknown one."""
    state = CodexSessionState()
    assert state.last_updated_at is None
    state = apply_codex_event(state, {"type": "codex-something-new"})
    assert state.last_updated_at is not None


def test_input_not_mutated():
    """Test the sub-reducer returns a new state."""
    state = create_initial_codex_state()
    apply_codex_event(state, {"type": "codex-phase-start", "phaseId": "execution"})
    assert state.phases[0].status == "active"


def test_sort_phases():
    """Test canonical order with unknown phases last by title."""
    phases = sort_phases(
        [
            CodexPhase("zeta", "Zeta"),
            CodexPhase("execution", "Execute"),
            CodexPhase("alpha", "Alpha"),
            CodexPhase("prompt-analysis", "Analyze"),
        ]
    )
    assert [p.id for p in phases] == ["prompt-analysis", "execution", "alpha", "zeta"]
