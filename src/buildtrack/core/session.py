"""Session dataclasses for buildtrack.

A GenerationSession is one build attempt on a project: the agent's todo plan,
the tool calls and narration recorded under each todo, and (for agents that
report phased execution) a codex sub-state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

VALID_OPERATION_TYPES = {"initial-build", "enhancement", "focused-edit", "continuation"}
VALID_TODO_STATUSES = {"pending", "in_progress", "completed"}
VALID_TOOL_STATES = {"input-available", "output-available"}
VALID_PHASE_STATUSES = {"pending", "active", "completed", "blocked"}
VALID_INSIGHT_TONES = {"info", "success", "warning", "error"}

CODEX_AGENT_ID = "openai-codex"

# Bucket used for tools/notes recorded before any todo is in progress
PROVISIONAL_TODO_INDEX = 0


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class TodoItem:
    """One step of the agent's task plan."""

    content: str
    status: str = "pending"
    active_form: str = ""

    def __post_init__(self) -> None:
        if self.status not in VALID_TODO_STATUSES:
            raise ValueError(
                f"Invalid todo status: {self.status}. Must be one of {VALID_TODO_STATUSES}"
            )
        if not self.active_form:
            self.active_form = self.content


@dataclass
class ToolCall:
    """A discrete action the agent invoked, with its eventual output."""

    id: str
    name: str
    input: Any = None
    output: Any = None
    state: str = "input-available"
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None

    def __post_init__(self) -> None:
        if self.state not in VALID_TOOL_STATES:
            raise ValueError(
                f"Invalid tool state: {self.state}. Must be one of {VALID_TOOL_STATES}"
            )

    @property
    def is_complete(self) -> bool:
        return self.state == "output-available"


@dataclass
class TextNote:
    """Free-form narration emitted while a todo was active."""

    id: str
    text: str = ""
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class CodexPhase:
    id: str
    title: str
    description: str = ""
    status: str = "pending"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    spotlight: str | None = None

    def __post_init__(self) -> None:
        if self.status not in VALID_PHASE_STATUSES:
            raise ValueError(
                f"Invalid phase status: {self.status}. Must be one of {VALID_PHASE_STATUSES}"
            )


@dataclass
class CodexTemplateDecision:
    template_id: str
    template_name: str
    repository: str | None = None
    branch: str | None = None
    confidence: float | None = None
    rationale: str | None = None
    decided_at: datetime | None = None


@dataclass
class CodexWorkspaceVerification:
    directory: str
    exists: bool = True
    discovered_entries: list[str] | None = None
    verified_at: datetime | None = None
    notes: str | None = None


@dataclass
class CodexTaskSummary:
    headline: str
    bullets: list[str] = field(default_factory=list)
    captured_at: datetime = field(default_factory=utcnow)


@dataclass
class CodexExecutionInsight:
    id: str
    text: str
    timestamp: datetime = field(default_factory=utcnow)
    tone: str = "info"


@dataclass
class CodexSessionState:
    """Phased-execution sub-state for agents that report phases.

    Attributes:
        phases: Ordered phases (canonical order, unknown phases last)
        execution_insights: Findings reported during execution, oldest first
        thread_id: Agent thread to resume on a later session
        last_updated_at: Refreshed on every phase event
    """

    phases: list[CodexPhase] = field(default_factory=list)
    execution_insights: list[CodexExecutionInsight] = field(default_factory=list)
    template_decision: CodexTemplateDecision | None = None
    workspace_verification: CodexWorkspaceVerification | None = None
    task_summary: CodexTaskSummary | None = None
    thread_id: str | None = None
    last_updated_at: datetime | None = None


@dataclass
class GenerationSession:
    """Represents one build/iteration attempt on a project.

    Attributes:
        id: Opaque identifier (e.g., "build-1718000000000"), immutable
        project_id: Owning project identifier
        project_name: Owning project display name
        operation_type: One of "initial-build", "enhancement", "focused-edit", "continuation"
        agent_id: Agent backend that produced the session (e.g., "claude-code")
        model_id: Model selected for the agent, when it supports selection
        todos: Agent task plan in execution order
        tools_by_todo: Todo index -> tool calls made while that todo was active
        text_by_todo: Todo index -> narration notes emitted while that todo was active
        active_todo_index: Index of the in_progress todo, or -1
        is_active: True while streaming; flips to False exactly once
        start_time: When the build was requested
        end_time: When the stream finished
        codex: Phase sub-state, present only for phased agents
    """

    id: str
    project_id: str
    project_name: str
    operation_type: str = "initial-build"
    agent_id: str | None = None
    model_id: str | None = None
    todos: list[TodoItem] = field(default_factory=list)
    tools_by_todo: dict[int, list[ToolCall]] = field(default_factory=dict)
    text_by_todo: dict[int, list[TextNote]] = field(default_factory=dict)
    active_todo_index: int = -1
    is_active: bool = True
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None
    codex: CodexSessionState | None = None

    def __post_init__(self) -> None:
        """Validate operation type and the single in-progress todo invariant."""
        if self.operation_type not in VALID_OPERATION_TYPES:
            raise ValueError(
                f"Invalid operation type: {self.operation_type}. "
                f"Must be one of {VALID_OPERATION_TYPES}"
            )
        in_progress = [i for i, t in enumerate(self.todos) if t.status == "in_progress"]
        if len(in_progress) > 1:
            raise ValueError(f"Multiple todos in progress: {in_progress}")
        expected = in_progress[0] if in_progress else -1
        if self.active_todo_index != expected:
            raise ValueError(
                f"active_todo_index {self.active_todo_index} does not match "
                f"in-progress todo {expected}"
            )

    def find_tool(self, tool_call_id: str) -> tuple[int, int] | None:
        """Locate a tool call by id across all buckets.

        Returns:
            (todo_index, position) if found, None otherwise.
        """
        for todo_index in sorted(self.tools_by_todo):
            for position, tool in enumerate(self.tools_by_todo[todo_index]):
                if tool.id == tool_call_id:
                    return todo_index, position
        return None

    def find_note(self, note_id: str) -> tuple[int, int] | None:
        """Locate a text note by id across all buckets."""
        for todo_index in sorted(self.text_by_todo):
            for position, note in enumerate(self.text_by_todo[todo_index]):
                if note.id == note_id:
                    return todo_index, position
        return None

    @property
    def current_bucket(self) -> int:
        """Bucket that new tools and notes are attached to."""
        if self.active_todo_index >= 0:
            return self.active_todo_index
        return PROVISIONAL_TODO_INDEX


def active_index_for(todos: list[TodoItem]) -> int:
    """Index of the first in_progress todo, or -1."""
    for index, todo in enumerate(todos):
        if todo.status == "in_progress":
            return index
    return -1


def enforce_single_in_progress(todos: list[TodoItem]) -> list[TodoItem]:
    """Demote every in_progress todo after the first one back to pending."""
    result = []
    seen_active = False
    for todo in todos:
        if todo.status == "in_progress":
            if seen_active:
                todo = TodoItem(todo.content, "pending", todo.active_form)
            seen_active = True
        result.append(todo)
    return result


CODEX_PHASE_ORDER = [
    "prompt-analysis",
    "template-selection",
    "template-clone",
    "workspace-verification",
    "task-synthesis",
    "execution",
]

_DEFAULT_CODEX_PHASES = [
    ("prompt-analysis", "Analyze Prompt", "Reviewing your request and extracting build requirements."),
    ("template-selection", "Select Template", "Choosing the best starter template to clone."),
    ("template-clone", "Clone Template", "Cloning the project template with degit."),
    ("workspace-verification", "Verify Workspace", "Ensuring the cloned project exists in the workspace."),
    ("task-synthesis", "Summarize Tasks", "Translating the prompt into concrete tasks."),
    ("execution", "Execute Build", "Implementing features and producing code updates."),
]


def create_initial_codex_state() -> CodexSessionState:
    """Default codex sub-state: prompt analysis active, everything else pending."""
    now = utcnow()
    phases = []
    for phase_id, title, description in _DEFAULT_CODEX_PHASES:
        if phase_id == "prompt-analysis":
            phases.append(
                CodexPhase(phase_id, title, description, status="active", started_at=now)
            )
        else:
            phases.append(CodexPhase(phase_id, title, description))
    return CodexSessionState(phases=phases, last_updated_at=now)


def new_session_id() -> str:
    """Generate a build id in the "build-<epoch ms>" format."""
    return f"build-{int(utcnow().timestamp() * 1000)}"


def create_fresh_session(
    project_id: str,
    project_name: str,
    operation_type: str = "initial-build",
    agent_id: str | None = None,
    model_id: str | None = None,
    session_id: str | None = None,
) -> GenerationSession:
    """Create an empty, active session for a build that was just requested.

    Args:
        project_id: Owning project identifier.
        project_name: Owning project display name.
        operation_type: Build operation type.
        agent_id: Agent backend; codex agents get the default phase sub-state.
        model_id: Selected model, if any.
        session_id: Explicit id, generated when omitted.

    Returns:
        A session with no todos and is_active=True.
    """
    session = GenerationSession(
        id=session_id or new_session_id(),
        project_id=project_id,
        project_name=project_name,
        operation_type=operation_type,
        agent_id=agent_id,
        model_id=model_id,
    )
    if agent_id == CODEX_AGENT_ID:
        session.codex = create_initial_codex_state()
    return session


def detect_operation_type(
    project_status: str | None,
    is_element_change: bool = False,
    is_retry: bool = False,
) -> str:
    """Pick the build operation type for a project.

    A completed or in-progress project is never treated as an initial build,
    so an existing project is not overwritten.
    """
    if is_retry:
        return "continuation"
    if is_element_change:
        return "focused-edit"
    if project_status in ("completed", "in_progress"):
        return "enhancement"
    return "initial-build"
