"""Data models for the commit pilot.

Uses Pydantic for validation. The external tool speaks a line-delimited JSON
protocol; every decoded line becomes an Event, and the orchestrator keeps one
CommitSession record per active workflow.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError


class EventKind(str, Enum):
    """Event kinds the external tool is known to emit."""
    SUMMARY = "summary"
    PROGRESS_STARTED = "progress_started"
    PROGRESS_UPDATE = "progress_update"
    PROGRESS_DONE = "progress_done"
    STEP = "step"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"
    PANEL = "panel"
    FILE_LIST = "file_list"
    TOOL_OUTPUT = "tool_output"
    REVIEW_OUTPUT = "review_output"
    MESSAGE_READY = "message_ready"
    CONFIRM_NEEDED = "confirm_needed"
    CHOICE_NEEDED = "choice_needed"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


PROGRESS_KINDS = frozenset({
    EventKind.PROGRESS_STARTED.value,
    EventKind.PROGRESS_UPDATE.value,
    EventKind.PROGRESS_DONE.value,
})

LOG_KINDS = frozenset({
    EventKind.STEP.value,
    EventKind.INFO.value,
    EventKind.WARNING.value,
    EventKind.ERROR.value,
    EventKind.SUCCESS.value,
})

# Keys accepted as the event discriminator, in lookup order
DISCRIMINATOR_KEYS = ("event", "kind")


class Event(BaseModel):
    """One decoded unit of the tool's output protocol.

    `kind` is kept as a plain string so unknown kinds survive decoding and
    can be forwarded to the display untouched. Kind-specific payload lives
    in `fields`.
    """
    kind: str = Field(..., min_length=1, description="Event discriminator")
    fields: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["Event"]:
        """Build an event from a decoded JSON value.

        Returns:
            The Event, or None when the value is not an object or carries
            no usable discriminator.
        """
        if not isinstance(payload, dict):
            return None

        kind = None
        for key in DISCRIMINATOR_KEYS:
            if key in payload:
                kind = payload[key]
                break

        if not isinstance(kind, str) or not kind:
            return None

        fields = {k: v for k, v in payload.items() if k not in DISCRIMINATOR_KEYS}
        return cls(kind=kind, fields=fields)

    @classmethod
    def info(cls, message: str) -> "Event":
        """Wrap a raw text line as an informational event."""
        return cls(kind=EventKind.INFO.value, fields={"message": message})

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def to_payload(self) -> dict[str, Any]:
        """Serialize back to the wire shape."""
        return {"event": self.kind, **self.fields}

    @property
    def message(self) -> str:
        value = self.fields.get("message")
        return value if isinstance(value, str) else ""

    @property
    def choices(self) -> list[str]:
        value = self.fields.get("choices")
        if not isinstance(value, list):
            return []
        return [str(choice) for choice in value]

    @property
    def files(self) -> list[str]:
        value = self.fields.get("files")
        if not isinstance(value, list):
            return []
        return [str(f) for f in value]

    def is_kind(self, kind: EventKind) -> bool:
        return self.kind == kind.value


class RunnerStatus(str, Enum):
    """Status shown on the display."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class WorkflowState(str, Enum):
    """State of the commit workflow.

    RUNNING and MESSAGE_READY differ only in whether the tool has proposed
    a message yet; AWAITING_CONFIRMATION and MANUAL_FALLBACK can never
    co-occur.
    """
    IDLE = "idle"
    RUNNING = "running"
    MESSAGE_READY = "message_ready"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    MANUAL_FALLBACK = "manual_fallback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATES = frozenset({
    WorkflowState.RUNNING,
    WorkflowState.MESSAGE_READY,
    WorkflowState.AWAITING_CONFIRMATION,
})

TERMINAL_STATES = frozenset({
    WorkflowState.SUCCEEDED,
    WorkflowState.FAILED,
    WorkflowState.CANCELLED,
})


class CommitSession(BaseModel):
    """Orchestrator-owned record of the active workflow."""
    workspace_root: Optional[Path] = None
    state: WorkflowState = Field(default=WorkflowState.IDLE)
    suggested_message: str = Field(default="", description="Last message the tool proposed")
    edited_message: str = Field(default="", description="Latest operator-edited text")
    generation: int = Field(default=0, description="Run counter used to drop stale notifications")
    fallback_started: bool = Field(
        default=False,
        description="The tool's commit was declined and git commit launched instead"
    )

    @property
    def has_message_ready(self) -> bool:
        return self.state in (WorkflowState.MESSAGE_READY, WorkflowState.AWAITING_CONFIRMATION)

    @property
    def awaiting_confirmation(self) -> bool:
        return self.state == WorkflowState.AWAITING_CONFIRMATION

    @property
    def manual_fallback_in_progress(self) -> bool:
        return self.state == WorkflowState.MANUAL_FALLBACK

    @property
    def saw_terminal_event(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES


class OperatorAction(BaseModel):
    """An action captured by the display surface."""
    type: Literal["confirm", "cancel", "message_edited"]
    message: str = ""


class ConfigError(ValueError):
    """Configuration file could not be read or validated."""


CONFIG_DIR = ".commit-pilot"
CONFIG_FILE = "config.json"


class PilotConfig(BaseModel):
    """Configuration for the commit pilot."""
    executable_path: str = Field(
        default="seshat",
        description="External commit tool to run. Empty falls back to the default."
    )
    tool_args: list[str] = Field(
        default_factory=lambda: ["commit", "--format", "json"],
        description="Arguments requesting JSON-formatted commit generation"
    )
    auto_open_panel: bool = Field(
        default=True,
        description="Reveal and focus the display when a run starts"
    )
    linger_seconds: float = Field(
        default=1.8,
        ge=0.0,
        description="Delay before the display is reset after a finished commit"
    )
    git_executable: str = Field(
        default="git",
        description="Binary used for the manual commit fallback"
    )

    @property
    def resolved_executable(self) -> str:
        return self.executable_path.strip() or "seshat"

    @classmethod
    def load(cls, workspace_root: Optional[Path]) -> "PilotConfig":
        """Load `.commit-pilot/config.json` from the workspace, or defaults.

        Raises:
            ConfigError: If the file exists but cannot be read or validated.
        """
        if workspace_root is None:
            return cls()

        path = Path(workspace_root) / CONFIG_DIR / CONFIG_FILE
        if not path.exists():
            return cls()

        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e
