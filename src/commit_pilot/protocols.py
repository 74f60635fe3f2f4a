"""Protocol definitions for dependency injection.

These protocols define the seams around the commit orchestrator, enabling:
- A real subprocess transport in production and a scripted one in tests
- Any display surface (terminal, editor panel) without orchestrator changes
- Swapping the manual commit runner for a fake
"""

import asyncio
from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

from .git_manager import GitCommitResult
from .models import Event, RunnerStatus


@runtime_checkable
class Transport(Protocol):
    """Protocol for the external tool's process transport.

    Notifications (events, stderr lines, close, errors) are published to the
    queue the transport was constructed with, never returned directly.
    """

    async def start(
        self,
        workspace_root: Path,
        executable_path: str,
        args: Optional[Sequence[str]] = None
    ) -> bool:
        """Spawn the tool. Returns False if it could not be started."""
        ...

    def respond(self, text: str) -> bool:
        """Write one answer line to the tool. Returns False if dropped."""
        ...

    def kill(self) -> None:
        """Request termination; idempotent."""
        ...

    def is_running(self) -> bool:
        """True while a handle exists and has not reported termination."""
        ...

    async def wait_closed(self) -> None:
        """Wait until the close notification has been published."""
        ...


class TransportFactory(Protocol):
    def __call__(self, sink: asyncio.Queue, generation: int) -> Transport:
        ...


@runtime_checkable
class CommitRunner(Protocol):
    """Protocol for the direct version-control commit used by the fallback."""

    async def commit(self, workspace_root: Path, message: str) -> GitCommitResult:
        """Commit staged changes with a literal message.

        Raises:
            GitCommitError: On non-zero exit or spawn failure.
        """
        ...


@runtime_checkable
class Display(Protocol):
    """Protocol for the display surface.

    Push operations are synchronous and must not block. The two prompt
    operations wait for the operator and return None on dismissal.
    """

    def set_status(self, status: RunnerStatus, text: Optional[str] = None) -> None:
        ...

    def set_summary(self, provider: str, language: str) -> None:
        ...

    def set_progress(self, text: str, kind: str = "progress_update") -> None:
        """Show progress text; `kind` is the progress event that produced it."""
        ...

    def append_log(self, kind: str, message: str) -> None:
        ...

    def set_file_list(self, files: list[str]) -> None:
        ...

    def append_block(self, title: str, content: str) -> None:
        """Free-form titled block (panels, captured fallback output)."""
        ...

    def append_tool_output(
        self,
        output: str,
        language: Optional[str] = None,
        status: Optional[str] = None
    ) -> None:
        ...

    def append_review(self, text: str, files: list[str]) -> None:
        ...

    def render_event(self, event: Event) -> None:
        """Render an event kind the orchestrator does not know about."""
        ...

    def set_commit_message(self, message: str, original: str) -> None:
        ...

    def show_commit_actions(self, visible: bool, prompt: Optional[str] = None) -> None:
        ...

    def notify(self, level: str, message: str) -> None:
        """Operator notification; level is "info", "warning" or "error"."""
        ...

    def focus(self) -> None:
        ...

    def reset(self) -> None:
        ...

    def close(self) -> None:
        ...

    async def ask_confirm(self, prompt: str) -> Optional[bool]:
        ...

    async def ask_choice(self, prompt: str, choices: list[str]) -> Optional[str]:
        ...
