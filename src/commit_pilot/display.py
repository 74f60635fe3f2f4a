"""Terminal display for the commit workflow.

Renders the tool's progress, logs, tool output and review findings with
Rich, and collects the operator's decisions at the commit-confirmation step
and for the tool's own prompts.
"""

import asyncio
import json
import sys
import threading
from typing import Any, Optional, TextIO, TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, InvalidResponse, Prompt, PromptBase
from rich.text import Text

from .models import Event, OperatorAction, RunnerStatus

if TYPE_CHECKING:
    from .orchestration import CommitOrchestrator


# Windows-compatible symbols
if sys.platform == "win32":
    SYM_OK = "[OK]"
    SYM_FAIL = "[X]"
    SYM_RUN = "..."
else:
    SYM_OK = "✓"
    SYM_FAIL = "✗"
    SYM_RUN = "○"

STATUS_STYLES = {
    RunnerStatus.IDLE: ("dim", "•"),
    RunnerStatus.RUNNING: ("blue", SYM_RUN),
    RunnerStatus.SUCCESS: ("green", SYM_OK),
    RunnerStatus.ERROR: ("red", SYM_FAIL),
}

LOG_STYLES = {
    "step": "cyan",
    "info": "white",
    "warning": "yellow",
    "error": "red",
    "success": "green",
}

# Log kinds that also move the status line
LOG_STATUS = {
    "error": (RunnerStatus.ERROR, "Error"),
    "success": (RunnerStatus.SUCCESS, "Done"),
}

NOTIFY_STYLES = {
    "info": "bold green",
    "warning": "bold yellow",
    "error": "bold red",
}


def review_line_style(line: str) -> Optional[str]:
    """Style for one review line: bugs in red, smells in yellow."""
    upper = line.upper()
    if "[BUG]" in upper:
        return "bold red"
    if "[SMELL]" in upper:
        return "yellow"
    return None


def format_tool_output_title(
    index: int,
    language: Optional[str] = None,
    status: Optional[str] = None
) -> str:
    """Format a tool output block title (e.g., "Tool output #2 [python] (failed)")."""
    title = f"Tool output #{index}"
    if language:
        title += f" [{language}]"
    if status:
        title += f" ({status})"
    return title


class LineReader:
    """Reads lines from a text stream on one daemon thread.

    Only this thread reads the stream, so a prompt that is abandoned never
    consumes the line meant for the next one. Being a daemon thread, a read
    blocked on the terminal does not delay interpreter exit.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lines: Optional[asyncio.Queue] = None
        self._thread: Optional[threading.Thread] = None

    def _ensure_started(self) -> None:
        if self._thread is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._lines = asyncio.Queue()
        stream = self._stream if self._stream is not None else sys.stdin
        self._thread = threading.Thread(
            target=self._pump, args=(stream,), name="commit-pilot-stdin", daemon=True
        )
        self._thread.start()

    def _pump(self, stream: TextIO) -> None:
        while True:
            try:
                line = stream.readline()
            except (OSError, ValueError):
                # Stream closed underneath us; report end of input
                line = ""
            try:
                self._loop.call_soon_threadsafe(self._lines.put_nowait, line or None)
            except RuntimeError:
                # Event loop already closed; nobody is waiting
                return
            if not line:
                return

    async def readline(self) -> str:
        """Return the next line, including its newline.

        Raises:
            EOFError: Once the stream is exhausted.
        """
        self._ensure_started()
        line = await self._lines.get()
        if line is None:
            # End of input stays visible to later readers
            self._lines.put_nowait(None)
            raise EOFError
        return line


class ConsoleDisplay:
    """Display implementation writing to a Rich console.

    Operator actions are forwarded to the orchestrator passed to `attach()`.
    Prompts are rendered and validated by Rich but read their answers from a
    LineReader, so a pending prompt can be cancelled like any other task.
    """

    def __init__(self, console: Optional[Console] = None, stdin: Optional[TextIO] = None):
        self.console = console or Console()
        self._reader = LineReader(stdin)
        self._orchestrator: Optional["CommitOrchestrator"] = None
        self._decision_task: Optional[asyncio.Task] = None
        self._message = ""
        self._suggested = ""
        self._files: list[str] = []
        self._tool_counter = 0
        self._review_counter = 0
        self.status: RunnerStatus = RunnerStatus.IDLE
        self.status_text = ""

    def attach(self, orchestrator: "CommitOrchestrator") -> None:
        self._orchestrator = orchestrator

    # Push operations

    def set_status(self, status: RunnerStatus, text: Optional[str] = None) -> None:
        self.status = status
        self.status_text = text or status.value
        style, symbol = STATUS_STYLES[status]
        self.console.print(Text(f"{symbol} {self.status_text}", style=f"bold {style}"))

    def set_summary(self, provider: str, language: str) -> None:
        self.console.print(
            Text(f"Provider: {provider or '-'} | Language: {language or '-'}", style="dim")
        )

    def set_progress(self, text: str, kind: str = "progress_update") -> None:
        if kind != "progress_done":
            self.status = RunnerStatus.RUNNING
            self.status_text = "Running"
        self.console.print(Text(f"  {text or 'Updating...'}", style="dim"))

    def append_log(self, kind: str, message: str) -> None:
        self.console.print(Text(message, style=LOG_STYLES.get(kind, "white")))
        if kind in LOG_STATUS:
            self.status, self.status_text = LOG_STATUS[kind]

    def set_file_list(self, files: list[str]) -> None:
        self._files = list(files)
        body = Text("\n".join(self._files) if self._files else "(no files)")
        self.console.print(Panel(body, title="Staged files", title_align="left"))

    def append_block(self, title: str, content: str) -> None:
        self.console.print(Panel(Text(content), title=Text(title), title_align="left"))

    def append_tool_output(
        self,
        output: str,
        language: Optional[str] = None,
        status: Optional[str] = None
    ) -> None:
        self._tool_counter += 1
        title = format_tool_output_title(self._tool_counter, language, status)
        self.append_block(title, output)

    def append_review(self, text: str, files: list[str]) -> None:
        self._review_counter += 1
        lines = [line for line in text.splitlines() if line]
        if not lines:
            lines = ["(no details)"]

        body = Text()
        for i, line in enumerate(lines):
            if i:
                body.append("\n")
            body.append(line, style=review_line_style(line))
        if files:
            body.append("\nFiles: " + ", ".join(files), style="dim")

        self.console.print(Panel(body, title=f"Review #{self._review_counter}", title_align="left"))

    def render_event(self, event: Event) -> None:
        payload = json.dumps(event.fields, default=str) if event.fields else ""
        self.console.print(Text(f"[{event.kind}] {payload}".rstrip(), style="dim"))

    def set_commit_message(self, message: str, original: str) -> None:
        self._message = message
        self._suggested = original or message
        self.console.print(Panel(Text(message), title="Commit message", title_align="left"))

    def show_commit_actions(self, visible: bool, prompt: Optional[str] = None) -> None:
        if not visible:
            self._cancel_decision()
            return
        if self._orchestrator is None:
            return
        self._cancel_decision()
        self._decision_task = asyncio.create_task(self._collect_commit_decision(prompt or ""))

    def notify(self, level: str, message: str) -> None:
        self.console.print(Text(message, style=NOTIFY_STYLES.get(level, "bold")))

    def focus(self) -> None:
        self.console.rule("commit-pilot")

    def reset(self) -> None:
        self._message = ""
        self._suggested = ""
        self._files = []
        self._tool_counter = 0
        self._review_counter = 0
        self.status = RunnerStatus.IDLE
        self.status_text = ""

    def close(self) -> None:
        self._cancel_decision()
        self._orchestrator = None

    # Operator prompts

    async def _ask(self, prompt: PromptBase, default: Any = ...) -> Any:
        """Ask until Rich accepts the answer; an empty line takes `default`.

        Raises:
            EOFError: If input ends before a valid answer.
        """
        while True:
            prompt.pre_prompt()
            self.console.print(prompt.make_prompt(default), end="")
            value = (await self._reader.readline()).rstrip("\r\n")
            if value == "" and default is not ...:
                return default
            try:
                return prompt.process_response(value)
            except InvalidResponse as error:
                prompt.on_validate_error(value, error)

    async def ask_confirm(self, prompt: str) -> Optional[bool]:
        try:
            return await self._ask(Confirm(Text(prompt), console=self.console))
        except EOFError:
            return None

    async def ask_choice(self, prompt: str, choices: list[str]) -> Optional[str]:
        try:
            return await self._ask(Prompt(Text(prompt), console=self.console, choices=choices))
        except EOFError:
            return None

    def _cancel_decision(self) -> None:
        if self._decision_task is not None:
            self._decision_task.cancel()
            self._decision_task = None

    async def _prompt_commit_decision(self, prompt: str) -> list[OperatorAction]:
        """Ask whether to commit, edit the message first, or cancel."""
        try:
            choice = await self._ask(
                Prompt(
                    Text(f"{prompt} [y]es / [e]dit message / [n]o"),
                    console=self.console,
                    choices=["y", "e", "n"],
                    show_choices=False,
                ),
                default="y",
            )
            if choice == "n":
                return [OperatorAction(type="cancel")]
            if choice == "y":
                return [OperatorAction(type="confirm")]

            edited = await self._ask(
                Prompt(Text("New commit message"), console=self.console, show_default=False),
                default=self._message,
            )
        except EOFError:
            return [OperatorAction(type="cancel")]

        self._message = edited
        return [
            OperatorAction(type="message_edited", message=edited),
            OperatorAction(type="confirm"),
        ]

    async def _collect_commit_decision(self, prompt: str) -> None:
        actions = await self._prompt_commit_decision(prompt)
        orchestrator = self._orchestrator
        # Submitting may hide the controls, which must not cancel this task
        self._decision_task = None
        if orchestrator is None:
            return
        for action in actions:
            await orchestrator.submit(action)
