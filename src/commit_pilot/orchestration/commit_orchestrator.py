"""Commit workflow orchestration.

Handles:
- Starting the external tool and routing its events to the display
- Answering the tool's yes/no and choice prompts
- The commit-confirmation step, where the operator approves or edits the
  proposed message
- The manual fallback: declining the tool's commit and running git commit
  with the edited message instead

Every input (transport notifications, operator actions, prompt answers,
fallback completions, linger timers) goes through one inbox queue and is
handled by a single consumer task, one item at a time.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from ..git_manager import GitCommitError, GitCommitResult, GitManager
from ..models import (
    LOG_KINDS, PROGRESS_KINDS, CommitSession, Event, EventKind, OperatorAction, PilotConfig,
    RunnerStatus, WorkflowState,
)
from ..process_session import NotificationType, ProcessSession, TransportNotification
from ..protocols import CommitRunner, Display, Transport, TransportFactory

logger = logging.getLogger(__name__)

COMMIT_KEYWORD = "commit"
YES = "y"
NO = "n"


@dataclass
class _Command:
    """Caller request executed by the consumer; the caller awaits `future`."""
    name: str
    future: asyncio.Future
    args: tuple = ()


@dataclass(frozen=True)
class _PromptAnswer:
    generation: int
    text: str


@dataclass(frozen=True)
class _FallbackFinished:
    generation: int
    result: Optional[GitCommitResult] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class _LingerElapsed:
    generation: int


@dataclass
class _Tasks:
    """Background tasks owned by one run."""
    prompts: set = field(default_factory=set)
    fallback: Optional[asyncio.Task] = None
    linger: Optional[asyncio.Task] = None

    def cancel_prompts(self) -> None:
        for task in list(self.prompts):
            task.cancel()
        self.prompts.clear()

    def cancel_all(self) -> None:
        self.cancel_prompts()
        for task in (self.fallback, self.linger):
            if task is not None:
                task.cancel()
        self.fallback = None
        self.linger = None


def is_commit_confirmation(session: CommitSession, prompt: str) -> bool:
    """Classify a confirm_needed prompt as the tool's commit step.

    The tool has no explicit marker for this prompt, so it is recognised by
    a proposed message being present and the prompt mentioning "commit".
    """
    return session.has_message_ready and COMMIT_KEYWORD in prompt.lower()


class CommitOrchestrator:
    """State machine driving one commit workflow at a time.

    Dependencies are injected for testability:
    - Display: where progress is rendered and operator input comes from
    - TransportFactory: builds the process transport for each run
    - CommitRunner: runs the direct git commit for the manual fallback

    Usage:
        async with CommitOrchestrator(config, display) as orchestrator:
            await orchestrator.start(Path("."))
            outcome = await orchestrator.wait_finished()
    """

    def __init__(
        self,
        config: PilotConfig,
        display: Display,
        transport_factory: Optional[TransportFactory] = None,
        commit_runner: Optional[CommitRunner] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            config: Pilot configuration
            display: Display surface for this orchestrator
            transport_factory: Builds a transport bound to the inbox and a
                run generation. Defaults to ProcessSession.
            commit_runner: Runner for the manual fallback. Defaults to GitManager.
            sleep: Awaitable delay used for the display-linger timer
        """
        self.config = config
        self.display = display
        self._transport_factory = transport_factory or (
            lambda sink, generation: ProcessSession(sink, generation)
        )
        self._commit_runner = commit_runner or GitManager(config.git_executable)
        self._sleep = sleep

        self.session = CommitSession()
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._transport: Optional[Transport] = None
        self._tasks = _Tasks()
        self._consumer: Optional[asyncio.Task] = None
        self._finished = asyncio.Event()
        self._outcome: Optional[WorkflowState] = None
        self._closed = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> "CommitOrchestrator":
        self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def open(self) -> None:
        """Start the consumer task."""
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    async def aclose(self) -> None:
        """Kill any live process, stop background work and release the display."""
        if self._transport is not None:
            self._transport.kill()
        self._release_transport()
        self._tasks.cancel_all()
        # Anything the old run still publishes is now stale
        self.session.generation += 1

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        if not self._closed:
            self._closed = True
            self.display.close()

    @property
    def state(self) -> WorkflowState:
        return self.session.state

    def is_running(self) -> bool:
        return self._transport is not None and self._transport.is_running()

    async def wait_finished(self) -> WorkflowState:
        """Wait until the process has exited and no fallback is pending.

        Returns:
            The state the workflow ended in.
        """
        await self._finished.wait()
        return self._outcome or WorkflowState.FAILED

    # -------------------------------------------------------------------------
    # Public operations (executed by the consumer)
    # -------------------------------------------------------------------------

    async def _submit(self, name: str, *args: Any) -> Any:
        if self._consumer is None:
            raise RuntimeError("CommitOrchestrator is not open")
        future = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait(_Command(name=name, future=future, args=args))
        return await future

    async def start(self, workspace_root: Optional[Path]) -> bool:
        """Start a commit workflow in `workspace_root`.

        Returns:
            True if the tool was spawned. False if a workflow is already
            running, no workspace was given, or the spawn failed.
        """
        return await self._submit("start", workspace_root)

    async def confirm(self) -> None:
        await self._submit("confirm")

    async def cancel(self) -> None:
        await self._submit("cancel")

    async def edit_message(self, text: str) -> None:
        await self._submit("message_edited", text)

    async def submit(self, action: OperatorAction) -> None:
        """Dispatch an operator action captured by the display."""
        if action.type == "message_edited":
            await self.edit_message(action.message)
        elif action.type == "confirm":
            await self.confirm()
        else:
            await self.cancel()

    async def display_closed(self) -> None:
        """The operator closed the display; stop the live process."""
        await self._submit("display_closed")

    async def drain(self) -> None:
        """Return once every input queued before this call has been handled."""
        await self._submit("drain")

    # -------------------------------------------------------------------------
    # Consumer
    # -------------------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            item = await self._inbox.get()
            try:
                await self._dispatch(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Unhandled error while processing %r", item)
                if isinstance(item, _Command) and not item.future.done():
                    item.future.set_exception(e)
                self.display.set_status(RunnerStatus.ERROR, "Internal error")

    async def _dispatch(self, item: Any) -> None:
        if isinstance(item, _Command):
            handler = getattr(self, f"_cmd_{item.name}")
            result = await handler(*item.args)
            if not item.future.done():
                item.future.set_result(result)
            return

        generation = getattr(item, "generation", None)
        if generation != self.session.generation:
            logger.debug("Dropping stale %s", type(item).__name__)
            return

        if isinstance(item, TransportNotification):
            self._on_notification(item)
        elif isinstance(item, _PromptAnswer):
            self._respond(item.text)
        elif isinstance(item, _FallbackFinished):
            self._on_fallback_finished(item)
        elif isinstance(item, _LingerElapsed):
            self._on_linger_elapsed()

    def _respond(self, text: str) -> None:
        if self._transport is None or not self._transport.respond(text):
            logger.info("Response %r dropped: no live process", text)

    def _release_transport(self) -> None:
        self._transport = None
        self._tasks.cancel_prompts()

    def _record_outcome(self, state: WorkflowState) -> None:
        self.session.state = state
        self._outcome = state

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def _cmd_start(self, workspace_root: Optional[Path]) -> bool:
        display = self.display
        if workspace_root is None:
            display.notify("error", "Open a workspace before running the commit.")
            return False

        if self.is_running() or self.session.manual_fallback_in_progress:
            display.focus()
            display.notify("info", "A commit is already running.")
            return False

        self._tasks.cancel_all()
        generation = self.session.generation + 1
        self.session = CommitSession(
            workspace_root=Path(workspace_root),
            state=WorkflowState.RUNNING,
            generation=generation,
        )
        self._outcome = None
        self._finished.clear()

        if self.config.auto_open_panel:
            display.focus()
        display.reset()
        display.set_status(RunnerStatus.RUNNING, "Running")

        executable = self.config.resolved_executable
        transport = self._transport_factory(self._inbox, generation)
        self._transport = transport
        started = await transport.start(Path(workspace_root), executable, self.config.tool_args)
        if started:
            display.append_log(
                EventKind.STEP.value,
                f"Running: {executable} {' '.join(self.config.tool_args)}",
            )
        return started

    async def _cmd_message_edited(self, text: str) -> None:
        self.session.edited_message = text

    async def _cmd_cancel(self) -> None:
        if not self.session.awaiting_confirmation:
            return
        self.session.state = WorkflowState.RUNNING
        self.display.show_commit_actions(False)
        self._respond(NO)

    async def _cmd_confirm(self) -> None:
        if not self.session.awaiting_confirmation:
            return

        edited = self.session.edited_message.strip()
        original = self.session.suggested_message.strip()

        self.session.state = WorkflowState.RUNNING
        self.display.show_commit_actions(False)

        if not edited or edited == original:
            self._respond(YES)
            return

        self.session.state = WorkflowState.MANUAL_FALLBACK
        self._respond(NO)

        root = self.session.workspace_root
        if root is None:
            self.display.set_status(RunnerStatus.ERROR, "Workspace unavailable")
            self.display.notify("error", "Could not find the workspace to run git commit.")
            self.session.state = WorkflowState.RUNNING
            return

        self.session.fallback_started = True
        self.display.set_status(RunnerStatus.RUNNING, "Applying edited message with git commit")
        self._tasks.fallback = asyncio.create_task(
            self._run_manual_commit(self.session.generation, root, edited)
        )

    async def _cmd_display_closed(self) -> None:
        if self.is_running():
            self._transport.kill()

    async def _cmd_drain(self) -> None:
        pass

    # -------------------------------------------------------------------------
    # Transport notifications
    # -------------------------------------------------------------------------

    def _on_notification(self, notification: TransportNotification) -> None:
        if notification.type == NotificationType.EVENT:
            self._on_event(notification.event)
        elif notification.type == NotificationType.STDERR:
            self.display.append_log(EventKind.WARNING.value, notification.line or "")
        elif notification.type == NotificationType.CLOSE:
            self._on_close(notification.exit_code, notification.signal)
        elif notification.type == NotificationType.ERROR:
            self._on_transport_error(notification.error)

    def _on_transport_error(self, error: Optional[BaseException]) -> None:
        detail = str(error) if error is not None else "unknown error"

        if not self.is_running():
            # Nothing was spawned, so no close will follow
            logger.warning("Commit tool failed to start: %s", detail)
            self._release_transport()
            self._record_outcome(WorkflowState.FAILED)
            self._finished.set()
            self.display.set_status(RunnerStatus.ERROR, "Failed to start")
            self.display.notify("error", f"Failed to start the commit tool ({detail}).")
            return

        self.display.set_status(RunnerStatus.ERROR, "Process error")
        self.display.notify("error", f"Commit tool process error ({detail}).")

    def _on_close(self, exit_code: Optional[int], signal_name: Optional[str]) -> None:
        if self.session.is_active:
            if exit_code == 0:
                self._record_outcome(WorkflowState.SUCCEEDED)
                self.display.set_status(RunnerStatus.SUCCESS, "Finished")
            else:
                self._record_outcome(WorkflowState.FAILED)
                self.display.set_status(RunnerStatus.ERROR, "Process exited with an error")
        elif self.session.manual_fallback_in_progress:
            logger.debug(
                "Tool exited (code %s, signal %s) during manual fallback", exit_code, signal_name
            )

        self.display.show_commit_actions(False)
        self._release_transport()

        if not self.session.manual_fallback_in_progress:
            if self._outcome is None:
                self._outcome = self.session.state
            self._finished.set()

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def _on_event(self, event: Event) -> None:
        kind = event.kind
        if kind == EventKind.MESSAGE_READY.value:
            self._on_message_ready(event)
        elif kind == EventKind.CONFIRM_NEEDED.value:
            self._on_confirm_needed(event)
        elif kind == EventKind.CHOICE_NEEDED.value:
            self._on_choice_needed(event)
        elif kind == EventKind.COMMITTED.value:
            self._on_committed(event)
        elif kind == EventKind.CANCELLED.value:
            self._on_cancelled(event)
        elif kind == EventKind.ERROR.value:
            self._render(event)
            self._on_error_event(event)
        else:
            self._render(event)

    def _render(self, event: Event) -> None:
        """Map a display-only event onto the display's push operations."""
        display = self.display
        kind = event.kind

        if kind == EventKind.SUMMARY.value:
            data = event.get("data")
            data = data if isinstance(data, dict) else {}
            provider = data.get("provider") or data.get("Provider") or ""
            language = data.get("language") or data.get("Language") or ""
            display.set_summary(str(provider), str(language))
        elif kind in PROGRESS_KINDS:
            display.set_progress(event.message, kind)
        elif kind in LOG_KINDS:
            display.append_log(kind, event.message)
        elif kind == EventKind.PANEL.value:
            display.append_block(str(event.get("title") or "Panel"), str(event.get("content") or ""))
        elif kind == EventKind.FILE_LIST.value:
            display.set_file_list(event.files)
        elif kind == EventKind.TOOL_OUTPUT.value:
            language = event.get("language")
            status = event.get("status")
            display.append_tool_output(
                str(event.get("output") or ""),
                language=str(language) if language else None,
                status=str(status) if status else None,
            )
        elif kind == EventKind.REVIEW_OUTPUT.value:
            display.append_review(str(event.get("text") or ""), event.files)
        else:
            display.render_event(event)

    def _on_message_ready(self, event: Event) -> None:
        message = event.message
        self.session.suggested_message = message
        self.session.edited_message = message
        if self.session.state in (WorkflowState.RUNNING, WorkflowState.MESSAGE_READY):
            self.session.state = WorkflowState.MESSAGE_READY
        self.display.set_commit_message(message, message)

    def _on_confirm_needed(self, event: Event) -> None:
        prompt = event.message
        if is_commit_confirmation(self.session, prompt):
            self.session.state = WorkflowState.AWAITING_CONFIRMATION
            self.display.show_commit_actions(True, prompt)
            return

        default = YES if event.get("default") is True else NO
        self._track_prompt(self._ask_confirm(self.session.generation, prompt, default))

    def _on_choice_needed(self, event: Event) -> None:
        choices = event.choices
        if not choices:
            return

        default = event.get("default")
        fallback = default if isinstance(default, str) and default else choices[0]
        self._track_prompt(
            self._ask_choice(self.session.generation, event.message, choices, fallback)
        )

    def _on_committed(self, event: Event) -> None:
        summary = event.get("summary")
        summary = summary if isinstance(summary, str) and summary else None

        self._record_outcome(WorkflowState.SUCCEEDED)
        self.display.show_commit_actions(False)
        self.display.set_status(RunnerStatus.SUCCESS, summary or "Commit created")
        self.display.notify("info", summary or "Commit created successfully.")
        self._schedule_reset()

    def _on_cancelled(self, event: Event) -> None:
        self.display.show_commit_actions(False)

        if self.session.fallback_started:
            logger.debug("Ignoring cancellation caused by declining the tool's commit")
            return

        reason = event.get("reason")
        reason = reason if isinstance(reason, str) and reason else "no reason given"
        self._record_outcome(WorkflowState.CANCELLED)
        self.display.set_status(RunnerStatus.ERROR, "Commit cancelled")
        self.display.notify("warning", f"Commit cancelled ({reason}).")

    def _on_error_event(self, event: Event) -> None:
        if self.session.fallback_started:
            logger.debug("Ignoring tool error during manual fallback: %s", event.message)
            return
        self.display.set_status(RunnerStatus.ERROR, event.message or "Error")
        self.display.notify("error", event.message or "Unexpected error.")

    # -------------------------------------------------------------------------
    # Prompts
    # -------------------------------------------------------------------------

    def _track_prompt(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.prompts.add(task)
        task.add_done_callback(self._tasks.prompts.discard)

    async def _ask_confirm(self, generation: int, prompt: str, default: str) -> None:
        answer: Optional[bool] = None
        try:
            answer = await self.display.ask_confirm(prompt)
        except Exception:
            logger.exception("Confirm prompt failed; using the default answer")

        if answer is True:
            text = YES
        elif answer is False:
            text = NO
        else:
            text = default
        self._inbox.put_nowait(_PromptAnswer(generation, text))

    async def _ask_choice(
        self,
        generation: int,
        prompt: str,
        choices: list[str],
        fallback: str
    ) -> None:
        selected: Optional[str] = None
        try:
            selected = await self.display.ask_choice(prompt, choices)
        except Exception:
            logger.exception("Choice prompt failed; using the default choice")

        self._inbox.put_nowait(_PromptAnswer(generation, selected or fallback))

    # -------------------------------------------------------------------------
    # Manual fallback
    # -------------------------------------------------------------------------

    async def _run_manual_commit(self, generation: int, root: Path, message: str) -> None:
        try:
            result = await self._commit_runner.commit(root, message)
        except Exception as e:
            self._inbox.put_nowait(_FallbackFinished(generation, error=e))
        else:
            self._inbox.put_nowait(_FallbackFinished(generation, result=result))

    def _on_fallback_finished(self, finished: _FallbackFinished) -> None:
        display = self.display
        self._tasks.fallback = None

        if finished.error is None:
            output = finished.result.combined_output if finished.result is not None else ""
            if output:
                display.append_block("git commit", output)
            display.set_status(RunnerStatus.SUCCESS, "Commit created with edited message")
            display.notify("info", "Commit created with the edited message.")
            self._record_outcome(WorkflowState.SUCCEEDED)
            self._schedule_reset()
        else:
            error = finished.error
            output = error.combined_output if isinstance(error, GitCommitError) else ""
            if output:
                display.append_block("git commit (error)", output)
            display.set_status(RunnerStatus.ERROR, "git commit failed")
            display.notify("error", f"git commit failed ({error}).")
            self._record_outcome(WorkflowState.FAILED)

        if self._transport is None:
            self._finished.set()

    # -------------------------------------------------------------------------
    # Linger reset
    # -------------------------------------------------------------------------

    def _schedule_reset(self) -> None:
        if self._tasks.linger is not None:
            self._tasks.linger.cancel()
        self._tasks.linger = asyncio.create_task(self._linger(self.session.generation))

    async def _linger(self, generation: int) -> None:
        await self._sleep(self.config.linger_seconds)
        self._inbox.put_nowait(_LingerElapsed(generation))

    def _on_linger_elapsed(self) -> None:
        self._tasks.linger = None
        self.display.reset()
        if self.session.saw_terminal_event:
            self.session = CommitSession(generation=self.session.generation)
