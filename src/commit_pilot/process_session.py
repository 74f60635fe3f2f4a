"""Subprocess transport for the external commit tool.

Handles:
- Spawning the tool with its JSON-output arguments in the workspace
- Framing stdout into lines and decoding each as an Event
- Forwarding stderr lines as warnings
- Writing single-token answers to the tool's stdin
- Reporting process termination

Everything the process says is published to a single asyncio.Queue in
arrival order; the consumer decides what it means.
"""

import asyncio
import json
import logging
import os
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from .models import Event

logger = logging.getLogger(__name__)

DEFAULT_TOOL_ARGS = ("commit", "--format", "json")

# Tool output blocks can carry whole diffs on a single line
_STREAM_LIMIT_BYTES = 16 * 1024 * 1024


class AlreadyRunningError(RuntimeError):
    """A process is already live in this session."""


class NotificationType(str, Enum):
    EVENT = "event"
    STDERR = "stderr"
    CLOSE = "close"
    ERROR = "error"


@dataclass(frozen=True)
class TransportNotification:
    """One thing the transport observed, tagged with its run generation."""
    type: NotificationType
    generation: int = 0
    event: Optional[Event] = None
    line: Optional[str] = None
    exit_code: Optional[int] = None
    signal: Optional[str] = None
    error: Optional[BaseException] = None


def decode_line(raw: str) -> Optional[Event]:
    """Decode one stdout line.

    Args:
        raw: Line as read from the process, with or without its newline

    Returns:
        The decoded Event, an `info` event wrapping the trimmed text when the
        line is not a JSON object with a discriminator, or None for blank lines.
    """
    trimmed = raw.strip()
    if not trimmed:
        return None

    try:
        parsed = json.loads(trimmed)
    except ValueError:
        return Event.info(trimmed)

    event = Event.from_payload(parsed)
    if event is None:
        return Event.info(trimmed)
    return event


def _describe_signal(returncode: int) -> Optional[str]:
    if returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return str(-returncode)


class ProcessSession:
    """Owns one invocation of the external tool.

    Example:
        queue = asyncio.Queue()
        session = ProcessSession(queue)
        await session.start(Path("."), "seshat")
        notification = await queue.get()
    """

    def __init__(self, sink: Optional[asyncio.Queue] = None, generation: int = 0):
        self.notifications: asyncio.Queue = sink if sink is not None else asyncio.Queue()
        self.generation = generation
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watcher: Optional[asyncio.Task] = None
        self._kill_requested = False

    def _publish(self, notification_type: NotificationType, **payload) -> None:
        self.notifications.put_nowait(
            TransportNotification(type=notification_type, generation=self.generation, **payload)
        )

    async def start(
        self,
        workspace_root: Path,
        executable_path: str,
        args: Optional[Sequence[str]] = None
    ) -> bool:
        """Spawn the tool in `workspace_root`.

        Returns:
            True if the process was spawned. On spawn failure an `error`
            notification is published and no handle is kept.

        Raises:
            AlreadyRunningError: If a process is already live.
        """
        if self.is_running():
            raise AlreadyRunningError("The commit tool is already running in this session")

        tool_args = list(args) if args is not None else list(DEFAULT_TOOL_ARGS)
        self._kill_requested = False

        try:
            process = await asyncio.create_subprocess_exec(
                executable_path,
                *tool_args,
                cwd=str(workspace_root),
                env=os.environ.copy(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT_BYTES,
            )
        except OSError as e:
            logger.warning("Could not start %s: %s", executable_path, e)
            self._publish(NotificationType.ERROR, error=e)
            return False

        logger.info("Started %s (pid %s) in %s", executable_path, process.pid, workspace_root)
        self._process = process
        self._watcher = asyncio.create_task(self._watch(process))
        return True

    async def _read_stdout(self, stream: asyncio.StreamReader) -> None:
        async for raw in stream:
            event = decode_line(raw.decode("utf-8", errors="replace"))
            if event is not None:
                self._publish(NotificationType.EVENT, event=event)

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                self._publish(NotificationType.STDERR, line=line)

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        """Pump both output streams, then report termination."""
        try:
            await asyncio.gather(
                self._read_stdout(process.stdout),
                self._read_stderr(process.stderr),
            )
        except (OSError, ValueError) as e:
            # ValueError covers a line longer than the stream limit
            logger.warning("Transport fault while reading tool output: %s", e)
            self._publish(NotificationType.ERROR, error=e)
            self._terminate(process)

        returncode = await process.wait()
        exit_code = returncode if returncode >= 0 else None
        signal_name = _describe_signal(returncode)
        logger.info("Tool exited with code %s (signal %s)", exit_code, signal_name)

        if self._process is process:
            self._process = None
        self._publish(NotificationType.CLOSE, exit_code=exit_code, signal=signal_name)

    def respond(self, text: str) -> bool:
        """Write `text` to the tool's stdin, newline-terminated.

        Returns:
            False when there is no live, writable process; the answer is dropped.
        """
        process = self._process
        if process is None or self._kill_requested or process.stdin is None:
            return False
        if process.stdin.is_closing():
            return False

        payload = text if text.endswith("\n") else f"{text}\n"
        try:
            process.stdin.write(payload.encode("utf-8"))
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("Dropped response %r: %s", text, e)
            return False
        return True

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.terminate()
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        """Request termination of the live process. Safe to call repeatedly."""
        if self._process is None or self._kill_requested:
            return
        self._kill_requested = True
        self._terminate(self._process)

    def is_running(self) -> bool:
        return self._process is not None

    async def wait_closed(self) -> None:
        if self._watcher is not None:
            await asyncio.shield(self._watcher)
