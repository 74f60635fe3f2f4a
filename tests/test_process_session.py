"""Tests for the subprocess transport.

Child processes are small Python scripts run with the current interpreter,
so no external tool is needed.
"""

import asyncio
import os
import sys

import pytest

from commit_pilot.models import EventKind
from commit_pilot.process_session import (
    AlreadyRunningError, NotificationType, ProcessSession, decode_line,
)


async def collect(session: ProcessSession, timeout: float = 10.0) -> list:
    """Gather notifications until the close notification arrives."""
    notifications = []
    while True:
        notification = await asyncio.wait_for(session.notifications.get(), timeout)
        notifications.append(notification)
        if notification.type == NotificationType.CLOSE:
            return notifications


async def start_script(session: ProcessSession, tmp_path, script: str) -> bool:
    return await session.start(tmp_path, sys.executable, ["-c", script])


class TestDecodeLine:
    """Tests for decode_line function."""

    def test_event_line(self):
        """A JSON object with an event key should decode."""
        event = decode_line('{"event": "progress_update", "message": "Analyzing"}\n')
        assert event.kind == "progress_update"
        assert event.message == "Analyzing"

    def test_kind_key(self):
        """The discriminator may be named kind."""
        event = decode_line('{"kind": "step", "message": "Staging"}')
        assert event.kind == "step"

    def test_blank_line(self):
        """Blank lines should be dropped."""
        assert decode_line("   \r\n") is None

    def test_plain_text(self):
        """Non-JSON text should become a trimmed info event."""
        event = decode_line("  Loading config...  ")
        assert event.kind == EventKind.INFO.value
        assert event.message == "Loading config..."

    def test_json_without_discriminator(self):
        """JSON without a usable discriminator should become an info event."""
        event = decode_line('{"message": "orphan"}')
        assert event.kind == "info"
        assert event.message == '{"message": "orphan"}'

    def test_json_array(self):
        """Non-object JSON should become an info event."""
        assert decode_line("[1, 2]").message == "[1, 2]"

    def test_unknown_kind_preserved(self):
        """Unknown kinds should decode with their fields intact."""
        event = decode_line('{"event": "telemetry", "value": 1}')
        assert event.kind == "telemetry"
        assert event.get("value") == 1


class TestProcessSession:
    """Tests for ProcessSession against real child processes."""

    @pytest.mark.asyncio
    async def test_events_and_exit_code(self, tmp_path):
        """Stdout lines should arrive as events in order, then close."""
        script = (
            "import json\n"
            "print(json.dumps({'event': 'step', 'message': 'one'}))\n"
            "print('plain text')\n"
            "print()\n"
            "print(json.dumps({'event': 'committed', 'summary': 'done'}))\n"
        )
        session = ProcessSession(generation=7)
        assert await start_script(session, tmp_path, script)
        assert session.is_running()

        notifications = await collect(session)

        events = [n.event for n in notifications if n.type == NotificationType.EVENT]
        assert [e.kind for e in events] == ["step", "info", "committed"]
        assert events[1].message == "plain text"
        close = notifications[-1]
        assert close.exit_code == 0
        assert close.signal is None
        assert all(n.generation == 7 for n in notifications)
        assert not session.is_running()

    @pytest.mark.asyncio
    async def test_stderr_and_failure_code(self, tmp_path):
        """Stderr lines should be forwarded and the exit code reported."""
        script = "import sys\nsys.stderr.write('warning: slow\\n')\nsys.exit(3)\n"
        session = ProcessSession()
        await start_script(session, tmp_path, script)

        notifications = await collect(session)

        stderr = [n.line for n in notifications if n.type == NotificationType.STDERR]
        assert stderr == ["warning: slow"]
        assert notifications[-1].exit_code == 3

    @pytest.mark.asyncio
    async def test_runs_in_workspace(self, tmp_path):
        """The tool should run with the workspace as its working directory."""
        script = "import json, os\nprint(json.dumps({'event': 'info', 'message': os.getcwd()}))\n"
        session = ProcessSession()
        await start_script(session, tmp_path, script)

        notifications = await collect(session)

        assert os.path.samefile(notifications[0].event.message, tmp_path)

    @pytest.mark.asyncio
    async def test_respond_writes_line(self, tmp_path):
        """Answers should reach the tool's stdin newline-terminated."""
        script = (
            "import json, sys\n"
            "print(json.dumps({'event': 'confirm_needed', 'message': 'Commit?'}), flush=True)\n"
            "answer = sys.stdin.readline()\n"
            "print(json.dumps({'event': 'info', 'message': repr(answer)}), flush=True)\n"
        )
        session = ProcessSession()
        await start_script(session, tmp_path, script)

        first = await asyncio.wait_for(session.notifications.get(), 10)
        assert first.event.kind == "confirm_needed"
        assert session.respond("y")

        notifications = await collect(session)
        assert notifications[0].event.message == repr("y\n")

    @pytest.mark.asyncio
    async def test_respond_without_process(self):
        """Responding with no live process should be dropped."""
        session = ProcessSession()
        assert not session.respond("y")

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, tmp_path):
        """Starting while a process is live should raise."""
        session = ProcessSession()
        await start_script(session, tmp_path, "import sys\nsys.stdin.readline()\n")
        try:
            with pytest.raises(AlreadyRunningError):
                await start_script(session, tmp_path, "pass")
        finally:
            session.kill()
            await session.wait_closed()

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path):
        """A missing executable should publish an error and return False."""
        session = ProcessSession(generation=2)
        started = await session.start(tmp_path, str(tmp_path / "no-such-tool"))

        assert not started
        assert not session.is_running()
        notification = session.notifications.get_nowait()
        assert notification.type == NotificationType.ERROR
        assert isinstance(notification.error, OSError)
        assert notification.generation == 2

    @pytest.mark.asyncio
    async def test_kill(self, tmp_path):
        """Kill should terminate the process and refuse further answers."""
        session = ProcessSession()
        await start_script(session, tmp_path, "import time\ntime.sleep(60)\n")

        session.kill()
        session.kill()
        assert not session.respond("y")

        notifications = await collect(session)
        close = notifications[-1]
        assert close.type == NotificationType.CLOSE
        if sys.platform != "win32":
            assert close.exit_code is None
            assert close.signal == "SIGTERM"

    @pytest.mark.asyncio
    async def test_shared_sink(self, tmp_path):
        """Notifications should go to an injected queue."""
        sink = asyncio.Queue()
        session = ProcessSession(sink, generation=4)
        await start_script(session, tmp_path, "print('hello')")

        notification = await asyncio.wait_for(sink.get(), 10)
        assert notification.event.message == "hello"
        assert notification.generation == 4
        await session.wait_closed()
