"""Git operations for the manual commit fallback.

Runs a direct `git commit -m <message>` in the workspace when the operator
edited the proposed message, bypassing the external tool's own commit.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class GitCommitResult:
    """Captured output of a finished git command."""
    stdout: str
    stderr: str
    returncode: int = 0

    @property
    def combined_output(self) -> str:
        """Non-empty stdout and stderr joined by a newline."""
        parts = [self.stdout.strip(), self.stderr.strip()]
        return "\n".join(p for p in parts if p)


class GitCommitError(RuntimeError):
    """git commit exited non-zero or could not be spawned."""

    def __init__(
        self,
        message: str,
        stdout: str = "",
        stderr: str = "",
        returncode: Optional[int] = None
    ):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode

    @property
    def combined_output(self) -> str:
        parts = [self.stdout.strip(), self.stderr.strip()]
        return "\n".join(p for p in parts if p)


class GitManager:
    """Runs git commands in a workspace and captures their output."""

    def __init__(self, git_executable: str = "git"):
        self.git_executable = git_executable

    async def _run(self, cwd: Path, *args: str) -> GitCommitResult:
        """Run a git command, capturing stdout and stderr separately.

        Raises:
            OSError: If the git binary cannot be spawned.
        """
        process = await asyncio.create_subprocess_exec(
            self.git_executable,
            *args,
            cwd=str(cwd),
            env=os.environ.copy(),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        return GitCommitResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            returncode=process.returncode if process.returncode is not None else -1,
        )

    async def commit(self, workspace_root: Path, message: str) -> GitCommitResult:
        """Commit staged changes with `message` as the literal commit message.

        Args:
            workspace_root: Directory to run git in
            message: Commit message, passed as a single argument

        Returns:
            Captured output of the successful commit

        Raises:
            GitCommitError: On spawn failure or non-zero exit, carrying
                whatever output was captured.
        """
        logger.info("Running git commit in %s", workspace_root)
        try:
            result = await self._run(Path(workspace_root), "commit", "-m", message)
        except OSError as e:
            raise GitCommitError(
                message=f"could not run {self.git_executable}: {e}",
            ) from e

        if result.returncode != 0:
            raise GitCommitError(
                message=f"git commit exited with code {result.returncode}",
                stdout=result.stdout,
                stderr=result.stderr,
                returncode=result.returncode,
            )

        return result
