"""Tests for the git commit fallback runner."""

import shutil
import subprocess

import pytest

from commit_pilot.git_manager import GitCommitError, GitCommitResult, GitManager

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def init_repo(path):
    subprocess.run(["git", "init", "-q"], cwd=path, check=True)
    subprocess.run(["git", "config", "user.name", "Test User"], cwd=path, check=True)
    subprocess.run(["git", "config", "user.email", "test@example.com"], cwd=path, check=True)
    subprocess.run(["git", "config", "commit.gpgsign", "false"], cwd=path, check=True)


def last_message(path) -> str:
    return subprocess.run(
        ["git", "log", "-1", "--format=%B"],
        cwd=path, check=True, capture_output=True, text=True,
    ).stdout.strip()


class TestGitCommitResult:
    """Tests for captured command output."""

    def test_combined_output(self):
        """Non-empty streams should be joined by a newline."""
        result = GitCommitResult(stdout="  created\n", stderr="hint: x\n")
        assert result.combined_output == "created\nhint: x"

    def test_combined_output_skips_empty(self):
        """Empty streams should be left out."""
        assert GitCommitResult(stdout="", stderr="only err").combined_output == "only err"
        assert GitCommitResult(stdout="", stderr=" ").combined_output == ""

    def test_error_carries_output(self):
        """GitCommitError should expose the captured output."""
        error = GitCommitError("failed", stdout="out", stderr="err", returncode=1)
        assert str(error) == "failed"
        assert error.combined_output == "out\nerr"
        assert error.returncode == 1


class TestGitManager:
    """Tests for GitManager against a real repository."""

    @requires_git
    @pytest.mark.asyncio
    async def test_commit(self, tmp_path):
        """Should commit staged changes with the literal message."""
        init_repo(tmp_path)
        (tmp_path / "a.txt").write_text("hello\n")
        subprocess.run(["git", "add", "a.txt"], cwd=tmp_path, check=True)

        message = 'feat: add "a" file; echo $HOME'
        result = await GitManager().commit(tmp_path, message)

        assert result.returncode == 0
        assert last_message(tmp_path) == message

    @requires_git
    @pytest.mark.asyncio
    async def test_commit_nothing_staged(self, tmp_path):
        """A failing commit should raise with git's output attached."""
        init_repo(tmp_path)

        with pytest.raises(GitCommitError) as exc_info:
            await GitManager().commit(tmp_path, "feat: empty")

        assert exc_info.value.returncode != 0
        assert exc_info.value.combined_output

    @pytest.mark.asyncio
    async def test_missing_git_binary(self, tmp_path):
        """An unrunnable git binary should raise GitCommitError."""
        manager = GitManager(str(tmp_path / "no-such-git"))

        with pytest.raises(GitCommitError) as exc_info:
            await manager.commit(tmp_path, "feat: x")

        assert "could not run" in str(exc_info.value)
        assert exc_info.value.returncode is None
