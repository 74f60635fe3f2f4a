"""Orchestration components for the commit pilot.

This package contains the commit workflow state machine:
- CommitOrchestrator: drives the external tool, answers its prompts and
  runs the manual git commit fallback when the operator edits the message
"""

from .commit_orchestrator import CommitOrchestrator, is_commit_confirmation

__all__ = [
    "CommitOrchestrator",
    "is_commit_confirmation",
]
