"""Exceptions raised by branchkeeper."""

from typing import Optional


class BranchKeeperError(Exception):
    """Base exception for all branchkeeper errors."""


class GitError(BranchKeeperError):
    """Git operation error."""

    def __init__(self, message: str, branch: Optional[str] = None) -> None:
        """Initialize error.

        Args:
            message: Error message
            branch: Branch the failed operation was acting on, if any
        """
        super().__init__(message)
        self.message = message
        self.branch = branch


class PreconditionError(BranchKeeperError):
    """A check that must pass before any mutation failed; the batch is aborted."""
