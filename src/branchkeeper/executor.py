"""Sequential plan execution with per-item isolation and state restoration."""

import logging
from types import TracebackType
from typing import Callable, Optional, Type

from branchkeeper.errors import BranchKeeperError, PreconditionError
from branchkeeper.git import RepositoryPort
from branchkeeper.logging_config import get_logger
from branchkeeper.models import ExecutionResult, Plan, PlanItem, SessionState

STASH_MESSAGE = "branchkeeper: auto-stash before batch run"


class StateGuard:
    """Capture the checked out branch on entry and return to it on every exit.

    A detached HEAD is remembered by commit and checked out again on exit.

    With ``auto_stash`` a dirty work tree is stashed on entry and the stash is
    popped after the original branch has been checked out again. Failures to
    restore are logged and never replace the batch outcome.
    """

    def __init__(self, repo: RepositoryPort, auto_stash: bool = False, logger: Optional[logging.Logger] = None) -> None:
        self.repo = repo
        self.auto_stash = auto_stash
        self.logger = logger or get_logger(__name__)
        self.state: Optional[SessionState] = None

    def capture(self) -> SessionState:
        """Record the session state, stashing changes if configured to.

        Raises:
            PreconditionError: If the current branch cannot be determined at all,
                or the changes could not be stashed
        """
        current = self.repo.current_branch()
        if current.failed:
            raise PreconditionError(f"Cannot determine the current branch: {current.error}")
        commit = ""
        if not current.value:
            commit = self.repo.head_commit().value
            if commit:
                self.logger.info("HEAD is detached at %s", commit)
            else:
                self.logger.warning("HEAD is detached; the original position will not be restored")

        dirty = self.repo.is_dirty().value
        stashed = False
        if dirty and self.auto_stash:
            try:
                stashed = self.repo.stash_changes(STASH_MESSAGE)
            except BranchKeeperError as err:
                raise PreconditionError(str(err)) from err
            if stashed:
                self.logger.info("Stashed uncommitted changes")
            else:
                self.logger.warning("Work tree looked dirty but git had nothing to stash")

        self.state = SessionState(
            original_branch=current.value, dirty_at_start=dirty, stashed=stashed, original_commit=commit
        )
        self.logger.debug("Captured session state: %s", self.state)
        return self.state

    def restore(self) -> bool:
        """Return to the captured branch or commit and re-apply the stash.

        The stash is only popped once the original position is back, so the
        changes never land on a branch they did not come from.

        Returns:
            True if the repository is back in its captured state.
        """
        if self.state is None:
            return True
        state, self.state = self.state, None
        restored = True
        if state.original_branch:
            if self.repo.current_branch().value != state.original_branch:
                restored = self._return_to(state.original_branch)
        elif state.original_commit:
            if self.repo.current_branch().value or self.repo.head_commit().value != state.original_commit:
                restored = self._return_to(state.original_commit)

        if state.stashed:
            if not restored:
                self.logger.error("Not restoring stashed changes; they are still in the stash")
                return False
            try:
                self.repo.pop_stash()
                self.logger.info("Restored stashed changes")
            except BranchKeeperError as err:
                self.logger.error("%s; your changes are still in the stash", err)
                restored = False
        return restored

    def _return_to(self, name: str) -> bool:
        try:
            self.repo.checkout(name)
        except BranchKeeperError as err:
            self.logger.error("Failed to return to %s: %s", name, err)
            return False
        self.logger.debug("Returned to %s", name)
        return True

    def __enter__(self) -> SessionState:
        return self.capture()

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.restore()


class BatchExecutor:
    """Run plan items one at a time, never stopping because one of them failed."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or get_logger(__name__)

    def execute(self, plan: Plan, handler: Callable[[PlanItem], None]) -> ExecutionResult:
        """Apply ``handler`` to every item of ``plan`` in order.

        Args:
            plan: Items to execute
            handler: Performs one item, raising a BranchKeeperError on failure

        Returns:
            Counts of succeeded and failed items plus the ordered failures.
        """
        result = ExecutionResult()
        for index, item in enumerate(plan, start=1):
            self.logger.debug("[%d/%d] %s %s", index, len(plan), item.action.value, item.branch)
            try:
                handler(item)
            except BranchKeeperError as err:
                self.logger.error("%s %s failed: %s", item.action.value, item.branch, err)
                result.record_failure(item.branch, str(err))
            else:
                self.logger.info("%s %s succeeded", item.action.value, item.branch)
                result.record_success()
        return result
