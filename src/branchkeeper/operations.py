"""Branch lifecycle commands.

Every command validates the repository, builds its whole plan, asks for
confirmation, executes the plan under a ``StateGuard`` and reports back an
``OperationReport``. Nothing here prints or exits; the CLI decides how to
present the report and which exit code to use.
"""

import logging
from typing import Callable, Iterable, Optional

from branchkeeper.config import Config
from branchkeeper.errors import GitError, PreconditionError
from branchkeeper.executor import BatchExecutor, StateGuard
from branchkeeper.git import RepositoryPort
from branchkeeper.logging_config import get_logger
from branchkeeper.models import (
    Action,
    BranchName,
    ExecutionResult,
    OperationReport,
    Outcome,
    Plan,
    PlanItem,
    SkippedBranch,
)
from branchkeeper.planner import plan_clean, plan_fetch, plan_merge, referenced_remotes, resolve_merge_targets
from branchkeeper.policy import build_policy, should_skip
from branchkeeper.remote_cache import RemoteStateCache

ConfirmCallback = Callable[[Plan], bool]

SWITCH_STASH_MESSAGE = "branchkeeper: auto-stash before switching branches"


class BranchOperations:
    """The clean, merge, fetch, delete and switch commands over one repository."""

    def __init__(
        self,
        repo: RepositoryPort,
        config: Optional[Config] = None,
        confirm: Optional[ConfirmCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize the commands.

        Args:
            repo: Repository to operate on
            config: Merged configuration, defaults if omitted
            confirm: Called with the finished plan before anything is executed;
                None approves every plan
            logger: Logger shared with the planners and the executor
        """
        self.repo = repo
        self.config = config or Config()
        self.confirm = confirm
        self.logger = logger or get_logger(__name__)
        self.executor = BatchExecutor(logger=self.logger)

    # Shared lifecycle steps

    def _require_repository(self) -> None:
        if not self.repo.is_repository():
            raise PreconditionError("Current directory is not a git repository")

    def _require_clean_worktree(self) -> None:
        if self.config.auto_stash:
            return
        dirty = self.repo.is_dirty()
        if dirty.value:
            if dirty.failed:
                raise PreconditionError(f"Could not check the work tree for changes: {dirty.error}")
            raise PreconditionError("Work tree has uncommitted changes; commit or stash them first")

    def _approved(self, plan: Plan, ask: bool) -> bool:
        """Ask for confirmation when asking is enabled; interrupting counts as no."""
        if not ask or self.confirm is None:
            return True
        try:
            return self.confirm(plan)
        except (KeyboardInterrupt, EOFError):
            return False

    def _execute(self, plan: Plan, handler: Callable[[PlanItem], None]) -> ExecutionResult:
        with StateGuard(self.repo, auto_stash=self.config.auto_stash, logger=self.logger):
            return self.executor.execute(plan, handler)

    def _finish(
        self,
        command: str,
        plan: Plan,
        skipped: list[SkippedBranch],
        ask: bool,
        handler: Callable[[PlanItem], None],
    ) -> OperationReport:
        if not plan:
            return OperationReport(command, Outcome.NOTHING_TO_DO, plan=plan, skipped=skipped, message="Nothing to do")
        if not self._approved(plan, ask):
            self.logger.info("%s cancelled before execution", command)
            return OperationReport(command, Outcome.CANCELLED, plan=plan, skipped=skipped, message="Operation cancelled")
        try:
            result = self._execute(plan, handler)
        except PreconditionError as err:
            return OperationReport(command, Outcome.ABORTED, plan=plan, skipped=skipped, message=str(err))
        self.logger.info("%s finished: %d succeeded, %d failed", command, result.succeeded, result.failed)
        return OperationReport(command, Outcome.DONE, plan=plan, result=result, skipped=skipped)

    def _current_branch(self) -> BranchName:
        # An unknown current branch is treated as "no branch" and planning goes on
        return self.repo.current_branch().value

    # Commands

    def clean_branches(self) -> OperationReport:
        """Delete local branches whose upstream no longer exists on the remote."""
        config = self.config
        try:
            self._require_repository()
        except PreconditionError as err:
            return OperationReport("clean", Outcome.ABORTED, message=str(err))

        current = self._current_branch()
        self.logger.info("Current branch: %s", current or "(unknown)")
        policy = build_policy(config.protected_branches, config.ignore, current)

        pairs = self.repo.tracking_pairs()
        if pairs.failed:
            return OperationReport("clean", Outcome.ABORTED, message=f"Failed to read upstream branches: {pairs.error}")
        self.logger.debug("Tracking pairs: %s", pairs.value)

        remotes = referenced_remotes(pairs.value, config.remotes)
        cache = RemoteStateCache.build(self.repo, remotes, workers=config.workers, logger=self.logger)
        plan = plan_clean(
            pairs.value,
            cache,
            policy,
            force=config.force,
            remotes=config.remotes,
            skip_unreachable=config.skip_unreachable_remotes,
            logger=self.logger,
        )

        if plan and config.list_only:
            return OperationReport("clean", Outcome.DONE, plan=plan, message="Listed only, nothing deleted")

        ask = config.confirm and not config.silent and not config.force
        report = self._finish(
            "clean",
            plan,
            [],
            ask,
            lambda item: self.repo.delete_branch(item.branch, force=item.force),
        )
        if report.outcome is Outcome.DONE and not config.silent:
            self.repo.refresh_remote_tracking_info()
        return report

    def merge_to_branches(self, source: BranchName, targets: Iterable[BranchName] = ()) -> OperationReport:
        """Merge ``source`` into each target, or into every local branch if none are given."""
        config = self.config
        try:
            self._require_repository()
            self._require_clean_worktree()
            exists = self.repo.branch_exists(source)
            if not exists.value:
                raise PreconditionError(f"Source branch {source} does not exist")
            if self.repo.has_unmerged_outgoing_commits(source).value:
                raise PreconditionError(f"Source branch {source} has unpushed commits")
        except PreconditionError as err:
            return OperationReport("merge", Outcome.ABORTED, message=str(err))

        current = self._current_branch()
        targets = list(targets)
        local: list[BranchName] = []
        if not targets:
            branches = self.repo.local_branches()
            if branches.failed:
                return OperationReport("merge", Outcome.ABORTED, message=f"Failed to list branches: {branches.error}")
            local = branches.value

        policy = build_policy(config.protected_branches, (), current)
        resolved, skipped = resolve_merge_targets(source, targets, local, config.merge_ignore, policy)
        plan = plan_merge(source, resolved)
        self.logger.info("Merging %s into: %s", source, ", ".join(plan.branches) or "(none)")

        ff_only = config.ff_only
        return self._finish(
            "merge",
            plan,
            skipped,
            config.confirm and not config.silent,
            lambda item: self.repo.merge_into(item.branch, item.source or source, fast_forward_only=ff_only),
        )

    def fetch_all_branches(self) -> OperationReport:
        """Create a local tracking branch for every branch of the configured remote."""
        config = self.config
        remote = config.fetch_remote
        try:
            self._require_repository()
            self._require_clean_worktree()
        except PreconditionError as err:
            return OperationReport("fetch", Outcome.ABORTED, message=str(err))

        # New branches are created from remote-tracking refs, so bring them up to date first
        self.repo.refresh_remote_tracking_info()

        listing = self.repo.remote_branches(remote)
        if listing.failed:
            return OperationReport("fetch", Outcome.ABORTED, message=f"Failed to list branches of {remote}: {listing.error}")
        if not listing.value:
            return OperationReport("fetch", Outcome.NOTHING_TO_DO, message=f"No branches found on {remote}")
        self.logger.info("Found %d branch(es) on %s", len(listing.value), remote)

        current = self._current_branch()
        policy = build_policy(config.protected_branches, config.fetch_ignore, current)
        plan, skipped = plan_fetch(listing.value, remote, self.repo.local_branches().value, policy, force=config.fetch_force)
        for entry in skipped:
            self.logger.info("Skipping %s (%s)", entry.branch, entry.reason)

        def create(item: PlanItem) -> None:
            if item.force:
                self.logger.info("Recreating %s from %s/%s", item.branch, item.source, item.branch)
                self.repo.delete_branch(item.branch, force=True)
            self.repo.create_tracking_branch(item.branch, item.source or remote)

        return self._finish("fetch", plan, skipped, config.confirm and not config.silent, create)

    def delete_branches(self, branches: Iterable[BranchName]) -> OperationReport:
        """Delete hand-picked local branches, still honoring protection."""
        config = self.config
        try:
            self._require_repository()
        except PreconditionError as err:
            return OperationReport("delete", Outcome.ABORTED, message=str(err))

        policy = build_policy(config.protected_branches, (), self._current_branch())
        items: list[PlanItem] = []
        skipped: list[SkippedBranch] = []
        for branch in dict.fromkeys(branches):
            if should_skip(branch, policy):
                skipped.append(SkippedBranch(branch, "current" if branch == policy.current_branch else "protected"))
            else:
                items.append(PlanItem(branch=branch, action=Action.DELETE, force=config.force))

        return self._finish(
            "delete",
            Plan(items=tuple(items)),
            skipped,
            config.confirm and not config.silent,
            lambda item: self.repo.delete_branch(item.branch, force=item.force),
        )

    def switch_branch(self, branch: BranchName, stash: bool = False) -> OperationReport:
        """Check out ``branch``, stashing uncommitted changes first if allowed."""
        try:
            self._require_repository()
        except PreconditionError as err:
            return OperationReport("switch", Outcome.ABORTED, message=str(err))

        if branch == self._current_branch():
            return OperationReport("switch", Outcome.NOTHING_TO_DO, message=f"Already on {branch}")

        dirty = self.repo.is_dirty()
        if dirty.value:
            if not stash or dirty.failed:
                return OperationReport(
                    "switch", Outcome.ABORTED, message="Work tree has uncommitted changes; commit or stash them first"
                )
            try:
                stashed = self.repo.stash_changes(SWITCH_STASH_MESSAGE)
            except GitError as err:
                return OperationReport("switch", Outcome.ABORTED, message=str(err))
            if not stashed:
                return OperationReport("switch", Outcome.ABORTED, message="Git found nothing to stash; switch aborted")
            self.logger.info("Stashed uncommitted changes before switching to %s", branch)

        plan = Plan(items=(PlanItem(branch=branch, action=Action.CHECKOUT),))
        # Switching is the point of this command, so there is no state to restore
        result = self.executor.execute(plan, lambda item: self.repo.checkout(item.branch))
        return OperationReport("switch", Outcome.DONE, plan=plan, result=result)
