"""Git repository operations.

``RepositoryPort`` is the narrow interface the planners and the executor
talk to. ``GitRepo`` implements it with one git invocation per operation.
Read-only queries never raise: they return a ``QueryResult`` whose value is
the fail-safe default when git could not answer. Mutations raise
``GitError`` so the batch executor can record why an item failed.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from branchkeeper.errors import GitError
from branchkeeper.logging_config import get_logger
from branchkeeper.models import BranchName, QueryResult, RemoteRef, TrackingPair


class RepositoryPort(ABC):
    """Queries and mutations the branch lifecycle engine needs from a VCS."""

    @abstractmethod
    def is_repository(self) -> bool:
        """Whether the path is inside a work tree."""

    @abstractmethod
    def current_branch(self) -> QueryResult[str]:
        """Name of the checked out branch, empty when unknown or detached."""

    @abstractmethod
    def head_commit(self) -> QueryResult[str]:
        """Commit id HEAD points at, empty when unknown."""

    @abstractmethod
    def local_branches(self) -> QueryResult[list[BranchName]]:
        """All local branches, in git's order."""

    @abstractmethod
    def tracking_pairs(self) -> QueryResult[list[TrackingPair]]:
        """Local branches that have a remote upstream configured."""

    @abstractmethod
    def remote_branches(self, remote: str) -> QueryResult[list[BranchName]]:
        """Branches currently advertised by ``remote``."""

    @abstractmethod
    def branch_exists(self, name: BranchName) -> QueryResult[bool]:
        """Whether a local branch called ``name`` exists."""

    @abstractmethod
    def is_dirty(self) -> QueryResult[bool]:
        """Whether the work tree has uncommitted changes."""

    @abstractmethod
    def has_unmerged_outgoing_commits(self, branch: BranchName) -> QueryResult[bool]:
        """Whether ``branch`` has commits that exist on no remote."""

    @abstractmethod
    def delete_branch(self, name: BranchName, force: bool = False) -> None:
        """Delete a local branch; without ``force`` it must be fully merged."""

    @abstractmethod
    def checkout(self, name: BranchName, allow_discard_changes: bool = False) -> None:
        """Switch to ``name``, refusing on a dirty work tree unless allowed to discard."""

    @abstractmethod
    def merge_into(self, target: BranchName, source: BranchName, fast_forward_only: bool = True) -> None:
        """Check out ``target`` and merge ``source`` into it."""

    @abstractmethod
    def create_tracking_branch(self, branch: BranchName, remote: str) -> None:
        """Create ``branch`` tracking ``remote/branch``."""

    @abstractmethod
    def refresh_remote_tracking_info(self) -> None:
        """Update remote-tracking refs and prune stale ones. Best effort."""

    @abstractmethod
    def stash_changes(self, message: str) -> bool:
        """Stash uncommitted changes, untracked files included.

        Returns:
            True if a stash entry was created, False if there was nothing to save.
        """

    @abstractmethod
    def pop_stash(self) -> None:
        """Re-apply the most recent stash."""


def _stderr(err: GitCommandError) -> str:
    """Extract the useful part of a git failure."""
    message = (err.stderr or "").strip() or (err.stdout or "").strip()
    for prefix in ("stderr:", "stdout:"):
        if message.startswith(prefix):
            message = message[len(prefix) :].strip()
    message = message.strip("'").strip()
    return message or str(err)


class GitRepo(RepositoryPort):
    """Git repository operations."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None) -> None:
        """Open the repository at ``path``.

        Raises:
            GitError: If the path is not a usable (non-bare) repository
        """
        self.logger = logger or get_logger(__name__)
        try:
            self.repo: Repo = Repo(path, search_parent_directories=True)
            if self.repo.bare:
                raise GitError("Cannot operate on bare repository")
        except (GitCommandError, ValueError, InvalidGitRepositoryError, NoSuchPathError) as err:
            raise GitError(f"Failed to open repository: {err}") from err

    def is_repository(self) -> bool:
        try:
            return self.repo.git.rev_parse("--is-inside-work-tree").strip() == "true"
        except GitCommandError:
            return False

    def current_branch(self) -> QueryResult[str]:
        try:
            name = self.repo.git.rev_parse("--abbrev-ref", "HEAD").strip()
        except GitCommandError as err:
            self.logger.error("Failed to get current branch: %s", _stderr(err))
            return QueryResult.failure("", _stderr(err))
        # Detached HEAD has no branch to protect or return to
        if name == "HEAD":
            return QueryResult.ok("")
        return QueryResult.ok(name)

    def head_commit(self) -> QueryResult[str]:
        try:
            return QueryResult.ok(self.repo.git.rev_parse("HEAD").strip())
        except GitCommandError as err:
            self.logger.error("Failed to resolve HEAD: %s", _stderr(err))
            return QueryResult.failure("", _stderr(err))

    def local_branches(self) -> QueryResult[list[BranchName]]:
        try:
            output = self.repo.git.branch("--format=%(refname:short)")
        except GitCommandError as err:
            self.logger.error("Failed to list local branches: %s", _stderr(err))
            return QueryResult.failure([], _stderr(err))
        branches = [line.strip() for line in output.splitlines()]
        # "(HEAD detached at ...)" is not a branch
        return QueryResult.ok([branch for branch in branches if branch and not branch.startswith("(")])

    def tracking_pairs(self) -> QueryResult[list[TrackingPair]]:
        try:
            output = self.repo.git.for_each_ref(
                "--format=%(refname:short) %(upstream:short) %(upstream:remotename)",
                "refs/heads",
            )
        except GitCommandError as err:
            self.logger.error("Failed to read upstream configuration: %s", _stderr(err))
            return QueryResult.failure([], _stderr(err))

        pairs: list[TrackingPair] = []
        for line in output.splitlines():
            fields = line.split()
            if len(fields) < 2 or fields[1] == "(null)":
                continue
            local, upstream = fields[0], fields[1]
            remote = fields[2] if len(fields) > 2 else ""
            if remote == ".":
                # Upstream is another local branch
                continue
            try:
                if remote and upstream.startswith(remote + "/"):
                    ref = RemoteRef(remote=remote, remote_branch=upstream[len(remote) + 1 :])
                else:
                    ref = RemoteRef.parse(upstream)
            except ValueError:
                self.logger.debug("Ignoring %s: upstream %r is not a remote branch", local, upstream)
                continue
            pairs.append(TrackingPair(local=local, upstream=ref))
        return QueryResult.ok(pairs)

    def remote_branches(self, remote: str) -> QueryResult[list[BranchName]]:
        try:
            output = self.repo.git.ls_remote("--heads", remote)
        except GitCommandError as err:
            self.logger.error("Failed to list branches of remote %s: %s", remote, _stderr(err))
            return QueryResult.failure([], _stderr(err))
        branches = []
        for line in output.splitlines():
            _, _, ref = line.partition("\t")
            if ref.startswith("refs/heads/"):
                branches.append(ref[len("refs/heads/") :])
        return QueryResult.ok(branches)

    def branch_exists(self, name: BranchName) -> QueryResult[bool]:
        try:
            self.repo.git.show_ref("--verify", "--quiet", f"refs/heads/{name}")
            return QueryResult.ok(True)
        except GitCommandError as err:
            if err.status == 1:
                return QueryResult.ok(False)
            self.logger.error("Failed to check whether %s exists: %s", name, _stderr(err))
            return QueryResult.failure(False, _stderr(err))

    def is_dirty(self) -> QueryResult[bool]:
        try:
            return QueryResult.ok(bool(self.repo.git.status("--porcelain").strip()))
        except GitCommandError as err:
            # If we can't check, assume there are changes to be safe
            self.logger.error("Failed to check work tree status: %s", _stderr(err))
            return QueryResult.failure(True, _stderr(err))

    def has_unmerged_outgoing_commits(self, branch: BranchName) -> QueryResult[bool]:
        try:
            count = self.repo.git.rev_list("--count", branch, "--not", "--remotes").strip()
            return QueryResult.ok(count != "0")
        except GitCommandError as err:
            # Be conservative and protect the branch
            self.logger.error("Failed to check unpushed commits of %s: %s", branch, _stderr(err))
            return QueryResult.failure(True, _stderr(err))

    def delete_branch(self, name: BranchName, force: bool = False) -> None:
        try:
            self.repo.git.branch("-D" if force else "-d", name)
        except GitCommandError as err:
            raise GitError(f"Failed to delete {name}: {_stderr(err)}", branch=name) from err

    def checkout(self, name: BranchName, allow_discard_changes: bool = False) -> None:
        if not allow_discard_changes and self.is_dirty().value:
            raise GitError(f"Cannot check out {name}: work tree has uncommitted changes", branch=name)
        args = ["--force", name] if allow_discard_changes else [name]
        try:
            self.repo.git.checkout(*args)
        except GitCommandError as err:
            raise GitError(f"Failed to check out {name}: {_stderr(err)}", branch=name) from err

    def merge_into(self, target: BranchName, source: BranchName, fast_forward_only: bool = True) -> None:
        self.checkout(target)
        try:
            self.repo.git.merge("--ff-only" if fast_forward_only else "--no-ff", "--no-edit", source)
        except GitCommandError as err:
            if not fast_forward_only:
                # Leave no half-finished merge behind for the next checkout
                try:
                    self.repo.git.merge("--abort")
                except GitCommandError as abort_err:
                    self.logger.error("Failed to abort merge on %s: %s", target, _stderr(abort_err))
            raise GitError(f"Failed to merge {source} into {target}: {_stderr(err)}", branch=target) from err

    def create_tracking_branch(self, branch: BranchName, remote: str) -> None:
        try:
            self.repo.git.branch("--track", branch, f"{remote}/{branch}")
        except GitCommandError as err:
            raise GitError(f"Failed to create {branch} from {remote}/{branch}: {_stderr(err)}", branch=branch) from err

    def refresh_remote_tracking_info(self) -> None:
        try:
            self.repo.git.fetch("--all", "--prune")
        except GitCommandError as err:
            self.logger.warning("Failed to refresh remote-tracking branches: %s", _stderr(err))

    def _stash_tip(self) -> str:
        try:
            return self.repo.git.rev_parse("-q", "--verify", "refs/stash").strip()
        except GitCommandError:
            # No stash entries yet
            return ""

    def stash_changes(self, message: str) -> bool:
        before = self._stash_tip()
        try:
            self.repo.git.stash("push", "--include-untracked", "-m", message)
        except GitCommandError as err:
            raise GitError(f"Failed to stash changes: {_stderr(err)}") from err
        return self._stash_tip() != before

    def pop_stash(self) -> None:
        try:
            self.repo.git.stash("pop")
        except GitCommandError as err:
            raise GitError(f"Failed to restore stashed changes: {_stderr(err)}") from err
