"""Test configuration and fixtures."""

from pathlib import Path
from typing import Callable, Generator, Optional

import pytest
from git import Actor, Repo

from branchkeeper.errors import GitError
from branchkeeper.git import RepositoryPort
from branchkeeper.models import QueryResult, RemoteRef, TrackingPair


class FakeRepository(RepositoryPort):
    """In-memory repository that records every call made to it."""

    def __init__(
        self,
        branches: Optional[dict[str, Optional[str]]] = None,
        remotes: Optional[dict[str, list[str]]] = None,
        current: str = "main",
    ) -> None:
        # local branch -> "remote/branch" upstream or None
        self.branches: dict[str, Optional[RemoteRef]] = {
            name: RemoteRef.parse(upstream) if upstream else None for name, upstream in (branches or {}).items()
        }
        self.remotes: dict[str, list[str]] = remotes or {}
        self.current = current
        # Commit HEAD points at while detached
        self.head = ""
        self.commits: set[str] = set()
        self.valid = True
        self.dirty = False
        self.unpushed: set[str] = set()
        self.unmerged: set[str] = set()
        self.fail_current = False
        self.fail_remotes: set[str] = set()
        self.fail_delete: set[str] = set()
        self.fail_merge: set[str] = set()
        self.fail_checkout: set[str] = set()
        self.nothing_to_stash = False
        self.remote_queries: list[str] = []
        self.deleted: list[tuple[str, bool]] = []
        self.merges: list[tuple[str, str, bool]] = []
        self.created: list[tuple[str, str]] = []
        self.checkouts: list[str] = []
        self.stashes: list[str] = []
        self.refreshed = 0

    def is_repository(self) -> bool:
        return self.valid

    def current_branch(self) -> QueryResult[str]:
        if self.fail_current:
            return QueryResult.failure("", "HEAD is unreadable")
        return QueryResult.ok(self.current)

    def head_commit(self) -> QueryResult[str]:
        return QueryResult.ok(f"{self.current}-tip" if self.current else self.head)

    def local_branches(self) -> QueryResult[list[str]]:
        return QueryResult.ok(list(self.branches))

    def tracking_pairs(self) -> QueryResult[list[TrackingPair]]:
        return QueryResult.ok(
            [TrackingPair(local=name, upstream=ref) for name, ref in self.branches.items() if ref is not None]
        )

    def remote_branches(self, remote: str) -> QueryResult[list[str]]:
        self.remote_queries.append(remote)
        if remote in self.fail_remotes:
            return QueryResult.failure([], f"could not read from remote {remote}")
        return QueryResult.ok(list(self.remotes.get(remote, [])))

    def branch_exists(self, name: str) -> QueryResult[bool]:
        return QueryResult.ok(name in self.branches)

    def is_dirty(self) -> QueryResult[bool]:
        return QueryResult.ok(self.dirty)

    def has_unmerged_outgoing_commits(self, branch: str) -> QueryResult[bool]:
        return QueryResult.ok(branch in self.unpushed)

    def delete_branch(self, name: str, force: bool = False) -> None:
        if name in self.fail_delete or name not in self.branches:
            raise GitError(f"error: branch '{name}' not found", branch=name)
        if name in self.unmerged and not force:
            raise GitError(f"error: the branch '{name}' is not fully merged", branch=name)
        del self.branches[name]
        self.deleted.append((name, force))

    def checkout(self, name: str, allow_discard_changes: bool = False) -> None:
        if self.dirty and not allow_discard_changes:
            raise GitError(f"Cannot check out {name}: work tree has uncommitted changes", branch=name)
        if name in self.fail_checkout or (name not in self.branches and name not in self.commits):
            raise GitError(f"error: pathspec '{name}' did not match", branch=name)
        if name in self.commits:
            self.current, self.head = "", name
        else:
            self.current = name
        self.checkouts.append(name)

    def merge_into(self, target: str, source: str, fast_forward_only: bool = True) -> None:
        self.checkout(target)
        if target in self.fail_merge:
            raise GitError("fatal: Not possible to fast-forward, aborting.", branch=target)
        self.merges.append((target, source, fast_forward_only))

    def create_tracking_branch(self, branch: str, remote: str) -> None:
        if branch in self.branches:
            raise GitError(f"fatal: a branch named '{branch}' already exists", branch=branch)
        if branch not in self.remotes.get(remote, []):
            raise GitError(f"fatal: '{remote}/{branch}' is not a commit", branch=branch)
        self.branches[branch] = RemoteRef(remote, branch)
        self.created.append((branch, remote))

    def refresh_remote_tracking_info(self) -> None:
        self.refreshed += 1

    def stash_changes(self, message: str) -> bool:
        if self.nothing_to_stash:
            return False
        self.stashes.append(message)
        self.dirty = False
        return True

    def pop_stash(self) -> None:
        if not self.stashes:
            raise GitError("No stash entries found.")
        self.stashes.pop()
        self.dirty = True


@pytest.fixture
def make_repo() -> Callable[..., FakeRepository]:
    """Factory for in-memory repositories."""
    return FakeRepository


@pytest.fixture
def fake_repo() -> FakeRepository:
    """main, feature/a (upstream exists) and feature/b (upstream deleted), on main."""
    return FakeRepository(
        branches={
            "main": "origin/main",
            "feature/a": "origin/feature/a",
            "feature/b": "origin/feature/b",
        },
        remotes={"origin": ["main", "feature/a"]},
        current="main",
    )


@pytest.fixture
def test_env(tmp_path: Path) -> Generator[tuple[Path, Path], None, None]:
    """Create a test environment with local and remote repositories.

    Branches of the local repository:
    - main, tracking origin/main
    - feature/a, tracking origin/feature/a which still exists
    - feature/b, tracking origin/feature/b which was deleted on the remote
    - hotfix, one pushed commit ahead of main
    - dev, at main
    - diverged, with a commit of its own so it cannot fast-forward to hotfix
    - local-only, without upstream

    The remote also has feature/remote, which has no local branch.
    The active branch is main.

    Returns:
        Tuple of (local_repo_path, remote_repo_path)
    """
    remote_path = tmp_path / "remote"
    local_path = tmp_path / "local"
    remote_path.mkdir()
    local_path.mkdir()

    Repo.init(remote_path, bare=True)
    local_repo = Repo.init(local_path)

    author = Actor("Test User", "test@example.com")
    local_repo.config_writer().set_value("user", "name", author.name).release()
    local_repo.config_writer().set_value("user", "email", author.email).release()

    def commit(name: str, content: str) -> None:
        test_file = local_path / name
        test_file.parent.mkdir(parents=True, exist_ok=True)
        test_file.write_text(content)
        local_repo.index.add([name])
        local_repo.index.commit(f"Add {name}", author=author, committer=author)

    commit("README.md", "# Test Repository")
    local_repo.git.branch("-M", "main")

    local_repo.create_remote("origin", url=str(remote_path))
    local_repo.git.push("-u", "origin", "main")

    def create_branch(name: str, content: Optional[str] = None, push: bool = True) -> None:
        """Create a branch off main, optionally with a commit, optionally pushed with tracking."""
        local_repo.git.checkout("main")
        local_repo.git.checkout("-b", name)
        if content is not None:
            commit(f"{name.replace('/', '_')}.txt", content)
        if push:
            local_repo.git.push("-u", "origin", name)
        local_repo.git.checkout("main")

    create_branch("feature/a", "A content")
    create_branch("feature/b", "B content")
    local_repo.git.push("origin", "--delete", "feature/b")
    create_branch("hotfix", "Hotfix content")
    create_branch("dev")
    create_branch("diverged", "Diverged content")
    create_branch("local-only", "Local content", push=False)
    create_branch("feature/remote", "Remote content")
    local_repo.git.branch("-D", "feature/remote")

    local_repo.git.checkout("main")

    yield local_path, remote_path

    local_repo.close()
