"""Integration tests for the bk CLI.

Runs the commands against a real local repository with a bare remote.
"""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from branchkeeper.cli import app
from branchkeeper.git import GitRepo


@pytest.fixture
def test_repo(test_env: tuple[Path, Path]) -> Path:
    """Local repository path of the test environment."""
    local_path, _ = test_env
    return local_path


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


def branches_of(path: Path) -> list[str]:
    return GitRepo(path).local_branches().value


def test_clean_deletes_gone_branch(test_repo: Path, runner: CliRunner) -> None:
    """Only the branch whose upstream was deleted is removed."""
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--force"])
    assert result.exit_code == 0
    assert "1 succeeded" in result.stdout
    branches = branches_of(test_repo)
    assert "feature/b" not in branches
    assert "feature/a" in branches
    assert "local-only" in branches
    assert GitRepo(test_repo).current_branch().value == "main"


def test_clean_without_force_keeps_unmerged_branch(test_repo: Path, runner: CliRunner) -> None:
    """A safe delete of an unmerged branch is reported as failed, exit code stays 0."""
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--no-confirm", "--verbose"])
    assert result.exit_code == 0
    assert "0 succeeded" in result.stdout
    assert "1 failed" in result.stdout
    assert "feature/b" in branches_of(test_repo)


def test_clean_list_only(test_repo: Path, runner: CliRunner) -> None:
    """Listing shows the plan and deletes nothing."""
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--list-only"])
    assert result.exit_code == 0
    assert "feature/b" in result.stdout
    assert "feature/b" in branches_of(test_repo)


def test_clean_cancelled(test_repo: Path, runner: CliRunner) -> None:
    """Declining the confirmation exits with 1 and keeps the branches."""
    result = runner.invoke(app, ["clean", "--path", str(test_repo)], input="n\n")
    assert result.exit_code == 1
    assert "Branches to Delete" in result.stdout
    assert "cancelled" in result.stdout
    assert "feature/b" in branches_of(test_repo)


def test_clean_with_ignore(test_repo: Path, runner: CliRunner) -> None:
    """Ignored branches are left alone, leaving nothing to do."""
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--ignore", "feature/b", "--force"])
    assert result.exit_code == 0
    assert "Nothing to do" in result.stdout
    assert "feature/b" in branches_of(test_repo)


def test_clean_reads_config_file(test_repo: Path, runner: CliRunner) -> None:
    """Defaults come from .branchkeeperrc.json in the repository."""
    (test_repo / ".branchkeeperrc.json").write_text(json.dumps({"ignore": ["feature/b"]}))
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--force"])
    assert result.exit_code == 0
    assert "feature/b" in branches_of(test_repo)


def test_clean_malformed_config_file(test_repo: Path, runner: CliRunner) -> None:
    """A broken config file falls back to defaults instead of aborting."""
    (test_repo / ".branchkeeperrc.json").write_text("{not json")
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--force"])
    assert result.exit_code == 0
    assert "feature/b" not in branches_of(test_repo)


def point_dev_at_unreachable_remote(path: Path) -> None:
    repo = GitRepo(path).repo
    repo.git.remote("add", "broken", str(path / "no-such-remote"))
    repo.git.config("branch.dev.remote", "broken")
    repo.git.config("branch.dev.merge", "refs/heads/dev")


def test_clean_unreachable_remote_still_deletes(test_repo: Path, runner: CliRunner) -> None:
    """Branches of a remote that cannot be listed are still cleaned by default."""
    point_dev_at_unreachable_remote(test_repo)
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--force"])
    assert result.exit_code == 0
    branches = branches_of(test_repo)
    assert "dev" not in branches
    assert "feature/b" not in branches


def test_clean_skip_unreachable(test_repo: Path, runner: CliRunner) -> None:
    """--skip-unreachable keeps branches whose remote cannot be listed."""
    point_dev_at_unreachable_remote(test_repo)
    result = runner.invoke(app, ["clean", "--path", str(test_repo), "--force", "--skip-unreachable"])
    assert result.exit_code == 0
    branches = branches_of(test_repo)
    assert "dev" in branches
    assert "feature/b" not in branches


def test_not_a_repository(tmp_path: Path, runner: CliRunner) -> None:
    """Commands outside a repository exit with 1."""
    plain = tmp_path / "plain"
    plain.mkdir()
    result = runner.invoke(app, ["clean", "--path", str(plain)])
    assert result.exit_code == 1
    assert "Error" in result.stdout


def test_merge_fast_forward_fan_out(test_repo: Path, runner: CliRunner) -> None:
    """dev fast-forwards, diverged fails, and we end up back on main."""
    result = runner.invoke(
        app, ["merge", "--source", "hotfix", "--target", "dev", "--target", "diverged", "--path", str(test_repo)]
    )
    assert result.exit_code == 0
    assert "1 succeeded" in result.stdout
    assert "1 failed" in result.stdout

    repo = GitRepo(test_repo)
    assert repo.current_branch().value == "main"
    assert repo.repo.heads["dev"].commit == repo.repo.heads["hotfix"].commit


def test_merge_no_ff(test_repo: Path, runner: CliRunner) -> None:
    """--no-ff merges diverged branches with a merge commit."""
    result = runner.invoke(
        app, ["merge", "--source", "hotfix", "--target", "diverged", "--no-ff", "--path", str(test_repo)]
    )
    assert result.exit_code == 0
    assert "1 succeeded" in result.stdout
    assert len(GitRepo(test_repo).repo.heads["diverged"].commit.parents) == 2


def test_merge_missing_source(test_repo: Path, runner: CliRunner) -> None:
    """A missing source branch is a command failure."""
    result = runner.invoke(app, ["merge", "--source", "nope", "--path", str(test_repo)])
    assert result.exit_code == 1
    assert "does not exist" in result.stdout


def test_merge_unpushed_source(test_repo: Path, runner: CliRunner) -> None:
    """A source with unpushed commits is refused."""
    result = runner.invoke(app, ["merge", "--source", "local-only", "--path", str(test_repo)])
    assert result.exit_code == 1
    assert "unpushed" in result.stdout


def test_merge_dirty_work_tree(test_repo: Path, runner: CliRunner) -> None:
    """Uncommitted changes abort the merge before anything is checked out."""
    (test_repo / "README.md").write_text("dirty")
    result = runner.invoke(app, ["merge", "--source", "hotfix", "--target", "dev", "--path", str(test_repo)])
    assert result.exit_code == 1
    assert GitRepo(test_repo).current_branch().value == "main"


def test_merge_auto_stash(test_repo: Path, runner: CliRunner) -> None:
    """With --auto-stash the changes survive the run."""
    (test_repo / "README.md").write_text("dirty")
    result = runner.invoke(
        app, ["merge", "--source", "hotfix", "--target", "dev", "--auto-stash", "--path", str(test_repo)]
    )
    assert result.exit_code == 0
    assert (test_repo / "README.md").read_text() == "dirty"
    assert GitRepo(test_repo).current_branch().value == "main"


def test_merge_auto_stash_untracked_only_keeps_older_stash(test_repo: Path, runner: CliRunner) -> None:
    """Only untracked files: they are stashed and restored, older stash entries stay put."""
    repo = GitRepo(test_repo)
    (test_repo / "README.md").write_text("user work in progress")
    repo.repo.git.stash("push", "-m", "user work")
    (test_repo / "notes.txt").write_text("notes")

    result = runner.invoke(
        app, ["merge", "--source", "hotfix", "--target", "dev", "--auto-stash", "--path", str(test_repo)]
    )

    assert result.exit_code == 0
    assert "1 succeeded" in result.stdout
    assert repo.repo.heads["dev"].commit == repo.repo.heads["hotfix"].commit
    assert repo.current_branch().value == "main"
    assert (test_repo / "notes.txt").read_text() == "notes"
    assert (test_repo / "README.md").read_text() == "# Test Repository"
    stashes = repo.repo.git.stash("list").splitlines()
    assert len(stashes) == 1
    assert "user work" in stashes[0]


def test_merge_from_detached_head_returns_to_commit(test_repo: Path, runner: CliRunner) -> None:
    """A run started on a detached HEAD ends on the same commit, still detached."""
    repo = GitRepo(test_repo)
    start = repo.head_commit().value
    repo.repo.git.checkout("--detach")

    result = runner.invoke(app, ["merge", "--source", "hotfix", "--target", "dev", "--path", str(test_repo)])

    assert result.exit_code == 0
    assert "1 succeeded" in result.stdout
    assert repo.current_branch().value == ""
    assert repo.head_commit().value == start


def test_fetch_creates_tracking_branches(test_repo: Path, runner: CliRunner) -> None:
    """Remote branches without a local branch get one."""
    result = runner.invoke(app, ["fetch", "--path", str(test_repo)])
    assert result.exit_code == 0
    assert "1 succeeded" in result.stdout
    pairs = {pair.local: str(pair.upstream) for pair in GitRepo(test_repo).tracking_pairs().value}
    assert pairs["feature/remote"] == "origin/feature/remote"


def test_fetch_ignore(test_repo: Path, runner: CliRunner) -> None:
    """Ignored remote branches are not created."""
    result = runner.invoke(app, ["fetch", "--ignore", "feature/remote", "--path", str(test_repo)])
    assert result.exit_code == 0
    assert "Nothing to do" in result.stdout
    assert "feature/remote" not in branches_of(test_repo)


def test_delete_named_branch(test_repo: Path, runner: CliRunner) -> None:
    """Branches given on the command line are deleted after --yes."""
    result = runner.invoke(app, ["delete", "local-only", "--force", "--yes", "--path", str(test_repo)])
    assert result.exit_code == 0
    assert "local-only" not in branches_of(test_repo)


def test_delete_protected_branch_is_refused(test_repo: Path, runner: CliRunner) -> None:
    """Protected branches survive an explicit delete."""
    result = runner.invoke(app, ["delete", "develop", "main", "--yes", "--path", str(test_repo)])
    assert result.exit_code == 0
    assert "main" in branches_of(test_repo)


def test_delete_interactive(test_repo: Path, runner: CliRunner) -> None:
    """Branches can be picked by number and confirmed."""
    result = runner.invoke(app, ["delete", "--path", str(test_repo)], input="1\ny\n")
    assert result.exit_code == 0
    assert "dev" not in branches_of(test_repo)


def test_switch_named_branch(test_repo: Path, runner: CliRunner) -> None:
    """switch checks out the given branch."""
    result = runner.invoke(app, ["switch", "dev", "--path", str(test_repo)])
    assert result.exit_code == 0
    assert "Switched to branch" in result.stdout
    assert GitRepo(test_repo).current_branch().value == "dev"


def test_switch_dirty_without_stash(test_repo: Path, runner: CliRunner) -> None:
    """Uncommitted changes block a non-interactive switch."""
    (test_repo / "README.md").write_text("dirty")
    result = runner.invoke(app, ["switch", "dev", "--path", str(test_repo)])
    assert result.exit_code == 1
    assert GitRepo(test_repo).current_branch().value == "main"


def test_switch_with_stash_untracked_only(test_repo: Path, runner: CliRunner) -> None:
    """--stash also puts untracked files aside."""
    (test_repo / "notes.txt").write_text("notes")
    result = runner.invoke(app, ["switch", "dev", "--stash", "--path", str(test_repo)])
    assert result.exit_code == 0
    assert GitRepo(test_repo).current_branch().value == "dev"
    assert not (test_repo / "notes.txt").exists()


def test_switch_with_stash(test_repo: Path, runner: CliRunner) -> None:
    """--stash puts the changes aside and switches."""
    (test_repo / "README.md").write_text("dirty")
    result = runner.invoke(app, ["switch", "dev", "--stash", "--path", str(test_repo)])
    assert result.exit_code == 0
    repo = GitRepo(test_repo)
    assert repo.current_branch().value == "dev"
    assert not repo.is_dirty().value
