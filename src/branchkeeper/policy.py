"""Branch protection policy."""

from fnmatch import fnmatch
from typing import Iterable

from branchkeeper.models import BranchName, Policy


def build_policy(protected: Iterable[str] = (), ignore: Iterable[str] = (), current_branch: BranchName = "") -> Policy:
    """Build a policy, dropping blank patterns."""
    return Policy(
        protected_branches=frozenset(p.strip() for p in protected if p and p.strip()),
        ignore=frozenset(p.strip() for p in ignore if p and p.strip()),
        current_branch=current_branch,
    )


def matches_any(branch: BranchName, patterns: Iterable[str]) -> bool:
    """Whether ``branch`` equals or glob-matches one of ``patterns``."""
    return any(branch == pattern or fnmatch(branch, pattern) for pattern in patterns)


def is_protected(branch: BranchName, policy: Policy) -> bool:
    """Whether ``branch`` is the current branch or a protected one."""
    return (bool(policy.current_branch) and branch == policy.current_branch) or matches_any(
        branch, policy.protected_branches
    )


def should_skip(branch: BranchName, policy: Policy) -> bool:
    """Whether ``branch`` must be left out of every mutation plan.

    Git forbids ``*``, ``?`` and ``[`` in branch names, so glob matching never
    turns an exact name into a broader one.
    """
    return is_protected(branch, policy) or matches_any(branch, policy.ignore)
