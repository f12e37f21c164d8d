"""Turn repository state and policy into mutation plans.

Plans are built completely before anything is executed. Every planner runs
its candidates through the policy filter, so the current branch and
protected branches never reach a plan.
"""

import logging
from typing import Iterable, Optional

from branchkeeper.logging_config import get_logger
from branchkeeper.models import Action, BranchName, Plan, PlanItem, Policy, SkippedBranch, TrackingPair
from branchkeeper.policy import is_protected, matches_any, should_skip
from branchkeeper.remote_cache import RemoteStateCache


def _skip_reason(branch: BranchName, policy: Policy) -> str:
    if policy.current_branch and branch == policy.current_branch:
        return "current"
    if is_protected(branch, policy):
        return "protected"
    return "ignored"


def referenced_remotes(pairs: Iterable[TrackingPair], only: Optional[Iterable[str]] = None) -> list[str]:
    """Distinct remotes named by upstreams, in first-seen order.

    Args:
        pairs: Tracking pairs of the repository
        only: If non-empty, keep just these remotes
    """
    allowed = set(only or ())
    remotes: dict[str, None] = {}
    for pair in pairs:
        if pair.upstream is None:
            continue
        if allowed and pair.upstream.remote not in allowed:
            continue
        remotes.setdefault(pair.upstream.remote, None)
    return list(remotes)


def plan_clean(
    pairs: Iterable[TrackingPair],
    cache: RemoteStateCache,
    policy: Policy,
    force: bool = False,
    remotes: Optional[Iterable[str]] = None,
    skip_unreachable: bool = False,
    logger: Optional[logging.Logger] = None,
) -> Plan:
    """Plan deletion of local branches whose upstream is gone from the remote.

    Args:
        pairs: Tracking pairs in repository order; the plan keeps this order
        cache: Remote branch snapshot
        policy: Branches that must be left alone
        force: Delete even if not fully merged; never overrides the policy
        remotes: If non-empty, only consider upstreams on these remotes
        skip_unreachable: Leave branches alone when their remote could not be listed

    Returns:
        Deletion plan.
    """
    logger = logger or get_logger(__name__)
    allowed = set(remotes or ())
    items: list[PlanItem] = []

    for pair in pairs:
        if pair.upstream is None:
            continue
        if should_skip(pair.local, policy):
            logger.debug("Skipping %s (%s)", pair.local, _skip_reason(pair.local, policy))
            continue
        remote, remote_branch = pair.upstream.remote, pair.upstream.remote_branch
        if allowed and remote not in allowed:
            continue
        if cache.membership(remote, remote_branch):
            continue
        if not cache.is_reachable(remote):
            if skip_unreachable:
                logger.warning("Keeping %s: remote %s could not be listed", pair.local, remote)
                continue
            logger.warning(
                "Planning deletion of %s although remote %s could not be listed; its upstream may still exist",
                pair.local,
                remote,
            )
        logger.info("%s tracks %s which no longer exists", pair.local, pair.upstream)
        items.append(PlanItem(branch=pair.local, action=Action.DELETE, force=force))

    return Plan(items=tuple(items))


def resolve_merge_targets(
    source: BranchName,
    targets: Iterable[BranchName],
    local_branches: Iterable[BranchName],
    exclude: Iterable[str],
    policy: Policy,
) -> tuple[list[BranchName], list[SkippedBranch]]:
    """Work out which branches ``source`` gets merged into.

    An empty ``targets`` means every local branch. The source itself, the
    excluded branches and anything the policy protects are dropped.
    """
    candidates = list(dict.fromkeys(targets)) or list(local_branches)
    exclude = list(exclude)
    resolved: list[BranchName] = []
    skipped: list[SkippedBranch] = []

    for branch in candidates:
        if branch == source:
            continue
        if matches_any(branch, exclude):
            skipped.append(SkippedBranch(branch, "excluded"))
        elif should_skip(branch, policy):
            skipped.append(SkippedBranch(branch, _skip_reason(branch, policy)))
        else:
            resolved.append(branch)
    return resolved, skipped


def plan_merge(source: BranchName, targets: Iterable[BranchName]) -> Plan:
    """One merge item per target, in target order."""
    return Plan(items=tuple(PlanItem(branch=target, action=Action.MERGE, source=source) for target in targets))


def plan_fetch(
    remote_branches: Iterable[BranchName],
    remote: str,
    local_branches: Iterable[BranchName],
    policy: Policy,
    force: bool = False,
) -> tuple[Plan, list[SkippedBranch]]:
    """Plan creation of a local tracking branch for each remote branch.

    Args:
        remote_branches: Branches advertised by ``remote``, in listing order
        remote: Remote the new branches will track
        local_branches: Branches that already exist locally
        policy: Ignored and protected names plus the current branch
        force: Recreate branches that already exist locally

    Returns:
        The plan and the branches left out, with the reason.
    """
    existing = set(local_branches)
    items: list[PlanItem] = []
    skipped: list[SkippedBranch] = []

    for branch in remote_branches:
        if should_skip(branch, policy):
            skipped.append(SkippedBranch(branch, _skip_reason(branch, policy)))
        elif branch in existing and not force:
            skipped.append(SkippedBranch(branch, "exists"))
        else:
            items.append(
                PlanItem(branch=branch, action=Action.CREATE_TRACKING, force=branch in existing, source=remote)
            )
    return Plan(items=tuple(items)), skipped
