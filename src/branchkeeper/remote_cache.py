"""Snapshot of the branches each remote advertises."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional

from branchkeeper.git import RepositoryPort
from branchkeeper.logging_config import get_logger
from branchkeeper.models import BranchName, QueryResult


class RemoteStateCache:
    """Branch sets of a fixed group of remotes, fetched once per remote.

    The cost of building the cache is one listing per distinct remote, no
    matter how many local branches track it.
    """

    def __init__(
        self,
        branches: dict[str, frozenset],
        failed_remotes: Optional[dict[str, str]] = None,
        query_count: int = 0,
    ) -> None:
        self._branches = branches
        self.failed_remotes: dict[str, str] = failed_remotes or {}
        self.query_count = query_count

    @classmethod
    def build(
        cls,
        repo: RepositoryPort,
        remotes: Iterable[str],
        workers: int = 1,
        logger: Optional[logging.Logger] = None,
    ) -> "RemoteStateCache":
        """Query every distinct remote once and assemble the snapshot.

        Args:
            repo: Repository to query
            remotes: Remote names, duplicates allowed
            workers: Listings issued in parallel; 1 keeps them sequential
            logger: Where failed listings are reported

        Returns:
            The populated cache. Nothing reads it until every listing is in.
        """
        logger = logger or get_logger(__name__)
        distinct = list(dict.fromkeys(remotes))

        if workers > 1 and len(distinct) > 1:
            with ThreadPoolExecutor(max_workers=min(workers, len(distinct))) as executor:
                results = list(executor.map(repo.remote_branches, distinct))
        else:
            results = [repo.remote_branches(remote) for remote in distinct]

        branches: dict[str, frozenset] = {}
        failed: dict[str, str] = {}
        for remote, result in zip(distinct, results):
            branches[remote] = frozenset(result.value)
            if result.failed:
                failed[remote] = result.error or "unknown error"
                logger.warning("Remote %s could not be listed and is treated as having no branches", remote)
            else:
                logger.debug("Remote %s advertises %d branch(es)", remote, len(result.value))
        return cls(branches, failed_remotes=failed, query_count=len(distinct))

    @property
    def remotes(self) -> list[str]:
        return list(self._branches)

    def branches(self, remote: str) -> QueryResult[frozenset]:
        """Branch set of ``remote``, flagged as failed if it was never listed successfully."""
        if remote not in self._branches:
            return QueryResult.failure(frozenset(), f"remote {remote} was not queried")
        if remote in self.failed_remotes:
            return QueryResult.failure(frozenset(), self.failed_remotes[remote])
        return QueryResult.ok(self._branches[remote])

    def membership(self, remote: str, branch: BranchName) -> bool:
        """Whether ``remote`` advertises ``branch``; False for unknown or failed remotes."""
        return branch in self._branches.get(remote, frozenset())

    def is_reachable(self, remote: str) -> bool:
        return remote in self._branches and remote not in self.failed_remotes
