"""Data model shared by the planners, the executor and the CLI."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

BranchName = str


@dataclass(frozen=True)
class RemoteRef:
    """An upstream reference such as ``origin/feature/foo``."""

    remote: str
    remote_branch: BranchName

    @classmethod
    def parse(cls, upstream: str) -> "RemoteRef":
        """Split ``remote/branch`` on the first slash.

        Branch names may contain slashes themselves, remote names may not.
        """
        remote, sep, branch = upstream.partition("/")
        if not sep or not remote or not branch:
            raise ValueError(f"Not a remote reference: {upstream!r}")
        return cls(remote=remote, remote_branch=branch)

    def __str__(self) -> str:
        return f"{self.remote}/{self.remote_branch}"


@dataclass(frozen=True)
class TrackingPair:
    """A local branch and its configured upstream, if any."""

    local: BranchName
    upstream: Optional[RemoteRef] = None


@dataclass(frozen=True)
class Policy:
    """Which branches must never be mutated."""

    protected_branches: frozenset = frozenset()
    ignore: frozenset = frozenset()
    current_branch: BranchName = ""


class Action(Enum):
    """Kind of mutation a plan item performs."""

    DELETE = "delete"
    MERGE = "merge"
    CREATE_TRACKING = "create-tracking"
    CHECKOUT = "checkout"


@dataclass(frozen=True)
class PlanItem:
    """One planned mutation."""

    branch: BranchName
    action: Action
    force: bool = False
    source: Optional[str] = None  # merge source or remote ref a tracking branch starts from


@dataclass(frozen=True)
class Plan:
    """Fully resolved, ordered list of mutations, built before execution starts."""

    items: tuple = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    @property
    def branches(self) -> list[BranchName]:
        return [item.branch for item in self.items]


@dataclass(frozen=True)
class ItemError:
    """A failed plan item."""

    branch: BranchName
    message: str


@dataclass
class ExecutionResult:
    """Counts and errors accumulated over one batch run."""

    succeeded: int = 0
    failed: int = 0
    errors: list[ItemError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def record_success(self) -> None:
        self.succeeded += 1

    def record_failure(self, branch: BranchName, message: str) -> None:
        self.failed += 1
        self.errors.append(ItemError(branch=branch, message=message))


@dataclass(frozen=True)
class SessionState:
    """Repository context captured before the first mutation of a run."""

    original_branch: BranchName
    dirty_at_start: bool
    stashed: bool = False
    # Commit to return to when HEAD was detached
    original_commit: str = ""


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """Outcome of a read-only query.

    When ``error`` is set the query failed and ``value`` holds the
    conservative default chosen for that query, so callers that only want
    the best-effort answer can read ``value`` while callers that care can
    tell "confirmed false" apart from "could not ask".
    """

    value: T
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def ok(cls, value: T) -> "QueryResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, default: T, error: str) -> "QueryResult[T]":
        return cls(value=default, error=error)


class Outcome(Enum):
    """How a command ended."""

    DONE = "done"
    NOTHING_TO_DO = "nothing-to-do"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass
class SkippedBranch:
    """A candidate that was not planned, and why."""

    branch: BranchName
    reason: str


@dataclass
class OperationReport:
    """Everything a command hands back to the dispatcher."""

    command: str
    outcome: Outcome
    plan: Plan = field(default_factory=Plan)
    result: ExecutionResult = field(default_factory=ExecutionResult)
    skipped: list[SkippedBranch] = field(default_factory=list)
    message: str = ""

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 for normal completion, 1 for command-level failure."""
        return 0 if self.outcome in (Outcome.DONE, Outcome.NOTHING_TO_DO) else 1
