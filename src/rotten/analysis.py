"""Branch divergence analysis.

Splits a repository's remote branches into those already contained in the
production branch (harvestable) and those that still carry their own commits
(pending), and ranks the pending ones for triage.
"""

import logging
import os
from concurrent.futures import ALL_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, Sequence

from rotten.git import BranchQueryFailed, Commit, GitError

logger = logging.getLogger(__name__)

# Default cap on concurrent git processes, each holding several descriptors
MAX_DEFAULT_WORKERS = 32


class SortPolicy(Enum):
    """Ordering of pending branches."""

    OLDEST_ACTIVITY_FIRST = "oldest"
    MOST_COMMITS_FIRST = "most-commits"


class VCSBackend(Protocol):
    """What the analysis needs from a version-control backend."""

    def list_remote_branches(self) -> list[str]:
        """List remote-qualified branch names.

        Raises:
            BackendUnavailable: If the repository cannot be read
        """
        ...

    def divergent_commits(self, branch: str, exclude_pattern: str) -> list[Commit]:
        """List commits reachable from ``branch`` but not from ``exclude_pattern``, newest first.

        Raises:
            GitError: If the query fails
        """
        ...


@dataclass(frozen=True)
class DivergenceRecord:
    """A branch and the commits it has that production does not."""

    branch: str
    commits: tuple[Commit, ...] = ()

    @property
    def is_harvestable(self) -> bool:
        """Whether every commit on the branch is already in production."""
        return not self.commits

    @property
    def newest(self) -> Optional[Commit]:
        """Most recent divergent commit, or None when harvestable."""
        return self.commits[0] if self.commits else None

    @property
    def remote(self) -> str:
        """Remote part of the branch name, e.g. ``origin``."""
        return self.branch.split("/", 1)[0]

    @property
    def short_name(self) -> str:
        """Branch name without its remote, e.g. ``feature/x``."""
        return self.branch.split("/", 1)[-1]


@dataclass
class Classification:
    """Outcome of one analysis run."""

    harvestable: list[DivergenceRecord] = field(default_factory=list)
    pending: list[DivergenceRecord] = field(default_factory=list)
    failed: list[BranchQueryFailed] = field(default_factory=list)
    production: str = ""
    production_found: bool = True


def production_suffix(production: str) -> str:
    """Suffix that marks the production branch on any remote."""
    return f"/{production}"


def exclude_pattern(production: str) -> str:
    """Remote glob matching the production branch on every remote."""
    return f"*/{production}"


def is_production(branch: str, production: str) -> bool:
    """Whether ``branch`` is the production branch on some remote."""
    return branch.endswith(production_suffix(production))


def default_worker_count(candidates: int) -> int:
    """Number of concurrent queries to use when the caller sets no limit."""
    optimal = min(MAX_DEFAULT_WORKERS, (os.cpu_count() or 1) * 4)
    return max(1, min(candidates, optimal))


def filter_branches(branches: Iterable[str], production: str) -> list[str]:
    """Drop the production branch as seen on each remote.

    Only an exact ``/<production>`` suffix counts, so ``origin/master-hotfix``
    survives when production is ``master``.
    """
    return [branch for branch in branches if not is_production(branch, production)]


def collect_divergence(
    backend: VCSBackend,
    candidates: Sequence[str],
    production: str,
    max_workers: Optional[int] = None,
    on_settled: Optional[Callable[[str], None]] = None,
) -> tuple[list[DivergenceRecord], list[BranchQueryFailed]]:
    """Query every candidate's divergence from production concurrently.

    All queries run to completion before anything is returned. A query that
    fails is reported in the second list and does not affect the others.
    Both lists follow the order of ``candidates``.

    Args:
        backend: Source of branch commits
        candidates: Branches to query
        production: Production branch name, without remote
        max_workers: Upper bound on concurrent queries; ``default_worker_count`` if None
        on_settled: Called with the branch name as each query settles
    """
    if not candidates:
        return [], []

    pattern = exclude_pattern(production)

    def query(branch: str) -> list[Commit]:
        try:
            return backend.divergent_commits(branch, pattern)
        finally:
            if on_settled is not None:
                on_settled(branch)

    workers = max_workers or default_worker_count(len(candidates))
    logger.debug("Querying %d branches with %d workers", len(candidates), workers)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        slots: list[Future] = [executor.submit(query, branch) for branch in candidates]
        wait(slots, return_when=ALL_COMPLETED)

    records: list[DivergenceRecord] = []
    failed: list[BranchQueryFailed] = []
    for branch, slot in zip(candidates, slots):
        err = slot.exception()
        if err is None:
            records.append(DivergenceRecord(branch, tuple(slot.result())))
        elif isinstance(err, GitError):
            logger.warning("Could not query %s: %s", branch, err)
            failed.append(BranchQueryFailed(branch, err))
        else:
            raise err
    return records, failed


def classify(
    records: Iterable[DivergenceRecord],
    failed: Iterable[BranchQueryFailed] = (),
    production: str = "",
    production_found: bool = True,
) -> Classification:
    """Partition records by whether they diverge from production."""
    classification = Classification(
        failed=list(failed),
        production=production,
        production_found=production_found,
    )
    for record in records:
        if record.is_harvestable:
            classification.harvestable.append(record)
        else:
            classification.pending.append(record)
    return classification


def rank(
    pending: Iterable[DivergenceRecord],
    policy: SortPolicy = SortPolicy.OLDEST_ACTIVITY_FIRST,
) -> list[DivergenceRecord]:
    """Order pending branches; ties keep their incoming order."""
    if policy == SortPolicy.MOST_COMMITS_FIRST:
        return sorted(pending, key=lambda record: -len(record.commits))
    return sorted(pending, key=lambda record: record.commits[0].committer_timestamp)


def analyze(
    backend: VCSBackend,
    production: str,
    sort_policy: SortPolicy = SortPolicy.OLDEST_ACTIVITY_FIRST,
    max_workers: Optional[int] = None,
    on_settled: Optional[Callable[[str], None]] = None,
) -> Classification:
    """Classify every remote branch against ``production``.

    Raises:
        BackendUnavailable: If the branch list cannot be read
    """
    branches = backend.list_remote_branches()
    candidates = filter_branches(branches, production)
    production_found = len(candidates) < len(branches)
    if not production_found:
        logger.warning("Production branch %s not found on any remote; nothing is excluded", production)

    records, failed = collect_divergence(
        backend,
        candidates,
        production,
        max_workers=max_workers,
        on_settled=on_settled,
    )
    classification = classify(records, failed, production=production, production_found=production_found)
    classification.pending = rank(classification.pending, sort_policy)
    logger.debug(
        "%d harvestable, %d pending, %d failed",
        len(classification.harvestable),
        len(classification.pending),
        len(classification.failed),
    )
    return classification
