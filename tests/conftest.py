"""Test configuration and fixtures."""

import threading
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest
from git import Actor, Git, Repo

from rotten.git import BackendUnavailable, Commit, GitError

OLD_DATE = "2020-01-01T12:00:00"


def make_commits(count: int, newest_timestamp: int, prefix: str = "c") -> list[Commit]:
    """Build ``count`` commits, newest first, one second apart."""
    return [
        Commit(
            sha=f"{prefix}{i:039d}",
            author_email="author@example.com",
            committer_email="committer@example.com",
            author_relative_age=f"{i + 1} days ago",
            committer_relative_age=f"{i + 1} days ago",
            committer_timestamp=newest_timestamp - i,
        )
        for i in range(count)
    ]


class FakeBackend:
    """In-memory backend recording every call."""

    def __init__(
        self,
        branches: list[str],
        divergence: Optional[dict[str, list[Commit]]] = None,
        failures: Optional[dict[str, Exception]] = None,
        unavailable: bool = False,
        before_query: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.branches = branches
        self.divergence = divergence or {}
        self.failures = failures or {}
        self.unavailable = unavailable
        self.before_query = before_query
        self.calls: list[tuple] = []
        self._lock = threading.Lock()

    def _record(self, *call: object) -> None:
        with self._lock:
            self.calls.append(call)

    def list_remote_branches(self) -> list[str]:
        self._record("list_remote_branches")
        if self.unavailable:
            raise BackendUnavailable("Failed to open repository: gone")
        return list(self.branches)

    def divergent_commits(self, branch: str, exclude_pattern: str) -> list[Commit]:
        self._record("divergent_commits", branch, exclude_pattern)
        if self.before_query is not None:
            self.before_query(branch)
        if branch in self.failures:
            raise self.failures[branch]
        if branch not in self.divergence:
            raise GitError(f"unknown revision {branch}")
        return list(self.divergence[branch])

    @property
    def queried(self) -> list[str]:
        return [call[1] for call in self.calls if call[0] == "divergent_commits"]


@pytest.fixture
def scenario_backend() -> FakeBackend:
    """Production master with one merged and two pending branches."""
    return FakeBackend(
        ["origin/master", "origin/a", "origin/b", "origin/c"],
        divergence={
            "origin/master": [],
            "origin/a": [],
            "origin/b": make_commits(3, 1000, prefix="b"),
            "origin/c": make_commits(1, 500, prefix="c"),
        },
    )


@pytest.fixture
def test_env(tmp_path: Path) -> Generator[tuple[Path, Path], None, None]:
    """Create a local repository pushing to a bare remote.

    Remote branches after setup:
        origin/master           production
        origin/feature/merged   merged into master with a merge commit
        origin/feature/pending  two commits not in master
        origin/feature/old      one commit dated 2020
        origin/master-hotfix    one commit not in master

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

    def commit_file(name: str, content: str, date: Optional[str] = None) -> None:
        test_file = local_path / name
        test_file.parent.mkdir(parents=True, exist_ok=True)
        test_file.write_text(content)
        local_repo.index.add([name])
        dates = {"author_date": date, "commit_date": date} if date else {}
        local_repo.index.commit(f"Add {name}", author=author, committer=author, **dates)

    commit_file("README.md", "# Test Repository")
    # Independent of the init.defaultBranch setting
    local_repo.git.branch("-M", "master")
    master = local_repo.heads.master

    origin = local_repo.create_remote("origin", url=str(remote_path))
    origin.push("master")

    def create_branch(name: str, commits: int = 1, date: Optional[str] = None, merge: bool = False) -> None:
        master.checkout()
        branch = local_repo.create_head(name)
        branch.checkout()
        for i in range(commits):
            commit_file(f"{name}-{i}.txt", f"{name} content {i}", date)
        origin.push(name)
        if merge:
            master.checkout()
            local_repo.git.merge(name, "--no-ff", "-m", f"Merge {name}")
            origin.push("master")

    create_branch("feature/merged", merge=True)
    create_branch("feature/pending", commits=2)
    create_branch("feature/old", date=OLD_DATE)
    create_branch("master-hotfix")
    master.checkout()

    yield local_path, remote_path


@pytest.fixture
def break_branch(monkeypatch: pytest.MonkeyPatch) -> Callable[[str, Exception], None]:
    """Make ``git log`` on one branch raise ``error`` instead of running."""
    original = Git.execute

    def breaker(branch: str, error: Exception) -> None:
        def execute(self: Git, command, *args, **kwargs):
            if isinstance(command, (list, tuple)) and "log" in command and branch in command:
                raise error
            return original(self, command, *args, **kwargs)

        monkeypatch.setattr(Git, "execute", execute)

    return breaker
