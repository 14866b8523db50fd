"""Git repository operations."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from git import GitCommandError, GitCommandNotFound, InvalidGitRepositoryError, NoSuchPathError, Repo

logger = logging.getLogger(__name__)

# git log placeholders, in Commit field order
LOG_FIELDS = ("%H", "%ae", "%ce", "%ar", "%cr", "%ct")
FIELD_SEPARATOR = "\x1f"
LOG_FORMAT = "%x1f".join(LOG_FIELDS)


def is_remote_head(name: str) -> bool:
    """Whether ``name`` is a remote's HEAD alias such as ``origin/HEAD``."""
    remote, _, rest = name.partition("/")
    return bool(remote) and rest == "HEAD"


class GitError(Exception):
    """Git operation error."""


class BackendUnavailable(GitError):
    """The repository cannot be read at all."""


class BranchQueryFailed(GitError):
    """A single branch's divergence query failed."""

    def __init__(self, branch: str, cause: Exception) -> None:
        """Initialize error.

        Args:
            branch: Remote-qualified branch name
            cause: The error raised by the backend
        """
        super().__init__(f"{branch}: {cause}")
        self.branch = branch
        self.cause = cause


@dataclass(frozen=True)
class Commit:
    """A commit as reported by ``git log``."""

    sha: str
    author_email: str
    committer_email: str
    author_relative_age: str
    committer_relative_age: str
    committer_timestamp: int

    @classmethod
    def parse(cls, line: str) -> "Commit":
        """Build a commit from one line of ``LOG_FORMAT`` output."""
        fields = line.split(FIELD_SEPARATOR)
        if len(fields) != len(LOG_FIELDS):
            raise GitError(f"Unexpected git log line: {line!r}")
        sha, author, committer, author_age, committer_age, timestamp = (f.strip() for f in fields)
        try:
            committer_timestamp = int(timestamp)
        except ValueError as err:
            raise GitError(f"Invalid commit timestamp {timestamp!r} for {sha}") from err
        return cls(
            sha=sha,
            author_email=author,
            committer_email=committer,
            author_relative_age=author_age,
            committer_relative_age=committer_age,
            committer_timestamp=committer_timestamp,
        )


class GitBackend:
    """Read-only access to a repository's remote branches."""

    def __init__(self, path: Path, timeout: Optional[float] = None) -> None:
        """Open the repository.

        Args:
            path: Path to the working tree
            timeout: Seconds after which a single git call is killed
        """
        try:
            self.repo: Repo = Repo(path)
            if self.repo.bare:
                raise BackendUnavailable("Cannot operate on bare repository")
        except (GitCommandError, ValueError, InvalidGitRepositoryError, NoSuchPathError) as err:
            raise BackendUnavailable(f"Failed to open repository: {err}") from err
        self.timeout = timeout

    @property
    def path(self) -> Path:
        """Working tree root."""
        return Path(self.repo.working_tree_dir)

    def _git_kwargs(self) -> dict:
        if self.timeout is None:
            return {}
        return {"kill_after_timeout": self.timeout}

    def list_remote_branches(self) -> list[str]:
        """List remote-tracking branches, skipping remote HEAD aliases."""
        try:
            output = self.repo.git.branch("-r", "--format=%(refname:short)", **self._git_kwargs())
        except (GitCommandError, GitCommandNotFound, OSError) as err:
            raise BackendUnavailable(f"Failed to list remote branches: {err}") from err

        branches = []
        for line in output.splitlines():
            name = line.strip()
            # Newer git shortens refs/remotes/origin/HEAD to plain "origin"
            if not name or "/" not in name or is_remote_head(name):
                continue
            branches.append(name)
        logger.debug("Listed %d remote branches in %s", len(branches), self.path)
        return branches

    def divergent_commits(self, branch: str, exclude_pattern: str) -> list[Commit]:
        """List commits on ``branch`` not reachable from remotes matching ``exclude_pattern``.

        Commits come back newest first, as ``git log`` prints them.

        Raises:
            GitError: If the branch does not resolve, git cannot be started, or the output cannot be parsed
        """
        try:
            output = self.repo.git.log(
                branch,
                "--not",
                f"--remotes={exclude_pattern}",
                f"--format={LOG_FORMAT}",
                "--",
                **self._git_kwargs(),
            )
        except (GitCommandError, GitCommandNotFound) as err:
            raise GitError(f"Failed to list commits for {branch}: {err}") from err
        except OSError as err:
            # Spawning git failed, e.g. EMFILE when too many queries run at once
            raise GitError(f"Failed to run git for {branch}: {err}") from err
        return [Commit.parse(line) for line in output.splitlines() if line.strip()]
