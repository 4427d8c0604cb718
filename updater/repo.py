"""Git repository and working tree operations."""

import asyncio
import base64
import hashlib
import logging
import tempfile
from pathlib import Path

from .errors import CommandError, RepositoryError
from .process import check_output

logger = logging.getLogger(__name__)

GIT_USERNAME = "du"


def auth_env(token: str | None) -> dict[str, str]:
    """Environment that makes git send the token as HTTP basic auth.

    Passed through the environment so the token never lands in
    .git/config or in logged command lines.
    """
    if not token:
        return {}
    credentials = base64.b64encode(f"{GIT_USERNAME}:{token}".encode()).decode()
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraHeader",
        "GIT_CONFIG_VALUE_0": f"Authorization: Basic {credentials}",
        "GIT_TERMINAL_PROMPT": "0",
    }


async def git(path: str | Path | None, *args: str, env: dict[str, str] | None = None) -> str:
    try:
        return await check_output(["git", *args], cwd=path, env=env)
    except CommandError as e:
        raise RepositoryError(str(e)) from e


class Worktree:
    """Working tree of a cloned repository.

    Staging and committing go through one lock so concurrent site updates
    never commit each other's files.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def add(self, path: str) -> None:
        async with self._lock:
            await git(self.path, "add", "--", path)

    async def add_glob(self, pattern: str) -> None:
        async with self._lock:
            await git(self.path, "add", "--", pattern)

    async def remove(self, path: str) -> None:
        """Delete a file and stage the deletion."""
        async with self._lock:
            await git(self.path, "rm", "-q", "--", path)

    async def commit(self, message: str) -> str:
        """Commit everything staged and return the new commit hash."""
        async with self._lock:
            await git(self.path, "commit", "--no-verify", "-m", message)
            return (await git(self.path, "rev-parse", "HEAD")).strip()

    async def status(self) -> dict[str, str]:
        """Porcelain status code per changed path."""
        out = await git(self.path, "status", "--porcelain", "--untracked-files=all")
        return {line[3:]: line[:2] for line in out.splitlines() if line.strip()}

    async def checkout(self, branch: str, create: bool = False) -> None:
        async with self._lock:
            args = ["checkout", "-b", branch] if create else ["checkout", branch]
            await git(self.path, *args)

    async def is_something_staged_in_path(self, dir: str) -> bool:
        out = await git(self.path, "diff", "--cached", "--name-only", "--", dir)
        return bool(out.strip())

    async def commit_paths(self, paths: list[str], message: str) -> bool:
        """Stage and commit only the given paths.

        Returns:
            True if a commit was made, False when nothing changed under paths
        """
        async with self._lock:
            await git(self.path, "add", "--all", "--", *paths)
            staged = await git(self.path, "diff", "--cached", "--name-only", "--", *paths)
            if not staged.strip():
                return False
            await git(self.path, "commit", "--no-verify", "-m", message, "--", *paths)
            return True


class Repository:
    """A cloned repository and its remote."""

    def __init__(self, path: str | Path, url: str, token: str | None = None):
        self.path = Path(path)
        self.url = url
        self.token = token
        self.worktree = Worktree(self.path)

    async def branch_exists(self, branch: str) -> bool:
        """Whether the branch already exists on the remote."""
        out = await git(self.path, "ls-remote", "--heads", "origin", branch, env=auth_env(self.token))
        return bool(out.strip())

    async def push(self, branch: str) -> None:
        logger.info("Pushing branch %s", branch)
        await git(
            self.path,
            "push", "origin", f"refs/heads/{branch}:refs/heads/{branch}",
            env=auth_env(self.token),
        )

    async def head_commit(self) -> str:
        return (await git(self.path, "rev-parse", "HEAD")).strip()


def project_dir(repository_url: str, work_dir: str | Path | None = None) -> Path:
    """Directory holding every clone of a repository made during a run."""
    digest = hashlib.md5(repository_url.encode()).hexdigest()
    return Path(work_dir or tempfile.gettempdir()) / digest


async def clone_repository(
    repository_url: str,
    branch: str,
    token: str | None,
    work_dir: str | Path | None = None,
    author: tuple[str, str] | None = None,
) -> Repository:
    """Shallow-clone a branch into a fresh directory.

    Args:
        repository_url: Remote URL
        branch: Branch to check out
        token: Access token used for HTTP basic auth
        work_dir: Parent directory for the per-repository directory
        author: Name and email used for commits

    Returns:
        The cloned repository
    """
    parent = project_dir(repository_url, work_dir)
    parent.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix="repo", dir=parent))

    logger.info("Cloning %s (%s)", repository_url, branch)
    await git(
        None,
        "clone", "--depth", "1", "--branch", branch, "--no-tags",
        repository_url, str(path),
        env=auth_env(token),
    )

    if author:
        name, email = author
        await git(path, "config", "user.name", name)
        await git(path, "config", "user.email", email)

    # Project hooks must not rewrite the updater's commit messages
    hook = path / ".git" / "hooks" / "prepare-commit-msg"
    if hook.exists():
        hook.unlink()

    return Repository(path, repository_url, token)
