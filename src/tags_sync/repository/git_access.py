"""Repository access backed by the git binary (GitPython), the GitHub REST API (PyGithub) and httpx."""

from __future__ import annotations

import shutil
import time
from collections.abc import Callable, Generator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar
from urllib.parse import urlsplit, urlunsplit

import httpx
import requests
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from github import Auth, Github, GithubException
from loguru import logger

from tags_sync.exceptions import (
    ConfigurationError,
    PatchApplicationFailure,
    RemoteRejected,
    RepositoryAccessError,
    TransientTransportError,
)
from tags_sync.logging_config import strip_credentials
from tags_sync.models import RepositoryRef, Signature, Tag, WorkingCopy
from tags_sync.repository.base import RepositoryAccess
from tags_sync.retry import DEFAULT_BACKOFF_SECONDS, DEFAULT_MAX_ATTEMPTS, call_with_retry

T = TypeVar("T")

ORIGIN = "origin"
UPSTREAM = "upstream"

FETCH_BATCH_SIZE = 100
"""Number of tag refspecs passed to a single `git fetch`."""

_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}

_TRANSIENT_GIT_MARKERS = (
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "could not resolve host",
    "failed to connect",
    "early eof",
    "rpc failed",
    "remote end hung up unexpectedly",
    "temporary failure",
    "returned error: 500",
    "returned error: 502",
    "returned error: 503",
    "returned error: 504",
)

_REJECTED_GIT_MARKERS = (
    "[rejected]",
    "[remote rejected]",
    "non-fast-forward",
    "fetch first",
)

_TRANSIENT_HTTP_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class GitRepositoryAccess(RepositoryAccess):
    """Talks to GitHub-hosted repositories.

    Tags and branches are listed through the REST API, everything that needs objects goes through the git binary.
    The token is only ever placed in URLs handed to a single git invocation; clones keep a credential-free
    `origin`, so a cached working copy never carries it.
    """

    def __init__(
        self,
        *,
        github_token: str | None,
        server_url: str = "https://github.com",
        api_url: str = "https://api.github.com",
        retry_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        http_timeout_seconds: float = 30,
        github_client: Github | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the repository access.

        Args:
            github_token: Token used for the API, for fetching and for pushing. May be None for public,
                read-only use.
            server_url: Base URL of the git host.
            api_url: Base URL of the GitHub REST API.
            retry_max_attempts: Attempts per network operation.
            retry_backoff_seconds: Initial backoff between attempts.
            http_timeout_seconds: Timeout for API and patch requests.
            github_client: A preconfigured PyGithub client, mainly for tests.
            sleep: Sleep function used between retries.
        """
        self.github_token = github_token
        self.server_url = server_url.rstrip("/")
        self.api_url = api_url
        self.retry_max_attempts = retry_max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.http_timeout_seconds = http_timeout_seconds
        self._sleep = sleep
        self._github_client = github_client

    @property
    def github(self) -> Github:
        """The PyGithub client, created on first use."""
        if self._github_client is None:
            auth = Auth.Token(self.github_token) if self.github_token else None
            self._github_client = Github(
                auth=auth,
                base_url=self.api_url,
                timeout=int(self.http_timeout_seconds),
                per_page=100,
                retry=None,
            )
        return self._github_client

    # ============================================================================
    # Query Operations
    # ============================================================================

    def list_tags(self, repo: RepositoryRef) -> list[Tag]:
        def _list() -> list[Tag]:
            with _github_errors(f"listing tags of {repo}"):
                gh_repo = self.github.get_repo(repo.owner_and_name)
                return [Tag(name=tag.name, commit_sha=tag.commit.sha) for tag in gh_repo.get_tags()]

        tags = self._retry(_list, f"listing tags of {repo}")
        logger.debug(f"{repo} has {len(tags)} tag(s)")
        return tags

    def list_branches(self, repo: RepositoryRef) -> set[str]:
        def _list() -> set[str]:
            with _github_errors(f"listing branches of {repo}"):
                gh_repo = self.github.get_repo(repo.owner_and_name)
                return {branch.name for branch in gh_repo.get_branches()}

        branches = self._retry(_list, f"listing branches of {repo}")
        logger.debug(f"{repo} has {len(branches)} branch(es)")
        return branches

    def fetch_patch(self, url: str) -> bytes:
        def _fetch() -> bytes:
            try:
                with httpx.Client(
                    timeout=self.http_timeout_seconds,
                    follow_redirects=True,
                    headers=self._patch_headers(url),
                ) as client:
                    response = client.get(url)
                    response.raise_for_status()
                    return response.content
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status in _TRANSIENT_HTTP_STATUSES:
                    raise TransientTransportError(f"Fetching patch {url} failed with HTTP {status}") from e
                raise RepositoryAccessError(f"Fetching patch {url} failed with HTTP {status}") from e
            except httpx.TransportError as e:
                raise TransientTransportError(f"Fetching patch {url} failed: {e}") from e

        content = self._retry(_fetch, f"downloading patch {url}")
        logger.debug(f"Downloaded patch {url} ({len(content)} bytes)")
        return content

    # ============================================================================
    # Working Copy Operations
    # ============================================================================

    def clone_or_open(self, repo: RepositoryRef, path: Path, *, upstream: RepositoryRef) -> WorkingCopy:
        path = Path(path)

        if (path / ".git").exists():
            logger.info(f"Found existing clone at {path}, verifying identity...")
            git_repo = self._open_verified(repo, path)
            auth_url = self._authenticated_url(repo)
            refspec = f"+refs/heads/*:refs/remotes/{ORIGIN}/*"
            self._retry(
                lambda: self._run_git(
                    lambda: git_repo.git.fetch("--prune", "--no-tags", auth_url, refspec),
                    f"fetching {repo}",
                ),
                f"fetching {repo}",
            )
            self._run_git(lambda: git_repo.git.reset("--hard"), f"resetting {path}")
            self._run_git(lambda: git_repo.git.clean("-fdx"), f"cleaning {path}")
            logger.info(f"Reusing clone of {repo} at {path}")
        elif path.exists() and any(path.iterdir()):
            raise ConfigurationError(f"{path} exists but is not a git repository", setting="cloned_path")
        else:
            git_repo = self._clone(repo, path)

        self._ensure_remote(git_repo, UPSTREAM, upstream.clone_url(self.server_url))
        return WorkingCopy(path=path, repository=repo)

    def fetch_tags(self, working_copy: WorkingCopy, tag_names: Sequence[str]) -> None:
        if not tag_names:
            return

        git_repo = self._open(working_copy)
        upstream_url = self._remote_url(git_repo, UPSTREAM)
        auth_url = self._with_token(upstream_url)

        for start in range(0, len(tag_names), FETCH_BATCH_SIZE):
            batch = tag_names[start : start + FETCH_BATCH_SIZE]
            refspecs = [f"+refs/tags/{name}:refs/tags/{name}" for name in batch]
            logger.debug(f"Fetching refspecs: {' '.join(refspecs)}")
            self._retry(
                lambda refspecs=refspecs: self._run_git(
                    lambda: git_repo.git.fetch("--no-tags", auth_url, *refspecs),
                    f"fetching tags from {strip_credentials(upstream_url)}",
                ),
                f"fetching {len(refspecs)} tag(s)",
            )

    def checkout(self, working_copy: WorkingCopy, tag_name: str, branch_name: str) -> str:
        git_repo = self._open(working_copy)
        sha = self._run_git(
            lambda: git_repo.git.rev_parse("--verify", f"refs/tags/{tag_name}^{{commit}}"),
            f"resolving tag {tag_name}",
        )
        logger.debug(f"Tag '{tag_name}' commit '{sha}'")
        self._run_git(lambda: git_repo.git.checkout("-f", "-B", branch_name, sha), f"checking out {branch_name}")
        self._run_git(lambda: git_repo.git.clean("-fdx"), f"cleaning {working_copy.path}")
        logger.debug(f"Checked out branch '{branch_name}' at {sha}")
        return sha

    def apply_patch(self, working_copy: WorkingCopy, patch: bytes) -> None:
        git_repo = self._open(working_copy)
        patch_file = Path(git_repo.git_dir) / "tags-sync.patch"
        patch_file.write_bytes(patch)
        try:
            git_repo.git.apply("--index", "--whitespace=nowarn", str(patch_file))
        except GitCommandError as e:
            detail = self._redact(str(e.stderr or e)).strip()
            self._run_git(lambda: git_repo.git.reset("--hard", "HEAD"), "discarding failed patch")
            self._run_git(lambda: git_repo.git.clean("-fdx"), "discarding failed patch")
            raise PatchApplicationFailure(f"Patch does not apply: {detail}") from e
        finally:
            patch_file.unlink(missing_ok=True)

    def commit(self, working_copy: WorkingCopy, message: str, author: Signature, committer: Signature) -> str:
        git_repo = self._open(working_copy)
        with git_repo.git.custom_environment(
            GIT_AUTHOR_NAME=author.name,
            GIT_AUTHOR_EMAIL=author.email,
            GIT_COMMITTER_NAME=committer.name,
            GIT_COMMITTER_EMAIL=committer.email,
        ):
            self._run_git(
                lambda: git_repo.git.commit("--allow-empty", "--no-gpg-sign", "--no-verify", "-m", message),
                "committing patch",
            )
        sha = git_repo.head.commit.hexsha
        logger.debug(f"Committed {sha} as {author}")
        return sha

    def push(self, working_copy: WorkingCopy, branch_name: str) -> str:
        git_repo = self._open(working_copy)
        auth_url = self._authenticated_url(working_copy.repository)
        refspec = f"refs/heads/{branch_name}:refs/heads/{branch_name}"

        def _push() -> None:
            try:
                git_repo.git.push(auth_url, refspec)
            except GitCommandError as e:
                output = self._redact(f"{e.stdout or ''}\n{e.stderr or ''}")
                lowered = output.lower()
                if any(marker in lowered for marker in _REJECTED_GIT_MARKERS):
                    raise RemoteRejected(branch_name, _last_line(output) or "not a fast-forward") from e
                if any(marker in lowered for marker in _TRANSIENT_GIT_MARKERS):
                    raise TransientTransportError(f"Pushing {branch_name} failed: {_last_line(output)}") from e
                raise RepositoryAccessError(f"Pushing {branch_name} failed: {_last_line(output)}") from e

        logger.info(f"Pushing branch {branch_name} to {working_copy.repository}")
        self._retry(_push, f"pushing {branch_name}")
        return git_repo.commit(f"refs/heads/{branch_name}").hexsha

    # ============================================================================
    # Helpers
    # ============================================================================

    def _retry(self, operation: Callable[[], T], description: str) -> T:
        return call_with_retry(
            operation,
            description=description,
            max_attempts=self.retry_max_attempts,
            backoff_seconds=self.retry_backoff_seconds,
            sleep=self._sleep,
        )

    def _run_git(self, operation: Callable[[], T], description: str) -> T:
        """Run a git command, translating failures into tags-sync errors with credentials redacted."""
        try:
            return operation()
        except GitCommandError as e:
            output = self._redact(f"{e.stderr or ''}")
            message = f"{description} failed: {_last_line(output) or f'exit code {e.status}'}"
            if any(marker in output.lower() for marker in _TRANSIENT_GIT_MARKERS):
                raise TransientTransportError(message) from e
            raise RepositoryAccessError(message) from e

    def _clone(self, repo: RepositoryRef, path: Path) -> Repo:
        clean_url = repo.clone_url(self.server_url)
        auth_url = self._authenticated_url(repo)
        path.parent.mkdir(parents=True, exist_ok=True)

        def _clone_once() -> Repo:
            if path.exists():
                shutil.rmtree(path)
            return self._run_git(
                lambda: Repo.clone_from(url=auth_url, to_path=path, env=_GIT_ENV, multi_options=["--no-tags"]),
                f"cloning {clean_url}",
            )

        logger.info(f"Cloning {clean_url} to {path}")
        git_repo = self._retry(_clone_once, f"cloning {repo}")
        git_repo.remote(ORIGIN).set_url(clean_url)
        git_repo.git.update_environment(**_GIT_ENV)
        logger.info(f"Successfully cloned {repo}")
        return git_repo

    def _open(self, working_copy: WorkingCopy) -> Repo:
        try:
            git_repo = Repo(working_copy.path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise RepositoryAccessError(f"{working_copy.path} is not a git working copy") from e
        git_repo.git.update_environment(**_GIT_ENV)
        return git_repo

    def _open_verified(self, repo: RepositoryRef, path: Path) -> Repo:
        """Open an existing clone, making sure it belongs to `repo`."""
        git_repo = self._open(WorkingCopy(path=path, repository=repo))
        try:
            actual_url = strip_credentials(git_repo.remote(ORIGIN).url)
        except ValueError as e:
            raise ConfigurationError(f"{path} has no '{ORIGIN}' remote", setting="cloned_path") from e

        expected_url = repo.clone_url(self.server_url)
        if _normalize_url(actual_url) != _normalize_url(expected_url):
            raise ConfigurationError(
                f"{path} is a clone of {actual_url}, expected {expected_url}",
                setting="cloned_path",
            )
        # Older clones may still carry credentials in their remote URL.
        git_repo.remote(ORIGIN).set_url(expected_url)
        logger.info(f"✓ Repository: {repo} (matches expected)")
        return git_repo

    def _ensure_remote(self, git_repo: Repo, name: str, url: str) -> None:
        if name in [remote.name for remote in git_repo.remotes]:
            git_repo.remote(name).set_url(url)
        else:
            git_repo.create_remote(name, url)
        logger.debug(f"Remote '{name}' -> {url}")

    def _remote_url(self, git_repo: Repo, name: str) -> str:
        try:
            return git_repo.remote(name).url
        except ValueError as e:
            raise RepositoryAccessError(f"Working copy has no '{name}' remote") from e

    def _authenticated_url(self, repo: RepositoryRef) -> str:
        return self._with_token(repo.clone_url(self.server_url))

    def _with_token(self, url: str) -> str:
        parts = urlsplit(url)
        if not self.github_token or parts.scheme != "https":
            return url
        host = parts.netloc.rsplit("@", 1)[-1]
        return urlunsplit(
            (parts.scheme, f"x-access-token:{self.github_token}@{host}", parts.path, parts.query, parts.fragment)
        )

    def _patch_headers(self, url: str) -> dict[str, str]:
        hosts = {urlsplit(self.server_url).hostname, urlsplit(self.api_url).hostname}
        if self.github_token and urlsplit(url).hostname in hosts:
            return {"Authorization": f"token {self.github_token}"}
        return {}

    def _redact(self, text: str) -> str:
        if self.github_token:
            text = text.replace(self.github_token, "***")
        return text


@contextmanager
def _github_errors(description: str) -> Generator[None, None, None]:
    """Translate PyGithub and requests errors raised inside the block into tags-sync errors."""
    try:
        yield
    except GithubException as e:
        status = e.status or 0
        message = f"{description} failed with HTTP {status}: {_github_message(e)}"
        if status in _TRANSIENT_HTTP_STATUSES:
            raise TransientTransportError(message) from e
        raise RepositoryAccessError(message) from e
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
        raise TransientTransportError(f"{description} failed: {e}") from e


def _github_message(e: GithubException) -> str:
    data = e.data
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return str(data) if data else "no details"


def _last_line(output: str) -> str:
    lines = [line.strip() for line in output.strip().splitlines() if line.strip()]
    return lines[-1] if lines else ""


def _normalize_url(url: str) -> str:
    url = url.rstrip("/")
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url.lower()
