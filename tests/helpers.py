"""In-memory repository access and config builders shared by the tests."""

from __future__ import annotations

import re
import shutil
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from tags_sync.config import RunConfig
from tags_sync.exceptions import PatchApplicationFailure, RemoteRejected, RepositoryAccessError
from tags_sync.models import PatchSpec, RepositoryRef, Signature, Tag, WorkingCopy
from tags_sync.repository.base import RepositoryAccess
from tags_sync.tag_filter import compile_filter

BASE = RepositoryRef(owner="upstream", name="project")
HEAD = RepositoryRef(owner="fork", name="project")

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
requires_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash is not installed")

CONFLICTING_PATCH = b"--- conflict ---\n"
"""Patch content the fake refuses to apply, like a patch that does not apply cleanly."""


@dataclass
class CommitRecord:
    branch: str
    message: str
    author: Signature
    committer: Signature
    sha: str


@dataclass
class FakeRepositoryAccess(RepositoryAccess):
    """A RepositoryAccess keeping both repositories in memory.

    Failures are scripted with `fail_on(operation, error, target)`. The target is matched against the tag, branch,
    URL or repository the operation is called with; None matches every call.
    """

    tags: dict[str, list[Tag]] = field(default_factory=dict)
    branches: dict[str, dict[str, str]] = field(default_factory=dict)
    patches: dict[str, bytes] = field(default_factory=dict)

    pushes: list[str] = field(default_factory=list)
    commits: list[CommitRecord] = field(default_factory=list)
    checkouts: list[str] = field(default_factory=list)
    applied_patches: list[tuple[str, bytes]] = field(default_factory=list)
    fetched_tags: list[str] = field(default_factory=list)
    patch_downloads: list[str] = field(default_factory=list)
    clones: int = 0
    calls: list[str] = field(default_factory=list)

    _failures: list[tuple[str, str | None, Exception]] = field(default_factory=list)
    _current_branch: str | None = None
    _local_branches: dict[str, str] = field(default_factory=dict)
    _commit_counter: int = 0

    def fail_on(self, operation: str, error: Exception, target: str | None = None) -> None:
        self._failures.append((operation, target, error))

    def _maybe_fail(self, operation: str, target: str | None) -> None:
        self.calls.append(operation)
        for failing_operation, failing_target, error in self._failures:
            if failing_operation == operation and (failing_target is None or failing_target == target):
                raise error

    def _tag(self, tag_name: str) -> Tag:
        for tag in self.tags.get(str(BASE), []):
            if tag.name == tag_name:
                return tag
        raise RepositoryAccessError(f"tag '{tag_name}' does not exist")

    def list_tags(self, repo: RepositoryRef) -> list[Tag]:
        self._maybe_fail("list_tags", str(repo))
        return list(self.tags.get(str(repo), []))

    def list_branches(self, repo: RepositoryRef) -> set[str]:
        self._maybe_fail("list_branches", str(repo))
        return set(self.branches.get(str(repo), {}))

    def fetch_patch(self, url: str) -> bytes:
        self.patch_downloads.append(url)
        self._maybe_fail("fetch_patch", url)
        if url not in self.patches:
            raise RepositoryAccessError(f"GET {url} returned 404")
        return self.patches[url]

    def clone_or_open(self, repo: RepositoryRef, path: Path, *, upstream: RepositoryRef) -> WorkingCopy:
        self._maybe_fail("clone_or_open", str(repo))
        self.clones += 1
        path.mkdir(parents=True, exist_ok=True)
        return WorkingCopy(path=path, repository=repo)

    def fetch_tags(self, working_copy: WorkingCopy, tag_names: Sequence[str]) -> None:
        for tag_name in tag_names:
            self._maybe_fail("fetch_tags", tag_name)
        for tag_name in tag_names:
            self._tag(tag_name)
            self.fetched_tags.append(tag_name)

    def checkout(self, working_copy: WorkingCopy, tag_name: str, branch_name: str) -> str:
        self._maybe_fail("checkout", tag_name)
        if tag_name not in self.fetched_tags:
            raise RepositoryAccessError(f"tag '{tag_name}' was not fetched")
        tag = self._tag(tag_name)
        sha = tag.commit_sha or f"tag-{tag_name}"
        self.checkouts.append(tag_name)
        self._current_branch = branch_name
        self._local_branches[branch_name] = sha
        return sha

    def apply_patch(self, working_copy: WorkingCopy, patch: bytes) -> None:
        self._maybe_fail("apply_patch", self._current_branch)
        if patch == CONFLICTING_PATCH:
            raise PatchApplicationFailure(f"Patch does not apply to {self._current_branch}")
        assert self._current_branch is not None
        self.applied_patches.append((self._current_branch, patch))

    def commit(self, working_copy: WorkingCopy, message: str, author: Signature, committer: Signature) -> str:
        self._maybe_fail("commit", self._current_branch)
        assert self._current_branch is not None
        self._commit_counter += 1
        sha = f"commit-{self._commit_counter}"
        self.commits.append(CommitRecord(self._current_branch, message, author, committer, sha))
        self._local_branches[self._current_branch] = sha
        return sha

    def push(self, working_copy: WorkingCopy, branch_name: str) -> str:
        self._maybe_fail("push", branch_name)
        remote = self.branches.setdefault(str(working_copy.repository), {})
        sha = self._local_branches[branch_name]
        if branch_name in remote and remote[branch_name] != sha:
            raise RemoteRejected(branch_name, "non-fast-forward")
        remote[branch_name] = sha
        self.pushes.append(branch_name)
        return sha


def make_access(
    base_tags: Sequence[str],
    head_branches: Sequence[str] = (),
    *,
    patches: dict[str, bytes] | None = None,
) -> FakeRepositoryAccess:
    """Create a fake where the base repository has `base_tags` and the head repository has `head_branches`."""
    return FakeRepositoryAccess(
        tags={str(BASE): [Tag(name) for name in base_tags]},
        branches={str(HEAD): {name: f"existing-{name}" for name in head_branches}},
        patches=dict(patches or {}),
    )


def make_config(tmp_path: Path, **overrides: Any) -> RunConfig:
    """Create a RunConfig for BASE -> HEAD rooted in `tmp_path`."""
    values: dict[str, Any] = {
        "base": BASE,
        "head": HEAD,
        "working_copy_path": tmp_path / "head-repo",
        "filter_pattern": compile_filter(None),
        "new_tags_file": tmp_path / "new_tags.txt",
        "synced_branches_file": tmp_path / "synced_branches.txt",
        "retry_backoff_seconds": 0.0,
    }
    if "filter_pattern" in overrides and not isinstance(overrides["filter_pattern"], re.Pattern):
        overrides["filter_pattern"] = compile_filter(overrides["filter_pattern"])
    if "patch_url" in overrides:
        overrides["patch"] = PatchSpec(url=overrides.pop("patch_url"))
    values.update(overrides)
    return RunConfig(**values)
