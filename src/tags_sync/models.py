"""Data model shared by every tags-sync component."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import auto
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator
from strenum import StrEnum

from tags_sync.exceptions import ConfigurationError, HookFailure

DEFAULT_BOT_NAME = "github-actions[bot]"
DEFAULT_BOT_EMAIL = "github-actions[bot]@users.noreply.github.com"

_REPO_PART_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class RepositoryRef(BaseModel):
    """An `owner/name` reference to a GitHub repository."""

    model_config = ConfigDict(frozen=True)

    owner: str
    """The owner (user or organization) of the repository."""

    name: str
    """The name of the repository."""

    @field_validator("owner", "name")
    @classmethod
    def check_part(cls, value: str) -> str:
        if not value or not _REPO_PART_PATTERN.match(value) or value in (".", ".."):
            raise ValueError(f"'{value}' is not a valid repository owner or name")
        return value

    @classmethod
    def parse(cls, value: str) -> RepositoryRef:
        """Parse an `owner/name` string.

        Args:
            value: The repository reference, e.g. `torvalds/linux`.

        Returns:
            The parsed reference.

        Raises:
            ConfigurationError: If the value is not exactly two non-empty `/`-separated parts.
        """
        parts = value.strip().split("/")
        if len(parts) != 2 or not all(parts):
            raise ConfigurationError(f"'{value}' must be in format 'owner/name'")
        try:
            return cls(owner=parts[0], name=parts[1])
        except ValueError as e:
            raise ConfigurationError(f"'{value}' is not a valid repository reference: {e}") from e

    @property
    def owner_and_name(self) -> str:
        """Return the repository in 'owner/name' format."""
        return f"{self.owner}/{self.name}"

    def clone_url(self, server_url: str = "https://github.com") -> str:
        """Return the git clone URL of this repository on the given server."""
        return f"{server_url.rstrip('/')}/{self.owner}/{self.name}.git"

    def __str__(self) -> str:
        return self.owner_and_name


@dataclass(frozen=True)
class Tag:
    """A tag of the base repository."""

    name: str
    commit_sha: str = ""


@dataclass(frozen=True)
class Branch:
    """A branch of the head repository."""

    name: str
    commit_sha: str = ""


def branch_name_for_tag(tag_name: str, prefix: str = "") -> str:
    """Return the head branch name a tag is synchronized to.

    The mapping is 1:1: with the default empty prefix the branch is named exactly like the tag.
    """
    return f"{prefix}{tag_name}"


@dataclass(frozen=True)
class Signature:
    """A git identity."""

    name: str
    email: str

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


class PatchSpec(BaseModel):
    """Where to find the patch applied to every synced branch, and how to commit it."""

    model_config = ConfigDict(frozen=True)

    url: str | None = None
    """Location of the patch document. `None` disables the patch step."""

    message: str | None = None
    """Commit message. Defaults to 'Apply patch from <url>'."""

    author_name: str = DEFAULT_BOT_NAME
    author_email: str = DEFAULT_BOT_EMAIL
    committer_name: str = DEFAULT_BOT_NAME
    committer_email: str = DEFAULT_BOT_EMAIL

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    @property
    def is_templated(self) -> bool:
        """True if the location must be resolved per tag (contains a `{tag}` placeholder)."""
        return self.url is not None and "{tag}" in self.url

    def url_for(self, tag_name: str) -> str:
        """Resolve the patch location for a tag."""
        if self.url is None:
            raise ValueError("No patch location configured")
        if self.is_templated:
            return self.url.replace("{tag}", tag_name)
        return self.url

    def commit_message(self, url: str) -> str:
        return self.message or f"Apply patch from {url}"

    @property
    def author(self) -> Signature:
        return Signature(self.author_name, self.author_email)

    @property
    def committer(self) -> Signature:
        return Signature(self.committer_name, self.committer_email)


@dataclass(frozen=True)
class WorkingCopy:
    """A local clone of the head repository."""

    path: Path
    repository: RepositoryRef


class SyncStatus(StrEnum):
    """Terminal state of a tag within a run."""

    synced = auto()
    skipped = auto()
    failed = auto()


@dataclass
class SyncOutcome:
    """What happened to a single tag."""

    tag: Tag
    branch: str
    status: SyncStatus
    reason: str = ""
    """Why the tag was skipped or failed."""

    error: Exception | None = None
    commit_sha: str = ""
    """The commit pushed to the head repository, for synced tags."""

    hook_failures: list[HookFailure] = field(default_factory=list)

    @property
    def synced_branch(self) -> Branch | None:
        """The branch pushed to the head repository, for synced tags."""
        if self.status != SyncStatus.synced:
            return None
        return Branch(self.branch, self.commit_sha)

    def describe(self) -> str:
        """Return a one-line, human readable description."""
        line = f"{self.tag.name} -> {self.branch}: {self.status}"
        if self.reason:
            line += f" ({self.reason})"
        if self.commit_sha:
            line += f" @ {self.commit_sha[:12]}"
        if self.hook_failures:
            line += f" [{len(self.hook_failures)} hook failure(s)]"
        return line


@dataclass
class SyncReport:
    """The aggregate of all outcomes of a run."""

    discovered: list[Tag] = field(default_factory=list)
    """Base tags with no matching head branch, in discovery order."""

    eligible: list[Tag] = field(default_factory=list)
    """Discovered tags that passed the filter."""

    outcomes: list[SyncOutcome] = field(default_factory=list)

    def _with_status(self, status: SyncStatus) -> list[SyncOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == status]

    @property
    def synced(self) -> list[SyncOutcome]:
        return self._with_status(SyncStatus.synced)

    @property
    def skipped(self) -> list[SyncOutcome]:
        return self._with_status(SyncStatus.skipped)

    @property
    def failed(self) -> list[SyncOutcome]:
        return self._with_status(SyncStatus.failed)

    @property
    def synced_branches(self) -> list[str]:
        return [branch.name for branch in self.pushed_branches]

    @property
    def pushed_branches(self) -> list[Branch]:
        """Branches created in the head repository by this run, with the commit each points to."""
        return [outcome.synced_branch for outcome in self.synced if outcome.synced_branch is not None]

    def has_failures(self) -> bool:
        return bool(self.failed)

    def outcome_for(self, tag_name: str) -> SyncOutcome | None:
        for outcome in self.outcomes:
            if outcome.tag.name == tag_name:
                return outcome
        return None

    def summary(self) -> str:
        """Return a human-readable summary of the run."""
        if not self.outcomes:
            return "Nothing to sync."

        lines = [
            f"Discovered {len(self.discovered)} new tag(s), {len(self.eligible)} eligible: "
            f"{len(self.synced)} synced, {len(self.skipped)} skipped, {len(self.failed)} failed",
        ]
        lines.extend(f"  {outcome.describe()}" for outcome in self.outcomes)
        return "\n".join(lines)
