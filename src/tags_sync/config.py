"""Configuration settings for a tags-sync run."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit

from loguru import logger
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tags_sync.exceptions import ConfigurationError
from tags_sync.hooks import parse_scripts
from tags_sync.logging_config import mask_secret
from tags_sync.models import DEFAULT_BOT_EMAIL, DEFAULT_BOT_NAME, PatchSpec, RepositoryRef
from tags_sync.tag_filter import MATCH_ALL, compile_filter

DEFAULT_SERVER_URL = "https://github.com"
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_CLONED_PATH = "head-repo"
DEFAULT_NEW_TAGS_FILENAME = "new_tags.txt"
DEFAULT_SYNCED_BRANCHES_FILENAME = "synced_branches.txt"


class TagsSyncSettings(BaseSettings):
    """Settings for syncing new tags of a base repository as branches of a head repository.

    Every field can be set through a `TAGS_SYNC_`-prefixed environment variable. Inside GitHub Actions the
    standard `GITHUB_*` variables fill in the head repository, workspace, server and token when unset.
    """

    model_config = SettingsConfigDict(
        env_prefix="TAGS_SYNC_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
        use_attribute_docstrings=True,
    )

    base_repository: str | None = None
    """Base (upstream) repository as owner/name, for example torvalds/linux. Required."""

    head_repository: str | None = None
    """Head (fork) repository as owner/name. Defaults to $GITHUB_REPOSITORY."""

    workspace: str | None = None
    """Directory relative paths are resolved against. Defaults to $GITHUB_WORKSPACE, then the current directory."""

    cloned_path: str = DEFAULT_CLONED_PATH
    """Path (relative to the workspace) of the head repository working copy."""

    filter_tags: str = MATCH_ALL
    """Regular expression a tag name must match as a whole to be synced."""

    branch_prefix: str = ""
    """Prefix of the branch a tag is synced to. Empty means the branch is named exactly like the tag."""

    apply_patch: str | None = None
    """URL of a patch applied to each new branch before it is pushed. May contain a `{tag}` placeholder."""

    patch_message: str | None = None
    """Commit message of the patch commit. Defaults to 'Apply patch from <url>'."""

    patch_author: str = DEFAULT_BOT_NAME
    patch_author_email: str = DEFAULT_BOT_EMAIL
    patch_committer: str = DEFAULT_BOT_NAME
    patch_committer_email: str = DEFAULT_BOT_EMAIL

    scripts_after_sync: str = ""
    """Shell scripts run after each branch is pushed, separated by lines holding only `---`."""

    hook_shell: str = "bash"
    """Shell used to run post-sync scripts (invoked as `<shell> -e -c <script>`)."""

    hook_timeout_seconds: float | None = None
    """Timeout for each post-sync script. None waits indefinitely."""

    github_token: str | None = None
    """Token used to read the repositories and push to the head repository. Falls back to $GITHUB_TOKEN."""

    github_server_url: str | None = None
    """Git host base URL. Falls back to $GITHUB_SERVER_URL, then https://github.com."""

    github_api_url: str | None = None
    """REST API base URL. Falls back to $GITHUB_API_URL, then https://api.github.com."""

    new_tags_file: str | None = None
    """Where the list of new tags is written. Defaults to <workspace>/new_tags.txt."""

    synced_branches_file: str | None = None
    """Where the list of synced branches is written. Defaults to <workspace>/synced_branches.txt."""

    retry_max_attempts: int = 3
    """Attempts for each network operation before giving up."""

    retry_backoff_seconds: float = 1.0
    """Delay before the first retry; doubled for each following one."""

    http_timeout_seconds: float = 30
    """Timeout in seconds for API requests and patch downloads."""

    timeout_seconds: float | None = None
    """Stop starting new tags once the run has lasted this long. None means no limit."""

    dry_run: bool = False
    """If True, detect and report what would be synced without cloning or pushing."""

    verbose_logging: bool = False
    """Enable detailed logging."""

    @model_validator(mode="after")
    def validate_sync_configuration(self) -> TagsSyncSettings:
        """Fill in GitHub Actions defaults and normalize values."""
        if self.github_token is None:
            logger.debug("Loading GitHub token from GITHUB_TOKEN environment variable")
            self.github_token = os.getenv("GITHUB_TOKEN") or None

        if self.head_repository is None:
            self.head_repository = os.getenv("GITHUB_REPOSITORY") or None

        if self.workspace is None:
            self.workspace = os.getenv("GITHUB_WORKSPACE") or None

        if self.github_server_url is None:
            self.github_server_url = os.getenv("GITHUB_SERVER_URL") or DEFAULT_SERVER_URL

        if self.github_api_url is None:
            self.github_api_url = os.getenv("GITHUB_API_URL") or DEFAULT_API_URL

        if self.retry_max_attempts < 1:
            logger.warning(f"retry_max_attempts is {self.retry_max_attempts}, but must be >= 1. Setting to 1.")
            self.retry_max_attempts = 1

        if self.verbose_logging:
            logger.info("Verbose logging enabled for tags-sync")

        return self

    def workspace_path(self) -> Path:
        return Path(self.workspace) if self.workspace else Path.cwd()

    def to_run_config(self) -> RunConfig:
        """Validate every input and freeze it into the configuration of a run.

        Raises:
            ConfigurationError: If an input is missing or invalid. The message names the input.
        """
        if not self.base_repository:
            raise ConfigurationError("a base repository is required", setting="base_repository")
        if not self.head_repository:
            raise ConfigurationError(
                "a head repository is required (or run inside GitHub Actions)",
                setting="head_repository",
            )

        base = _parse_repository(self.base_repository, "base_repository")
        head = _parse_repository(self.head_repository, "head_repository")
        if base == head:
            raise ConfigurationError(f"base and head are both {base}", setting="head_repository")

        filter_pattern = compile_filter(self.filter_tags)

        if self.apply_patch:
            _check_patch_url(self.apply_patch)

        workspace = self.workspace_path()

        patch = PatchSpec(
            url=self.apply_patch or None,
            message=self.patch_message or None,
            author_name=self.patch_author,
            author_email=self.patch_author_email,
            committer_name=self.patch_committer,
            committer_email=self.patch_committer_email,
        )

        return RunConfig(
            base=base,
            head=head,
            working_copy_path=_resolve(workspace, self.cloned_path),
            filter_pattern=filter_pattern,
            branch_prefix=self.branch_prefix,
            patch=patch,
            scripts=parse_scripts(self.scripts_after_sync),
            hook_shell=self.hook_shell,
            hook_timeout_seconds=self.hook_timeout_seconds,
            github_token=self.github_token,
            server_url=self.github_server_url or DEFAULT_SERVER_URL,
            api_url=self.github_api_url or DEFAULT_API_URL,
            new_tags_file=_resolve(workspace, self.new_tags_file or DEFAULT_NEW_TAGS_FILENAME),
            synced_branches_file=_resolve(workspace, self.synced_branches_file or DEFAULT_SYNCED_BRANCHES_FILENAME),
            retry_max_attempts=self.retry_max_attempts,
            retry_backoff_seconds=self.retry_backoff_seconds,
            http_timeout_seconds=self.http_timeout_seconds,
            timeout_seconds=self.timeout_seconds,
            dry_run=self.dry_run,
        )


@dataclass(frozen=True)
class RunConfig:
    """Immutable, validated configuration of a run, handed explicitly to every component."""

    base: RepositoryRef
    head: RepositoryRef
    working_copy_path: Path
    filter_pattern: re.Pattern[str]
    new_tags_file: Path
    synced_branches_file: Path
    branch_prefix: str = ""
    patch: PatchSpec = field(default_factory=PatchSpec)
    scripts: tuple[str, ...] = ()
    hook_shell: str = "bash"
    hook_timeout_seconds: float | None = None
    github_token: str | None = field(default=None, repr=False)
    server_url: str = DEFAULT_SERVER_URL
    api_url: str = DEFAULT_API_URL
    retry_max_attempts: int = 3
    retry_backoff_seconds: float = 1.0
    http_timeout_seconds: float = 30
    timeout_seconds: float | None = None
    dry_run: bool = False

    def describe(self) -> list[str]:
        """Return the loggable settings of the run, with secrets masked."""
        return [
            f"Base repository: {self.base}",
            f"Head repository: {self.head}",
            f"Working copy: {self.working_copy_path}",
            f"Tag filter: {self.filter_pattern.pattern}",
            f"Branch prefix: {self.branch_prefix or '<none>'}",
            f"Patch: {self.patch.url or '<none>'}",
            f"Post-sync scripts: {len(self.scripts)}",
            f"GitHub token: {mask_secret(self.github_token)}",
            f"Dry run: {self.dry_run}",
        ]


def _parse_repository(value: str, setting: str) -> RepositoryRef:
    try:
        return RepositoryRef.parse(value)
    except ConfigurationError as e:
        raise ConfigurationError(str(e), setting=setting) from e


def _check_patch_url(url: str) -> None:
    # Strip the placeholder so a templated location still parses as a URL.
    parts = urlsplit(url.replace("{tag}", "tag"))
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(f"'{url}' is not an http(s) URL", setting="apply_patch")


def _resolve(workspace: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else workspace / path
