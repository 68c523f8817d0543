r"""Command line entry point for syncing new tags of a base repository as branches of a head repository.

Subcommands:
- **sync** (default): discovers new tags, clones the head repository, creates (and optionally patches) one
  branch per new tag, pushes it and runs the post-sync scripts
- **detect**: only discovers and filters new tags and writes the new-tags file, without cloning

Environment variables:
    TAGS_SYNC_BASE_REPOSITORY - Base (upstream) repository as owner/name (required)
    TAGS_SYNC_HEAD_REPOSITORY - Head (fork) repository (default: $GITHUB_REPOSITORY)
    TAGS_SYNC_GITHUB_TOKEN - Token for reading and pushing (default: $GITHUB_TOKEN)
    TAGS_SYNC_FILTER_TAGS - Regular expression tags must fully match (default: .*)
    TAGS_SYNC_APPLY_PATCH - URL of a patch applied to each new branch, may contain {tag}
    TAGS_SYNC_PATCH_MESSAGE, TAGS_SYNC_PATCH_AUTHOR(_EMAIL), TAGS_SYNC_PATCH_COMMITTER(_EMAIL) - Patch commit metadata
    TAGS_SYNC_SCRIPTS_AFTER_SYNC - Scripts run after each push, separated by '---' lines
    TAGS_SYNC_HOOK_SHELL, TAGS_SYNC_HOOK_TIMEOUT_SECONDS - How the scripts are run
    TAGS_SYNC_DRY_RUN - Set to 'true' to only report what would be synced
    TAGS_SYNC_VERBOSE_LOGGING - Set to 'true' for verbose logging
    TAGS_SYNC_LOG_LEVEL - Overrides the log level

Examples:
    # Sync every new tag of torvalds/linux into the fork the workflow runs in
    tags-sync --base-repository torvalds/linux

    # Only tags of the v6 series, patched before pushing
    tags-sync --base-repository torvalds/linux --filter-tags '^v6\..*' \\
        --apply-patch https://example.com/patches/{tag}.patch

    # Check what is new without cloning
    tags-sync detect --base-repository torvalds/linux --head-repository me/linux

    # Dry run
    TAGS_SYNC_DRY_RUN=true tags-sync --base-repository torvalds/linux
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from typing import Any

from loguru import logger
from pydantic import ValidationError

from tags_sync.cancellation import CancellationToken
from tags_sync.config import RunConfig, TagsSyncSettings
from tags_sync.exceptions import FATAL_ERRORS, TagsSyncError
from tags_sync.logging_config import configure_logger, enable_debug_logging
from tags_sync.repository import GitRepositoryAccess, RepositoryAccess
from tags_sync.state import StateRecorder
from tags_sync.synchronizer import detect, log_report, run_sync

COMMAND_SYNC = "sync"
COMMAND_DETECT = "detect"

# Maps CLI destinations to settings fields. Options left unset keep the environment value.
_SETTING_OPTIONS = {
    "base_repository": "base_repository",
    "head_repository": "head_repository",
    "workspace": "workspace",
    "cloned_path": "cloned_path",
    "filter_tags": "filter_tags",
    "branch_prefix": "branch_prefix",
    "apply_patch": "apply_patch",
    "patch_message": "patch_message",
    "patch_author": "patch_author",
    "patch_author_email": "patch_author_email",
    "patch_committer": "patch_committer",
    "patch_committer_email": "patch_committer_email",
    "scripts_after_sync": "scripts_after_sync",
    "hook_shell": "hook_shell",
    "hook_timeout": "hook_timeout_seconds",
    "new_tags_file": "new_tags_file",
    "synced_branches_file": "synced_branches_file",
    "timeout": "timeout_seconds",
}


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser. Every option is shared by both subcommands."""
    common = argparse.ArgumentParser(add_help=False, argument_default=argparse.SUPPRESS)

    common.add_argument(
        "--base-repository",
        type=str,
        help="Base repository as owner/name (default: from env TAGS_SYNC_BASE_REPOSITORY)",
    )

    common.add_argument(
        "--head-repository",
        type=str,
        help="Head repository as owner/name (default: from env TAGS_SYNC_HEAD_REPOSITORY or GITHUB_REPOSITORY)",
    )

    common.add_argument(
        "--workspace",
        type=str,
        help="Directory relative paths are resolved against (default: GITHUB_WORKSPACE or the current directory)",
    )

    common.add_argument(
        "--cloned-path",
        type=str,
        help="Where the head repository is cloned, relative to the workspace (default: head-repo)",
    )

    common.add_argument(
        "--filter-tags",
        type=str,
        help="Regular expression a tag must fully match to be synced (default: .*)",
    )

    common.add_argument(
        "--branch-prefix",
        type=str,
        help="Prefix of the branch created for each tag (default: none)",
    )

    common.add_argument(
        "--apply-patch",
        type=str,
        help="URL of a patch to apply to each new branch; '{tag}' is replaced by the tag name",
    )

    common.add_argument(
        "--patch-message",
        type=str,
        help="Commit message of the patch commit (default: 'Apply patch from <url>')",
    )

    common.add_argument(
        "--patch-author",
        type=str,
        help="Author name of the patch commit (default: github-actions[bot])",
    )

    common.add_argument(
        "--patch-author-email",
        type=str,
        help="Author email of the patch commit",
    )

    common.add_argument(
        "--patch-committer",
        type=str,
        help="Committer name of the patch commit (default: github-actions[bot])",
    )

    common.add_argument(
        "--patch-committer-email",
        type=str,
        help="Committer email of the patch commit",
    )

    common.add_argument(
        "--scripts-after-sync",
        type=str,
        help="Shell scripts run after each branch is pushed, separated by lines holding only '---'",
    )

    common.add_argument(
        "--hook-shell",
        type=str,
        help="Shell running the post-sync scripts as '<shell> -e -c <script>' (default: bash)",
    )

    common.add_argument(
        "--hook-timeout",
        type=float,
        help="Timeout in seconds for each post-sync script (default: none)",
    )

    common.add_argument(
        "--new-tags-file",
        type=str,
        help="Where the list of new tags is written (default: <workspace>/new_tags.txt)",
    )

    common.add_argument(
        "--synced-branches-file",
        type=str,
        help="Where the list of synced branches is written (default: <workspace>/synced_branches.txt)",
    )

    common.add_argument(
        "--timeout",
        type=float,
        help="Stop starting new tags after this many seconds",
    )

    common.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be synced without cloning or pushing",
    )

    common.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    parser = argparse.ArgumentParser(
        prog="tags-sync",
        description="Sync new tags of a base repository as branches of a head repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
        parents=[common],
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser(
        COMMAND_SYNC,
        parents=[common],
        help="Sync new tags as branches (default)",
    )
    subparsers.add_parser(
        COMMAND_DETECT,
        parents=[common],
        help="Only detect new tags and write the new-tags file",
    )

    return parser


def settings_from_args(args: argparse.Namespace) -> TagsSyncSettings:
    """Build settings from the environment, overridden by the options given on the command line."""
    overrides: dict[str, Any] = {}
    for option, setting in _SETTING_OPTIONS.items():
        value = getattr(args, option, None)
        if value is not None:
            overrides[setting] = value

    if getattr(args, "dry_run", False):
        overrides["dry_run"] = True

    if getattr(args, "verbose", False):
        overrides["verbose_logging"] = True

    return TagsSyncSettings(**overrides)


def create_access(config: RunConfig) -> RepositoryAccess:
    return GitRepositoryAccess(
        github_token=config.github_token,
        server_url=config.server_url,
        api_url=config.api_url,
        retry_max_attempts=config.retry_max_attempts,
        retry_backoff_seconds=config.retry_backoff_seconds,
        http_timeout_seconds=config.http_timeout_seconds,
    )


def main(argv: Sequence[str] | None = None, *, access: RepositoryAccess | None = None) -> int:
    """Enter the tags-sync command line.

    Args:
        argv: Command line arguments, defaults to `sys.argv[1:]`.
        access: Repository access to use instead of the GitHub-backed one.

    Returns:
        Exit code (0 when the run completed, even if some tags failed; 1 on a fatal error).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or COMMAND_SYNC

    verbose = getattr(args, "verbose", False)
    configure_logger("DEBUG" if verbose else "INFO")

    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        logger.error(f"Invalid configuration:\n{e}")
        return 1

    if settings.verbose_logging and not verbose:
        enable_debug_logging()

    try:
        config = settings.to_run_config()
    except FATAL_ERRORS as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if access is None:
        access = create_access(config)

    recorder = StateRecorder(config.new_tags_file, config.synced_branches_file)

    logger.info("=" * 80)
    logger.info(f"tags-sync {command}")
    logger.info("=" * 80)
    for line in config.describe():
        logger.info(line)
    logger.info("=" * 80)

    if command == COMMAND_DETECT:
        return run_detect(access, config, recorder)

    return run_sync_command(access, config, recorder)


def run_detect(access: RepositoryAccess, config: RunConfig, recorder: StateRecorder) -> int:
    """Write the new-tags file (and step outputs) without cloning anything.

    Returns:
        Exit code (0 for success, 1 if the new tags could not be determined).
    """
    eligible: list[str] = []
    try:
        report = detect(access, config)
        eligible = [tag.name for tag in report.eligible]
    except TagsSyncError as e:
        logger.error(f"Tag detection failed: {e}")
        return 1
    finally:
        recorder.record_new_tags(eligible)
        recorder.write_github_outputs(has_new_tags=bool(eligible), include_synced_branches=False)

    if eligible:
        logger.info(f"{len(eligible)} new tag(s) to sync: {', '.join(eligible)}")
    else:
        logger.success("✓ No new tags to sync")
    return 0


def run_sync_command(access: RepositoryAccess, config: RunConfig, recorder: StateRecorder) -> int:
    """Run the full pipeline.

    Returns:
        Exit code (0 when the run completed, 1 for a fatal error or a failed discovery).
    """
    cancellation = CancellationToken(timeout_seconds=config.timeout_seconds)
    cancellation.install_signal_handlers()

    try:
        report = run_sync(access, config, recorder, cancellation=cancellation)
    except TagsSyncError as e:
        logger.error(f"Sync aborted: {e}")
        recorder.write_github_outputs(has_new_tags=False)
        return 1
    finally:
        cancellation.restore_signal_handlers()

    recorder.write_github_outputs(has_new_tags=bool(report.eligible))
    log_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
