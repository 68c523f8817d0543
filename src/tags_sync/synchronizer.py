"""The tag synchronization engine: turns new base tags into (optionally patched) head branches."""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from tags_sync.cancellation import CancellationToken
from tags_sync.config import RunConfig
from tags_sync.discovery import discover_new_tags
from tags_sync.exceptions import (
    FATAL_ERRORS,
    BaseRepositoryUnreachable,
    RepositoryAccessError,
    TransientTransportError,
)
from tags_sync.hooks import HookContext, HookInvoker
from tags_sync.models import SyncOutcome, SyncReport, SyncStatus, Tag, WorkingCopy, branch_name_for_tag
from tags_sync.patching import PatchApplier, PatchResolver
from tags_sync.repository.base import RepositoryAccess
from tags_sync.state import StateRecorder
from tags_sync.tag_filter import partition_tags


class BranchSynchronizer:
    """Synchronizes tags one at a time through a single shared working copy.

    Per tag: checkout -> apply patch (if configured) -> push -> post-sync hooks. Any failure inside one tag's
    pipeline is recorded as that tag's outcome and the next tag is processed; only `ConfigurationError` and
    `BaseRepositoryUnreachable` abort the run.

    Tags are processed sequentially because every tag checks out into the same working copy.
    """

    def __init__(
        self,
        access: RepositoryAccess,
        config: RunConfig,
        *,
        hook_invoker: HookInvoker | None = None,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self.access = access
        self.config = config
        self.hook_invoker = hook_invoker or HookInvoker(
            shell=config.hook_shell,
            timeout_seconds=config.hook_timeout_seconds,
        )
        self.cancellation = cancellation or CancellationToken()
        self.patch_resolver = PatchResolver(access, config.patch)
        self.patch_applier = PatchApplier(access, config.patch)
        self._tags_prefetched = False

    def branch_name(self, tag: Tag) -> str:
        return branch_name_for_tag(tag.name, self.config.branch_prefix)

    def sync(self, tags: Sequence[Tag]) -> SyncReport:
        """Synchronize `tags` (the new tags of the base repository) and report what happened to each."""
        report = self.plan(tags)
        self.execute(report)
        return report

    def plan(self, tags: Sequence[Tag]) -> SyncReport:
        """Apply the tag filter. Tags that do not match are recorded as skipped."""
        eligible, rejected = partition_tags(tags, self.config.filter_pattern)
        report = SyncReport(discovered=list(tags), eligible=eligible)
        reason = f"does not match filter '{self.config.filter_pattern.pattern}'"
        for tag in rejected:
            report.outcomes.append(self._outcome(tag, SyncStatus.skipped, reason=reason))
        return report

    def execute(self, report: SyncReport) -> None:
        """Synchronize every eligible tag of `report`, filling in its outcomes."""
        try:
            self._execute(report)
        finally:
            order = {tag.name: index for index, tag in enumerate(report.discovered)}
            report.outcomes.sort(key=lambda outcome: order.get(outcome.tag.name, len(order)))

    def _execute(self, report: SyncReport) -> None:
        eligible = report.eligible
        if not eligible:
            logger.info("Nothing to sync.")
            return

        logger.info(f"Syncing {len(eligible)} tag(s): {', '.join(tag.name for tag in eligible)}")

        if self.config.dry_run:
            for tag in eligible:
                logger.info(f"[DRY RUN] Would sync {tag.name} -> {self.branch_name(tag)}")
                report.outcomes.append(self._outcome(tag, SyncStatus.skipped, reason="dry run"))
            return

        try:
            working_copy = self._prepare_working_copy(eligible)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.error(f"Cannot prepare the working copy of {self.config.head}: {e}")
            for tag in eligible:
                report.outcomes.append(
                    self._outcome(tag, SyncStatus.failed, reason=f"working copy unavailable: {e}", error=e)
                )
            return

        self.patch_resolver.prefetch()

        for tag in eligible:
            if self.cancellation.cancelled:
                logger.warning(f"Skipping {tag.name}: {self.cancellation.reason}")
                report.outcomes.append(self._outcome(tag, SyncStatus.skipped, reason=self.cancellation.reason))
                continue
            report.outcomes.append(self._sync_tag(working_copy, tag))

    def _prepare_working_copy(self, tags: Sequence[Tag]) -> WorkingCopy:
        working_copy = self.access.clone_or_open(
            self.config.head,
            self.config.working_copy_path,
            upstream=self.config.base,
        )

        try:
            self.access.fetch_tags(working_copy, [tag.name for tag in tags])
            self._tags_prefetched = True
        except TransientTransportError as e:
            raise BaseRepositoryUnreachable(f"Cannot fetch tags from base repository {self.config.base}: {e}") from e
        except RepositoryAccessError as e:
            logger.warning(f"Fetching all new tags at once failed ({e}), fetching them one by one")
            self._tags_prefetched = False

        return working_copy

    def _sync_tag(self, working_copy: WorkingCopy, tag: Tag) -> SyncOutcome:
        branch = self.branch_name(tag)
        logger.info(f"Syncing tag {tag.name} -> branch {branch}")

        try:
            if not self._tags_prefetched:
                self.access.fetch_tags(working_copy, [tag.name])

            self.access.checkout(working_copy, tag.name, branch)

            patch = self.patch_resolver.resolve(tag)
            if patch is not None:
                # Once started, patch application runs to completion or failure.
                self.patch_applier.apply(working_copy, patch)

            if self.cancellation.cancelled:
                logger.warning(f"Not pushing {branch}: {self.cancellation.reason}")
                return self._outcome(tag, SyncStatus.skipped, reason=self.cancellation.reason)

            pushed_sha = self.access.push(working_copy, branch)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.error(f"✗ {tag.name}: {e}")
            return self._outcome(tag, SyncStatus.failed, reason=str(e), error=e)

        logger.success(f"✓ {tag.name} synced as {branch}")
        outcome = self._outcome(tag, SyncStatus.synced, commit_sha=pushed_sha)

        if self.config.scripts:
            context = HookContext(
                tag=tag.name,
                branch=branch,
                working_copy=working_copy.path,
                base_repository=self.config.base.owner_and_name,
                head_repository=self.config.head.owner_and_name,
            )
            outcome.hook_failures = self.hook_invoker.invoke(self.config.scripts, context)

        return outcome

    def _outcome(
        self,
        tag: Tag,
        status: SyncStatus,
        *,
        reason: str = "",
        error: Exception | None = None,
        commit_sha: str = "",
    ) -> SyncOutcome:
        return SyncOutcome(
            tag=tag,
            branch=self.branch_name(tag),
            status=status,
            reason=reason,
            error=error,
            commit_sha=commit_sha,
        )


def detect(access: RepositoryAccess, config: RunConfig) -> SyncReport:
    """Discover and filter new tags without touching any working copy."""
    discovered = discover_new_tags(access, config.base, config.head, branch_prefix=config.branch_prefix)
    return BranchSynchronizer(access, config).plan(discovered)


def run_sync(
    access: RepositoryAccess,
    config: RunConfig,
    recorder: StateRecorder,
    *,
    hook_invoker: HookInvoker | None = None,
    cancellation: CancellationToken | None = None,
) -> SyncReport:
    """Run the whole pipeline: discovery, filter, per-tag synchronization, then state recording.

    Both state files are written even when a fatal error interrupts the run.

    Raises:
        ConfigurationError: On invalid configuration discovered while running.
        BaseRepositoryUnreachable: If the base repository cannot be reached at all.
    """
    synchronizer = BranchSynchronizer(access, config, hook_invoker=hook_invoker, cancellation=cancellation)
    report = SyncReport()
    try:
        discovered = discover_new_tags(access, config.base, config.head, branch_prefix=config.branch_prefix)
        report = synchronizer.plan(discovered)
        synchronizer.execute(report)
        return report
    finally:
        recorder.record([tag.name for tag in report.eligible], report.synced_branches)


def log_report(report: SyncReport) -> None:
    """Log the per-tag outcomes of a run."""
    logger.info("=" * 80)
    logger.info("Sync Summary")
    logger.info("=" * 80)

    if not report.outcomes:
        logger.info("Nothing to sync.")
        return

    logger.info(f"New tags: {len(report.discovered)}")
    logger.info(f"Eligible: {len(report.eligible)}")
    logger.info(f"Synced: {len(report.synced)}")
    logger.info(f"Skipped: {len(report.skipped)}")
    logger.info(f"Failed: {len(report.failed)}")

    for outcome in report.outcomes:
        if outcome.status == SyncStatus.synced:
            logger.success(f"  {outcome.describe()}")
        elif outcome.status == SyncStatus.skipped:
            logger.warning(f"  {outcome.describe()}")
        else:
            logger.error(f"  {outcome.describe()}")
        for failure in outcome.hook_failures:
            logger.error(f"    {failure}")

    if report.has_failures():
        logger.error(f"{len(report.failed)} tag(s) failed to sync")
    else:
        logger.success("All eligible tags handled")
