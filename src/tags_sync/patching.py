"""Resolution and application of the patch rewritten onto every synced branch."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from tags_sync.exceptions import PatchApplicationFailure, RepositoryAccessError
from tags_sync.models import PatchSpec, Tag, WorkingCopy
from tags_sync.repository.base import RepositoryAccess


@dataclass(frozen=True)
class Patch:
    """A downloaded patch document."""

    url: str
    content: bytes


class PatchResolver:
    """Downloads patch documents, at most once per resolved location.

    A static location is fetched once per run and shared by every tag. A location containing the `{tag}`
    placeholder is resolved per tag. Failures are cached too, so an unreachable patch is not re-downloaded
    for every tag of the run.
    """

    def __init__(self, access: RepositoryAccess, spec: PatchSpec) -> None:
        self.access = access
        self.spec = spec
        self._patches: dict[str, Patch] = {}
        self._failures: dict[str, str] = {}

    def resolve(self, tag: Tag | None = None) -> Patch | None:
        """Return the patch to apply for `tag`, or None if no patch is configured.

        Args:
            tag: The tag being synchronized. Required when the location is templated.

        Raises:
            PatchApplicationFailure: If the patch cannot be downloaded or is empty.
        """
        if not self.spec.enabled:
            return None

        if self.spec.is_templated and tag is None:
            raise ValueError("A templated patch location can only be resolved for a specific tag")

        url = self.spec.url_for(tag.name) if tag is not None else self.spec.url_for("")

        if url in self._patches:
            return self._patches[url]
        if url in self._failures:
            raise PatchApplicationFailure(self._failures[url])

        logger.info(f"Fetching patch from {url}")
        try:
            content = self.access.fetch_patch(url)
        except RepositoryAccessError as e:
            self._failures[url] = f"Cannot fetch patch {url}: {e}"
            raise PatchApplicationFailure(self._failures[url]) from e

        if not content.strip():
            self._failures[url] = f"Patch {url} is empty"
            raise PatchApplicationFailure(self._failures[url])

        patch = Patch(url=url, content=content)
        self._patches[url] = patch
        return patch

    def prefetch(self) -> None:
        """Fetch a static patch up front so a broken location is reported once, before any tag is processed.

        A failure is only logged here: it is raised again, and recorded, for each tag that needs the patch.
        """
        if not self.spec.enabled or self.spec.is_templated:
            return
        try:
            self.resolve()
        except PatchApplicationFailure as e:
            logger.error(f"{e}. Every tag of this run will fail.")


class PatchApplier:
    """Applies a patch to a freshly checked-out branch and commits the result."""

    def __init__(self, access: RepositoryAccess, spec: PatchSpec) -> None:
        self.access = access
        self.spec = spec

    def apply(self, working_copy: WorkingCopy, patch: Patch) -> str:
        """Apply `patch` on the current branch and commit it with the configured authorship.

        Returns:
            The sha of the patch commit.

        Raises:
            PatchApplicationFailure: If the patch does not apply or cannot be committed.
        """
        try:
            self.access.apply_patch(working_copy, patch.content)
            sha = self.access.commit(
                working_copy,
                self.spec.commit_message(patch.url),
                self.spec.author,
                self.spec.committer,
            )
        except RepositoryAccessError as e:
            raise PatchApplicationFailure(f"Cannot apply patch {patch.url}: {e}") from e

        logger.debug(f"Applied patch {patch.url} as {sha}")
        return sha
