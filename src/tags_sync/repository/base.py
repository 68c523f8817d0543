"""Abstract capability interface for everything that touches git or the network."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from tags_sync.models import RepositoryRef, Signature, Tag, WorkingCopy


class RepositoryAccess(ABC):
    """The git capabilities the synchronization engine relies on.

    `GitRepositoryAccess` is the real implementation (GitPython, PyGithub, httpx). Tests drive the engine through
    an in-memory implementation of this same interface.

    Implementations must retry transient transport failures themselves and raise the errors from
    `tags_sync.exceptions` for everything else.
    """

    # ============================================================================
    # Query Operations
    # ============================================================================

    @abstractmethod
    def list_tags(self, repo: RepositoryRef) -> list[Tag]:
        """Return every tag of `repo`, in the order the listing capability reports them.

        Raises:
            RepositoryAccessError: If the tags cannot be listed.
        """

    @abstractmethod
    def list_branches(self, repo: RepositoryRef) -> set[str]:
        """Return the names of every branch of `repo`.

        Raises:
            RepositoryAccessError: If the branches cannot be listed.
        """

    @abstractmethod
    def fetch_patch(self, url: str) -> bytes:
        """Download a patch document.

        Raises:
            RepositoryAccessError: If the document cannot be downloaded.
        """

    # ============================================================================
    # Working Copy Operations
    # ============================================================================

    @abstractmethod
    def clone_or_open(self, repo: RepositoryRef, path: Path, *, upstream: RepositoryRef) -> WorkingCopy:
        """Clone `repo` into `path`, or reuse (and fetch) a clone already there.

        Args:
            repo: The head repository.
            path: Where the working copy lives.
            upstream: The base repository, registered as a second remote for fetching tags.

        Raises:
            ConfigurationError: If `path` holds a clone of a different repository.
            RepositoryAccessError: If cloning or fetching fails.
        """

    @abstractmethod
    def fetch_tags(self, working_copy: WorkingCopy, tag_names: Sequence[str]) -> None:
        """Fetch exactly the given tags from the upstream remote into the working copy."""

    @abstractmethod
    def checkout(self, working_copy: WorkingCopy, tag_name: str, branch_name: str) -> str:
        """Create (or reset) `branch_name` at the commit of `tag_name` and check it out.

        Returns:
            The commit the branch now points at.
        """

    @abstractmethod
    def apply_patch(self, working_copy: WorkingCopy, patch: bytes) -> None:
        """Apply a patch to the index and the working tree of the current branch.

        Raises:
            PatchApplicationFailure: If the patch is malformed or does not apply cleanly. The working copy is left
                clean on the current branch.
        """

    @abstractmethod
    def commit(self, working_copy: WorkingCopy, message: str, author: Signature, committer: Signature) -> str:
        """Commit the staged changes on the current branch.

        Returns:
            The sha of the new commit.
        """

    @abstractmethod
    def push(self, working_copy: WorkingCopy, branch_name: str) -> str:
        """Push `branch_name` to the head repository without forcing.

        Returns:
            The sha that was pushed.

        Raises:
            RemoteRejected: If the remote branch exists and the push is not a fast-forward.
        """
