"""Exception hierarchy for tags-sync.

Only `ConfigurationError` and `BaseRepositoryUnreachable` abort a run. Every other error is caught at the
tag boundary by the synchronizer and recorded on that tag's outcome.
"""

from __future__ import annotations


class TagsSyncError(Exception):
    """Base class for all tags-sync errors."""


class ConfigurationError(TagsSyncError):
    """An input is invalid (malformed repository reference, bad regex, ...). Fatal."""

    def __init__(self, message: str, *, setting: str | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human readable description of the problem.
            setting: The name of the offending input, if known.
        """
        self.setting = setting
        if setting:
            message = f"Invalid value for '{setting}': {message}"
        super().__init__(message)


class BaseRepositoryUnreachable(TagsSyncError):
    """The base repository could not be reached at all. Fatal."""


class RepositoryAccessError(TagsSyncError):
    """A non-transient failure talking to a repository (authentication, not found, ...)."""


class TransientTransportError(RepositoryAccessError):
    """A network failure worth retrying (timeout, connection reset, 5xx)."""


class RemoteRejected(RepositoryAccessError):
    """The remote refused a push, typically because it was not a fast-forward."""

    def __init__(self, branch_name: str, detail: str) -> None:
        """Initialize the error.

        Args:
            branch_name: The branch whose push was rejected.
            detail: The reason reported by the remote.
        """
        self.branch_name = branch_name
        self.detail = detail
        super().__init__(f"Push of branch '{branch_name}' was rejected: {detail}")


class PatchApplicationFailure(TagsSyncError):
    """The patch could not be fetched or applied cleanly."""


class HookFailure(TagsSyncError):
    """A post-sync script exited with a non-zero status or could not be run."""

    def __init__(self, script: str, *, returncode: int | None, detail: str = "") -> None:
        """Initialize the error.

        Args:
            script: The script body (or its first line) that failed.
            returncode: The exit status, or None if the script never ran to completion.
            detail: Extra information (stderr tail, timeout message, ...).
        """
        self.script = script
        self.returncode = returncode
        self.detail = detail
        first_line = script.strip().splitlines()[0] if script.strip() else "<empty>"
        message = f"Hook '{first_line}' failed"
        if returncode is not None:
            message += f" with exit code {returncode}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


FATAL_ERRORS: tuple[type[TagsSyncError], ...] = (ConfigurationError, BaseRepositoryUnreachable)
"""Errors that are never isolated at the tag boundary."""
