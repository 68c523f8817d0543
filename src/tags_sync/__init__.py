"""Synchronize new tags of an upstream repository as (optionally patched) branches of a fork."""

from __future__ import annotations

from tags_sync.config import RunConfig, TagsSyncSettings
from tags_sync.discovery import discover_new_tags
from tags_sync.exceptions import (
    BaseRepositoryUnreachable,
    ConfigurationError,
    HookFailure,
    PatchApplicationFailure,
    RemoteRejected,
    RepositoryAccessError,
    TagsSyncError,
    TransientTransportError,
)
from tags_sync.models import RepositoryRef, SyncOutcome, SyncReport, SyncStatus, Tag, branch_name_for_tag
from tags_sync.synchronizer import BranchSynchronizer, detect, run_sync
from tags_sync.tag_filter import filter_tags

__version__ = "0.1.0"

__all__ = [
    "BaseRepositoryUnreachable",
    "BranchSynchronizer",
    "ConfigurationError",
    "HookFailure",
    "PatchApplicationFailure",
    "RemoteRejected",
    "RepositoryAccessError",
    "RepositoryRef",
    "RunConfig",
    "SyncOutcome",
    "SyncReport",
    "SyncStatus",
    "Tag",
    "TagsSyncError",
    "TagsSyncSettings",
    "TransientTransportError",
    "branch_name_for_tag",
    "detect",
    "discover_new_tags",
    "filter_tags",
    "run_sync",
]
