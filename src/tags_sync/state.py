"""Persistence of the per-run tag and branch lists consumed by external tooling."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

from loguru import logger

NEW_TAGS_OUTPUT = "new-tags-file"
SYNCED_BRANCHES_OUTPUT = "synced-branches-file"
HAS_NEW_TAGS_OUTPUT = "has-new-tags"


def write_lines(path: Path, names: Iterable[str]) -> None:
    """Write one name per line. An empty list produces an empty file, never a missing one."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = "".join(f"{name}\n" for name in names)
    path.write_text(content, encoding="utf-8")


def read_lines(path: Path) -> list[str]:
    """Read a list written by `write_lines`. A missing file reads as an empty list."""
    if not path.exists():
        return []
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line]


class StateRecorder:
    """Writes the new-tags list and the synced-branches list of a run.

    Neither file is cumulative: each run overwrites both with what it observed and produced. The new-tags file
    is also the cache key input for the head repository clone, so its content only depends on the set of tags
    eligible for this run.
    """

    def __init__(self, new_tags_file: Path, synced_branches_file: Path) -> None:
        self.new_tags_file = Path(new_tags_file)
        self.synced_branches_file = Path(synced_branches_file)

    def record_new_tags(self, tag_names: Iterable[str]) -> None:
        names = list(tag_names)
        write_lines(self.new_tags_file, names)
        logger.debug(f"Recorded {len(names)} new tag(s) in {self.new_tags_file}")

    def record_synced_branches(self, branch_names: Iterable[str]) -> None:
        names = list(branch_names)
        write_lines(self.synced_branches_file, names)
        logger.debug(f"Recorded {len(names)} synced branch(es) in {self.synced_branches_file}")

    def record(self, discovered_tags: Iterable[str], synced_branches: Iterable[str]) -> None:
        """Write both lists."""
        self.record_new_tags(discovered_tags)
        self.record_synced_branches(synced_branches)
        logger.info(f"State written to {self.new_tags_file} and {self.synced_branches_file}")

    def write_github_outputs(self, *, has_new_tags: bool, include_synced_branches: bool = True) -> bool:
        """Expose the file paths as step outputs when running inside GitHub Actions.

        Args:
            has_new_tags: Value of the `has-new-tags` output, which lets a workflow skip the sync step.
            include_synced_branches: Whether the synced-branches file exists yet.

        Returns:
            True if `$GITHUB_OUTPUT` was set and written to.
        """
        github_output = os.getenv("GITHUB_OUTPUT")
        if not github_output:
            return False

        lines = [
            f"{NEW_TAGS_OUTPUT}={self.new_tags_file}",
            f"{HAS_NEW_TAGS_OUTPUT}={'true' if has_new_tags else 'false'}",
        ]
        if include_synced_branches:
            lines.append(f"{SYNCED_BRANCHES_OUTPUT}={self.synced_branches_file}")

        with open(github_output, "a", encoding="utf-8") as f:
            f.write("".join(f"{line}\n" for line in lines))
        logger.debug(f"Wrote step outputs to {github_output}")
        return True
