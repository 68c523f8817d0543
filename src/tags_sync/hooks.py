"""Post-sync hook scripts, run after each successfully pushed branch."""

from __future__ import annotations

import os
import re
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from tags_sync.exceptions import HookFailure

SCRIPT_DELIMITER = re.compile(r"^[ \t]*---[ \t]*$", re.MULTILINE)
"""Scripts are separated by a line holding only `---`."""

_STDERR_TAIL_LINES = 5


def parse_scripts(text: str | None) -> tuple[str, ...]:
    """Split the scripts input into independent script bodies, in order. Blank chunks are dropped."""
    if not text:
        return ()
    return tuple(chunk.strip("\n") for chunk in SCRIPT_DELIMITER.split(text) if chunk.strip())


@dataclass(frozen=True)
class HookContext:
    """What a hook script is told about the branch it runs for."""

    tag: str
    branch: str
    working_copy: Path
    base_repository: str
    head_repository: str

    def as_env(self) -> dict[str, str]:
        return {
            "TAGS_SYNC_TAG": self.tag,
            "TAGS_SYNC_BRANCH": self.branch,
            "TAGS_SYNC_WORKING_COPY": str(self.working_copy),
            "TAGS_SYNC_BASE_REPOSITORY": self.base_repository,
            "TAGS_SYNC_HEAD_REPOSITORY": self.head_repository,
        }


class HookInvoker:
    """Runs hook scripts sequentially, each to completion, inside the working copy."""

    def __init__(self, *, shell: str = "bash", timeout_seconds: float | None = None) -> None:
        self.shell = shell
        self.timeout_seconds = timeout_seconds

    def invoke(self, scripts: Sequence[str], context: HookContext) -> list[HookFailure]:
        """Run every script for `context`.

        A failing script never stops the following ones, and no error escapes to the caller.

        Returns:
            One `HookFailure` per script that failed, in order.
        """
        failures: list[HookFailure] = []
        for index, script in enumerate(scripts, start=1):
            logger.info(f"Running post-sync script {index}/{len(scripts)} for {context.branch}")
            try:
                failure = self._run(script, context)
            except Exception as e:
                failure = HookFailure(script, returncode=None, detail=f"could not be run: {e}")
            if failure is not None:
                logger.error(f"{failure} (branch {context.branch})")
                failures.append(failure)
        return failures

    def _run(self, script: str, context: HookContext) -> HookFailure | None:
        env = {**os.environ, **context.as_env()}
        try:
            result = subprocess.run(
                [self.shell, "-e", "-c", script],
                cwd=context.working_copy,
                env=env,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return HookFailure(script, returncode=None, detail=f"timed out after {self.timeout_seconds}s")
        except OSError as e:
            return HookFailure(script, returncode=None, detail=f"could not be started: {e}")

        if result.returncode != 0:
            tail = "\n".join((result.stderr or "").strip().splitlines()[-_STDERR_TAIL_LINES:])
            return HookFailure(script, returncode=result.returncode, detail=tail)

        logger.debug(f"Post-sync script for {context.branch} succeeded")
        return None
