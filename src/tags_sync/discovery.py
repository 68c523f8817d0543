"""Detection of base tags that have no synchronized branch in the head repository."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from loguru import logger

from tags_sync.exceptions import BaseRepositoryUnreachable, RepositoryAccessError
from tags_sync.models import RepositoryRef, Tag, branch_name_for_tag
from tags_sync.repository.base import RepositoryAccess


def new_tags(tags: Sequence[Tag], head_branches: Iterable[str], *, branch_prefix: str = "") -> list[Tag]:
    """Return the tags whose derived branch is not among `head_branches`.

    The order of `tags` is preserved.
    """
    existing = set(head_branches)
    return [tag for tag in tags if branch_name_for_tag(tag.name, branch_prefix) not in existing]


def discover_new_tags(
    access: RepositoryAccess,
    base: RepositoryRef,
    head: RepositoryRef,
    *,
    branch_prefix: str = "",
) -> list[Tag]:
    """Return the base tags that have not been synchronized to the head repository yet.

    Tags come back in the order the tag listing reports them; they are not re-sorted.
    When the base repository has no tags, the head repository is not queried at all.

    Args:
        access: The repository access capability.
        base: The upstream repository to read tags from.
        head: The fork whose branches mark already synchronized tags.
        branch_prefix: Prefix of derived branch names.

    Returns:
        The new tags.

    Raises:
        BaseRepositoryUnreachable: If the tags of the base repository cannot be listed.
        RepositoryAccessError: If the branches of the head repository cannot be listed.
    """
    try:
        base_tags = access.list_tags(base)
    except RepositoryAccessError as e:
        raise BaseRepositoryUnreachable(f"Cannot list tags of base repository {base}: {e}") from e

    if not base_tags:
        logger.info(f"Base repository {base} has no tags")
        return []

    try:
        head_branches = access.list_branches(head)
    except RepositoryAccessError as e:
        raise RepositoryAccessError(f"Cannot list branches of head repository {head}: {e}") from e

    logger.debug(f"Comparing {len(base_tags)} tag(s) of {base} with {len(head_branches)} branch(es) of {head}")

    result = new_tags(base_tags, head_branches, branch_prefix=branch_prefix)
    logger.info(f"Found {len(result)} new tag(s) in {base}")
    if result:
        logger.debug(f"New tags: {[tag.name for tag in result]}")
    return result
