"""Selection of the discovered tags that are eligible for synchronization."""

from __future__ import annotations

import re
from collections.abc import Sequence

from loguru import logger

from tags_sync.exceptions import ConfigurationError
from tags_sync.models import Tag

MATCH_ALL = ".*"


def compile_filter(pattern: str | re.Pattern[str] | None) -> re.Pattern[str]:
    """Compile a tag filter.

    An unset or empty pattern matches every tag.

    Raises:
        ConfigurationError: If the pattern is not a valid regular expression.
    """
    if isinstance(pattern, re.Pattern):
        return pattern
    try:
        return re.compile(pattern or MATCH_ALL)
    except re.error as e:
        raise ConfigurationError(f"'{pattern}' is not a valid regular expression ({e})", setting="filter_tags") from e


def matches(tag_name: str, pattern: re.Pattern[str]) -> bool:
    """Return True if the whole tag name matches the pattern."""
    return pattern.fullmatch(tag_name) is not None


def partition_tags(tags: Sequence[Tag], pattern: str | re.Pattern[str] | None) -> tuple[list[Tag], list[Tag]]:
    """Split tags into (retained, rejected), both in their original order."""
    compiled = compile_filter(pattern)
    retained: list[Tag] = []
    rejected: list[Tag] = []
    for tag in tags:
        (retained if matches(tag.name, compiled) else rejected).append(tag)

    if rejected:
        logger.debug(f"Filter '{compiled.pattern}' rejected {len(rejected)} tag(s): {[tag.name for tag in rejected]}")
    return retained, rejected


def filter_tags(tags: Sequence[Tag], pattern: str | re.Pattern[str] | None) -> list[Tag]:
    """Return the tags whose full name matches `pattern`.

    The match is anchored on both ends: `v2` does not retain `v2.0`, use `v2.*` for that.
    """
    retained, _ = partition_tags(tags, pattern)
    return retained
