"""Priority scoring: static path rules, git recency boost and stable ordering."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from repo_chunker.config import MAX_RECENCY_BOOST, FileEntry, PriorityRule
from repo_chunker.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

_REGEX_METACHARACTERS = frozenset(".^$*+?{}[]\\|()")


@dataclass(frozen=True)
class PathMatcher:
    """Base path matcher. Matches nothing on its own."""

    pattern: str

    def matches(self, path: str) -> bool:  # noqa: ARG002, PLR6301
        return False


@dataclass(frozen=True)
class LiteralMatcher(PathMatcher):
    """Plain substring containment."""

    def matches(self, path: str) -> bool:
        return self.pattern in path


@dataclass(frozen=True)
class RegexMatcher(PathMatcher):
    """Substring containment, or the regular expression searched anywhere in the path."""

    regex: re.Pattern[str] = field(compare=False, repr=False)

    def matches(self, path: str) -> bool:
        return self.pattern in path or self.regex.search(path) is not None


def build_matcher(pattern: str) -> PathMatcher:
    """Select the matcher variant for ``pattern``, once, at rule load time.

    Patterns without regular expression metacharacters are matched as
    substrings. Anything else is compiled and matches either as a substring
    or through the expression. A pattern that fails to compile keeps only
    the substring match.

    Args:
        pattern (str): the rule pattern

    Returns:
        PathMatcher: the matcher to use for every path
    """
    if not _REGEX_METACHARACTERS.intersection(pattern):
        return LiteralMatcher(pattern)
    try:
        return RegexMatcher(pattern, re.compile(pattern))
    except re.error as e:
        logger.debug("invalid_priority_pattern", pattern=pattern, error=str(e))
        return LiteralMatcher(pattern)


def compute_recency_boost(
    commit_times: Mapping[str, int] | None,
    max_boost: int = MAX_RECENCY_BOOST,
) -> dict[str, int]:
    """Rank-normalize last-change timestamps into a boost per path.

    Paths are ranked by ascending timestamp: the oldest gets 0, the newest
    gets ``max_boost`` and the others scale linearly with their rank. Only
    relative order matters, never the timestamp values themselves. With fewer
    than two paths every boost is 0.

    Args:
        commit_times (Mapping[str, int] | None): path to Unix timestamp, or
            None when no version history is available
        max_boost (int): boost granted to the most recent path

    Returns:
        dict[str, int]: boost per known path; empty without history
    """
    if not commit_times:
        return {}

    ranked = sorted(commit_times.items(), key=lambda item: (item[1], item[0]))
    last_index = len(ranked) - 1
    if last_index < 1:
        return dict.fromkeys(commit_times, 0)

    # half away from zero
    return {path: math.floor(i / last_index * max_boost + 0.5) for i, (path, _ts) in enumerate(ranked)}


def static_score(path: str, matchers: Sequence[tuple[PathMatcher, int]]) -> int:
    """Highest score among the matching rules, 0 when none match."""
    return max((score for matcher, score in matchers if matcher.matches(path)), default=0)


class PriorityScorer:
    """Combine static rule scores with an optional recency boost.

    ``recency_boosts`` is None when no version history is available, in
    which case priorities are the static scores alone.
    """

    def __init__(
        self,
        rules: Iterable[PriorityRule],
        recency_boosts: Mapping[str, int] | None = None,
    ) -> None:
        self.matchers: list[tuple[PathMatcher, int]] = [(build_matcher(r.pattern), r.score) for r in rules]
        self.recency_boosts = recency_boosts

    @classmethod
    def from_commit_times(
        cls,
        rules: Iterable[PriorityRule],
        commit_times: Mapping[str, int] | None,
        max_boost: int = MAX_RECENCY_BOOST,
    ) -> PriorityScorer:
        """Build a scorer from raw git timestamps (or None)."""
        boosts = None if commit_times is None else compute_recency_boost(commit_times, max_boost)
        return cls(rules, boosts)

    def static_score(self, path: str) -> int:
        return static_score(path, self.matchers)

    def recency_boost(self, path: str) -> int:
        if self.recency_boosts is None:
            return 0
        return self.recency_boosts.get(path, 0)

    def score(self, path: str) -> int:
        """Final priority of ``path``; not clamped to the rule score range."""
        return self.static_score(path) + self.recency_boost(path)

    def apply(self, entries: Iterable[FileEntry]) -> list[FileEntry]:
        """Return copies of ``entries`` carrying their final priority."""
        return [entry.model_copy(update={"priority": self.score(entry.rel_path)}) for entry in entries]


def order_entries(entries: Iterable[FileEntry]) -> list[FileEntry]:
    """Stable sort by ascending priority; equal priorities keep discovery order."""
    return sorted(entries, key=lambda e: e.priority)
