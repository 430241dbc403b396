"""Topic level splitting and wildcard subscription matching.

A topic is a sequence of levels separated by ``/``. A subscription pattern
may contain two kinds of wildcard level:

* ``+`` stands for exactly one level, and the levels on either side of it
  must line up with the topic.
* ``*`` stands for one or more levels, up to the next level of the pattern.
"""

from __future__ import annotations

from collections.abc import Iterable

SEPARATOR = "/"
SINGLE_LEVEL = "+"
MULTI_LEVEL = "*"


def split_topic(topic: str) -> list[str]:
    """Return the levels of ``topic``, ignoring a trailing newline."""
    return topic.rstrip("\n").split(SEPARATOR)


def _matches(pattern: str, topic_levels: list[str]) -> bool:
    pattern_levels = split_topic(pattern)
    # A trailing sentinel lets the look-ahead compare past the last level.
    pattern_full = [*pattern_levels, None]
    topic_full = [*topic_levels, None]

    j = 0
    k = 0
    awaiting: str | None = None
    waiting_for_star = False
    while k < len(topic_levels) and j < len(pattern_levels):
        level = pattern_levels[j]
        word = topic_levels[k]
        if not waiting_for_star:
            if level == MULTI_LEVEL:
                awaiting = pattern_full[j + 1]
                waiting_for_star = True
            elif (level != word and level != SINGLE_LEVEL) or (
                level == SINGLE_LEVEL and topic_full[k + 1] != pattern_full[j + 1]
            ):
                return False
            j += 1
            k += 1
        else:
            if awaiting is not None and awaiting == word:
                waiting_for_star = False
                awaiting = None
                j += 1
            k += 1
    return j == len(pattern_levels)


def match_topic(patterns: Iterable[str], topic: str) -> str | None:
    """Return the first pattern in ``patterns`` that ``topic`` matches.

    An exact match wins; otherwise wildcard patterns are tried in sorted
    order. Returns ``None`` when nothing matches.
    """
    candidates = sorted(set(patterns))
    if topic in candidates:
        return topic

    topic_levels = split_topic(topic)
    for pattern in candidates:
        if pattern.rstrip("\n") == MULTI_LEVEL:
            return MULTI_LEVEL
        if MULTI_LEVEL not in pattern and SINGLE_LEVEL not in pattern:
            continue
        if _matches(pattern, topic_levels):
            return pattern
    return None