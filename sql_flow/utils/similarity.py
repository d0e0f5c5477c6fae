"""
Similar-name suggestions for failed lookups.
"""

import math
from typing import Iterable, List, Tuple


def edit_distance(left: str, right: str) -> int:
    """Return the Levenshtein distance between two strings.

    Example:
        >>> edit_distance("custmers", "customers")
        1
    """
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)

    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i] + [0] * len(right)
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            )
        previous = current
    return previous[-1]


def find_similar_names(
    query: str, candidates: Iterable[str], limit: int = 3
) -> List[str]:
    """Rank known names by similarity to ``query``.

    Candidates containing the query (or contained in it) are always kept, at
    distance 0. Other candidates are kept when their edit distance is at most
    max(3, ceil(40% of the query length)). Results are sorted by distance, then
    name, and cut to ``limit``.

    Args:
        query: Requested name, compared case-insensitively.
        candidates: Known names.
        limit: Maximum number of names returned.

    Returns:
        Similar names, best first.

    Example:
        >>> find_similar_names("custmers", ["orders", "customers"])
        ['customers']
    """
    needle = query.strip().lower()
    if not needle or limit <= 0:
        return []

    threshold = max(3, math.ceil(len(needle) * 0.4))
    scored: List[Tuple[int, str]] = []
    for name in set(candidates):
        lowered = name.lower()
        # Containment either way scores 0, so very short names like "s" match too.
        if needle in lowered or lowered in needle:
            scored.append((0, name))
            continue
        distance = edit_distance(needle, lowered)
        if distance <= threshold:
            scored.append((distance, name))

    scored.sort()
    return [name for _, name in scored[:limit]]
