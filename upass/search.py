"""
upass - Name Search

Entry names are organized like paths ("work/email", "home/bank/visa").
A query is split the same way and each segment is fuzzy matched against the
segment at the same depth, so "w/em" finds "work/email" but not "email" or
"work/old/email".

Fuzzy here means subsequence: every character of the query segment must
appear in the name segment, in order, ignoring case. No ranking and no index;
personal vaults hold a few hundred entries at most.
"""

from typing import Iterable, Set

SEPARATOR = "/"


def fuzzy_match(needle: str, haystack: str) -> bool:
    """True if needle's characters appear in haystack in order (case-folded)."""
    needle = needle.casefold()
    haystack = haystack.casefold()

    it = iter(haystack)
    # 'in' on an iterator consumes it, so each char is searched after the last hit
    return all(ch in it for ch in needle)


def matches(query: str, name: str) -> bool:
    """True if name matches query segment by segment."""
    query_segments = query.split(SEPARATOR)
    name_segments = name.split(SEPARATOR)
    if len(query_segments) != len(name_segments):
        return False

    return all(fuzzy_match(q, n) for q, n in zip(query_segments, name_segments))


def find(query: str, names: Iterable[str]) -> Set[str]:
    """Return every name matching query. Order is meaningless."""
    return {name for name in names if matches(query, name)}
