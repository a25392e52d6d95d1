"""Utility functions for alpmbuild."""

from urllib.parse import urlparse


def levenshtein_distance(first: str, second: str) -> int:
    """Return the edit distance between two strings.

    Examples:
        >>> levenshtein_distance("kitten", "sitting")
        3
        >>> levenshtein_distance("", "abc")
        3
    """
    if not first or not second:
        return max(len(first), len(second))
    if first == second:
        return 0

    if len(first) > len(second):
        first, second = second, first

    row = list(range(len(first) + 1))
    for i, char2 in enumerate(second, start=1):
        previous = i
        for j, char1 in enumerate(first, start=1):
            if char1 == char2:
                current = row[j - 1]
            else:
                current = min(row[j - 1] + 1, previous + 1, row[j] + 1)
            row[j - 1] = previous
            previous = current
        row[len(first)] = previous
    return row[len(first)]


def closest_string(target: str, candidates: list[str]) -> str:
    """Return the candidate with the smallest edit distance to ``target``.

    Returns an empty string when there are no candidates.
    """
    best, best_distance = "", None
    for candidate in candidates:
        distance = levenshtein_distance(target, candidate)
        if best_distance is None or distance < best_distance:
            best, best_distance = candidate, distance
    return best


def is_url(value: str) -> bool:
    """True for absolute URIs with both a scheme and a host."""
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


def grab_flag(line: str, flag: str) -> str | None:
    """Return the value following ``flag`` in a whitespace separated line.

    Examples:
        >>> grab_flag("%files -n foo-docs", "-n")
        'foo-docs'
        >>> grab_flag("%files", "-n") is None
        True
    """
    words = line.split()
    for index, word in enumerate(words[:-1]):
        if word == flag:
            return words[index + 1]
    return None

