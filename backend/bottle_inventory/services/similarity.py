"""Edit-distance similarity for fuzzy product name matching."""

from rapidfuzz.distance import Levenshtein


def name_similarity(a: str, b: str) -> int:
    """
    Similarity between two normalized names as an integer percentage (0-100).

    Uses plain Levenshtein distance (insert/delete/substitute, cost 1 each,
    no transposition credit) scaled by the longer string's length, rounded
    half-up: round(100 * (max_len - distance) / max_len).
    """
    if a == b:
        return 100
    if not a or not b:
        return 0

    longest = max(len(a), len(b))
    distance = Levenshtein.distance(a, b)
    # Half-up rounding in integer arithmetic (89.5 -> 90)
    return (200 * (longest - distance) + longest) // (2 * longest)
