"""Edit distance and the bounded similarity score used for option matching.

Scores are "lower is better": 0.0 is an exact normalized match and 1.0 is
nothing in common. Callers compare the score against a per-language
acceptance threshold.
"""

from voxsurvey.matching.normalizer import normalize

# Weight applied to the length difference when one string contains the other.
_SUBSTRING_WEIGHT = 0.5
# Non-exact word-overlap matches never score as well as an exact match.
_WORD_FLOOR = 0.05


def distance(a: str, b: str) -> int:
    """Levenshtein edit distance with unit insert/delete/substitute costs."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def word_tolerance(word: str) -> int:
    """Edit distance at which two words still count as the same word."""
    return min(2, len(word) // 3)


def words_close(a: str, b: str) -> bool:
    return distance(a, b) <= word_tolerance(max(a, b, key=len))


def similarity_score(text: str, candidate: str) -> float:
    """Score how well *text* matches *candidate* (0.0 exact, 1.0 unrelated)."""
    a = normalize(text)
    b = normalize(candidate)
    if a == b:
        return 0.0
    if not a or not b:
        return 1.0

    longest = max(len(a), len(b))
    if a in b or b in a:
        return _SUBSTRING_WEIGHT * abs(len(a) - len(b)) / longest

    char_score = distance(a, b) / longest

    words_a = a.split()
    words_b = b.split()
    overlap = sum(
        1 for word in words_a if any(words_close(word, other) for other in words_b)
    )
    if overlap:
        word_score = 1.0 - overlap / max(len(words_a), len(words_b))
        return max(_WORD_FLOOR, min(word_score, char_score))

    return char_score
