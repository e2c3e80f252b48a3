"""String similarity helpers used for fuzzy record matching."""

from __future__ import annotations

from shelf_agent.core.fingerprint import fold_ocr_component

TITLE_WEIGHT = 0.7
CREATOR_WEIGHT = 0.3


def levenshtein_distance(s1: str, s2: str) -> int:
    """
    Calculate the Levenshtein distance between two strings.

    Args:
        s1: First string
        s2: Second string

    Returns:
        Edit distance
    """
    if len(s1) < len(s2):
        s1, s2 = s2, s1

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def string_similarity(s1: str | None, s2: str | None) -> float:
    """
    Similarity between two strings in [0.0, 1.0].

    Both sides are folded (case, accents, punctuation) before comparison.
    """
    a = fold_ocr_component(s1)
    b = fold_ocr_component(s2)

    if a == b:
        return 1.0 if a else 0.0

    if not a or not b:
        return 0.0

    distance = levenshtein_distance(a, b)
    return 1.0 - (distance / max(len(a), len(b)))


def combined_similarity(
    title: str,
    creator: str | None,
    candidate_title: str,
    candidate_creator: str | None,
) -> float:
    """
    Weighted title/creator similarity.

    When either side lacks a creator only the title is compared.
    """
    title_score = string_similarity(title, candidate_title)
    if not creator or not candidate_creator:
        return title_score
    creator_score = string_similarity(creator, candidate_creator)
    return TITLE_WEIGHT * title_score + CREATOR_WEIGHT * creator_score
