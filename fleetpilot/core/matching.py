"""Fuzzy target-name matching.

Operators rarely type process names exactly ("apiserver" for "api-server",
"wroker" for "worker").  Names are compared after normalisation:

* lower-cased;
* separators (``-``, ``_``, ``.`` and whitespace) removed.

Two normalised names match when one contains the other, or when their
Levenshtein similarity ``(max_len - distance) / max_len`` is strictly above
:data:`SIMILARITY_THRESHOLD`.
"""

from __future__ import annotations

import re

SIMILARITY_THRESHOLD: float = 0.7
SUGGESTION_THRESHOLD: float = 0.4

_SEPARATORS = re.compile(r"[-_.\s]+")


def normalize_name(name: str) -> str:
    """Lower-case *name* and strip separator characters."""
    return _SEPARATORS.sub("", name.lower())


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between *a* and *b* (insert/delete/substitute)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                current[j - 1] + 1,
                previous[j] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalised similarity score in ``[0, 1]``."""
    if not a:
        return 1.0 if not b else 0.0
    if not b:
        return 0.0
    max_len = max(len(a), len(b))
    return (max_len - edit_distance(a, b)) / max_len


def names_match(candidate: str, known: str) -> bool:
    """Return ``True`` when *candidate* plausibly refers to *known*."""
    norm_candidate = normalize_name(candidate)
    norm_known = normalize_name(known)
    if not norm_candidate or not norm_known:
        return False
    if norm_candidate in norm_known or norm_known in norm_candidate:
        return True
    return similarity(norm_candidate, norm_known) > SIMILARITY_THRESHOLD


def closest_match(candidate: str, known_names: list[str]) -> str | None:
    """Return the known name most similar to *candidate*.

    ``None`` when nothing reaches :data:`SUGGESTION_THRESHOLD`; such names
    are too far off to be offered as a "did you mean" hint.
    """
    norm_candidate = normalize_name(candidate)
    best_name: str | None = None
    best_score = 0.0
    for name in known_names:
        score = similarity(norm_candidate, normalize_name(name))
        if score > best_score:
            best_score = score
            best_name = name
    if best_score < SUGGESTION_THRESHOLD:
        return None
    return best_name
