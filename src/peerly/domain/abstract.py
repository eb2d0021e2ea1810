"""
Abstract reconstruction from an inverted index.

OpenAlex ships abstracts as ``{"word": [positions]}`` instead of prose. Each token
position belongs to exactly one word, so ordering all (position, word) pairs by
position restores the original text.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple


def reconstruct_abstract(
    inverted_index: Optional[Mapping[str, Sequence[int]]],
) -> Optional[str]:
    """Rebuild plain text; ``None`` in means ``None`` out (not an empty string)."""
    if inverted_index is None:
        return None

    words: List[Tuple[int, str]] = []
    for word, positions in inverted_index.items():
        for pos in positions or ():
            words.append((int(pos), word))
    # sort() is stable, ties keep input order
    words.sort(key=lambda item: item[0])
    return " ".join(word for _, word in words)


def is_inverted_index(value: object) -> bool:
    if not isinstance(value, dict):
        return False
    return all(isinstance(v, list) for v in value.values())


def coerce_inverted_index(value: object) -> Optional[Dict[str, List[int]]]:
    """Accept a source payload value only if it is shaped like an inverted index."""
    if not is_inverted_index(value):
        return None
    cleaned: Dict[str, List[int]] = {}
    for word, positions in value.items():  # type: ignore[union-attr]
        ints = [p for p in positions if isinstance(p, int) and not isinstance(p, bool)]
        if ints:
            cleaned[str(word)] = ints
    return cleaned
