"""Token-based fuzzy matching used by product search and cart resolution."""
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional

from rapidfuzz.distance import Levenshtein

TOKEN_RATIO_THRESHOLD = 0.6
TOKEN_DISTANCE_THRESHOLD = 3


def normalize(text: str) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text))
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    cleaned = re.sub(r"[^a-z0-9\s]", " ", stripped.lower())
    return re.sub(r"\s+", " ", cleaned).strip()


def tokenize(text: str) -> List[str]:
    norm = normalize(text)
    return norm.split(" ") if norm else []


def levenshtein(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def similarity_ratio(a: str, b: str) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1 - levenshtein(a, b) / max(len(a), len(b))


def _token_close(token: str, other: str) -> bool:
    return (
        similarity_ratio(token, other) >= TOKEN_RATIO_THRESHOLD
        or levenshtein(token, other) < TOKEN_DISTANCE_THRESHOLD
        or token in other
        or other in token
    )


@dataclass
class FuzzyMatch:
    item: Any
    score: int
    ratio: float
    matched_tokens: List[str] = field(default_factory=list)


def best_fuzzy_match(query: str, candidates: Iterable[Any],
                     key: Callable[[Any], str] = str) -> Optional[FuzzyMatch]:
    """Score every candidate against the query tokens and return the best.

    Each query token adds 2 on an exact candidate token, otherwise 1 when
    any candidate token is close to it. Ties on score go to the higher
    ratio (score per candidate token); full ties keep the earlier candidate.
    Returns None when the query has no tokens. A zero-score best is still
    returned; callers apply their own thresholds.
    """
    query_tokens = tokenize(query)
    if not query_tokens:
        return None

    best = None
    for candidate in candidates:
        cand_tokens = tokenize(key(candidate))
        if not cand_tokens:
            continue
        score = 0
        matched = []
        for token in query_tokens:
            if token in cand_tokens:
                score += 2
                matched.append(token)
            elif any(_token_close(token, other) for other in cand_tokens):
                score += 1
                matched.append(token)
        ratio = score / max(1, len(cand_tokens))
        if best is None or score > best.score or (score == best.score and ratio > best.ratio):
            best = FuzzyMatch(item=candidate, score=score, ratio=ratio, matched_tokens=matched)
    return best
