"""
String, geographic and vector similarity primitives.

String metrics are backed by rapidfuzz and selected by name through
`get_string_similarity`, so the algorithm is a configuration choice.
All functions return values in [0, 1] and are symmetric in their arguments.
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections import Counter
from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

from rapidfuzz.distance import JaroWinkler, Levenshtein

from eventfusion.schemas.dedup import StringMatching
from eventfusion.schemas.event import Coordinates

EARTH_RADIUS_M = 6_371_000.0

STOPWORDS = frozenset({"the", "and", "with", "for", "from", "presents", "featuring", "feat"})

ADDRESS_ABBREVIATIONS = {
    "street": "st",
    "avenue": "ave",
    "road": "rd",
    "boulevard": "blvd",
    "drive": "dr",
    "lane": "ln",
    "place": "pl",
    "square": "sq",
    "court": "ct",
    "suite": "ste",
    "north": "n",
    "south": "s",
    "east": "e",
    "west": "w",
}

VENUE_NOISE = frozenset({"the", "inc", "ltd", "llc", "venue"})

_WORD = re.compile(r"[a-z0-9]+")

StringSimilarity = Callable[[str, str], float]


@runtime_checkable
class SemanticProvider(Protocol):
    """Optional embedding source for the semantic sub-score."""

    def embed(self, text: str) -> Sequence[float] | None: ...


# ============================================================================
# TEXT NORMALIZATION
# ============================================================================


def fold(text: str | None) -> str:
    """Lowercase and strip accents ("Café" -> "cafe")."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def tokenize(text: str | None, min_length: int = 3) -> list[str]:
    """
    Split text into comparison tokens (stopwords and short tokens dropped).

    Example:
        >>> tokenize("The Jazz Night @ The Rex!")
        ['jazz', 'night', 'rex']
    """
    return [
        token
        for token in _WORD.findall(fold(text).replace("&", " and "))
        if len(token) >= min_length and token not in STOPWORDS
    ]


def normalize_venue(name: str | None) -> str:
    """Canonical venue string: folded, '&' -> 'and', noise words dropped."""
    words = _WORD.findall(fold(name).replace("&", " and "))
    return " ".join(word for word in words if word not in VENUE_NOISE)


def normalize_address(address: str | None) -> str:
    """Canonical street address with common suffixes abbreviated."""
    words = _WORD.findall(fold(address))
    return " ".join(ADDRESS_ABBREVIATIONS.get(word, word) for word in words)


# ============================================================================
# STRING SIMILARITY
# ============================================================================


def levenshtein_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return float(Levenshtein.normalized_similarity(a, b))


def jaro_winkler_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return float(JaroWinkler.similarity(a, b))


def cosine_similarity(a: str, b: str) -> float:
    """Cosine similarity of token count vectors."""
    left, right = Counter(tokenize(a) or a.split()), Counter(tokenize(b) or b.split())
    if not left or not right:
        return 0.0
    dot = sum(count * right[token] for token, count in left.items())
    norm = math.sqrt(sum(c * c for c in left.values())) * math.sqrt(sum(c * c for c in right.values()))
    return dot / norm if norm else 0.0


def hybrid_similarity(a: str, b: str) -> float:
    """0.4 Levenshtein + 0.4 Jaro-Winkler + 0.2 token cosine."""
    return (
        0.4 * levenshtein_similarity(a, b)
        + 0.4 * jaro_winkler_similarity(a, b)
        + 0.2 * cosine_similarity(a, b)
    )


STRING_SIMILARITIES: dict[StringMatching, StringSimilarity] = {
    StringMatching.LEVENSHTEIN: levenshtein_similarity,
    StringMatching.JARO_WINKLER: jaro_winkler_similarity,
    StringMatching.COSINE: cosine_similarity,
    StringMatching.HYBRID: hybrid_similarity,
}


def get_string_similarity(name: StringMatching | str) -> StringSimilarity:
    """
    Look up a string similarity function by algorithm name.

    Raises:
        ValueError: Unknown algorithm
    """
    return STRING_SIMILARITIES[StringMatching(name)]


def token_overlap(a: Sequence[str], b: Sequence[str]) -> float:
    """Shared distinct tokens over the larger token set."""
    left, right = set(a), set(b)
    if not left or not right:
        return 0.0
    return len(left & right) / max(len(left), len(right))


# ============================================================================
# GEOGRAPHIC / VECTOR
# ============================================================================


def haversine_m(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in metres."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = lat2 - lat1
    dlng = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def distance_decay(distance_m: float) -> float:
    """Piecewise proximity score: 1.0 within 100m down to 0 beyond 5km."""
    if distance_m <= 100:
        return 1.0
    if distance_m <= 500:
        return 0.8
    if distance_m <= 1000:
        return 0.6
    if distance_m <= 5000:
        return 0.3
    return 0.0


def vector_cosine(u: Sequence[float], v: Sequence[float]) -> float:
    """Cosine of two embeddings, clipped to [0, 1]."""
    if len(u) != len(v) or not u:
        return 0.0
    dot = sum(x * y for x, y in zip(u, v))
    norm = math.sqrt(sum(x * x for x in u)) * math.sqrt(sum(y * y for y in v))
    if not norm:
        return 0.0
    return max(0.0, min(1.0, dot / norm))
