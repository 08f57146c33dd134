from __future__ import annotations

import re
from typing import Optional

_SPACES = re.compile(r" {2,}")


def normalize(value: str) -> str:
    cleaned = value.lower()
    cleaned = cleaned.replace("&", "and")
    cleaned = cleaned.replace("'", "")
    cleaned = cleaned.replace("-", " ")
    cleaned = _SPACES.sub(" ", cleaned)
    return cleaned.strip()


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
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


def similarity(a: Optional[str], b: Optional[str]) -> float:
    if not a or not b:
        return 0.0
    norm_a = normalize(a)
    norm_b = normalize(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    if norm_a in norm_b or norm_b in norm_a:
        return 0.8
    distance = levenshtein(norm_a, norm_b)
    longest = max(len(norm_a), len(norm_b))
    return max(0.0, 1.0 - distance / longest)


def parse_year(value: object) -> Optional[int]:
    """Return the year of a release date such as ``1969-09-26``, ``1971`` or ``1998``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    text = str(value).strip()
    if len(text) < 4:
        return None
    head = text[:4]
    if not head.isdigit():
        return None
    year = int(head)
    return year if year > 0 else None
