"""Hash-derived pseudo-randomness.

Everything that looks random in the fallback path (side choice, confidence
jitter, market rotation) is derived from SHA-256 of a seed string, so the
same inputs always produce the same output with no network and no RNG state.
"""

from __future__ import annotations

import hashlib
from typing import Sequence, TypeVar

T = TypeVar("T")

_UINT32_SPAN = 2 ** 32


def seeded_float(seed: str) -> float:
    """Map ``seed`` to a float in [0, 1) via the first 4 bytes of SHA-256."""
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") / _UINT32_SPAN


def deterministic_seed(agent_id: str, market_id: str, index: int) -> str:
    return f"{agent_id}:{market_id}:{index}"


def agent_seed(agent_id: str) -> int:
    """Small integer derived from the agent id (first + last character)."""
    if not agent_id:
        return 0
    return ord(agent_id[0]) + ord(agent_id[-1])


def rotation_bucket(now_ms: float, bucket_ms: int = 5000) -> int:
    return int(now_ms // bucket_ms)


def rotate(items: Sequence[T], rotation_seed: int, key: str = "id") -> list[T]:
    """Fisher–Yates shuffle whose swaps are driven by ``seeded_float``.

    Each swap index is a hash of ``"{rotation_seed}:{i}:{item_key}"`` so
    the order is stable for a given seed and changes when the seed does.
    """
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        item_key = getattr(shuffled[i], key, "")
        j = int(seeded_float(f"{rotation_seed}:{i}:{item_key}") * (i + 1))
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled
