"""
SCRATCH ELITE — Deterministic RNG

Every ticket's content is a pure function of its seed string, so a save file
only needs (tier_id, serial_id) to replay a ticket bit-for-bit.

    seed string ──xmur3──► uint32 ──mulberry32──► floats in [0, 1)

Both mixers work on unsigned 32-bit integers; every intermediate product is
masked back to 32 bits, so the streams match any other mulberry32/xmur3
implementation that uses 32-bit multiply semantics. String seeds are hashed
over UTF-16 code units.

Usage:
    from sim_engine.rng import make_rng, set_seed, rng, rand_int

    r = make_rng("t01:LUCPEN-000001:ticket")
    r()            # float in [0, 1), same sequence on every run
    r.randint(1, 99)

    set_seed("dev")   # reseed the shared process-wide stream
    rand_int(1, 6)
"""

from __future__ import annotations

import math
from typing import Callable, Union

MASK32 = 0xFFFFFFFF


def _imul(a: int, b: int) -> int:
    return (a * b) & MASK32


def _utf16_units(s: str) -> list[int]:
    raw = s.encode("utf-16-le", "surrogatepass")
    return [raw[i] | (raw[i + 1] << 8) for i in range(0, len(raw), 2)]


def xmur3(s: str) -> Callable[[], int]:
    """String hash → generator of well-mixed uint32 seeds."""
    units = _utf16_units(s)
    h = (1779033703 ^ len(units)) & MASK32
    for c in units:
        h = _imul(h ^ c, 3432918353)
        h = ((h << 13) | (h >> 19)) & MASK32

    def _next() -> int:
        nonlocal h
        h = _imul(h ^ (h >> 16), 2246822507)
        h = _imul(h ^ (h >> 13), 3266489909)
        h = (h ^ (h >> 16)) & MASK32
        return h

    return _next


def to_uint32(n) -> int:
    """Truncate a number to uint32 the way `n >>> 0` does."""
    if isinstance(n, float) and not math.isfinite(n):
        return 0
    return int(n) & MASK32


class Mulberry32:
    """Mulberry32 PRNG — 32-bit state, period 2^32, one add + two multiplies per draw."""

    def __init__(self, seed: int = 1):
        self.state = to_uint32(seed)

    def _next(self) -> int:
        self.state = (self.state + 0x6D2B79F5) & MASK32
        t = self.state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & MASK32
        return (t ^ (t >> 14)) & MASK32

    def random(self) -> float:
        """Float in [0, 1)."""
        return self._next() / 4294967296

    def randint(self, lo: int, hi: int) -> int:
        """Integer in [lo, hi] inclusive."""
        return lo + math.floor(self.random() * (hi - lo + 1))

    __call__ = random


def seed_to_uint32(seed: Union[str, int, float]) -> int:
    if isinstance(seed, (int, float)) and not isinstance(seed, bool):
        return to_uint32(seed)
    return xmur3(str(seed))()


def make_rng(seed: Union[str, int, float]) -> Mulberry32:
    """Fresh, independent generator. Numbers are used directly; strings are hashed."""
    return Mulberry32(seed_to_uint32(seed))


# ═══════════════════════════════════════════════════════════════
# Shared process-wide stream (non-deterministic contexts only)
# ═══════════════════════════════════════════════════════════════

_default = Mulberry32(1)


def set_seed(seed: Union[str, int, float]) -> None:
    global _default
    _default = Mulberry32(seed_to_uint32(seed))


def rng() -> float:
    return _default.random()


def rand_int(lo: int, hi: int) -> int:
    return _default.randint(lo, hi)


set_seed("dev")
