"""
SCRATCH ELITE — Prize Table Normalizer

Raw weights → cumulative distribution, sampled by a linear scan.

    [{prize: 1, weight: 50}, {prize: 10, weight: 40}, {prize: 100, weight: 10}]
        → [(1, .5, .5), (10, .4, .9), (100, .1, 1.0)]

The last `cum` is forced to exactly 1.0 so a draw near 1 can never fall off
the end of the table. A table that is empty or whose weights sum to zero
normalizes to nothing and always samples prize 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Union


@dataclass(frozen=True)
class NormalizedPrize:
    prize: int
    prob: float
    cum: float

    def to_dict(self) -> dict:
        return {"prize": self.prize, "prob": self.prob, "cum": self.cum}


def _pair(row) -> tuple:
    if isinstance(row, dict):
        return row["prize"], row["weight"]
    return row.prize, row.weight


def normalize(rows: Iterable[Union[dict, object]]) -> list[NormalizedPrize]:
    """Accepts PrizeWeight models or plain {prize, weight} dicts, in table order."""
    pairs = [_pair(r) for r in rows]
    total = sum(w for _, w in pairs)
    if not pairs or total <= 0:
        return []
    out = []
    cum = 0.0
    for prize, weight in pairs:
        prob = weight / total
        cum += prob
        out.append(NormalizedPrize(prize=prize, prob=prob, cum=cum))
    last = out[-1]
    out[-1] = NormalizedPrize(prize=last.prize, prob=last.prob, cum=1.0)
    return out


def sample_with(table: list[NormalizedPrize], rnd: Callable[[], float]) -> int:
    """Draw one prize. Always consumes exactly one value from `rnd` when the table is non-empty."""
    if not table:
        return 0
    r = rnd()
    for row in table:
        if r <= row.cum:
            return row.prize
    return table[-1].prize


def expected_prize(table: list[NormalizedPrize]) -> float:
    return sum(row.prize * row.prob for row in table)


def max_prize(table: list[NormalizedPrize]) -> int:
    return max((row.prize for row in table), default=0)
