"""
SCRATCH ELITE — Upgrade Effect Aggregator

Reads Upgrades.json and turns the player's upgrade levels into effects.

Effect stacking:
  ticketDiscountPct   additive across upgrades (each capped by its own step)
  prizeMultiplierPct  additive
  scratchParallelMax  absolute: highest contribution wins

The reveal radius is its own track (`scratch_radius` level → single / cross /
square3 / all) and does not go through the effect sum.

Everything here is a pure function of (definitions, levels). Buying, which
spends money, lives in tools/economy.py.

Usage:
    from tools.upgrades import UpgradeBook
    book = UpgradeBook.from_file(DATA_DIR / "Upgrades.json")
    book.next_cost(state.upgrades, "bulk_discount")       # 500
    book.discounted_total(state.upgrades, unit_price=5, qty=10)
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from config.catalog_schema import (
    FixedLevels, PerLevel, Step, UpgradeDef, UpgradesFile, load_config_file,
)

SCRATCH_RADIUS_ID = "scratch_radius"
DEFAULT_BASE_COST = 1000
DEFAULT_COST_GROWTH = 2


def eval_step(step: Optional[Step], level: int) -> float:
    """Value of a step at `level`; 0 at level 0 or when there is no step."""
    if step is None or level <= 0:
        return 0.0
    cap = step.cap if step.cap is not None else math.inf
    if isinstance(step, FixedLevels):
        if not step.levels:
            return 0.0
        idx = min(level, len(step.levels)) - 1
        return min(step.levels[idx], cap)
    if isinstance(step, PerLevel):
        return min(step.per_level * level, cap)
    raise TypeError(f"Unknown step variant: {type(step).__name__}")


@dataclass
class UpgradeEffects:
    ticket_discount_pct: float = 0.0
    prize_multiplier_pct: float = 0.0
    scratch_parallel_max: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class UpgradeBook:

    def __init__(self, defs: list[UpgradeDef]):
        self._defs = list(defs)
        self._by_id = {d.id: d for d in self._defs}

    @classmethod
    def from_file(cls, path) -> "UpgradeBook":
        return cls(load_config_file(Path(path), UpgradesFile).upgrades)

    @classmethod
    def from_dicts(cls, rows: list[dict]) -> "UpgradeBook":
        return cls(UpgradesFile.model_validate({"upgrades": rows}).upgrades)

    def get_defs(self) -> list[UpgradeDef]:
        return list(self._defs)

    def get_def(self, upgrade_id: str) -> Optional[UpgradeDef]:
        return self._by_id.get(upgrade_id)

    @staticmethod
    def get_level(levels: dict, upgrade_id: str) -> int:
        return max(0, int(levels.get(upgrade_id, 0) or 0))

    # ── Purchasing math ──

    def next_cost(self, levels: dict, upgrade_id: str) -> Optional[int]:
        """Cost of the next level, or None when unknown or already at cap."""
        d = self.get_def(upgrade_id)
        if d is None:
            return None
        lvl = self.get_level(levels, upgrade_id)
        if lvl >= d.level_cap:
            return None
        if d.cost_per_level is not None and lvl < len(d.cost_per_level):
            return d.cost_per_level[lvl]
        base = d.base_cost if d.base_cost is not None else DEFAULT_BASE_COST
        growth = d.cost_growth if d.cost_growth is not None else DEFAULT_COST_GROWTH
        return math.floor(base * growth ** lvl)

    def meets_requirements(self, levels: dict, upgrade_id: str) -> bool:
        d = self.get_def(upgrade_id)
        if d is None:
            return False
        return all(self.get_level(levels, rid) >= need for rid, need in d.requires.items())

    def missing_requirements(self, levels: dict, upgrade_id: str) -> dict:
        d = self.get_def(upgrade_id)
        if d is None:
            return {}
        return {rid: need for rid, need in d.requires.items() if self.get_level(levels, rid) < need}

    def can_buy(self, levels: dict, money: int, upgrade_id: str) -> bool:
        cost = self.next_cost(levels, upgrade_id)
        return cost is not None and money >= cost and self.meets_requirements(levels, upgrade_id)

    # ── Effects ──

    def effects(self, levels: dict) -> UpgradeEffects:
        res = UpgradeEffects()
        for d in self._defs:
            lvl = self.get_level(levels, d.id)
            if lvl <= 0 or d.effect is None:
                continue
            res.ticket_discount_pct += eval_step(d.effect.ticket_discount_pct, lvl)
            res.prize_multiplier_pct += eval_step(d.effect.prize_multiplier_pct, lvl)
            res.scratch_parallel_max = max(
                res.scratch_parallel_max, eval_step(d.effect.scratch_parallel_max, lvl)
            )
        return res

    def discounted_total(self, levels: dict, unit_price: int, qty: int) -> int:
        """floor(unit_price × qty × (1 − discount)), never below 0 nor above the list price."""
        pct = min(100.0, max(0.0, self.effects(levels).ticket_discount_pct))
        return max(0, math.floor(unit_price * qty * (1 - pct / 100)))

    def prize_multiplier(self, levels: dict) -> float:
        return 1 + self.effects(levels).prize_multiplier_pct / 100

    def scratch_parallel_max(self, levels: dict) -> int:
        return max(1, math.floor(self.effects(levels).scratch_parallel_max or 0))

    def scratch_mode(self, levels: dict) -> str:
        lvl = self.get_level(levels, SCRATCH_RADIUS_ID)
        if lvl >= 3:
            return "all"
        if lvl == 2:
            return "square3"
        if lvl == 1:
            return "cross"
        return "single"
