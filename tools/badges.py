"""
SCRATCH ELITE — Badge Evaluator

get_earned_badges(state, catalog) rescans the whole state on every call:
  - manual awards        any positive timestamp in state.badges
  - milestones           tiles scratched, tickets claimed, best streak, biggest win
  - set_<name>           own any ticket whose tier belongs to the set
  - set_complete_<name>  own at least one ticket of every tier in the set

There is no cache; BadgeWatcher diffs successive scans so each badge is
announced exactly once.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from config.settings import BadgeConfig

logger = logging.getLogger("scratch.badges")

_NON_WORD = re.compile(r"\W+", re.ASCII)


def safe_name(s: str) -> str:
    return _NON_WORD.sub("_", s.lower())


@dataclass
class BadgeDef:
    id: str
    name: str
    desc: str
    group: str            # "milestones" | "sets"

    def to_dict(self) -> dict:
        return asdict(self)


_MILESTONE_TEXT = {
    "first_scratch": ("First Scratch", "Scratch your very first tile."),
    "scratch_100": ("Scratch 100", "Scratch {n:,} tiles total."),
    "scratch_1000": ("Scratch 1000", "Scratch {n:,} tiles total."),
    "first_claim": ("First Claim", "Claim your first ticket."),
    "claim_10": ("On a Roll", "Claim {n:,} tickets."),
    "claim_100": ("Hundred Club", "Claim {n:,} tickets."),
    "streak_5": ("Hot Streak", "Reach a {n}-claim streak."),
    "streak_10": ("Blazing", "Reach a {n}-claim streak."),
    "bigwin_1k": ("Big Win", "Win at least ${n:,} on a ticket."),
    "bigwin_10k": ("Whale", "Win at least ${n:,} on a ticket."),
    "bigwin_100k": ("Jackpotter", "Win at least ${n:,} on a ticket."),
}


def _milestone_tables() -> list[dict]:
    return [
        BadgeConfig.TILE_MILESTONES,
        BadgeConfig.CLAIM_MILESTONES,
        BadgeConfig.STREAK_MILESTONES,
        BadgeConfig.BIG_WIN_MILESTONES,
    ]


def sets_meta(catalog) -> list[dict]:
    """[{name, safe, tier_ids}] in catalog order, grouped by safe name."""
    by: dict[str, dict] = {}
    for t in catalog.get_tiers():
        name = (t.set_name or "").strip()
        if not name:
            continue
        safe = safe_name(name)
        by.setdefault(safe, {"name": name, "safe": safe, "tier_ids": []})["tier_ids"].append(t.id)
    return list(by.values())


def get_badge_defs(catalog) -> list[BadgeDef]:
    milestones = []
    for table in _milestone_tables():
        for bid, n in table.items():
            name, desc = _MILESTONE_TEXT.get(bid, (bid, "Reach {n:,}."))
            milestones.append(BadgeDef(bid, name, desc.format(n=n), "milestones"))

    meta = sets_meta(catalog)
    owned = [
        BadgeDef(f"set_{m['safe']}", f"{m['name']} Set",
                 f"Own any ticket from the {m['name']} set.", "sets")
        for m in meta
    ]
    complete = [
        BadgeDef(f"set_complete_{m['safe']}", f"{m['name']} Complete",
                 f"Own at least one of every tier in the {m['name']} set.", "sets")
        for m in meta
    ]
    return milestones + owned + complete


def _best_payout(state) -> int:
    best = max((it.summary.payout for it in state.inventory if it.summary), default=0)
    return max(best, state.stats.biggest_win)


def get_earned_badges(state, catalog) -> dict[str, bool]:
    earned: dict[str, bool] = {}

    for bid, ts in state.badges.items():
        if ts > 0:
            earned[bid] = True

    def _milestones(table: dict, value: int):
        for bid, need in table.items():
            if value >= need:
                earned[bid] = True

    claimed = sum(1 for it in state.inventory if it.state == "claimed")
    _milestones(BadgeConfig.TILE_MILESTONES, state.stats.tiles_scratched)
    _milestones(BadgeConfig.CLAIM_MILESTONES, claimed)
    _milestones(BadgeConfig.STREAK_MILESTONES, max(state.stats.best_streak, state.streak.count))
    _milestones(BadgeConfig.BIG_WIN_MILESTONES, _best_payout(state))

    have_tier = {it.tier_id for it in state.inventory}
    for tid in have_tier:
        tier = catalog.get_tier_by_id(tid)
        set_name = (tier.set_name if tier else "").strip()
        if set_name:
            earned[f"set_{safe_name(set_name)}"] = True

    for m in sets_meta(catalog):
        if m["tier_ids"] and all(tid in have_tier for tid in m["tier_ids"]):
            earned[f"set_complete_{m['safe']}"] = True

    return earned


class BadgeWatcher:
    """Announces newly earned badges exactly once.

    baseline() marks everything currently earned as seen (no announcements);
    scan() announces the difference and returns the new ids.
    """

    def __init__(self, evaluate: Callable[[], dict], on_new: Callable[[str, str], None],
                 names: Optional[dict] = None):
        self._evaluate = evaluate
        self._on_new = on_new
        self._names = names or {}
        self.seen: set = set()

    def baseline(self):
        self.seen = {bid for bid, ok in self._evaluate().items() if ok}

    def scan(self) -> list[str]:
        fresh = []
        for bid, ok in self._evaluate().items():
            if ok and bid not in self.seen:
                self.seen.add(bid)
                fresh.append(bid)
                self._on_new(bid, self._names.get(bid, bid))
        if fresh:
            logger.info(f"Badges earned: {fresh}")
        return fresh
