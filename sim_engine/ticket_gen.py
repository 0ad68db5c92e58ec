"""
SCRATCH ELITE — Ticket Generator (pure)

generate_ticket(catalog, tier_id, serial_id) is a pure function: the same
(tier, serial) always yields the same winning numbers, tile numbers, prizes
and bonus box, because every draw comes from one fresh generator seeded with
"<tier_id>:<serial_id>:ticket".

Draw order (fixed; changing it changes every ticket ever sold):
  1. winning numbers by rejection into a set, then sorted
  2. per tile: number in 1..99, then one prize-table draw
  3. bonus box roll, only for tiers with a bonus box

Also here: the backstop tile rewrite and the reveal-radius footprints, since
both are pure functions of a ticket's grid.

Usage:
    from sim_engine.ticket_gen import generate_ticket, reveal_indices
    ticket = generate_ticket(catalog, "t01", "LUCPEN-000001")
    reveal_indices("cross", 5, cols=4, rows=3)   # [1, 4, 5, 6, 9]
"""

from __future__ import annotations

import math
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from config.settings import EconomyConfig
from sim_engine.rng import make_rng

SCRATCH_MODES = ("single", "cross", "square3", "all")


class _Camel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class GeneratedTile(_Camel):
    num: int
    prize: int = 0
    revealed: bool = False
    win: bool = False


class BonusBox(_Camel):
    amount: int = 0
    revealed: bool = False


class GeneratedTicket(_Camel):
    winning: list[int] = Field(default_factory=list)
    tiles: list[GeneratedTile] = Field(default_factory=list)
    total_prize: int = Field(0, alias="totalPrize")
    bonus: Optional[BonusBox] = None
    backstop_applied: bool = Field(False, alias="backstopApplied")
    first_reveal_at: Optional[int] = Field(None, alias="firstRevealAt")   # epoch ms

    @property
    def is_empty(self) -> bool:
        return not self.tiles

    def winning_sum(self) -> int:
        """Sum of prizes on tiles whose number is currently a winning number."""
        wins = set(self.winning)
        return sum(t.prize for t in self.tiles if t.num in wins)

    def won_prizes(self) -> list[int]:
        wins = set(self.winning)
        return [max(0, t.prize) for t in self.tiles if t.num in wins]

    def all_revealed(self) -> bool:
        return bool(self.tiles) and all(t.revealed for t in self.tiles)


def bonus_amount(price: int, roll: float) -> int:
    pct = EconomyConfig.BONUS_BASE_PCT
    for above, band_pct in EconomyConfig.BONUS_BANDS:
        if roll > above:
            pct = band_pct
            break
    return max(1, math.floor(price * pct))


def ticket_seed(tier_id: str, serial_id: str) -> str:
    return f"{tier_id}:{serial_id}:ticket"


def generate_ticket(catalog, tier_id: str, serial_id: str) -> GeneratedTicket:
    """Build the full ticket for (tier, serial). Unknown tier → empty ticket, never raises."""
    tier = catalog.get_tier_by_id(tier_id)
    if tier is None:
        return GeneratedTicket()

    pool = EconomyConfig.NUMBER_POOL
    rnd = make_rng(ticket_seed(tier_id, serial_id))

    win_count = min(tier.mechanics.winning_numbers or 4, pool)
    winning_set = set()
    while len(winning_set) < win_count:
        winning_set.add(1 + math.floor(rnd() * pool))
    winning = sorted(winning_set)

    tiles = []
    for _ in range(tier.mechanics.cells):
        num = 1 + math.floor(rnd() * pool)
        prize = catalog.sample_prize_with(tier_id, rnd)
        tiles.append(GeneratedTile(num=num, prize=prize, win=num in winning_set))

    bonus = None
    if tier.mechanics.has_bonus_box:
        bonus = BonusBox(amount=bonus_amount(tier.price, rnd()))

    return GeneratedTicket(
        winning=winning,
        tiles=tiles,
        total_prize=sum(t.prize for t in tiles if t.win),
        bonus=bonus,
    )


# ═══════════════════════════════════════════════════════════════
# Backstop
# ═══════════════════════════════════════════════════════════════

def backstop_floor(price: int, floor_pct: float = None) -> int:
    pct = EconomyConfig.BACKSTOP_FLOOR_PCT if floor_pct is None else floor_pct
    return math.floor(price * pct)


def apply_backstop(ticket: GeneratedTicket, price: int, floor_pct: float = None) -> bool:
    """Guarantee the ticket's winning-tile sum reaches the floor.

    Returns True when a tile was rewritten, False when the ticket already met
    the floor. Either way the ticket is marked backstop_applied. Callers check
    backstop_applied first; an empty ticket is left untouched.
    """
    if ticket.is_empty or ticket.backstop_applied or not ticket.winning:
        return False

    floor = backstop_floor(price, floor_pct)
    current = ticket.winning_sum()
    if current >= floor:
        ticket.backstop_applied = True
        return False

    wins = set(ticket.winning)
    idx = next((i for i, t in enumerate(ticket.tiles) if t.num in wins), 0)
    tile = ticket.tiles[idx]
    need = floor - current
    if tile.num in wins:
        # already counted in `current`; top it up by the shortfall
        tile.prize = tile.prize + need
    else:
        tile.prize = max(tile.prize, need)
    tile.num = ticket.winning[0]
    tile.win = True
    ticket.total_prize = ticket.winning_sum()
    ticket.backstop_applied = True
    return True


# ═══════════════════════════════════════════════════════════════
# Reveal footprints
# ═══════════════════════════════════════════════════════════════

def reveal_indices(mode: str, idx: int, cols: int, rows: int) -> list[int]:
    """Tile indices one tap at `idx` uncovers, clipped to the grid, ascending."""
    total = cols * rows
    if idx < 0 or idx >= total:
        return []
    if mode == "all":
        return list(range(total))

    row, col = divmod(idx, cols)
    out = set()
    if mode == "square3":
        for dr in (-1, 0, 1):
            for dc in (-1, 0, 1):
                rr, cc = row + dr, col + dc
                if 0 <= rr < rows and 0 <= cc < cols:
                    out.add(rr * cols + cc)
    elif mode == "cross":
        out.add(idx)
        if col - 1 >= 0:
            out.add(idx - 1)
        if col + 1 < cols:
            out.add(idx + 1)
        if row - 1 >= 0:
            out.add(idx - cols)
        if row + 1 < rows:
            out.add(idx + cols)
    else:
        out.add(idx)
    return sorted(out)
