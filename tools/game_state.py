"""
SCRATCH ELITE — Save State Models

Pydantic models for the one JSON object that is the whole save file. Field
names on disk stay camelCase (`vendorXp`, `serialCounters`, ...) so saves
written by older builds import unchanged; Python code uses snake_case.

Import is permissive:
  - unknown keys are kept and written back out (extra="allow")
  - missing keys get defaults, wrong-typed numbers fall back to defaults
  - negative counters clamp to 0; fastestClearMs stays null unless numeric
  - inventory entries that cannot be read are dropped with a warning
  - legacy items that stored the claim summary under `ticket` are moved to
    `summary`
  - streaks saved before `count` existed are seeded from `steps`

Usage:
    from tools.game_state import ProgressionState, parse_imported_state
    state = ProgressionState.from_save(raw_dict, today="2026-10-17", level_for_xp=table.level_for_xp)
    text = state.to_json()
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from typing import Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from config.settings import EconomyConfig
from sim_engine.streak import StreakState, seed_count_from_steps
from sim_engine.ticket_gen import GeneratedTicket

logger = logging.getLogger("scratch.state")

ItemState = Literal["sealed", "scratched", "claimed"]


def utc_today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _is_number(v) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def _count(v, default=0):
    """Coerce a loosely-typed counter to a non-negative int."""
    if not _is_number(v):
        return default
    return max(0, math.floor(v))


class _SaveModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


# ═══════════════════════════════════════════════════════════════
# Nested records
# ═══════════════════════════════════════════════════════════════

class DailyRecord(_SaveModel):
    day: str = Field(default_factory=utc_today)
    claimed: int = 0
    awarded: bool = False

    @field_validator("claimed", mode="before")
    @classmethod
    def _clamp(cls, v):
        return _count(v)


class Flags(_SaveModel):
    auto_return: bool = Field(True, alias="autoReturn")
    debug_unlock_all: bool = Field(False, alias="debugUnlockAll")
    performance_mode: bool = Field(False, alias="performanceMode")


class Stats(_SaveModel):
    lifetime_spent: int = Field(0, alias="lifetimeSpent")
    tickets_scratched: int = Field(0, alias="ticketsScratched")
    tiles_scratched: int = Field(0, alias="tilesScratched")
    wins: int = 0
    losses: int = 0
    biggest_win: int = Field(0, alias="biggestWin")
    fastest_clear_ms: Optional[int] = Field(None, alias="fastestClearMs")
    current_loss_streak: int = Field(0, alias="currentLossStreak")
    longest_loss_streak: int = Field(0, alias="longestLossStreak")
    pity_avoids: int = Field(0, alias="pityAvoids")
    best_streak: int = Field(0, alias="bestStreak")
    tile_prize_counts: dict[str, int] = Field(default_factory=dict, alias="tilePrizeCounts")

    @field_validator(
        "lifetime_spent", "tickets_scratched", "tiles_scratched", "wins", "losses",
        "biggest_win", "current_loss_streak", "longest_loss_streak", "pity_avoids",
        "best_streak", mode="before",
    )
    @classmethod
    def _clamp(cls, v):
        return _count(v)

    @field_validator("fastest_clear_ms", mode="before")
    @classmethod
    def _fastest(cls, v):
        return max(0, math.floor(v)) if _is_number(v) else None

    @field_validator("tile_prize_counts", mode="before")
    @classmethod
    def _hist(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): _count(n) for k, n in v.items()}


class ClaimSummary(_SaveModel):
    """Frozen at claim time; what the inventory detail view shows."""
    payout: int = 0
    price: int = 0
    net: int = 0
    bonus: int = 0
    upg_mult: float = Field(1.0, alias="upgMult")
    streak_mult: float = Field(1.0, alias="streakMult")
    winning: list[int] = Field(default_factory=list)
    claimed_at: int = Field(0, alias="claimedAt")       # epoch ms


class InventoryItem(_SaveModel):
    id: str
    tier_id: str = Field(alias="tierId")
    serial_id: str = Field(alias="serialId")
    created_at: int = Field(0, alias="createdAt")       # epoch seconds
    state: ItemState = "sealed"
    ticket: Optional[GeneratedTicket] = None
    summary: Optional[ClaimSummary] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_summary(cls, data):
        # older saves overwrote `ticket` with the claim summary
        if isinstance(data, dict):
            t = data.get("ticket")
            if isinstance(t, dict) and "payout" in t and "tiles" not in t:
                data = dict(data)
                data.setdefault("summary", t)
                data["ticket"] = None
        return data


# ═══════════════════════════════════════════════════════════════
# Root
# ═══════════════════════════════════════════════════════════════

class ProgressionState(_SaveModel):
    money: int = EconomyConfig.STARTING_MONEY
    tokens: int = 0
    vendor_xp: int = Field(0, alias="vendorXp")
    vendor_level: int = Field(1, alias="vendorLevel")
    lifetime_winnings: int = Field(0, alias="lifetimeWinnings")
    claims_since_token: int = Field(0, alias="claimsSinceToken")

    unlocks: dict[str, bool] = Field(default_factory=dict)
    upgrades: dict[str, int] = Field(default_factory=dict)
    first_claims: dict[str, bool] = Field(default_factory=dict, alias="firstClaims")
    daily: DailyRecord = Field(default_factory=DailyRecord)

    pity_count: int = Field(0, alias="pityCount")
    backstop_ready: bool = Field(False, alias="backstopReady")
    streak: StreakState = Field(default_factory=StreakState)

    serial_counters: dict[str, int] = Field(default_factory=dict, alias="serialCounters")
    inventory: list[InventoryItem] = Field(default_factory=list)
    flags: Flags = Field(default_factory=Flags)
    profile: dict = Field(default_factory=lambda: {"username": "Player", "avatarUrl": ""})
    stats: Stats = Field(default_factory=Stats)
    badges: dict[str, int] = Field(default_factory=dict)

    @field_validator(
        "tokens", "vendor_xp", "lifetime_winnings", "claims_since_token", "pity_count",
        mode="before",
    )
    @classmethod
    def _clamp(cls, v):
        return _count(v)

    @field_validator("money", mode="before")
    @classmethod
    def _money(cls, v):
        return _count(v, EconomyConfig.STARTING_MONEY)

    @field_validator("vendor_level", mode="before")
    @classmethod
    def _level(cls, v):
        return max(1, _count(v, 1))

    @field_validator("backstop_ready", mode="before")
    @classmethod
    def _truthy(cls, v):
        return bool(v)

    @field_validator("upgrades", "serial_counters", mode="before")
    @classmethod
    def _levels(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): _count(n) for k, n in v.items()}

    @field_validator("unlocks", "first_claims", mode="before")
    @classmethod
    def _bool_map(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): bool(x) for k, x in v.items()}

    @field_validator("badges", mode="before")
    @classmethod
    def _badge_map(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): _count(ts) for k, ts in v.items()}

    @field_validator("streak", mode="before")
    @classmethod
    def _streak(cls, v):
        if isinstance(v, StreakState):
            return v
        if not isinstance(v, dict):
            return {}
        v = dict(v)
        if not _is_number(v.get("count")):
            v["count"] = seed_count_from_steps(_count(v.get("steps")))
        for k in ("expiresAt", "steps", "count"):
            v[k] = _count(v.get(k))
        return v

    @field_validator("inventory", mode="before")
    @classmethod
    def _items(cls, v):
        if not isinstance(v, list):
            return []
        kept = []
        for raw in v:
            try:
                kept.append(InventoryItem.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Dropping unreadable inventory entry: {e.error_count()} error(s)")
        return kept

    @field_validator("daily", "flags", "stats", mode="before")
    @classmethod
    def _dict_or_default(cls, v):
        return v if isinstance(v, dict) or isinstance(v, BaseModel) else {}

    @field_validator("profile", mode="before")
    @classmethod
    def _profile(cls, v):
        return v if isinstance(v, dict) else {"username": "Player", "avatarUrl": ""}

    # ── Construction ──

    @classmethod
    def fresh(cls, today: str = None) -> "ProgressionState":
        return cls(daily=DailyRecord(day=today or utc_today()))

    @classmethod
    def from_save(cls, raw: Optional[dict], *, today: str = None,
                  level_for_xp: Callable[[int], int] = None) -> "ProgressionState":
        """Permissive load + normalization. `raw=None` yields a fresh state."""
        today = today or utc_today()
        if not isinstance(raw, dict):
            return cls.fresh(today)
        state = cls.model_validate(raw)
        if state.daily.day != today:
            state.daily = DailyRecord(day=today)
        if level_for_xp is not None:
            state.vendor_level = max(1, level_for_xp(state.vendor_xp))
        return state

    # ── Serialization ──

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def item(self, item_id: str) -> Optional[InventoryItem]:
        return next((it for it in self.inventory if it.id == item_id), None)

    def summary(self) -> dict:
        counts = {"sealed": 0, "scratched": 0, "claimed": 0}
        for it in self.inventory:
            counts[it.state] += 1
        return {
            "money": self.money,
            "tokens": self.tokens,
            "vendor_level": self.vendor_level,
            "vendor_xp": self.vendor_xp,
            "lifetime_winnings": self.lifetime_winnings,
            "inventory": counts,
            "pity_count": self.pity_count,
            "backstop_ready": self.backstop_ready,
            "streak": self.streak.count,
            "badges": len([b for b, ts in self.badges.items() if ts > 0]),
        }


def parse_imported_state(text: str) -> Optional[dict]:
    """JSON text → dict, or None when it is not a JSON object."""
    try:
        parsed = json.loads(text)
    except (ValueError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None
