"""
SCRATCH ELITE — Static Catalog Schema

Pydantic models for every JSON file the engine reads at boot:
  TicketTiers.json  → TicketTiersFile   (tier price, grid, unlock gates)
  PrizeTables.json  → PrizeTablesFile   (per-tier prize weights)
  Upgrades.json     → UpgradesFile      (level caps, cost schedule, effect steps)
  Progression.json  → ProgressionFile   (vendor level XP cutoffs)

A malformed catalog must never boot into an empty game, so every loader
raises CatalogError instead of returning defaults.

Usage:
    from config.catalog_schema import load_config_file, TicketTiersFile
    tiers = load_config_file(DATA_DIR / "TicketTiers.json", TicketTiersFile).tiers
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class CatalogError(ValueError):
    """Raised when a static config file is missing or malformed."""


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ═══════════════════════════════════════════════════════════════
# Tiers
# ═══════════════════════════════════════════════════════════════

class UnlockReq(_Schema):
    """Gates checked by getUnlockStatus — all three must be met."""
    vendor_level: int = Field(1, ge=0, alias="vendorLevel")
    tokens: int = Field(0, ge=0)
    lifetime_winnings: int = Field(0, ge=0, alias="lifetimeWinnings")

    @property
    def is_free(self) -> bool:
        return self.tokens <= 0 and self.vendor_level <= 1 and self.lifetime_winnings <= 0


class Mechanics(_Schema):
    grid: tuple[int, int]                           # [cols, rows]
    winning_numbers: int = Field(4, ge=1, le=99, alias="winningNumbers")
    has_bonus_box: bool = Field(False, alias="hasBonusBox")
    multiplier_chances: list[float] = Field(default_factory=list, alias="multiplierChances")

    @field_validator("grid")
    @classmethod
    def positive_grid(cls, v):
        cols, rows = v
        if cols < 1 or rows < 1:
            raise ValueError(f"grid dimensions must be >= 1, got {list(v)}")
        return v

    @property
    def cols(self) -> int:
        return self.grid[0]

    @property
    def rows(self) -> int:
        return self.grid[1]

    @property
    def cells(self) -> int:
        return self.grid[0] * self.grid[1]


class TierDef(_Schema):
    """One configured ticket type. `visual` is opaque presentation data."""
    id: str = Field(min_length=1)
    name: str
    set_name: str = Field("", alias="set")
    price: int = Field(ge=0)
    ev_target: float = Field(0.0, alias="evTarget")
    unlock: UnlockReq = Field(default_factory=UnlockReq)
    mechanics: Mechanics
    visual: dict = Field(default_factory=dict)


class TicketTiersFile(_Schema):
    tiers: list[TierDef]

    @field_validator("tiers")
    @classmethod
    def unique_ids(cls, v):
        ids = [t.id for t in v]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate tier ids: {dupes}")
        return v


class PrizeWeight(_Schema):
    prize: int = Field(ge=0)
    weight: float = Field(ge=0)


class PrizeTablesFile(_Schema):
    tables: dict[str, list[PrizeWeight]] = Field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════
# Upgrades: Step is a tagged variant, never probed field by field
# ═══════════════════════════════════════════════════════════════

class FixedLevels(BaseModel):
    """Explicit value per level (1-indexed, clamped to the list length)."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")
    levels: list[float]
    cap: Optional[float] = None


class PerLevel(BaseModel):
    """Linear value: per_level × level."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")
    per_level: float = Field(alias="perLevel")
    cap: Optional[float] = None


Step = Union[FixedLevels, PerLevel]


class EffectSpec(_Schema):
    ticket_discount_pct: Optional[Step] = Field(None, alias="ticketDiscountPct")
    prize_multiplier_pct: Optional[Step] = Field(None, alias="prizeMultiplierPct")
    scratch_parallel_max: Optional[Step] = Field(None, alias="scratchParallelMax")


class UpgradeDef(_Schema):
    id: str = Field(min_length=1)
    name: str
    type: str = "econ"                             # "ux" | "econ"
    level_cap: int = Field(ge=0, alias="levelCap")
    cost_per_level: Optional[list[int]] = Field(None, alias="costPerLevel")
    base_cost: Optional[float] = Field(None, alias="baseCost")
    cost_growth: Optional[float] = Field(None, alias="costGrowth")
    desc: str = ""
    effect: Optional[EffectSpec] = None
    requires: dict[str, int] = Field(default_factory=dict)


class UpgradesFile(_Schema):
    upgrades: list[UpgradeDef]

    @field_validator("upgrades")
    @classmethod
    def unique_ids(cls, v):
        ids = [u.id for u in v]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate upgrade ids: {dupes}")
        return v


# ═══════════════════════════════════════════════════════════════
# Progression
# ═══════════════════════════════════════════════════════════════

class LevelThreshold(_Schema):
    level: int = Field(ge=1)
    xp: int = Field(ge=0)


class ProgressionFile(_Schema):
    levels: list[LevelThreshold]

    @field_validator("levels")
    @classmethod
    def monotonic(cls, v):
        ordered = sorted(v, key=lambda r: r.level)
        seen = set()
        last_xp = -1
        for row in ordered:
            if row.level in seen:
                raise ValueError(f"duplicate level {row.level}")
            if row.xp < last_xp:
                raise ValueError(f"level {row.level} needs less XP than the level below it")
            seen.add(row.level)
            last_xp = row.xp
        return ordered


# ═══════════════════════════════════════════════════════════════
# Loader
# ═══════════════════════════════════════════════════════════════

def load_config_file(path: Path, model: type[BaseModel]):
    """Read + validate one JSON config file. Raises CatalogError on any problem."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise CatalogError(f"{path.name}: file not found ({path})") from e
    except json.JSONDecodeError as e:
        raise CatalogError(f"{path.name}: invalid JSON ({e})") from e
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise CatalogError(f"{path.name}: {e}") from e
