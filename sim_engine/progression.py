"""
SCRATCH ELITE — Vendor Level Table

Level = highest row whose XP requirement is <= current XP (never below 1).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from config.catalog_schema import LevelThreshold, ProgressionFile, load_config_file


class LevelTable:

    def __init__(self, thresholds: list[LevelThreshold]):
        self.thresholds = sorted(thresholds, key=lambda r: r.level)

    @classmethod
    def from_file(cls, path) -> "LevelTable":
        return cls(load_config_file(Path(path), ProgressionFile).levels)

    @classmethod
    def from_rows(cls, rows: list[dict]) -> "LevelTable":
        return cls(ProgressionFile.model_validate({"levels": rows}).levels)

    def level_for_xp(self, xp: float) -> int:
        lvl = 1
        for row in self.thresholds:
            if xp >= row.xp:
                lvl = row.level
        return lvl

    def next_level_xp(self, level: int) -> Optional[int]:
        """XP needed for level+1, or None at the top of the table."""
        for row in self.thresholds:
            if row.level == level + 1:
                return row.xp
        return None

    @property
    def max_level(self) -> int:
        return self.thresholds[-1].level if self.thresholds else 1
