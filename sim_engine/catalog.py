"""
SCRATCH ELITE — Tier Catalog

Immutable view over TicketTiers.json + PrizeTables.json. Prize tables are
normalized once at load; lookups and sampling never touch the disk again.

Usage:
    from sim_engine.catalog import load_catalog
    cat = load_catalog()                       # shipped config/data
    tier = cat.get_tier_by_id("t01")
    prize = cat.sample_prize_with("t01", make_rng("seed"))
    cat.compute_ev("t01")                      # E[prize] / price
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from config.catalog_schema import (
    CatalogError, PrizeTablesFile, PrizeWeight, TicketTiersFile, TierDef, load_config_file,
)
from sim_engine.prize_table import NormalizedPrize, normalize, sample_with
from sim_engine.rng import rng as default_rng

logger = logging.getLogger("scratch.catalog")


class TierCatalog:

    def __init__(self, tiers: list[TierDef], tables: dict[str, list[PrizeWeight]]):
        self._tiers = list(tiers)
        self._by_id = {t.id: t for t in self._tiers}
        self._raw = {k: list(v) for k, v in tables.items()}
        self._normalized = {k: normalize(v) for k, v in self._raw.items()}

        for t in self._tiers:
            if not self._normalized.get(t.id):
                logger.warning(f"Tier {t.id} has no usable prize table — every tile pays 0")
        orphans = sorted(set(self._raw) - set(self._by_id))
        if orphans:
            logger.warning(f"Prize tables without a tier: {orphans}")

    @classmethod
    def from_dir(cls, data_dir) -> "TierCatalog":
        data_dir = Path(data_dir)
        tiers = load_config_file(data_dir / "TicketTiers.json", TicketTiersFile).tiers
        tables = load_config_file(data_dir / "PrizeTables.json", PrizeTablesFile).tables
        logger.info(f"Catalog loaded: {len(tiers)} tiers, {len(tables)} prize tables from {data_dir}")
        return cls(tiers, tables)

    @classmethod
    def from_dicts(cls, tiers: list[dict], tables: dict[str, list[dict]]) -> "TierCatalog":
        """Build from plain JSON-shaped data (validated the same way as the files)."""
        try:
            return cls(
                TicketTiersFile.model_validate({"tiers": tiers}).tiers,
                PrizeTablesFile.model_validate({"tables": tables}).tables,
            )
        except ValidationError as e:
            raise CatalogError(f"inline catalog: {e}") from e

    # ── Lookups ──

    def get_tiers(self) -> list[TierDef]:
        return list(self._tiers)

    def get_tier_by_id(self, tier_id: str) -> Optional[TierDef]:
        return self._by_id.get(tier_id)

    def prize_table(self, tier_id: str) -> list[PrizeWeight]:
        return list(self._raw.get(tier_id, []))

    def normalized_table(self, tier_id: str) -> list[NormalizedPrize]:
        return list(self._normalized.get(tier_id, []))

    def sets(self) -> dict[str, list[str]]:
        """Set name → member tier ids, in catalog order. Tiers without a set are skipped."""
        out: dict[str, list[str]] = {}
        for t in self._tiers:
            if t.set_name:
                out.setdefault(t.set_name, []).append(t.id)
        return out

    # ── Sampling ──

    def sample_prize_with(self, tier_id: str, rnd: Callable[[], float]) -> int:
        return sample_with(self._normalized.get(tier_id, []), rnd)

    def sample_prize(self, tier_id: str) -> int:
        """Sample using the shared process-wide stream (not reproducible per ticket)."""
        return self.sample_prize_with(tier_id, default_rng)

    # ── Design math ──

    def compute_ev(self, tier_id: str) -> float:
        """Expected single-draw prize divided by price. 0 for unknown or free tiers."""
        t = self.get_tier_by_id(tier_id)
        if not t or t.price <= 0:
            return 0.0
        rows = self._raw.get(tier_id, [])
        total = sum(r.weight for r in rows)
        if total <= 0:
            return 0.0
        expected = sum(r.prize * (r.weight / total) for r in rows)
        return expected / t.price


@lru_cache(maxsize=8)
def _load_cached(data_dir: str) -> TierCatalog:
    return TierCatalog.from_dir(data_dir)


def load_catalog(data_dir=None) -> TierCatalog:
    """Load (once per directory) and return the catalog. Raises CatalogError if malformed."""
    if data_dir is None:
        from config.settings import DATA_DIR
        data_dir = DATA_DIR
    return _load_cached(str(Path(data_dir).resolve()))
