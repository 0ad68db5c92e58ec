#!/usr/bin/env python3
"""
SCRATCH ELITE — Unit Test Suite (pure engine pieces)

Run: python tests.py
     python tests.py -v              # verbose
     python tests.py TestTicketGen   # run specific class

Test categories:
  TestRng            — xmur3/mulberry32 reference values, shared stream
  TestPrizeTable     — normalization, sampling distribution, empty tables
  TestCatalog        — shipped data, schema errors, EV math
  TestTicketGen      — determinism, draw order, bonus box
  TestBackstop       — floor rewrite, top-up of an already matching tile
  TestRevealModes    — single / cross / square3 / all footprints
  TestUpgrades       — step evaluation, cost schedule, effect stacking
  TestStreak         — decay, stages, snap points
  TestProgression    — vendor level table, serial numbers
  TestSaveStores     — sqlite / json / memory backends
  TestGameState      — permissive import, legacy migration
"""

import json
import os
import sqlite3
import sys
import tempfile
import unittest
from pathlib import Path

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.catalog_schema import (
    CatalogError, FixedLevels, PerLevel, ProgressionFile, load_config_file,
)
from config.database import JsonFileSaveStore, MemorySaveStore, SqliteSaveStore, get_store
from config.settings import DATA_DIR, EconomyConfig
from sim_engine.catalog import TierCatalog, load_catalog
from sim_engine.prize_table import expected_prize, max_prize, normalize, sample_with
from sim_engine.progression import LevelTable
from sim_engine.rng import make_rng, rand_int, rng, set_seed, xmur3
from sim_engine.serials import format_serial, next_serial, serial_prefix_for_name
from sim_engine.streak import (
    StreakState, bump_streak, decay_streak, stage_for_count, streak_metrics,
)
from sim_engine.ticket_gen import (
    BonusBox, GeneratedTicket, GeneratedTile, apply_backstop, backstop_floor,
    bonus_amount, generate_ticket, reveal_indices,
)
from tools.game_state import InventoryItem, ProgressionState, parse_imported_state
from tools.upgrades import UpgradeBook, eval_step


def _tier(tid, name="Test", price=1, grid=(3, 3), k=4, bonus=False, set_name="", **unlock):
    return {
        "id": tid, "name": name, "set": set_name, "price": price,
        "unlock": unlock,
        "mechanics": {"grid": list(grid), "winningNumbers": k, "hasBonusBox": bonus},
    }


# ============================================================
# RNG
# ============================================================

class TestRng(unittest.TestCase):
    """Streams must match other 32-bit xmur3/mulberry32 implementations exactly."""

    def test_xmur3_reference(self):
        self.assertEqual(xmur3("dev")(), 1856117818)

    def test_xmur3_hashes_utf16_units(self):
        """Astral characters count as two code units (surrogate pair)."""
        self.assertEqual(xmur3("é🎟")(), 656181238)

    def test_string_seed_reference_stream(self):
        r = make_rng("t01:LUCPEN-000001:ticket")
        self.assertEqual(r(), 0.44317959412001073)
        self.assertEqual(r(), 0.43606807803735137)
        self.assertEqual(r(), 0.2175033346284181)

    def test_numeric_seed_used_directly(self):
        r = make_rng(12345)
        self.assertEqual(r(), 0.9797282677609473)
        self.assertEqual(r(), 0.3067522644996643)

    def test_negative_seed_wraps_to_uint32(self):
        self.assertEqual(make_rng(-1)(), 0.8964226141106337)
        self.assertEqual(make_rng(-1)(), make_rng(0xFFFFFFFF)())

    def test_independent_generators(self):
        a = make_rng("same")
        b = make_rng("same")
        a()
        a()
        self.assertEqual(make_rng("same")(), b())

    def test_values_in_unit_interval(self):
        r = make_rng("bounds")
        for _ in range(10_000):
            x = r()
            self.assertGreaterEqual(x, 0.0)
            self.assertLess(x, 1.0)

    def test_randint_inclusive(self):
        r = make_rng("dice")
        seen = {r.randint(1, 6) for _ in range(2_000)}
        self.assertEqual(seen, {1, 2, 3, 4, 5, 6})

    def test_shared_stream_reseed(self):
        set_seed("dev")
        first = [rng() for _ in range(3)]
        set_seed("dev")
        self.assertEqual([rng() for _ in range(3)], first)
        self.assertTrue(1 <= rand_int(1, 3) <= 3)


# ============================================================
# Prize tables
# ============================================================

class TestPrizeTable(unittest.TestCase):

    ROWS = [{"prize": 1, "weight": 50}, {"prize": 10, "weight": 40}, {"prize": 100, "weight": 10}]

    def test_normalize(self):
        table = normalize(self.ROWS)
        self.assertEqual([r.prize for r in table], [1, 10, 100])
        self.assertAlmostEqual(table[0].prob, 0.5)
        self.assertAlmostEqual(table[1].cum, 0.9)
        self.assertEqual(table[-1].cum, 1.0)

    def test_last_cum_is_exactly_one(self):
        """Thirds do not sum to 1.0 in floating point; the last row is forced."""
        table = normalize([{"prize": p, "weight": 1} for p in (1, 2, 3)])
        self.assertEqual(table[-1].cum, 1.0)
        self.assertEqual(sample_with(table, lambda: 0.9999999999999999), 3)

    def test_distribution(self):
        table = normalize(self.ROWS)
        r = make_rng("seed-dist")
        n = 100_000
        counts = {1: 0, 10: 0, 100: 0}
        for _ in range(n):
            counts[sample_with(table, r)] += 1
        self.assertAlmostEqual(counts[1] / n, 0.5, delta=0.01)
        self.assertAlmostEqual(counts[10] / n, 0.4, delta=0.01)
        self.assertAlmostEqual(counts[100] / n, 0.1, delta=0.01)

    def test_boundary_draw_picks_lower_row(self):
        table = normalize(self.ROWS)
        self.assertEqual(sample_with(table, lambda: 0.5), 1)
        self.assertEqual(sample_with(table, lambda: 0.0), 1)

    def test_empty_and_zero_weight_tables(self):
        self.assertEqual(normalize([]), [])
        self.assertEqual(normalize([{"prize": 5, "weight": 0}]), [])
        self.assertEqual(sample_with([], lambda: 0.3), 0)

    def test_expected_and_max(self):
        table = normalize(self.ROWS)
        self.assertAlmostEqual(expected_prize(table), 0.5 + 4.0 + 10.0)
        self.assertEqual(max_prize(table), 100)
        self.assertEqual(max_prize([]), 0)


# ============================================================
# Catalog
# ============================================================

class TestCatalog(unittest.TestCase):

    def setUp(self):
        self.catalog = load_catalog()

    def test_shipped_catalog(self):
        ids = [t.id for t in self.catalog.get_tiers()]
        self.assertEqual(ids, ["t01", "t02", "t03", "t04", "t05", "t06", "t07"])
        for tid in ids:
            self.assertTrue(self.catalog.normalized_table(tid), f"{tid} has no prize table")

    def test_lookup(self):
        t = self.catalog.get_tier_by_id("t01")
        self.assertEqual(t.name, "Lucky Penny")
        self.assertEqual(t.price, 1)
        self.assertEqual((t.mechanics.cols, t.mechanics.rows, t.mechanics.cells), (4, 3, 12))
        self.assertTrue(t.unlock.is_free)
        self.assertIsNone(self.catalog.get_tier_by_id("nope"))

    def test_sets(self):
        sets = self.catalog.sets()
        self.assertEqual(sets["Classic"], ["t01", "t02", "t03"])
        self.assertEqual(sets["Neon"], ["t04", "t05"])
        self.assertEqual(sets["Royal"], ["t06", "t07"])

    def test_compute_ev(self):
        # (1*60 + 2*25 + 3*10 + 5*4 + 20*0.9 + 100*0.1) / 100 / $1
        self.assertAlmostEqual(self.catalog.compute_ev("t01"), 1.88)
        self.assertEqual(self.catalog.compute_ev("nope"), 0.0)

    def test_load_is_cached_per_directory(self):
        self.assertIs(load_catalog(DATA_DIR), load_catalog(str(DATA_DIR)))

    def test_unknown_tier_samples_zero(self):
        self.assertEqual(self.catalog.sample_prize_with("nope", make_rng(1)), 0)

    def test_duplicate_ids_rejected(self):
        with self.assertRaises(CatalogError):
            TierCatalog.from_dicts([_tier("a"), _tier("a")], {})

    def test_negative_price_rejected(self):
        with self.assertRaises(CatalogError):
            TierCatalog.from_dicts([_tier("a", price=-1)], {})

    def test_bad_grid_rejected(self):
        with self.assertRaises(CatalogError):
            TierCatalog.from_dicts([_tier("a", grid=(0, 3))], {})

    def test_missing_and_invalid_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(CatalogError):
                TierCatalog.from_dir(tmp)
            bad = Path(tmp) / "TicketTiers.json"
            bad.write_text("{ not json")
            with self.assertRaises(CatalogError):
                TierCatalog.from_dir(tmp)

    def test_progression_must_be_monotonic(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "Progression.json"
            path.write_text(json.dumps({"levels": [{"level": 1, "xp": 0}, {"level": 2, "xp": 50},
                                                   {"level": 3, "xp": 10}]}))
            with self.assertRaises(CatalogError):
                load_config_file(path, ProgressionFile)


# ============================================================
# Ticket generation
# ============================================================

class TestTicketGen(unittest.TestCase):

    def setUp(self):
        self.catalog = load_catalog()

    def test_reference_ticket(self):
        """Cross-checked against an independent mulberry32 implementation."""
        t = generate_ticket(self.catalog, "t01", "LUCPEN-000001")
        self.assertEqual(t.winning, [22, 42, 44, 59])
        self.assertEqual([x.num for x in t.tiles], [6, 40, 63, 51, 60, 33, 30, 5, 44, 81, 96, 52])
        self.assertEqual([x.prize for x in t.tiles], [1, 2, 2, 2, 3, 2, 2, 1, 1, 2, 2, 2])
        self.assertEqual(t.total_prize, 1)
        self.assertEqual([i for i, x in enumerate(t.tiles) if x.win], [8])
        self.assertIsNone(t.bonus)

    def test_reference_bonus_ticket(self):
        t = generate_ticket(self.catalog, "t03", "FORFIV-000007")
        self.assertEqual(t.winning, [38, 45, 56, 75, 79])
        self.assertEqual(len(t.tiles), 15)
        self.assertEqual(t.total_prize, 0)
        self.assertEqual(t.bonus.amount, 1)
        self.assertFalse(t.bonus.revealed)

    def test_deterministic(self):
        a = generate_ticket(self.catalog, "t05", "NEOJAC-000042")
        b = generate_ticket(self.catalog, "t05", "NEOJAC-000042")
        self.assertEqual(a.model_dump(), b.model_dump())
        c = generate_ticket(self.catalog, "t05", "NEOJAC-000043")
        self.assertNotEqual(a.model_dump(), c.model_dump())

    def test_shape(self):
        for tier in self.catalog.get_tiers():
            t = generate_ticket(self.catalog, tier.id, "SHAPE-000001")
            self.assertEqual(len(t.tiles), tier.mechanics.cells)
            self.assertEqual(len(set(t.winning)), tier.mechanics.winning_numbers)
            self.assertEqual(t.winning, sorted(t.winning))
            self.assertTrue(all(1 <= n <= 99 for n in t.winning))
            self.assertTrue(all(1 <= x.num <= 99 and not x.revealed for x in t.tiles))
            self.assertEqual(t.bonus is not None, tier.mechanics.has_bonus_box)
            self.assertEqual(t.total_prize, t.winning_sum())

    def test_unknown_tier_is_empty(self):
        t = generate_ticket(self.catalog, "nope", "X-000001")
        self.assertTrue(t.is_empty)
        self.assertEqual(t.winning, [])

    def test_bonus_bands(self):
        self.assertEqual(bonus_amount(100, 0.10), 10)
        self.assertEqual(bonus_amount(100, 0.50), 15)
        self.assertEqual(bonus_amount(100, 0.80), 20)
        self.assertEqual(bonus_amount(100, 0.99), 30)
        self.assertEqual(bonus_amount(100, 0.95), 20)   # band edges are exclusive
        self.assertEqual(bonus_amount(1, 0.99), 1)      # never below 1

    def test_camel_case_dump(self):
        t = generate_ticket(self.catalog, "t03", "FORFIV-000007")
        raw = t.model_dump(by_alias=True)
        self.assertIn("totalPrize", raw)
        self.assertIn("backstopApplied", raw)
        again = GeneratedTicket.model_validate(raw)
        self.assertEqual(again.total_prize, t.total_prize)


# ============================================================
# Backstop
# ============================================================

class TestBackstop(unittest.TestCase):

    def test_floor(self):
        self.assertEqual(backstop_floor(5), 1)
        self.assertEqual(backstop_floor(100), 30)
        self.assertEqual(backstop_floor(1), 0)
        self.assertEqual(backstop_floor(10, 0.5), 5)

    def test_rewrites_first_tile_when_nothing_matches(self):
        t = generate_ticket(load_catalog(), "t03", "FORFIV-000007")
        self.assertEqual(t.winning_sum(), 0)
        self.assertTrue(apply_backstop(t, price=5))
        self.assertEqual(t.tiles[0].num, 38)
        self.assertTrue(t.tiles[0].win)
        self.assertEqual(t.tiles[0].prize, 3)          # max(existing 3, need 1)
        self.assertGreaterEqual(t.winning_sum(), backstop_floor(5))
        self.assertEqual(t.total_prize, t.winning_sum())
        self.assertTrue(t.backstop_applied)

    def test_tops_up_matching_tile(self):
        t = GeneratedTicket(winning=[5, 9], tiles=[
            GeneratedTile(num=7, prize=9),
            GeneratedTile(num=5, prize=1, win=True),
        ])
        self.assertTrue(apply_backstop(t, price=10))   # floor 3, have 1
        self.assertEqual(t.tiles[1].prize, 3)
        self.assertEqual(t.tiles[0].prize, 9)
        self.assertEqual(t.winning_sum(), 3)

    def test_already_at_floor(self):
        t = GeneratedTicket(winning=[5], tiles=[GeneratedTile(num=5, prize=50, win=True)])
        self.assertFalse(apply_backstop(t, price=10))
        self.assertTrue(t.backstop_applied)
        self.assertEqual(t.tiles[0].prize, 50)

    def test_applies_once(self):
        t = GeneratedTicket(winning=[5], tiles=[GeneratedTile(num=1, prize=0)])
        self.assertTrue(apply_backstop(t, price=100))
        t.tiles[0].prize = 0
        self.assertFalse(apply_backstop(t, price=100))

    def test_empty_ticket_untouched(self):
        t = GeneratedTicket()
        self.assertFalse(apply_backstop(t, price=100))
        self.assertFalse(t.backstop_applied)


# ============================================================
# Reveal footprints
# ============================================================

class TestRevealModes(unittest.TestCase):

    def test_single(self):
        self.assertEqual(reveal_indices("single", 5, 4, 3), [5])

    def test_cross(self):
        self.assertEqual(reveal_indices("cross", 5, 4, 3), [1, 4, 5, 6, 9])
        self.assertEqual(reveal_indices("cross", 0, 4, 3), [0, 1, 4])
        # right edge must not wrap into the next row
        self.assertEqual(reveal_indices("cross", 3, 4, 3), [2, 3, 7])

    def test_square3(self):
        self.assertEqual(reveal_indices("square3", 5, 4, 3), [0, 1, 2, 4, 5, 6, 8, 9, 10])
        self.assertEqual(reveal_indices("square3", 11, 4, 3), [6, 7, 10, 11])

    def test_all(self):
        self.assertEqual(reveal_indices("all", 7, 4, 3), list(range(12)))

    def test_out_of_range(self):
        self.assertEqual(reveal_indices("cross", 12, 4, 3), [])
        self.assertEqual(reveal_indices("single", -1, 4, 3), [])


# ============================================================
# Upgrades
# ============================================================

class TestUpgrades(unittest.TestCase):

    def setUp(self):
        self.book = UpgradeBook.from_file(DATA_DIR / "Upgrades.json")

    def test_eval_step(self):
        fixed = FixedLevels(levels=[2, 4, 6], cap=5)
        self.assertEqual(eval_step(fixed, 0), 0)
        self.assertEqual(eval_step(fixed, 1), 2)
        self.assertEqual(eval_step(fixed, 3), 5)
        self.assertEqual(eval_step(fixed, 10), 5)       # clamps to last level, then cap
        linear = PerLevel(per_level=2, cap=10)
        self.assertEqual(eval_step(linear, 3), 6)
        self.assertEqual(eval_step(linear, 7), 10)
        self.assertEqual(eval_step(None, 3), 0)

    def test_cost_schedule(self):
        self.assertEqual(self.book.next_cost({}, "scratch_radius"), 250)
        self.assertEqual(self.book.next_cost({"scratch_radius": 2}, "scratch_radius"), 5000)
        self.assertIsNone(self.book.next_cost({"scratch_radius": 3}, "scratch_radius"))
        self.assertEqual(self.book.next_cost({}, "bulk_discount"), 500)
        self.assertEqual(self.book.next_cost({"bulk_discount": 2}, "bulk_discount"), 2000)
        self.assertEqual(self.book.next_cost({"lucky_charm": 1}, "lucky_charm"), 2500)
        self.assertIsNone(self.book.next_cost({}, "nope"))

    def test_requirements(self):
        self.assertFalse(self.book.meets_requirements({}, "vip_card"))
        self.assertEqual(self.book.missing_requirements({"bulk_discount": 1}, "vip_card"), {"bulk_discount": 3})
        self.assertTrue(self.book.meets_requirements({"bulk_discount": 3}, "vip_card"))
        self.assertFalse(self.book.can_buy({}, 10**9, "vip_card"))
        self.assertTrue(self.book.can_buy({"bulk_discount": 3}, 20_000, "vip_card"))
        self.assertFalse(self.book.can_buy({"bulk_discount": 3}, 19_999, "vip_card"))

    def test_effects_stack(self):
        levels = {"lucky_charm": 5, "vip_card": 3, "bulk_discount": 5}
        eff = self.book.effects(levels)
        self.assertEqual(eff.prize_multiplier_pct, 25)  # 10 + 3*5
        self.assertEqual(eff.ticket_discount_pct, 18)   # min(10, 10) + 8
        self.assertAlmostEqual(self.book.prize_multiplier(levels), 1.25)

    def test_discounted_total(self):
        self.assertEqual(self.book.discounted_total({}, 5, 10), 50)
        self.assertEqual(self.book.discounted_total({"bulk_discount": 5}, 5, 10), 45)
        self.assertEqual(self.book.discounted_total({"bulk_discount": 1}, 1, 1), 0)   # floor(0.98)

    def test_discount_clamped(self):
        book = UpgradeBook.from_dicts([{
            "id": "free", "name": "Free", "levelCap": 2, "baseCost": 1,
            "effect": {"ticketDiscountPct": {"perLevel": 60}},
        }])
        self.assertEqual(book.discounted_total({"free": 2}, 10, 3), 0)

    def test_scratch_mode_and_parallel(self):
        self.assertEqual(self.book.scratch_mode({}), "single")
        self.assertEqual(self.book.scratch_mode({"scratch_radius": 1}), "cross")
        self.assertEqual(self.book.scratch_mode({"scratch_radius": 2}), "square3")
        self.assertEqual(self.book.scratch_mode({"scratch_radius": 3}), "all")
        self.assertEqual(self.book.scratch_parallel_max({}), 1)
        self.assertEqual(self.book.scratch_parallel_max({"scratch_radius_pro": 1}), 2)
        self.assertEqual(self.book.scratch_parallel_max({"scratch_radius_pro": 2}), 3)


# ============================================================
# Streak
# ============================================================

class TestStreak(unittest.TestCase):
    WINDOW = EconomyConfig.STREAK_WINDOW_MS

    def test_stages(self):
        self.assertEqual([stage_for_count(n) for n in range(8)], [0, 0, 1, 1, 2, 2, 3, 3])

    def test_bump_extends_window(self):
        s = bump_streak(StreakState(), 1_000)
        self.assertEqual((s.count, s.steps, s.expires_at), (1, 0, 1_000 + self.WINDOW))
        s = bump_streak(s, 2_000)
        self.assertEqual((s.count, s.steps, s.expires_at), (2, 1, 2_000 + self.WINDOW))

    def test_decay(self):
        s = StreakState(expires_at=5_000, steps=2, count=4)
        self.assertIs(decay_streak(s, 5_000), s)
        self.assertEqual(decay_streak(s, 5_001).count, 0)
        # bump after expiry starts over
        self.assertEqual(bump_streak(s, 10_000).count, 1)

    def test_snap_points_stage3(self):
        now = 100_000
        full = streak_metrics(StreakState(expires_at=now + self.WINDOW, steps=3, count=6), now)
        self.assertEqual(full.display_percent, 5)
        self.assertAlmostEqual(full.factor, 1.05)
        half = streak_metrics(StreakState(expires_at=now + self.WINDOW // 2, steps=3, count=6), now)
        self.assertEqual(half.display_percent, 4)
        low = streak_metrics(StreakState(expires_at=now + self.WINDOW // 10, steps=3, count=6), now)
        self.assertEqual(low.display_percent, 2)

    def test_snap_points_stage2_and_1(self):
        now = 0
        s2 = StreakState(expires_at=self.WINDOW // 2, steps=2, count=4)
        self.assertEqual(streak_metrics(s2, now).display_percent, 4)    # fill .4
        s2 = StreakState(expires_at=self.WINDOW // 4, steps=2, count=4)
        self.assertEqual(streak_metrics(s2, now).display_percent, 2)    # fill .2
        s1 = StreakState(expires_at=1, steps=1, count=2)
        self.assertEqual(streak_metrics(s1, now).display_percent, 2)

    def test_stage0_and_expired(self):
        self.assertEqual(streak_metrics(bump_streak(StreakState(), 0), 0).factor, 1.0)
        m = streak_metrics(StreakState(expires_at=10, steps=3, count=9), 11)
        self.assertEqual((m.count, m.display_percent, m.ms_remaining), (0, 0, 0))


# ============================================================
# Progression & serials
# ============================================================

class TestProgression(unittest.TestCase):

    def test_level_table(self):
        table = LevelTable.from_file(DATA_DIR / "Progression.json")
        self.assertEqual(table.level_for_xp(0), 1)
        self.assertEqual(table.level_for_xp(24), 1)
        self.assertEqual(table.level_for_xp(25), 2)
        self.assertEqual(table.level_for_xp(10**9), 15)
        self.assertEqual(table.next_level_xp(1), 25)
        self.assertIsNone(table.next_level_xp(15))
        self.assertEqual(table.max_level, 15)

    def test_unsorted_rows(self):
        table = LevelTable.from_rows([{"level": 2, "xp": 10}, {"level": 1, "xp": 0}])
        self.assertEqual(table.level_for_xp(10), 2)

    def test_serial_prefix(self):
        self.assertEqual(serial_prefix_for_name("Lucky Penny"), "LUCPEN")
        self.assertEqual(serial_prefix_for_name("Crown Jewels"), "CROJEW")
        self.assertEqual(serial_prefix_for_name("A B C D"), "ABCD")
        self.assertEqual(serial_prefix_for_name("   "), "TICKET")

    def test_next_serial(self):
        counters = {}
        self.assertEqual(next_serial(counters, "Lucky Penny"), "LUCPEN-000001")
        self.assertEqual(next_serial(counters, "Lucky Penny"), "LUCPEN-000002")
        self.assertEqual(counters, {"LUCPEN": 2})
        self.assertEqual(format_serial("X", 1234567), "X-1234567")


# ============================================================
# Save stores
# ============================================================

class TestSaveStores(unittest.TestCase):

    def test_sqlite_round_trip(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = SqliteSaveStore(Path(tmp) / "saves.db")
            self.assertIsNone(store.load("k"))
            self.assertTrue(store.save("k", {"money": 5}))
            self.assertTrue(store.save("k", {"money": 7}))
            self.assertEqual(store.load("k"), {"money": 7})
            self.assertEqual(store.keys(), ["k"])
            self.assertTrue(store.delete("k"))
            self.assertIsNone(store.load("k"))

    def test_sqlite_corrupt_payload(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "saves.db"
            store = SqliteSaveStore(path)
            store.save("k", {})
            conn = sqlite3.connect(path)
            conn.execute("UPDATE saves SET payload = '[1, 2]' WHERE key = 'k'")
            conn.commit()
            conn.close()
            self.assertIsNone(store.load("k"))

    def test_json_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = JsonFileSaveStore(Path(tmp) / "saves")
            self.assertTrue(store.save("scratch/elite v1", {"tokens": 3}))
            files = os.listdir(Path(tmp) / "saves")
            self.assertEqual(files, ["scratch_elite_v1.json"])
            self.assertEqual(store.load("scratch/elite v1"), {"tokens": 3})
            (Path(tmp) / "saves" / files[0]).write_text("{ broken")
            self.assertIsNone(store.load("scratch/elite v1"))

    def test_memory(self):
        store = MemorySaveStore()
        self.assertTrue(store.save("k", {"a": [1, 2]}))
        snap = store.snapshot("k")
        snap["a"].append(3)
        self.assertEqual(store.load("k"), {"a": [1, 2]})
        self.assertEqual(store.writes, 1)

    def test_unserializable_save_fails_softly(self):
        self.assertFalse(MemorySaveStore().save("k", {"bad": object()}))

    def test_get_store(self):
        self.assertIsInstance(get_store("memory"), MemorySaveStore)
        self.assertIsInstance(get_store("nonsense"), MemorySaveStore)


# ============================================================
# Game state import
# ============================================================

class TestGameState(unittest.TestCase):

    def test_fresh(self):
        s = ProgressionState.fresh("2026-01-01")
        self.assertEqual(s.money, EconomyConfig.STARTING_MONEY)
        self.assertEqual(s.daily.day, "2026-01-01")
        self.assertEqual(s.vendor_level, 1)
        self.assertIsNone(s.stats.fastest_clear_ms)

    def test_from_save_none(self):
        self.assertEqual(ProgressionState.from_save(None, today="2026-01-01").money,
                         EconomyConfig.STARTING_MONEY)

    def test_permissive_import(self):
        raw = {
            "money": -5,
            "tokens": "lots",
            "vendorXp": 80,
            "vendorLevel": 9,
            "pityCount": 3.7,
            "daily": {"day": "2020-01-01", "claimed": 9, "awarded": True},
            "stats": {"wins": -2, "fastestClearMs": "fast", "tilePrizeCounts": {"5": 2}},
            "upgrades": {"bulk_discount": 2, "broken": "x"},
            "futureField": {"keep": True},
            "profile": "nope",
        }
        s = ProgressionState.from_save(raw, today="2026-01-01",
                                       level_for_xp=LevelTable.from_file(DATA_DIR / "Progression.json").level_for_xp)
        self.assertEqual(s.money, 0)
        self.assertEqual(s.tokens, 0)
        self.assertEqual(s.pity_count, 3)
        self.assertEqual(s.vendor_level, 3)                  # recomputed from 80 XP
        self.assertEqual((s.daily.day, s.daily.claimed, s.daily.awarded), ("2026-01-01", 0, False))
        self.assertEqual(s.stats.wins, 0)
        self.assertIsNone(s.stats.fastest_clear_ms)
        self.assertEqual(s.stats.tile_prize_counts, {"5": 2})
        self.assertEqual(s.upgrades, {"bulk_discount": 2, "broken": 0})
        self.assertEqual(s.profile["username"], "Player")
        self.assertEqual(s.to_dict()["futureField"], {"keep": True})

    def test_streak_seeded_from_steps(self):
        s = ProgressionState.from_save({"streak": {"expiresAt": 99, "steps": 2}}, today="2026-01-01")
        self.assertEqual(s.streak.count, EconomyConfig.STREAK_STAGE_CLAIMS[1])
        self.assertEqual(s.streak.expires_at, 99)

    def test_legacy_summary_migrated(self):
        raw = {"inventory": [
            {"id": "a", "tierId": "t01", "serialId": "LUCPEN-000001", "state": "claimed",
             "ticket": {"payout": 5, "price": 1, "net": 4}},
            {"id": "b"},                                        # unreadable: dropped
            {"id": "c", "tierId": "t01", "serialId": "LUCPEN-000002", "state": "nonsense"},
        ]}
        s = ProgressionState.from_save(raw, today="2026-01-01")
        self.assertEqual([it.id for it in s.inventory], ["a"])
        item = s.inventory[0]
        self.assertIsNone(item.ticket)
        self.assertEqual(item.summary.payout, 5)
        self.assertEqual(item.summary.net, 4)

    def test_json_round_trip(self):
        s = ProgressionState.fresh("2026-01-01")
        s.inventory.append(InventoryItem(
            id="inv_1", tier_id="t03", serial_id="FORFIV-000001",
            ticket=GeneratedTicket(winning=[1], tiles=[GeneratedTile(num=1, prize=2)], bonus=BonusBox(amount=1)),
        ))
        s.badges["first_claim"] = 123
        back = ProgressionState.from_save(json.loads(s.to_json()), today="2026-01-01")
        self.assertEqual(back.to_dict(), s.to_dict())
        self.assertIn("serialId", s.to_dict()["inventory"][0])

    def test_parse_imported_state(self):
        self.assertEqual(parse_imported_state('{"money": 3}'), {"money": 3})
        self.assertIsNone(parse_imported_state("[1, 2]"))
        self.assertIsNone(parse_imported_state("not json"))

    def test_summary_counts(self):
        s = ProgressionState.fresh("2026-01-01")
        s.inventory.append(InventoryItem(id="x", tier_id="t01", serial_id="S"))
        self.assertEqual(s.summary()["inventory"], {"sealed": 1, "scratched": 0, "claimed": 0})


# ============================================================
# Main
# ============================================================

if __name__ == "__main__":
    # Configure logging to suppress noise during tests
    import logging
    logging.disable(logging.WARNING)

    unittest.main(verbosity=2)
