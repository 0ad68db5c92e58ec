"""
SCRATCH ELITE — Configuration & Economy Tuning

All balance constants live here so designers can tune them from a .env file
without touching engine code.

- EconomyConfig: starting cash, streak window + snap points, pity/backstop,
  token cadence, vendor XP rate, bonus-box bands
- BadgeConfig:   milestone thresholds for the badge evaluator
- StorageConfig: save key, persistence backend, catalog directory
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("SCRATCH_DATA_DIR", str(BASE_DIR / "config" / "data")))


def _int_tuple(raw: str) -> tuple:
    return tuple(int(x) for x in raw.split(",") if x.strip())


# ============================================================
# ECONOMY: every claim, purchase and streak reads from here
# ============================================================

class EconomyConfig:

    # --- Wallet ---
    STARTING_MONEY = int(os.getenv("SCRATCH_STARTING_MONEY", "50"))

    # --- Streak ---
    # Window is pushed forward on every claim; stage thresholds are claim counts.
    STREAK_WINDOW_MS = int(os.getenv("SCRATCH_STREAK_WINDOW_MS", str(3 * 60 * 1000)))
    STREAK_STAGE_CLAIMS = _int_tuple(os.getenv("SCRATCH_STREAK_STAGES", "2,4,6"))

    # Bar width reached by each stage (fraction of the full HUD bar)
    STREAK_BASE_WIDTHS = {0: 0.0, 1: 0.4, 2: 0.8, 3: 1.0}

    # Snap points: (min fill width, bonus %) checked top-down.
    # A threshold of 0 means "any fill left at all".
    STREAK_SNAP_POINTS = {
        3: ((0.8, 5), (0.4, 4), (0.0, 2)),
        2: ((0.32, 4), (0.0, 2)),
        1: ((0.0, 2),),
    }

    # --- Pity / Backstop ---
    PITY_THRESHOLD = int(os.getenv("SCRATCH_PITY_THRESHOLD", "6"))
    BACKSTOP_FLOOR_PCT = float(os.getenv("SCRATCH_BACKSTOP_FLOOR_PCT", "0.3"))

    # --- Tokens ---
    CLAIMS_PER_TOKEN = int(os.getenv("SCRATCH_CLAIMS_PER_TOKEN", "15"))
    DAILY_TOKEN_CLAIMS = int(os.getenv("SCRATCH_DAILY_TOKEN_CLAIMS", "10"))
    FIRST_CLAIM_TOKENS = 1

    # --- Vendor ---
    VENDOR_XP_PER_PRICE = float(os.getenv("SCRATCH_VENDOR_XP_PER_PRICE", "0.5"))

    # --- Bonus box: (roll above, % of price); anything lower pays the base ---
    BONUS_BANDS = ((0.95, 0.30), (0.75, 0.20), (0.45, 0.15))
    BONUS_BASE_PCT = 0.10

    # --- Ticket numbers ---
    NUMBER_POOL = 99  # tiles and winning numbers are drawn from 1..NUMBER_POOL


class BadgeConfig:
    TILE_MILESTONES = {"first_scratch": 1, "scratch_100": 100, "scratch_1000": 1000}
    CLAIM_MILESTONES = {"first_claim": 1, "claim_10": 10, "claim_100": 100}
    STREAK_MILESTONES = {"streak_5": 5, "streak_10": 10}
    BIG_WIN_MILESTONES = {"bigwin_1k": 1_000, "bigwin_10k": 10_000, "bigwin_100k": 100_000}


class StorageConfig:
    SAVE_KEY = os.getenv("SCRATCH_SAVE_KEY", "scratch-elite-save-v1")
    BACKEND = os.getenv("SCRATCH_SAVE_BACKEND", "sqlite")   # sqlite | json | memory
    DB_PATH = os.getenv("SCRATCH_DB_PATH", "scratch_elite.db")
    SAVE_DIR = Path(os.getenv("SCRATCH_SAVE_DIR", "./saves"))


# ============================================================
# LOGGING
# ============================================================

LOG_LEVEL = os.getenv("SCRATCH_LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = None) -> logging.Logger:
    """Attach a single stream handler to the `scratch` logger tree."""
    logger = logging.getLogger("scratch")
    if not logger.handlers:
        _h = logging.StreamHandler()
        _h.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(message)s", datefmt="%H:%M:%S"))
        logger.addHandler(_h)
    resolved = logging.getLevelName((level or LOG_LEVEL).upper())
    logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    return logger
