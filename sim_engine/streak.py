"""
SCRATCH ELITE — Claim Streak (pure state machine)

A streak is {expiresAt, steps, count}. Every claim bumps count and pushes
expiresAt one window past "now". Nothing ticks in the background: callers run
decay_streak(streak, now_ms) before every read or write, and an expired streak
collapses to zero at that point.

Bonus percent is quantized, not smooth. The HUD bar for stage s has width
BASE_WIDTHS[s] and drains with the remaining window ratio; the bonus snaps
between the configured points as the fill crosses each threshold:

    stage 3:  fill ≥ .80 → 5%   ≥ .40 → 4%   > 0 → 2%
    stage 2:  fill ≥ .32 → 4%   > 0 → 2%
    stage 1:  fill > 0 → 2%
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from pydantic import BaseModel, ConfigDict, Field

from config.settings import EconomyConfig


class StreakState(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    expires_at: int = Field(0, alias="expiresAt")      # epoch ms
    steps: int = 0
    count: int = 0


def decay_streak(streak: StreakState, now_ms: int) -> StreakState:
    """Return a zeroed streak once `now_ms` is past expiry, else the streak unchanged."""
    if now_ms > (streak.expires_at or 0):
        return StreakState()
    return streak


def stage_for_count(count: int) -> int:
    s1, s2, s3 = EconomyConfig.STREAK_STAGE_CLAIMS
    if count >= s3:
        return 3
    if count >= s2:
        return 2
    if count >= s1:
        return 1
    return 0


def bump_streak(streak: StreakState, now_ms: int) -> StreakState:
    streak = decay_streak(streak, now_ms)
    count = streak.count + 1
    return StreakState(
        expires_at=now_ms + EconomyConfig.STREAK_WINDOW_MS,
        steps=stage_for_count(count),
        count=count,
    )


def snap_percent(stage: int, fill_width: float) -> int:
    for threshold, pct in EconomyConfig.STREAK_SNAP_POINTS.get(stage, ()):
        if threshold > 0 and fill_width >= threshold:
            return pct
        if threshold <= 0 and fill_width > 0:
            return pct
    return 0


@dataclass
class StreakMetrics:
    steps: int
    count: int
    expires_at: int
    ms_remaining: int
    ratio: float
    base_width: float
    fill_width: float
    display_percent: int
    factor: float

    def to_dict(self) -> dict:
        return asdict(self)


def streak_metrics(streak: StreakState, now_ms: int) -> StreakMetrics:
    """HUD view of a streak. Decays first, so an expired streak reads as all zeros."""
    streak = decay_streak(streak, now_ms)
    window = EconomyConfig.STREAK_WINDOW_MS
    ms_remaining = max(0, streak.expires_at - now_ms)
    ratio = max(0.0, min(1.0, ms_remaining / window)) if window > 0 else 0.0
    stage = max(0, min(3, streak.steps))
    base_width = EconomyConfig.STREAK_BASE_WIDTHS.get(stage, 0.0)
    fill_width = base_width * ratio
    pct = snap_percent(stage, fill_width)
    return StreakMetrics(
        steps=stage,
        count=streak.count,
        expires_at=streak.expires_at,
        ms_remaining=ms_remaining,
        ratio=ratio,
        base_width=base_width,
        fill_width=fill_width,
        display_percent=pct,
        factor=1 + pct / 100,
    )


def seed_count_from_steps(steps: int) -> int:
    """Older saves stored only `steps`; map each stage to the claim count that reaches it."""
    steps = max(0, steps or 0)
    if steps >= 3:
        return EconomyConfig.STREAK_STAGE_CLAIMS[2]
    if steps == 2:
        return EconomyConfig.STREAK_STAGE_CLAIMS[1]
    if steps == 1:
        return EconomyConfig.STREAK_STAGE_CLAIMS[0]
    return 0
