"""
SCRATCH ELITE — Tier Design Audit (EV + Monte Carlo)

Checks that each tier's prize table delivers the return its `evTarget` claims.

Theoretical ticket RTP (no upgrades, no streak, no backstop):

    tiles:  cells × (k / 99) × E[prize] / price
            every tile number is uniform on 1..99 and k winning numbers are
            distinct, so each tile matches with probability k/99
    bonus:  E[bonus amount] / price for tiers with a bonus box

Measured RTP generates real tickets through the same generator the game uses
(serials AUDIT-000001, AUDIT-000002, ...), so a pass here means the shipped
generator, not just the formula, hits the target.

Usage:
    from tools.tier_audit import TierAuditor
    auditor = TierAuditor(load_catalog())
    result = auditor.audit_tier("t03", n_tickets=20_000)
    print(result.summary())

    report = auditor.audit_all(n_tickets=5_000)
    print(report.to_json())
"""

from __future__ import annotations

import json
import statistics
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from config.settings import EconomyConfig
from sim_engine.prize_table import expected_prize, max_prize
from sim_engine.ticket_gen import bonus_amount, generate_ticket


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass
class TierAuditResult:
    """Results from auditing one tier."""
    tier_id: str
    name: str
    price: int
    n_tickets: int
    theoretical_rtp: float
    measured_rtp: float
    rtp_delta: float                 # |measured - theoretical|
    rtp_pass: bool
    tolerance: float = 0.05
    ev_target: float = 0.0
    prize_ev: float = 0.0            # E[single prize draw] / price

    hit_frequency: float = 0.0       # tickets paying anything
    win_frequency: float = 0.0       # tickets paying >= price
    max_win_mult: float = 0.0
    std_dev: float = 0.0

    win_distribution: dict = field(default_factory=dict)
    streak_analysis: dict = field(default_factory=dict)

    duration_seconds: float = 0.0
    tickets_per_second: float = 0.0
    seed: str = ""

    @property
    def target_delta(self) -> float:
        return self.theoretical_rtp - self.ev_target

    def summary(self) -> str:
        status = "✅ PASS" if self.rtp_pass else "❌ FAIL"
        lines = [
            f"═══ Tier Audit: {self.tier_id} {self.name} (${self.price}) ═══",
            f"  Tickets:     {self.n_tickets:,}",
            f"  EV target:   {self.ev_target*100:.2f}%",
            f"  Theoretical: {self.theoretical_rtp*100:.2f}%",
            f"  Measured:    {self.measured_rtp*100:.2f}%",
            f"  Delta:       {self.rtp_delta*100:.2f}%  (±{self.tolerance*100:.1f}%)",
            f"  RTP Check:   {status}",
            f"  Hit Freq:    {self.hit_frequency*100:.2f}%",
            f"  Win Freq:    {self.win_frequency*100:.2f}%",
            f"  Max Win:     {self.max_win_mult:.1f}x",
            f"  Std Dev:     {self.std_dev:.3f}",
        ]
        if self.streak_analysis:
            lines.append(f"  Max Loss Streak:   {self.streak_analysis.get('max_loss_streak', 'N/A')}")
            lines.append(f"  Backstop Triggers: {self.streak_analysis.get('backstop_triggers', 'N/A')}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "tier_id": self.tier_id,
            "name": self.name,
            "price": self.price,
            "n_tickets": self.n_tickets,
            "ev_target_pct": round(self.ev_target * 100, 2),
            "prize_ev": round(self.prize_ev, 4),
            "theoretical_rtp_pct": round(self.theoretical_rtp * 100, 4),
            "measured_rtp_pct": round(self.measured_rtp * 100, 4),
            "rtp_delta_pct": round(self.rtp_delta * 100, 4),
            "rtp_pass": self.rtp_pass,
            "tolerance_pct": self.tolerance * 100,
            "volatility": {
                "std_dev": round(self.std_dev, 4),
                "hit_frequency_pct": round(self.hit_frequency * 100, 2),
                "win_frequency_pct": round(self.win_frequency * 100, 2),
                "max_win_mult": round(self.max_win_mult, 2),
            },
            "distribution": self.win_distribution,
            "streak_analysis": self.streak_analysis,
            "performance": {
                "duration_s": round(self.duration_seconds, 2),
                "tickets_per_sec": int(self.tickets_per_second),
            },
            "seed": self.seed,
        }


@dataclass
class AuditReport:
    """Audit across every tier in the catalog."""
    results: list[TierAuditResult] = field(default_factory=list)
    overall_pass: bool = True
    generated_at: str = ""
    total_tickets: int = 0
    total_duration: float = 0.0

    def __post_init__(self):
        self.generated_at = datetime.now(timezone.utc).isoformat()

    def add(self, result: TierAuditResult):
        self.results.append(result)
        if not result.rtp_pass:
            self.overall_pass = False
        self.total_tickets += result.n_tickets
        self.total_duration += result.duration_seconds

    def summary(self) -> str:
        lines = [
            "═══════════════════════════════════════════════════",
            "    TIER AUDIT REPORT",
            "═══════════════════════════════════════════════════",
            f"  Generated: {self.generated_at}",
            f"  Total Tickets: {self.total_tickets:,}",
            f"  Overall: {'✅ ALL PASS' if self.overall_pass else '❌ SOME FAILED'}",
            "",
        ]
        for r in self.results:
            status = "✅" if r.rtp_pass else "❌"
            lines.append(
                f"  {status} {r.tier_id:5s} ${r.price:<4d} | "
                f"target={r.ev_target*100:.1f}% "
                f"theory={r.theoretical_rtp*100:.2f}% "
                f"measured={r.measured_rtp*100:.2f}% "
                f"hit={r.hit_frequency*100:.1f}%"
            )
        return "\n".join(lines)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps({
            "report_type": "Tier Audit",
            "generated_at": self.generated_at,
            "overall_pass": self.overall_pass,
            "total_tickets": self.total_tickets,
            "total_duration_s": round(self.total_duration, 2),
            "tiers": [r.to_dict() for r in self.results],
        }, indent=indent)


# ═══════════════════════════════════════════════════════════════
# Streak & Distribution Analysis
# ═══════════════════════════════════════════════════════════════

def _analyze_streaks(outcomes: list[float]) -> dict:
    """Net win/loss runs over ticket returns (multiples of price).

    backstop_triggers counts how often the pity counter would have fired
    on this sequence had it been played in order.
    """
    if not outcomes:
        return {}

    max_win = max_loss = cur_win = cur_loss = 0
    pity = triggers = 0
    for o in outcomes:
        if o >= 1:
            cur_win += 1
            cur_loss = 0
            pity = 0
            max_win = max(max_win, cur_win)
        else:
            cur_loss += 1
            cur_win = 0
            max_loss = max(max_loss, cur_loss)
            pity += 1
            if pity >= EconomyConfig.PITY_THRESHOLD:
                pity = 0
                triggers += 1

    return {
        "max_win_streak": max_win,
        "max_loss_streak": max_loss,
        "backstop_triggers": triggers,
    }


def _win_distribution(outcomes: list[float]) -> dict:
    """Percentage of tickets per return bucket."""
    buckets = {"0x": 0, "0-1x": 0, "1-2x": 0, "2-5x": 0,
               "5-10x": 0, "10-50x": 0, "50x+": 0}
    for o in outcomes:
        if o == 0:
            buckets["0x"] += 1
        elif o < 1:
            buckets["0-1x"] += 1
        elif o < 2:
            buckets["1-2x"] += 1
        elif o < 5:
            buckets["2-5x"] += 1
        elif o < 10:
            buckets["5-10x"] += 1
        elif o < 50:
            buckets["10-50x"] += 1
        else:
            buckets["50x+"] += 1
    n = len(outcomes)
    return {k: round(v / n * 100, 2) for k, v in buckets.items()}


# ═══════════════════════════════════════════════════════════════
# Auditor
# ═══════════════════════════════════════════════════════════════

def bonus_ev(price: int) -> float:
    """Expected bonus-box amount for a ticket at `price` (exact over the roll bands)."""
    bands = list(EconomyConfig.BONUS_BANDS)
    ev = 0.0
    upper = 1.0
    for above, _pct in bands:
        # roll in (above, upper] pays this band
        ev += (upper - above) * bonus_amount(price, (above + upper) / 2)
        upper = above
    ev += upper * bonus_amount(price, 0.0)
    return ev


class TierAuditor:
    """Checks tier math against generated tickets."""

    def __init__(self, catalog, tolerance: float = 0.05, serial_prefix: str = "AUDIT"):
        """
        Args:
            catalog: TierCatalog to audit
            tolerance: Maximum allowed |measured − theoretical| RTP
            serial_prefix: Serials are <prefix>-000001, <prefix>-000002, ...
        """
        self.catalog = catalog
        self.tolerance = tolerance
        self.serial_prefix = serial_prefix

    def theoretical_rtp(self, tier_id: str) -> float:
        tier = self.catalog.get_tier_by_id(tier_id)
        if tier is None or tier.price <= 0:
            return 0.0
        pool = EconomyConfig.NUMBER_POOL
        k = min(tier.mechanics.winning_numbers, pool)
        e_prize = expected_prize(self.catalog.normalized_table(tier_id))
        rtp = tier.mechanics.cells * (k / pool) * e_prize / tier.price
        if tier.mechanics.has_bonus_box:
            rtp += bonus_ev(tier.price) / tier.price
        return rtp

    def ticket_return(self, tier_id: str, serial_id: str) -> int:
        """Face value of one generated ticket: winning tiles + bonus box."""
        ticket = generate_ticket(self.catalog, tier_id, serial_id)
        bonus = ticket.bonus.amount if ticket.bonus else 0
        return ticket.winning_sum() + bonus

    def audit_tier(self, tier_id: str, n_tickets: int = 10_000) -> TierAuditResult:
        tier = self.catalog.get_tier_by_id(tier_id)
        if tier is None:
            raise KeyError(f"Unknown tier: {tier_id}")
        price = tier.price or 1

        t0 = time.time()
        outcomes = []
        for i in range(1, n_tickets + 1):
            payout = self.ticket_return(tier_id, f"{self.serial_prefix}-{i:06d}")
            outcomes.append(payout / price)
        duration = time.time() - t0

        theoretical = self.theoretical_rtp(tier_id)
        measured = sum(outcomes) / n_tickets if n_tickets else 0.0
        delta = abs(measured - theoretical)

        return TierAuditResult(
            tier_id=tier_id,
            name=tier.name,
            price=tier.price,
            n_tickets=n_tickets,
            theoretical_rtp=theoretical,
            measured_rtp=measured,
            rtp_delta=delta,
            rtp_pass=delta <= self.tolerance,
            tolerance=self.tolerance,
            ev_target=tier.ev_target,
            prize_ev=self.catalog.compute_ev(tier_id),
            hit_frequency=sum(1 for o in outcomes if o > 0) / n_tickets if n_tickets else 0,
            win_frequency=sum(1 for o in outcomes if o >= 1) / n_tickets if n_tickets else 0,
            max_win_mult=max(outcomes) if outcomes else 0,
            std_dev=statistics.stdev(outcomes) if len(outcomes) > 1 else 0,
            win_distribution=_win_distribution(outcomes) if outcomes else {},
            streak_analysis=_analyze_streaks(outcomes),
            duration_seconds=duration,
            tickets_per_second=n_tickets / duration if duration > 0 else 0,
            seed=f"{tier_id}:{self.serial_prefix}-*:ticket",
        )

    def audit_all(self, n_tickets: int = 5_000) -> AuditReport:
        report = AuditReport()
        for tier in self.catalog.get_tiers():
            report.add(self.audit_tier(tier.id, n_tickets))
        return report

    def design_table(self) -> list[dict]:
        """Closed-form numbers for every tier (no simulation)."""
        rows = []
        for t in self.catalog.get_tiers():
            table = self.catalog.normalized_table(t.id)
            rows.append({
                "tier_id": t.id,
                "name": t.name,
                "set": t.set_name,
                "price": t.price,
                "grid": f"{t.mechanics.cols}x{t.mechanics.rows}",
                "winning_numbers": t.mechanics.winning_numbers,
                "ev_target": t.ev_target,
                "prize_ev": self.catalog.compute_ev(t.id),
                "theoretical_rtp": self.theoretical_rtp(t.id),
                "top_prize": max_prize(table),
            })
        return rows
