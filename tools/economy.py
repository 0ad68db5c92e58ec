"""
SCRATCH ELITE — Economy Engine

The one stateful object in the game. A ScratchEconomy owns a ProgressionState
and mutates it only through the methods below. Collaborators are injected:

  catalog   TierCatalog            tiers + prize tables
  upgrades  UpgradeBook            upgrade definitions
  levels    LevelTable             vendor level thresholds
  store     SaveStore              load(key) / save(key, data)
  events    EventBus               advisory notifications
  clock     () -> int              epoch milliseconds (injectable for tests)

Every public mutator runs inside transaction(): a deep snapshot is taken on
entry; on an exception the snapshot is restored, queued events are dropped
and nothing is saved. On success the full state is written through to the
store once (at the outermost transaction) and queued events are published.

Invalid arguments and insufficient resources never raise: the method returns
False / None / [] without mutating and emits a `notice` event.

Claim pipeline:
    open_ticket → reveal_at … → claim_tickets → on_ticket_claimed → bump_streak

Usage:
    from tools.economy import ScratchEconomy
    eco = ScratchEconomy.from_config()
    [item] = eco.purchase_tickets("t01", 1)
    eco.reveal_at(item.id, 0)
    ...
    eco.claim_tickets([item.id])
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from config.settings import DATA_DIR, EconomyConfig, StorageConfig
from sim_engine.catalog import TierCatalog, load_catalog
from sim_engine.progression import LevelTable
from sim_engine.serials import next_serial
from sim_engine.streak import StreakMetrics, StreakState, bump_streak, decay_streak, streak_metrics
from sim_engine.ticket_gen import GeneratedTicket, apply_backstop, backstop_floor, generate_ticket, reveal_indices
from tools.badges import BadgeWatcher, get_badge_defs, get_earned_badges
from tools.events import EventBus, GameEvent
from tools.game_state import (
    ClaimSummary, DailyRecord, InventoryItem, ProgressionState, parse_imported_state,
)
from tools.upgrades import UpgradeBook, UpgradeEffects

logger = logging.getLogger("scratch.economy")


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _finite(v) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


@dataclass
class ClaimMeta:
    clear_ms: Optional[int] = None
    tile_prizes: list = field(default_factory=list)
    price_override: Optional[int] = None


@dataclass
class UnlockStatus:
    need_lvl: int
    need_tok: int
    need_win: int
    has_lvl: bool
    has_tok: bool
    has_win: bool
    ok: bool

    def to_dict(self) -> dict:
        return asdict(self)


class ScratchEconomy:

    def __init__(self, catalog: TierCatalog, upgrades: UpgradeBook, levels: LevelTable,
                 store=None, events: EventBus = None, clock: Callable[[], int] = None,
                 save_key: str = None):
        from config.database import MemorySaveStore

        self.catalog = catalog
        self.upgrades = upgrades
        self.levels = levels
        self.store = store if store is not None else MemorySaveStore()
        self.events = events if events is not None else EventBus()
        self.clock = clock or _wall_clock_ms
        self.save_key = save_key or StorageConfig.SAVE_KEY

        self._lock = threading.RLock()
        self._depth = 0
        self._queued: list[GameEvent] = []

        self.state = ProgressionState.from_save(
            self.store.load(self.save_key), today=self.today(), level_for_xp=self.levels.level_for_xp,
        )
        self._badge_names = {d.id: d.name for d in get_badge_defs(self.catalog)}
        self.badge_watcher = BadgeWatcher(self.get_earned_badges, self._announce_badge, self._badge_names)
        self.badge_watcher.baseline()
        logger.info(
            f"Economy ready: ${self.state.money} cash, {self.state.tokens} tokens, "
            f"vendor L{self.state.vendor_level}, {len(self.state.inventory)} items"
        )

    @classmethod
    def from_config(cls, data_dir=None, store=None, **kw) -> "ScratchEconomy":
        """Wire the engine from config/data (or `data_dir`) and the configured save backend."""
        from pathlib import Path
        from config.database import get_store

        data_dir = Path(data_dir or DATA_DIR)
        return cls(
            catalog=load_catalog(data_dir),
            upgrades=UpgradeBook.from_file(data_dir / "Upgrades.json"),
            levels=LevelTable.from_file(data_dir / "Progression.json"),
            store=store if store is not None else get_store(),
            **kw,
        )

    # ═══════════════════════════════════════════════════════════
    # Plumbing: time, transactions, events
    # ═══════════════════════════════════════════════════════════

    def now_ms(self) -> int:
        return int(self.clock())

    def today(self) -> str:
        return datetime.fromtimestamp(self.now_ms() / 1000, tz=timezone.utc).date().isoformat()

    @contextmanager
    def transaction(self):
        """All-or-nothing mutation scope. Nested scopes join the outermost one."""
        with self._lock:
            outer = self._depth == 0
            snapshot = self.state.model_copy(deep=True) if outer else None
            self._depth += 1
            try:
                yield self.state
            except BaseException:
                self._depth -= 1
                if outer:
                    self.state = snapshot
                    dropped = len(self._queued)
                    self._queued = []
                    logger.warning(f"Transaction rolled back ({dropped} queued event(s) dropped)")
                raise
            self._depth -= 1
            if outer:
                self.save_now()
                queued, self._queued = self._queued, []
                for ev in queued:
                    self.events.publish(ev)

    def _emit(self, event_type: str, **data):
        ev = GameEvent(event_type, data)
        if self._depth > 0:
            self._queued.append(ev)
        else:
            self.events.publish(ev)

    def _notice(self, message: str, level: str = "warn") -> None:
        logger.info(f"notice[{level}]: {message}")
        self._emit("notice", level=level, message=message)

    def save_now(self) -> bool:
        ok = self.store.save(self.save_key, self.state.to_dict())
        if not ok:
            logger.warning("Save failed; in-memory state remains authoritative")
        return ok

    # ═══════════════════════════════════════════════════════════
    # Catalog reads
    # ═══════════════════════════════════════════════════════════

    def get_tiers(self):
        return self.catalog.get_tiers()

    def get_tier_by_id(self, tier_id: str):
        return self.catalog.get_tier_by_id(tier_id)

    # ═══════════════════════════════════════════════════════════
    # Currency
    # ═══════════════════════════════════════════════════════════

    def add_cash(self, amount) -> bool:
        if not _finite(amount):
            return False
        with self.transaction() as s:
            s.money = max(0, s.money + math.floor(amount))
        return True

    def can_spend(self, amount) -> bool:
        return _finite(amount) and self.state.money >= math.floor(amount)

    def spend_cash(self, amount) -> bool:
        if not _finite(amount):
            return False
        a = math.floor(amount)
        if a < 0 or self.state.money < a:
            return False
        with self.transaction() as s:
            s.money -= a
        return True

    def add_tokens(self, n) -> int:
        """Returns the number of tokens actually added."""
        if not _finite(n) or n <= 0:
            return 0
        with self.transaction() as s:
            before = s.tokens
            s.tokens = max(0, before + math.floor(n))
            added = s.tokens - before
            if added:
                self._emit("tokens_added", n=added, total=s.tokens)
        return added

    def spend_tokens(self, n) -> bool:
        if not _finite(n) or n < 0:
            return False
        n = math.floor(n)
        if self.state.tokens < n:
            return False
        if n == 0:
            return True
        with self.transaction() as s:
            s.tokens -= n
            self._emit("tokens_spent", n=n, total=s.tokens)
        return True

    def add_lifetime_winnings(self, amount) -> None:
        if not _finite(amount):
            return
        with self.transaction() as s:
            s.lifetime_winnings = max(0, s.lifetime_winnings + max(0, math.floor(amount)))

    def add_lifetime_spent(self, amount) -> None:
        if not _finite(amount):
            return
        with self.transaction() as s:
            s.stats.lifetime_spent = max(0, s.stats.lifetime_spent + max(0, math.floor(amount)))

    # ═══════════════════════════════════════════════════════════
    # Vendor level
    # ═══════════════════════════════════════════════════════════

    def add_vendor_xp(self, xp) -> int:
        """Add XP; on a level increase the streak resets. Returns the (possibly new) level."""
        if not _finite(xp):
            return self.state.vendor_level
        with self.transaction() as s:
            s.vendor_xp += max(0, math.floor(xp))
            prev = s.vendor_level
            new_level = self.levels.level_for_xp(s.vendor_xp)
            if new_level > prev:
                s.vendor_level = new_level
                self.reset_streak()
                self._emit("vendor_level_up", **{"from": prev, "to": new_level})
                logger.info(f"Vendor level up: {prev} → {new_level}")
        return self.state.vendor_level

    def get_level_progress(self) -> dict:
        lvl = self.state.vendor_level
        return {
            "level": lvl,
            "xp": self.state.vendor_xp,
            "next_level_xp": self.levels.next_level_xp(lvl),
        }

    # ═══════════════════════════════════════════════════════════
    # Streak
    # ═══════════════════════════════════════════════════════════

    def _decay_streak(self) -> None:
        self.state.streak = decay_streak(self.state.streak, self.now_ms())

    def reset_streak(self) -> None:
        with self.transaction() as s:
            s.streak = StreakState()

    def bump_streak(self) -> StreakState:
        with self.transaction() as s:
            s.streak = bump_streak(s.streak, self.now_ms())
            s.stats.best_streak = max(s.stats.best_streak, s.streak.count)
        return self.state.streak

    def get_streak_metrics(self) -> StreakMetrics:
        self._decay_streak()
        return streak_metrics(self.state.streak, self.now_ms())

    def get_streak_factor(self) -> float:
        return self.get_streak_metrics().factor

    # ═══════════════════════════════════════════════════════════
    # Unlocks
    # ═══════════════════════════════════════════════════════════

    def is_tier_unlocked(self, tier_id: str) -> bool:
        if self.state.flags.debug_unlock_all:
            return True
        return bool(self.state.unlocks.get(tier_id))

    def is_tier_available(self, tier_id: str) -> bool:
        """Purchasable: explicitly unlocked, or a tier with no unlock requirements."""
        tier = self.get_tier_by_id(tier_id)
        if tier is None:
            return False
        return self.is_tier_unlocked(tier_id) or tier.unlock.is_free

    def get_unlock_status(self, tier_id: str) -> Optional[UnlockStatus]:
        tier = self.get_tier_by_id(tier_id)
        if tier is None:
            return None
        need_lvl = tier.unlock.vendor_level or 1
        need_tok = tier.unlock.tokens or 0
        need_win = tier.unlock.lifetime_winnings or 0
        if self.state.flags.debug_unlock_all:
            return UnlockStatus(need_lvl, need_tok, need_win, True, True, True, True)
        has_lvl = self.state.vendor_level >= need_lvl
        has_tok = self.state.tokens >= need_tok
        has_win = self.state.lifetime_winnings >= need_win
        return UnlockStatus(need_lvl, need_tok, need_win, has_lvl, has_tok, has_win,
                            has_lvl and has_tok and has_win)

    def unlock_tier(self, tier_id: str) -> bool:
        status = self.get_unlock_status(tier_id)
        if status is None:
            self._notice(f"Unknown tier {tier_id!r}")
            return False
        if self.state.unlocks.get(tier_id):
            return True
        if not status.ok:
            self._notice(f"Requirements not met for {tier_id}")
            return False
        with self.transaction() as s:
            if status.need_tok > 0 and not s.flags.debug_unlock_all:
                if not self.spend_tokens(status.need_tok):
                    self._notice("Not enough tokens.")
                    return False
            s.unlocks[tier_id] = True
            self._emit("tier_unlocked", tierId=tier_id)
        logger.info(f"Tier unlocked: {tier_id}")
        return True

    def set_debug_unlock_all(self, enabled: bool) -> None:
        with self.transaction() as s:
            s.flags.debug_unlock_all = bool(enabled)

    # ═══════════════════════════════════════════════════════════
    # Pity / Backstop
    # ═══════════════════════════════════════════════════════════

    def is_backstop_ready(self) -> bool:
        return self.state.backstop_ready

    def consume_backstop_flag(self) -> bool:
        if not self.state.backstop_ready:
            return False
        with self.transaction() as s:
            s.backstop_ready = False
        return True

    @staticmethod
    def get_backstop_floor_pct() -> float:
        return EconomyConfig.BACKSTOP_FLOOR_PCT

    # ═══════════════════════════════════════════════════════════
    # Upgrades
    # ═══════════════════════════════════════════════════════════

    def get_upgrade_level(self, upgrade_id: str) -> int:
        return self.upgrades.get_level(self.state.upgrades, upgrade_id)

    def get_effects(self) -> UpgradeEffects:
        return self.upgrades.effects(self.state.upgrades)

    def next_cost(self, upgrade_id: str) -> Optional[int]:
        return self.upgrades.next_cost(self.state.upgrades, upgrade_id)

    def can_buy(self, upgrade_id: str) -> bool:
        return self.upgrades.can_buy(self.state.upgrades, self.state.money, upgrade_id)

    def buy_upgrade(self, upgrade_id: str) -> bool:
        """Buy exactly one level. False (no mutation) when unknown, capped, unaffordable or gated."""
        d = self.upgrades.get_def(upgrade_id)
        if d is None:
            self._notice(f"Unknown upgrade {upgrade_id!r}")
            return False
        cost = self.next_cost(upgrade_id)
        if cost is None:
            self._notice(f"{d.name} is already at max level.", level="info")
            return False
        missing = self.upgrades.missing_requirements(self.state.upgrades, upgrade_id)
        if missing:
            self._notice(f"{d.name} requires {missing}")
            return False
        if self.state.money < cost:
            self._notice("Not enough Cash.")
            return False
        with self.transaction() as s:
            s.money -= cost
            s.upgrades[upgrade_id] = self.get_upgrade_level(upgrade_id) + 1
            self._emit("upgrade_bought", id=upgrade_id, level=s.upgrades[upgrade_id], cost=cost)
        return True

    def get_discounted_total(self, unit_price: int, qty: int) -> int:
        return self.upgrades.discounted_total(self.state.upgrades, unit_price, qty)

    def get_prize_multiplier(self) -> float:
        return self.upgrades.prize_multiplier(self.state.upgrades)

    def get_scratch_mode(self) -> str:
        return self.upgrades.scratch_mode(self.state.upgrades)

    def get_scratch_parallel_max(self) -> int:
        return self.upgrades.scratch_parallel_max(self.state.upgrades)

    # ═══════════════════════════════════════════════════════════
    # Inventory: serials, purchase
    # ═══════════════════════════════════════════════════════════

    def next_serial_for_tier(self, tier_id: str) -> str:
        tier = self.get_tier_by_id(tier_id)
        with self.transaction() as s:
            return next_serial(s.serial_counters, tier.name if tier else tier_id)

    def get_inventory(self) -> list[InventoryItem]:
        return list(self.state.inventory)

    def get_item(self, item_id: str) -> Optional[InventoryItem]:
        return self.state.item(item_id)

    def add_tickets(self, tier_id: str, qty: int) -> list[InventoryItem]:
        """Create `qty` sealed items without charging for them."""
        if self.get_tier_by_id(tier_id) is None:
            self._notice(f"Unknown tier {tier_id!r}")
            return []
        if not isinstance(qty, int) or isinstance(qty, bool) or qty < 1:
            self._notice("Enter a quantity first.")
            return []
        created = []
        with self.transaction() as s:
            ts = self.now_ms() // 1000
            for _ in range(qty):
                item = InventoryItem(
                    id=f"inv_{uuid.uuid4().hex}",
                    tier_id=tier_id,
                    serial_id=self.next_serial_for_tier(tier_id),
                    created_at=ts,
                    state="sealed",
                )
                s.inventory.append(item)
                created.append(item)
        return created

    def purchase_tickets(self, tier_id: str, qty: int) -> list[InventoryItem]:
        tier = self.get_tier_by_id(tier_id)
        if tier is None:
            self._notice(f"Unknown tier {tier_id!r}")
            return []
        if not isinstance(qty, int) or isinstance(qty, bool) or qty < 1:
            self._notice("Enter a quantity first.")
            return []
        if not self.is_tier_available(tier_id):
            self._notice(f"{tier.name} is locked.")
            return []
        cost = self.get_discounted_total(tier.price, qty)
        if self.state.money < cost:
            self._notice("Not enough Cash.")
            return []

        with self.transaction() as s:
            self.add_lifetime_spent(cost)
            s.money -= cost
            self.add_vendor_xp(round_half_up(tier.price * EconomyConfig.VENDOR_XP_PER_PRICE * qty))
            items = self.add_tickets(tier_id, qty)
            self._emit("tickets_purchased", tierId=tier_id, qty=qty, cost=cost)
        logger.info(f"Purchased {qty}× {tier_id} for ${cost}")
        self.scan_badges()
        return items

    # ═══════════════════════════════════════════════════════════
    # Scratching
    # ═══════════════════════════════════════════════════════════

    def open_ticket(self, item_id: str) -> Optional[GeneratedTicket]:
        """Attach the generated ticket (once) and apply a pending backstop before any reveal."""
        item = self.get_item(item_id)
        if item is None:
            self._notice(f"Unknown item {item_id!r}")
            return None
        if item.state == "claimed":
            return item.ticket
        tier = self.get_tier_by_id(item.tier_id)
        if tier is None:
            self._notice(f"Item {item_id} references unknown tier {item.tier_id!r}")
            return None

        with self.transaction() as s:
            if item.ticket is None or item.ticket.is_empty:
                item.ticket = generate_ticket(self.catalog, item.tier_id, item.serial_id)
            ticket = item.ticket
            untouched = not any(t.revealed for t in ticket.tiles)
            if s.backstop_ready and untouched and not ticket.backstop_applied and not ticket.is_empty:
                rewritten = apply_backstop(ticket, tier.price)
                self.consume_backstop_flag()
                if rewritten:
                    floor = backstop_floor(tier.price)
                    self._emit("backstop_applied", itemId=item_id, floor=floor)
                    self._notice(f"Backstop active: floor ${floor}", level="info")
        return item.ticket

    def get_scratch_group(self, item_id: str) -> list[InventoryItem]:
        """The item plus up to (parallel max − 1) other sealed items of the same tier."""
        item = self.get_item(item_id)
        if item is None or item.state == "claimed":
            return []
        limit = self.get_scratch_parallel_max()
        group = [item]
        for other in self.state.inventory:
            if len(group) >= limit:
                break
            if other.id != item.id and other.tier_id == item.tier_id and other.state == "sealed":
                group.append(other)
        with self.transaction():
            for it in group:
                self.open_ticket(it.id)
        return group

    def reveal_at(self, item_id: str, index: int) -> list[int]:
        """Reveal the current scratch-mode footprint around `index`; returns newly revealed indices."""
        item = self.get_item(item_id)
        if item is None or item.state == "claimed":
            return []
        tier = self.get_tier_by_id(item.tier_id)
        if tier is None:
            self._notice(f"Item {item_id} references unknown tier {item.tier_id!r}")
            return []
        ticket = item.ticket or self.open_ticket(item_id)
        if ticket is None or ticket.is_empty:
            return []
        cols, rows = tier.mechanics.cols, tier.mechanics.rows
        if not isinstance(index, int) or not 0 <= index < len(ticket.tiles):
            return []

        footprint = reveal_indices(self.get_scratch_mode(), index, cols, rows)
        fresh = [i for i in footprint if i < len(ticket.tiles) and not ticket.tiles[i].revealed]
        if not fresh:
            return []

        with self.transaction() as s:
            item = s.item(item_id)
            ticket = item.ticket
            wins = set(ticket.winning)
            if ticket.first_reveal_at is None:
                ticket.first_reveal_at = self.now_ms()
            for i in fresh:
                tile = ticket.tiles[i]
                tile.revealed = True
                tile.win = tile.num in wins
            s.stats.tiles_scratched += len(fresh)
            if item.state == "sealed":
                item.state = "scratched"
        self.scan_badges()
        return fresh

    def reveal_bonus(self, item_id: str) -> Optional[int]:
        item = self.get_item(item_id)
        if item is None or item.state == "claimed":
            return None
        ticket = item.ticket or self.open_ticket(item_id)
        if ticket is None or ticket.bonus is None:
            return None
        if not ticket.bonus.revealed:
            with self.transaction() as s:
                s.item(item_id).ticket.bonus.revealed = True
        return self.get_item(item_id).ticket.bonus.amount

    def is_fully_revealed(self, item_id: str) -> bool:
        item = self.get_item(item_id)
        return bool(item and item.ticket and item.ticket.all_revealed())

    # ═══════════════════════════════════════════════════════════
    # Claiming
    # ═══════════════════════════════════════════════════════════

    def claim_tickets(self, item_ids: list) -> list[ClaimSummary]:
        """Claim a group of fully revealed tickets; all or nothing.

        Multipliers are captured once, before any claim, so the streak bump
        from the first ticket does not boost the rest of the group.
        """
        ids = list(item_ids or [])
        if not ids or len(set(ids)) != len(ids):
            return []
        for iid in ids:
            item = self.get_item(iid)
            if item is None or item.state == "claimed" or not self.is_fully_revealed(iid):
                self._notice("Reveal every tile before claiming.")
                return []

        upg_mult = self.get_prize_multiplier()
        streak_mult = self.get_streak_factor()
        summaries = []

        with self.transaction() as s:
            for iid in ids:
                item = s.item(iid)
                ticket = item.ticket
                tier = self.get_tier_by_id(item.tier_id)
                price = tier.price if tier else 0

                base_tiles = ticket.winning_sum()
                tiles_payout = math.floor(base_tiles * upg_mult * streak_mult)
                bonus = ticket.bonus.amount if ticket.bonus and ticket.bonus.revealed else 0
                payout = tiles_payout + bonus

                if payout > 0:
                    self.add_cash(payout)

                now = self.now_ms()
                started = ticket.first_reveal_at or now
                item.summary = ClaimSummary(
                    payout=payout, price=price, net=payout - price, bonus=bonus,
                    upg_mult=upg_mult, streak_mult=streak_mult,
                    winning=list(ticket.winning), claimed_at=now,
                )
                self.on_ticket_claimed(item.tier_id, payout, ClaimMeta(
                    clear_ms=max(0, now - started),
                    tile_prizes=ticket.won_prizes(),
                    price_override=price,
                ))
                item.state = "claimed"
                summaries.append(item.summary)

        total = sum(x.payout for x in summaries)
        logger.info(f"Claimed {len(summaries)} ticket(s) for ${total} (×{upg_mult:.2f} upg, ×{streak_mult:.2f} streak)")
        self.scan_badges()
        return summaries

    def on_ticket_claimed(self, tier_id: str, payout, meta: ClaimMeta = None) -> bool:
        """Apply every side effect of one claim, in order, as a single transaction."""
        meta = meta or ClaimMeta()
        tier = self.get_tier_by_id(tier_id)
        if not _finite(payout) or payout < 0:
            self._notice(f"Invalid payout {payout!r}")
            return False
        if tier is None and meta.price_override is None:
            self._notice(f"Unknown tier {tier_id!r}")
            return False
        price = meta.price_override if meta.price_override is not None else tier.price
        payout = math.floor(payout)

        with self.transaction() as s:
            self.add_lifetime_winnings(payout)

            if not s.first_claims.get(tier_id):
                s.first_claims[tier_id] = True
                self.add_tokens(EconomyConfig.FIRST_CLAIM_TOKENS)

            today = self.today()
            if s.daily.day != today:
                s.daily = DailyRecord(day=today)
            s.daily.claimed += 1
            if not s.daily.awarded and s.daily.claimed >= EconomyConfig.DAILY_TOKEN_CLAIMS:
                s.daily.awarded = True
                self.add_tokens(1)

            s.claims_since_token += 1
            if s.claims_since_token >= EconomyConfig.CLAIMS_PER_TOKEN:
                awards = s.claims_since_token // EconomyConfig.CLAIMS_PER_TOKEN
                s.claims_since_token -= awards * EconomyConfig.CLAIMS_PER_TOKEN
                self.add_tokens(awards)

            st = s.stats
            st.tickets_scratched += 1
            st.biggest_win = max(st.biggest_win, payout)
            if _finite(meta.clear_ms) and meta.clear_ms >= 0:
                clear = math.floor(meta.clear_ms)
                st.fastest_clear_ms = clear if st.fastest_clear_ms is None else min(st.fastest_clear_ms, clear)

            prev_pity = s.pity_count
            is_win = payout >= price
            if is_win:
                st.wins += 1
                if prev_pity > 0:
                    st.pity_avoids += 1
                st.current_loss_streak = 0
            else:
                st.losses += 1
                st.current_loss_streak += 1
                st.longest_loss_streak = max(st.longest_loss_streak, st.current_loss_streak)

            for p in meta.tile_prizes or []:
                if _finite(p):
                    k = str(max(0, math.floor(p)))
                    st.tile_prize_counts[k] = st.tile_prize_counts.get(k, 0) + 1

            if not is_win:
                s.pity_count += 1
                if s.pity_count >= EconomyConfig.PITY_THRESHOLD:
                    s.pity_count = 0
                    s.backstop_ready = True
                    logger.info("Pity threshold reached; backstop armed")
            else:
                s.pity_count = 0

            self.bump_streak()
            self._emit("ticket_claimed", tierId=tier_id, payout=payout, isWin=is_win)
        return True

    # ═══════════════════════════════════════════════════════════
    # Badges
    # ═══════════════════════════════════════════════════════════

    def get_badge_defs(self):
        return get_badge_defs(self.catalog)

    def get_earned_badges(self) -> dict:
        return get_earned_badges(self.state, self.catalog)

    def has_badge(self, badge_id: str) -> bool:
        return self.state.badges.get(badge_id, 0) > 0

    def award_badge(self, badge_id: str) -> bool:
        """Store a manual award once. False when already held."""
        if not badge_id or self.has_badge(badge_id):
            return False
        with self.transaction() as s:
            s.badges[badge_id] = self.now_ms()
        self.scan_badges()
        return True

    def scan_badges(self) -> list[str]:
        return self.badge_watcher.scan()

    def _announce_badge(self, badge_id: str, name: str):
        self._emit("badge_earned", id=badge_id, name=name)

    # ═══════════════════════════════════════════════════════════
    # Save management
    # ═══════════════════════════════════════════════════════════

    def export_state_text(self) -> str:
        return self.state.to_json(indent=2)

    def import_state_text(self, text: str) -> bool:
        raw = parse_imported_state(text)
        if raw is None:
            self._notice("Import failed: not a JSON object.")
            return False
        with self.transaction():
            self.state = ProgressionState.from_save(
                raw, today=self.today(), level_for_xp=self.levels.level_for_xp,
            )
        self.badge_watcher.baseline()
        logger.info(f"Imported save: {len(self.state.inventory)} items")
        return True

    def reset_and_save(self) -> None:
        with self.transaction():
            self.state = ProgressionState.fresh(self.today())
        self.badge_watcher.baseline()
        logger.info("State reset")

    def summary(self) -> dict:
        out = self.state.summary()
        out["streak_percent"] = self.get_streak_metrics().display_percent
        out["scratch_mode"] = self.get_scratch_mode()
        out["effects"] = self.get_effects().to_dict()
        return out
