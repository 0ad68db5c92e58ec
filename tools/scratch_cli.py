#!/usr/bin/env python3
"""
SCRATCH ELITE — Developer CLI

Usage:
    python -m tools.scratch_cli tiers
    python -m tools.scratch_cli ticket t01 LUCPEN-000001
    python -m tools.scratch_cli audit --tier t03 --tickets 20000
    python -m tools.scratch_cli audit --json
    python -m tools.scratch_cli state --backend json
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.catalog_schema import CatalogError
from config.settings import configure_logging
from sim_engine.catalog import load_catalog
from sim_engine.ticket_gen import generate_ticket
from tools.tier_audit import TierAuditor

console = Console()


def cmd_tiers(args) -> int:
    catalog = load_catalog(args.data_dir)
    auditor = TierAuditor(catalog)
    table = Table(title="Ticket Tiers")
    for col in ("id", "name", "set", "price", "grid", "k", "EV target", "prize EV", "ticket RTP", "top prize"):
        table.add_column(col)
    for row in auditor.design_table():
        table.add_row(
            row["tier_id"], row["name"], row["set"], f"${row['price']}", row["grid"],
            str(row["winning_numbers"]), f"{row['ev_target']*100:.1f}%",
            f"{row['prize_ev']:.2f}x", f"{row['theoretical_rtp']*100:.2f}%", f"${row['top_prize']:,}",
        )
    console.print(table)
    return 0


def cmd_ticket(args) -> int:
    catalog = load_catalog(args.data_dir)
    tier = catalog.get_tier_by_id(args.tier_id)
    if tier is None:
        console.print(f"[red]Unknown tier: {args.tier_id}[/red]")
        return 1
    ticket = generate_ticket(catalog, args.tier_id, args.serial)
    if args.json:
        print(ticket.model_dump_json(by_alias=True, indent=2))
        return 0

    grid = Table(show_header=False, show_lines=True)
    for _ in range(tier.mechanics.cols):
        grid.add_column(justify="center")
    cols = tier.mechanics.cols
    for r in range(tier.mechanics.rows):
        cells = []
        for t in ticket.tiles[r * cols:(r + 1) * cols]:
            style = "bold green" if t.win else "dim"
            cells.append(f"[{style}]{t.num:>2}\n${t.prize}[/{style}]")
        grid.add_row(*cells)

    bonus = f"\nBonus box: ${ticket.bonus.amount}" if ticket.bonus else ""
    console.print(Panel(
        f"[bold]{tier.name}[/bold] ({tier.id}, ${tier.price})  serial {args.serial}\n"
        f"Winning numbers: {', '.join(str(n) for n in ticket.winning)}\n"
        f"Winning tiles pay: ${ticket.total_prize}{bonus}",
        title="🎟️  Ticket", border_style="cyan",
    ))
    console.print(grid)
    return 0


def cmd_audit(args) -> int:
    catalog = load_catalog(args.data_dir)
    auditor = TierAuditor(catalog, tolerance=args.tolerance)
    if args.tier:
        if catalog.get_tier_by_id(args.tier) is None:
            console.print(f"[red]Unknown tier: {args.tier}[/red]")
            return 1
        result = auditor.audit_tier(args.tier, n_tickets=args.tickets)
        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            console.print(result.summary())
        return 0 if result.rtp_pass else 2

    report = auditor.audit_all(n_tickets=args.tickets)
    if args.json:
        print(report.to_json())
    else:
        console.print(report.summary())
    return 0 if report.overall_pass else 2


def cmd_state(args) -> int:
    from config.database import get_store
    from tools.economy import ScratchEconomy

    eco = ScratchEconomy.from_config(args.data_dir, store=get_store(args.backend))
    if args.json:
        print(eco.export_state_text())
        return 0
    summary = eco.summary()
    lines = [f"{k}: {v}" for k, v in summary.items()]
    earned = sorted(b for b, ok in eco.get_earned_badges().items() if ok)
    lines.append(f"earned badges: {', '.join(earned) or '-'}")
    console.print(Panel("\n".join(lines), title="Save State", border_style="green"))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Scratch Elite economy tools")
    parser.add_argument("--data-dir", type=str, default=None, help="Catalog directory (default: config/data)")
    parser.add_argument("--log-level", type=str, default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("tiers", help="List tiers with closed-form EV/RTP")

    p = sub.add_parser("ticket", help="Render the ticket a (tier, serial) generates")
    p.add_argument("tier_id")
    p.add_argument("serial")
    p.add_argument("--json", action="store_true")

    p = sub.add_parser("audit", help="Monte Carlo RTP audit over generated tickets")
    p.add_argument("--tier", type=str, default=None)
    p.add_argument("--tickets", type=int, default=5_000)
    p.add_argument("--tolerance", type=float, default=0.05)
    p.add_argument("--json", action="store_true")

    p = sub.add_parser("state", help="Summarize the saved game state")
    p.add_argument("--backend", choices=["sqlite", "json", "memory"], default=None)
    p.add_argument("--json", action="store_true")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    handlers = {"tiers": cmd_tiers, "ticket": cmd_ticket, "audit": cmd_audit, "state": cmd_state}
    try:
        return handlers[args.command](args)
    except CatalogError as e:
        console.print(f"[red]❌ Catalog error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
