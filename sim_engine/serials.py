"""
SCRATCH ELITE — Serial numbers

"Lucky Penny" → prefix "LUCPEN" → serials LUCPEN-000001, LUCPEN-000002, ...
Counters are per prefix and live in the save state, so two tiers whose names
share a prefix share one sequence.
"""

import re

_WORD = re.compile(r"[A-Za-z0-9]+")


def serial_prefix_for_name(name: str) -> str:
    chunks = []
    for word in _WORD.findall(name or ""):
        chunks.append(word[:3].upper())
        if len("".join(chunks)) >= 6:
            break
    return ("".join(chunks) or "TICKET")[:6]


def format_serial(prefix: str, n: int) -> str:
    return f"{prefix}-{n:06d}"


def next_serial(counters: dict, name: str) -> str:
    """Advance the per-prefix counter in `counters` (mutated) and return the new serial."""
    prefix = serial_prefix_for_name(name)
    n = int(counters.get(prefix, 0)) + 1
    counters[prefix] = n
    return format_serial(prefix, n)
