"""
Winner selection.

The pool for a plan is every completed order of its current cycle; one
entry is drawn uniformly at random over the pool as it stands at call time.
Selection itself has no side effects; recording a winner is the operator's
job.
"""

from __future__ import annotations

import random
import secrets
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from luckydraw.draw.cycle import (
    CYCLE_LENGTH,
    belongs_to_current_cycle,
    classify_legacy_order,
    has_cycle_markers,
)
from luckydraw.draw.models import CycleStatus, Order, Plan

_system_random = secrets.SystemRandom()


def eligible_orders(
    orders: Iterable[Order],
    plan: Plan,
    *,
    legacy_fallback: bool = False,
    now: Optional[datetime] = None,
    cycle_length: timedelta = CYCLE_LENGTH,
) -> List[Order]:
    """Completed orders of `plan` that belong to its current cycle.

    With `legacy_fallback`, orders lacking a cycle marker are admitted when
    the legacy date heuristic places them in the current cycle.
    """
    pool = []
    for order in orders:
        if order.plan_id != plan.id or not order.is_completed:
            continue
        if belongs_to_current_cycle(order, plan):
            pool.append(order)
        elif legacy_fallback and not has_cycle_markers(order, plan):
            cycle = classify_legacy_order(order, plan, now, cycle_length)
            if cycle.status == CycleStatus.CURRENT:
                pool.append(order)
    return pool


def pick_winner(eligible: Sequence[Order], rng: Optional[random.Random] = None) -> Optional[Order]:
    """Draw one order uniformly from the pool; None when the pool is empty."""
    if not eligible:
        return None
    rng = rng or _system_random
    return eligible[rng.randrange(len(eligible))]


def announce(order: Order) -> str:
    """Winner line shown on the picker board, e.g. '0001234: ALI WON!'."""
    return f"{order.order_code.zfill(7)}: {order.name.upper()} WON!"
