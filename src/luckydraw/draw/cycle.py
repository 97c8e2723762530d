"""
Plan cycle arithmetic.

A plan's cycle runs from `last_reset_date` to `end_date`. Orders carry a
copy of the plan's `last_reset_date` taken when they were created
(`cycle_start_date`); comparing the two markers is the only reliable way to
tell current-cycle orders from stale ones once a plan has been reset.

Rows written before the marker existed are classified by
`classify_legacy_order`, a date heuristic kept apart from the canonical rule.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from luckydraw.draw.models import Countdown, CycleStatus, Order, OrderCycle, Plan
from luckydraw.utils.common import utcnow

CYCLE_LENGTH = timedelta(days=15)

# Legacy orders older than this relative to a live end date belong to an
# already settled cycle (25 days for a 15 day cycle).
LEGACY_STALE_NUMERATOR = 5
LEGACY_STALE_DENOMINATOR = 3

ENDING_SOON_WINDOW = timedelta(days=2)


def legacy_stale_age(cycle_length: timedelta = CYCLE_LENGTH) -> timedelta:
    return cycle_length * LEGACY_STALE_NUMERATOR / LEGACY_STALE_DENOMINATOR


# ----------------------------------------------------------------------
# Cycle resolver
# ----------------------------------------------------------------------
def has_live_end_date(plan: Plan, now: datetime) -> bool:
    """True when the persisted end date is authoritative for the running cycle."""
    end = plan.end_date
    if end is None or end <= now:
        return False
    if plan.last_reset_date is not None and end < plan.last_reset_date:
        return False
    return True


def resolve_effective_end_date(
    plan: Plan,
    now: Optional[datetime] = None,
    cycle_length: timedelta = CYCLE_LENGTH,
) -> datetime:
    """Return the end date to display for the plan's running cycle.

    A missing, inconsistent or elapsed end date is replaced by a virtual one
    (`now + cycle_length`). The virtual date is for display only; the store
    only moves `end_date` through `check_and_reset_expired_plans`.
    """
    now = now or utcnow()
    if has_live_end_date(plan, now):
        return plan.end_date
    return now + cycle_length


def is_virtual_end_date(plan: Plan, now: Optional[datetime] = None) -> bool:
    return not has_live_end_date(plan, now or utcnow())


def countdown(plan: Plan, now: Optional[datetime] = None) -> Countdown:
    """Time left on the persisted end date, clamped at zero."""
    now = now or utcnow()
    if plan.end_date is None:
        return Countdown(remaining=timedelta(0), ended=True)
    remaining = plan.end_date - now
    if remaining <= timedelta(0):
        return Countdown(remaining=timedelta(0), ended=True)
    # Whole seconds only; the ticker refreshes once per second.
    return Countdown(remaining=timedelta(seconds=int(remaining.total_seconds())), ended=False)


def is_ending_soon(
    plan: Plan,
    now: Optional[datetime] = None,
    window: timedelta = ENDING_SOON_WINDOW,
) -> bool:
    """Plans still running but ending within `window` go on the results board."""
    now = now or utcnow()
    if plan.end_date is None:
        return False
    remaining = plan.end_date - now
    return timedelta(0) < remaining <= window


# ----------------------------------------------------------------------
# Order cycle classifier
# ----------------------------------------------------------------------
def belongs_to_current_cycle(order: Order, plan: Plan) -> bool:
    """Canonical membership test: the order's cycle marker equals the plan's."""
    if order.cycle_start_date is None or plan.last_reset_date is None:
        return False
    return order.cycle_start_date == plan.last_reset_date


def has_cycle_markers(order: Order, plan: Plan) -> bool:
    return order.cycle_start_date is not None and plan.last_reset_date is not None


def classify_order(
    order: Order,
    plan: Plan,
    now: Optional[datetime] = None,
    cycle_length: timedelta = CYCLE_LENGTH,
) -> OrderCycle:
    """Bucket an order into its plan's current or an earlier cycle.

    Uses the marker rule whenever both markers exist and only falls back to
    the legacy date heuristic for rows that predate the marker.
    """
    now = now or utcnow()
    if has_cycle_markers(order, plan):
        if belongs_to_current_cycle(order, plan):
            return OrderCycle(
                status=CycleStatus.CURRENT,
                expires_at=resolve_effective_end_date(plan, now, cycle_length),
            )
        return OrderCycle(
            status=CycleStatus.PREVIOUS,
            expires_at=order.cycle_start_date + cycle_length,
        )
    return classify_legacy_order(order, plan, now, cycle_length)


def classify_legacy_order(
    order: Order,
    plan: Plan,
    now: Optional[datetime] = None,
    cycle_length: timedelta = CYCLE_LENGTH,
) -> OrderCycle:
    """Date heuristic for orders without a cycle marker. Legacy data only."""
    now = now or utcnow()
    end = plan.end_date
    own_expiry = order.created_at + cycle_length

    if end is None:
        return OrderCycle(status=CycleStatus.VIRTUAL, expires_at=own_expiry, legacy=True)

    if end > now:
        if end - order.created_at > legacy_stale_age(cycle_length):
            return OrderCycle(status=CycleStatus.PREVIOUS, expires_at=own_expiry, legacy=True)
        return OrderCycle(status=CycleStatus.CURRENT, expires_at=end, legacy=True)

    # Stored end date has lapsed and no reset has landed yet.
    if order.created_at <= end:
        return OrderCycle(status=CycleStatus.PREVIOUS, expires_at=end, legacy=True)
    return OrderCycle(status=CycleStatus.VIRTUAL, expires_at=own_expiry, legacy=True)
