"""
Lucky draw operator.

Glue between the web layer and the store:
- rolls expired plans into a new cycle (reset trigger, called on page loads)
- creates orders stamped with their plan's cycle marker
- runs checkout through the payment gateway
- draws and records a winner per plan cycle
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from luckydraw.draw.cycle import CYCLE_LENGTH
from luckydraw.draw.models import Order, PaymentStatus, Plan, Winner
from luckydraw.draw.order_codes import DEFAULT_MAX_ATTEMPTS, allocate_order_code
from luckydraw.draw.payment import PaymentGateway, StubPaymentGateway
from luckydraw.draw.picker import announce, eligible_orders, pick_winner
from luckydraw.errors import NotFoundError, ValidationError
from luckydraw.store.base import DrawStore
from luckydraw.utils.common import utcnow
from luckydraw.utils.config import as_bool
from luckydraw.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class DrawResult:
    """Outcome of a draw request for one plan."""

    plan_id: int
    pool_size: int
    winner: Optional[Winner] = None
    order: Optional[Order] = None
    already_drawn: bool = False

    @property
    def announcement(self) -> Optional[str]:
        return announce(self.order) if self.order else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "pool_size": self.pool_size,
            "winner": self.winner.to_dict() if self.winner else None,
            "order": self.order.to_dict() if self.order else None,
            "announcement": self.announcement,
            "already_drawn": self.already_drawn,
        }


class DrawOperator:
    """Coordinates plans, orders and draws against a DrawStore."""

    def __init__(
        self,
        store: DrawStore,
        config: Dict[str, Any],
        payment_gateway: Optional[PaymentGateway] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._store = store
        self._config = config
        self._payments = payment_gateway or StubPaymentGateway()
        self._rng = rng
        self._running = False

        draw_cfg = config.get("draw", {})
        self.cycle_length = timedelta(days=int(draw_cfg.get("cycle_length_days", CYCLE_LENGTH.days)))
        self.legacy_fallback = as_bool(draw_cfg.get("legacy_cycle_fallback", False))
        self.order_code_attempts = int(draw_cfg.get("order_code_max_attempts", DEFAULT_MAX_ATTEMPTS))
        self._last_reset: List[int] = []

    @property
    def store(self) -> DrawStore:
        return self._store

    async def start(self) -> None:
        if self._running:
            logger.warning("Draw operator already running")
            return
        self._running = True
        logger.info("Draw operator started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        logger.info("Draw operator stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self._running else "stopped",
            "cycle_length_days": self.cycle_length.days,
            "legacy_cycle_fallback": self.legacy_fallback,
            "last_reset_plans": list(self._last_reset),
        }

    # ------------------------------------------------------------------
    # Reset trigger
    # ------------------------------------------------------------------
    def reset_expired_plans(self, now: Optional[datetime] = None) -> List[int]:
        reset_ids = self._store.check_and_reset_expired_plans(now)
        if reset_ids:
            self._last_reset = reset_ids
            logger.info("Plans rolled into a new cycle: %s", reset_ids)
        return reset_ids

    # ------------------------------------------------------------------
    # Plans & participants
    # ------------------------------------------------------------------
    def get_plan(self, plan_id: int) -> Plan:
        plan = self._store.get_plan(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found")
        return plan

    def participants(self, plan: Plan, now: Optional[datetime] = None) -> List[Order]:
        """Completed current-cycle orders of a plan, newest first."""
        orders = self._store.list_orders(plan_id=plan.id, status=PaymentStatus.COMPLETED)
        return eligible_orders(
            orders,
            plan,
            legacy_fallback=self.legacy_fallback,
            now=now,
            cycle_length=self.cycle_length,
        )

    # ------------------------------------------------------------------
    # Orders & checkout
    # ------------------------------------------------------------------
    def create_order(
        self,
        *,
        name: Optional[str],
        payment_account: Optional[str],
        plan_id: Optional[int],
        amount: Optional[int],
    ) -> Order:
        """Create a pending order carrying its plan's current cycle marker."""
        missing = [
            field
            for field, value in (
                ("name", name),
                ("payment_account", payment_account),
                ("plan_id", plan_id),
                ("amount", amount),
            )
            if value in (None, "", 0)
        ]
        if missing:
            raise ValidationError("Missing required fields", missing)
        if amount < 0:
            raise ValidationError("Amount must be positive", ["amount"])

        # An expired plan must roll over before the order copies its cycle marker.
        self.reset_expired_plans()
        plan = self._store.get_plan(plan_id)
        if plan is None:
            raise ValidationError("Unknown plan", ["plan_id"])

        order_code = allocate_order_code(
            self._store.order_code_exists, rng=self._rng, max_attempts=self.order_code_attempts
        )
        return self._store.create_order(
            order_code=order_code,
            name=name.strip(),
            payment_account=payment_account.strip(),
            plan_id=plan.id,
            amount=amount,
            cycle_start_date=plan.last_reset_date,
        )

    async def checkout(
        self,
        *,
        name: Optional[str],
        payment_account: Optional[str],
        plan_id: Optional[int],
        amount: Optional[int] = None,
    ) -> Order:
        """Create an order, pay for it and record the payment outcome."""
        if amount is None and plan_id is not None:
            plan = await asyncio.to_thread(self._store.get_plan, plan_id)
            if plan is None:
                raise ValidationError("Unknown plan", ["plan_id"])
            amount = plan.price

        order = await asyncio.to_thread(
            self.create_order,
            name=name,
            payment_account=payment_account,
            plan_id=plan_id,
            amount=amount,
        )

        try:
            outcome = await self._payments.initiate_payment(order.amount, order.id)
        except Exception as exc:
            logger.error("Payment failed for order %s: %s", order.order_code, exc)
            return await asyncio.to_thread(self._store.update_order_status, order.id, PaymentStatus.FAILED)

        status = PaymentStatus.COMPLETED if outcome.success else PaymentStatus.FAILED
        if not outcome.success:
            logger.warning("Payment declined for order %s: %s", order.order_code, outcome.message)
        return await asyncio.to_thread(self._store.update_order_status, order.id, status)

    def get_order(self, order_code: str) -> Order:
        order = self._store.get_order_by_code(order_code)
        if order is None:
            raise NotFoundError(f"Order {order_code} not found")
        return order

    # ------------------------------------------------------------------
    # Draws
    # ------------------------------------------------------------------
    def current_winner(self, plan_id: int) -> DrawResult:
        plan = self.get_plan(plan_id)
        pool = self.participants(plan)
        return self._existing_result(plan, len(pool)) or DrawResult(plan_id=plan.id, pool_size=len(pool))

    def draw_winner(self, plan_id: int, *, force: bool = False, now: Optional[datetime] = None) -> DrawResult:
        """Pick and record a winner for the plan's current cycle.

        A cycle that already has a recorded winner returns it unchanged
        unless `force` is set. An empty pool yields a result without winner.
        """
        plan = self.get_plan(plan_id)
        pool = self.participants(plan, now)

        if not force:
            existing = self._existing_result(plan, len(pool))
            if existing is not None:
                logger.info("Plan %s already has a winner for this cycle", plan.id)
                return existing

        order = pick_winner(pool, self._rng)
        if order is None:
            logger.info("No eligible orders for plan %s", plan.id)
            return DrawResult(plan_id=plan.id, pool_size=0)

        winner = self._store.record_winner(plan, order, selected_at=now or utcnow(), overwrite=force)
        if winner.order_id != order.id:
            # A concurrent draw recorded its winner first.
            return DrawResult(
                plan_id=plan.id,
                pool_size=len(pool),
                winner=winner,
                order=self._store.get_order_by_code(winner.order_code),
                already_drawn=True,
            )
        logger.info("Winner for plan %s: %s", plan.id, announce(order))
        return DrawResult(plan_id=plan.id, pool_size=len(pool), winner=winner, order=order)

    def _existing_result(self, plan: Plan, pool_size: int) -> Optional[DrawResult]:
        winner = self._store.get_winner(plan.id, plan.last_reset_date)
        if winner is None:
            return None
        order = self._store.get_order_by_code(winner.order_code)
        return DrawResult(
            plan_id=plan.id,
            pool_size=pool_size,
            winner=winner,
            order=order,
            already_drawn=True,
        )
