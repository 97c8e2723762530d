"""In-memory store for development and tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from itertools import count
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from luckydraw.draw.cycle import CYCLE_LENGTH
from luckydraw.draw.models import Milestone, Order, PaymentStatus, Plan, Winner
from luckydraw.errors import DuplicateOrderCodeError, InvalidTransitionError, NotFoundError
from luckydraw.store.base import DrawStore
from luckydraw.utils.common import utcnow
from luckydraw.utils.logger import get_logger

logger = get_logger(__name__)


class MemoryStore(DrawStore):
    """Volatile storage for plans, orders, milestones and winners.

    A single lock serializes every read-modify-write, which makes the plan
    reset atomic for all callers sharing the instance. Accessors hand out
    copies so callers never observe a plan mid-update.
    """

    def __init__(self, cycle_length: timedelta = CYCLE_LENGTH) -> None:
        super().__init__(cycle_length)
        self._lock = Lock()
        self._plans: Dict[int, Plan] = {}
        self._orders: Dict[int, Order] = {}
        self._orders_by_code: Dict[str, int] = {}
        self._milestones: List[Milestone] = []
        self._winners: List[Winner] = []
        self._order_ids = count(1)
        self._winner_ids = count(1)

    # ------------------------------------------------------------------
    # Bootstrap helpers
    # ------------------------------------------------------------------
    def bootstrap(
        self,
        *,
        plans: Iterable[Plan] = (),
        orders: Iterable[Order] = (),
        milestones: Iterable[Milestone] = (),
    ) -> None:
        with self._lock:
            for plan in plans:
                self._plans[plan.id] = replace(plan)
            for order in orders:
                self._orders[order.id] = replace(order)
                self._orders_by_code[order.order_code] = order.id
            self._milestones.extend(milestones)
            next_id = max(self._orders, default=0) + 1
            self._order_ids = count(next_id)
        logger.info(
            "[MemoryStore] Bootstrapped with %d plans, %d orders, %d milestones",
            len(self._plans), len(self._orders), len(self._milestones),
        )

    def clear_all_data(self) -> None:
        with self._lock:
            self._plans.clear()
            self._orders.clear()
            self._orders_by_code.clear()
            self._milestones.clear()
            self._winners.clear()
        logger.debug("[MemoryStore] clear_all_data called")

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def list_orders(self, plan_id: Optional[int] = None, status: Optional[PaymentStatus] = None) -> List[Order]:
        with self._lock:
            orders = [
                replace(order)
                for order in self._orders.values()
                if (plan_id is None or order.plan_id == plan_id)
                and (status is None or order.payment_status == status)
            ]
        orders.sort(key=lambda o: (o.created_at, o.id), reverse=True)
        return orders

    def get_order_by_code(self, order_code: str) -> Optional[Order]:
        with self._lock:
            order_id = self._orders_by_code.get(order_code)
            return replace(self._orders[order_id]) if order_id is not None else None

    def order_code_exists(self, order_code: str) -> bool:
        with self._lock:
            return order_code in self._orders_by_code

    def create_order(
        self,
        *,
        order_code: str,
        name: str,
        payment_account: str,
        plan_id: int,
        amount: int,
        cycle_start_date: Optional[datetime],
    ) -> Order:
        with self._lock:
            if order_code in self._orders_by_code:
                raise DuplicateOrderCodeError(f"duplicate key value violates unique constraint: order_id={order_code}")
            if plan_id not in self._plans:
                raise NotFoundError(f"Plan {plan_id} not found")
            order = Order(
                id=next(self._order_ids),
                order_code=order_code,
                name=name,
                payment_account=payment_account,
                plan_id=plan_id,
                amount=amount,
                payment_status=PaymentStatus.PENDING,
                created_at=utcnow(),
                cycle_start_date=cycle_start_date,
            )
            self._orders[order.id] = order
            self._orders_by_code[order_code] = order.id
            result = replace(order)
        logger.info("[MemoryStore] Created order %s (%s) for plan %s", order.order_code, order.id, plan_id)
        return result

    def update_order_status(self, order_id: int, status: PaymentStatus) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            if order.payment_status != PaymentStatus.PENDING:
                raise InvalidTransitionError(
                    f"Order {order_id} is already {order.payment_status.value}"
                )
            order.payment_status = status

            if status == PaymentStatus.COMPLETED:
                plan = self._plans.get(order.plan_id)
                # Amounts only count toward the cycle the order was placed in.
                if plan is not None and order.cycle_start_date == plan.last_reset_date:
                    plan.current_amount += order.amount
                    plan.updated_at = utcnow()
            result = replace(order)

        if status == PaymentStatus.COMPLETED:
            self._emit("order_completed", result.to_dict())
        logger.info("[MemoryStore] Order %s moved to %s", order_id, status.value)
        return result

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------
    def add_plan(self, plan: Plan) -> Plan:
        with self._lock:
            self._plans[plan.id] = replace(plan)
        return replace(plan)

    def list_plans(self) -> List[Plan]:
        with self._lock:
            plans = [replace(plan) for plan in self._plans.values()]
        plans.sort(key=lambda p: (p.price, p.id))
        return plans

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        with self._lock:
            plan = self._plans.get(plan_id)
            return replace(plan) if plan else None

    def update_plan_on_reset(self, plan_id: int, new_end_date: datetime, new_last_reset: datetime) -> None:
        with self._lock:
            self._reset_plan_locked(plan_id, new_end_date, new_last_reset)

    def _reset_plan_locked(self, plan_id: int, new_end_date: datetime, new_last_reset: datetime) -> None:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found")
        plan.end_date = new_end_date
        plan.last_reset_date = new_last_reset
        plan.current_amount = 0
        plan.updated_at = new_last_reset

    def check_and_reset_expired_plans(self, now: Optional[datetime] = None) -> List[int]:
        now = now or utcnow()
        reset_ids: List[int] = []
        with self._lock:
            for plan in self._plans.values():
                if plan.end_date is None or plan.end_date <= now:
                    self._reset_plan_locked(plan.id, now + self.cycle_length, now)
                    reset_ids.append(plan.id)

        if reset_ids:
            logger.info("[MemoryStore] Reset expired plans: %s", reset_ids)
            self._emit("plans_reset", {"plan_ids": reset_ids})
        return reset_ids

    def add_milestone(self, milestone: Milestone) -> None:
        with self._lock:
            self._milestones.append(milestone)

    def list_milestones(self, plan_id: Optional[int] = None) -> List[Milestone]:
        with self._lock:
            items = [m for m in self._milestones if plan_id is None or m.plan_id == plan_id]
        return sorted(items, key=lambda m: m.amount, reverse=True)

    # ------------------------------------------------------------------
    # Winners
    # ------------------------------------------------------------------
    def record_winner(
        self,
        plan: Plan,
        order: Order,
        selected_at: Optional[datetime] = None,
        *,
        overwrite: bool = False,
    ) -> Winner:
        with self._lock:
            existing = self._find_winner_locked(plan.id, plan.last_reset_date)
            if existing is not None:
                if not overwrite:
                    logger.info("[MemoryStore] Plan %s already has winner %s", plan.id, existing.order_code)
                    return replace(existing)
                self._winners.remove(existing)
            winner = Winner(
                id=next(self._winner_ids),
                plan_id=plan.id,
                order_id=order.id,
                order_code=order.order_code,
                name=order.name,
                cycle_start_date=plan.last_reset_date,
                selected_at=selected_at or utcnow(),
            )
            self._winners.append(winner)
        logger.info("[MemoryStore] Recorded winner %s for plan %s", order.order_code, plan.id)
        return replace(winner)

    def get_winner(self, plan_id: int, cycle_start_date: Optional[datetime]) -> Optional[Winner]:
        with self._lock:
            winner = self._find_winner_locked(plan_id, cycle_start_date)
            return replace(winner) if winner else None

    def _find_winner_locked(self, plan_id: int, cycle_start_date: Optional[datetime]) -> Optional[Winner]:
        for winner in self._winners:
            if winner.plan_id == plan_id and winner.cycle_start_date == cycle_start_date:
                return winner
        return None

    def health_check(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "status": "ok",
                "backend": "memory",
                "plans": len(self._plans),
                "orders": len(self._orders),
            }
