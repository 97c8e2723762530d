"""Store interface the lucky draw core consumes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Dict, List, Optional

from luckydraw.draw.cycle import CYCLE_LENGTH
from luckydraw.draw.models import Milestone, Order, PaymentStatus, Plan, Winner
from luckydraw.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[Optional[dict]], None]
OrderCallback = Callable[[Order], None]
Unsubscribe = Callable[[], None]


class DrawStore(ABC):
    """Backend owning plans, orders, milestones and winners.

    Implementations must make `check_and_reset_expired_plans` atomic per
    plan: readers see either the old or the new cycle, never a mix, and a
    second reset of an already fresh plan is a no-op.

    Events emitted to listeners: `order_completed` (serialized order) and
    `plans_reset` (`{"plan_ids": [...]}`).
    """

    def __init__(self, cycle_length: timedelta = CYCLE_LENGTH) -> None:
        self.cycle_length = cycle_length
        self._listener_lock = Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    # Orders ---------------------------------------------------------------
    @abstractmethod
    def list_orders(self, plan_id: Optional[int] = None, status: Optional[PaymentStatus] = None) -> List[Order]:
        """Orders newest first, optionally filtered."""

    @abstractmethod
    def get_order_by_code(self, order_code: str) -> Optional[Order]:
        ...

    @abstractmethod
    def order_code_exists(self, order_code: str) -> bool:
        ...

    @abstractmethod
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
        """Insert a `pending` order."""

    @abstractmethod
    def update_order_status(self, order_id: int, status: PaymentStatus) -> Order:
        """Move a pending order to its final status."""

    # Plans ----------------------------------------------------------------
    @abstractmethod
    def list_plans(self) -> List[Plan]:
        """Plans ordered by entry price."""

    @abstractmethod
    def get_plan(self, plan_id: int) -> Optional[Plan]:
        ...

    @abstractmethod
    def update_plan_on_reset(self, plan_id: int, new_end_date: datetime, new_last_reset: datetime) -> None:
        ...

    @abstractmethod
    def check_and_reset_expired_plans(self, now: Optional[datetime] = None) -> List[int]:
        """Roll every expired plan into a new cycle; return the reset plan ids."""

    @abstractmethod
    def list_milestones(self, plan_id: Optional[int] = None) -> List[Milestone]:
        ...

    # Winners --------------------------------------------------------------
    @abstractmethod
    def record_winner(
        self,
        plan: Plan,
        order: Order,
        selected_at: Optional[datetime] = None,
        *,
        overwrite: bool = False,
    ) -> Winner:
        """Record the winner of the plan's current cycle.

        At most one winner exists per `(plan_id, cycle_start_date)`. When the
        cycle already has one, it is returned unchanged unless `overwrite` is set.
        """

    @abstractmethod
    def get_winner(self, plan_id: int, cycle_start_date: Optional[datetime]) -> Optional[Winner]:
        ...

    # Notifications --------------------------------------------------------
    def add_listener(self, event_type: str, callback: Listener) -> Unsubscribe:
        with self._listener_lock:
            self._listeners[event_type].append(callback)
        logger.debug("Adding listener for event_type=%s, callback=%s", event_type, callback)

        def _unsubscribe() -> None:
            with self._listener_lock:
                if callback in self._listeners[event_type]:
                    self._listeners[event_type].remove(callback)

        return _unsubscribe

    def subscribe_to_new_completed_orders(self, callback: OrderCallback) -> Unsubscribe:
        """Push each newly completed order to `callback` until unsubscribed."""

        def _on_completed(payload: dict | None) -> None:
            if payload is not None:
                callback(Order.from_row(payload))

        return self.add_listener("order_completed", _on_completed)

    def _emit(self, event_type: str, payload: dict | None) -> None:
        with self._listener_lock:
            listeners = list(self._listeners.get(event_type, []))
        for callback in listeners:
            try:
                callback(payload)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event_type, exc)

    def health_check(self) -> dict:
        return {"status": "ok", "backend": type(self).__name__}

    def close(self) -> None:
        pass
