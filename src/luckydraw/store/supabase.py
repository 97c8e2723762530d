"""
Supabase (PostgREST) store.

Talks to the hosted database over its REST interface with `requests`. The
schema, the completion trigger that bumps `current_amount`, and the
`check_and_reset_expired_plans` procedure live in `sql/schema.sql`; run it
once in the Supabase SQL editor.

Completion notifications are fanned out locally: subscribers hear about
orders completed through this process, not about rows written elsewhere.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests

from luckydraw.draw.cycle import CYCLE_LENGTH
from luckydraw.draw.models import Milestone, Order, PaymentStatus, Plan, Winner
from luckydraw.errors import (
    ConflictError,
    DuplicateOrderCodeError,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
)
from luckydraw.store.base import DrawStore
from luckydraw.utils.common import format_timestamp, utcnow
from luckydraw.utils.logger import get_logger

logger = get_logger(__name__)

PLANS_TABLE = "game_plans"
ORDERS_TABLE = "orders"
MILESTONES_TABLE = "milestones"
WINNERS_TABLE = "winners"
RESET_FUNCTION = "check_and_reset_expired_plans"

UNIQUE_VIOLATION = "23505"


class SupabaseStore(DrawStore):
    """DrawStore backed by Supabase's PostgREST endpoint."""

    def __init__(
        self,
        url: str,
        key: str,
        *,
        timeout: float = 10.0,
        cycle_length: timedelta = CYCLE_LENGTH,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(cycle_length)
        if not url or not key:
            raise ValueError("Supabase URL and key are required")
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            }
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        body: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}/{path}"
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = self._session.request(
                method, url, params=params, json=body, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.RequestException as exc:
            logger.error("Supabase %s %s failed: %s", method, path, exc)
            raise StoreError(str(exc)) from exc

        if response.status_code >= 400:
            message, code = self._error_details(response)
            logger.error("Supabase %s %s returned %s: %s", method, path, response.status_code, message)
            if code == UNIQUE_VIOLATION:
                if path == ORDERS_TABLE:
                    raise DuplicateOrderCodeError(message)
                raise ConflictError(message)
            raise StoreError(message)

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_details(response: requests.Response) -> tuple[str, Optional[str]]:
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}", None
        if isinstance(payload, dict):
            return str(payload.get("message") or payload), payload.get("code")
        return str(payload), None

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def list_orders(self, plan_id: Optional[int] = None, status: Optional[PaymentStatus] = None) -> List[Order]:
        params = {"select": "*", "order": "created_at.desc"}
        if plan_id is not None:
            params["plan_id"] = f"eq.{plan_id}"
        if status is not None:
            params["payment_status"] = f"eq.{status.value}"
        rows = self._request("GET", ORDERS_TABLE, params=params) or []
        return [Order.from_row(row) for row in rows]

    def get_order_by_code(self, order_code: str) -> Optional[Order]:
        rows = self._request(
            "GET", ORDERS_TABLE, params={"select": "*", "order_id": f"eq.{order_code}", "limit": "1"}
        ) or []
        return Order.from_row(rows[0]) if rows else None

    def order_code_exists(self, order_code: str) -> bool:
        rows = self._request(
            "GET", ORDERS_TABLE, params={"select": "id", "order_id": f"eq.{order_code}", "limit": "1"}
        ) or []
        return bool(rows)

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
        body = {
            "order_id": order_code,
            "name": name,
            "easypaisa_account": payment_account,
            "plan_id": plan_id,
            "amount": amount,
            "payment_status": PaymentStatus.PENDING.value,
            "cycle_start_date": format_timestamp(cycle_start_date),
        }
        rows = self._request("POST", ORDERS_TABLE, body=body, prefer="return=representation") or []
        if not rows:
            raise StoreError("Order insert returned no rows")
        order = Order.from_row(rows[0])
        logger.info("Created order %s (%s) for plan %s", order.order_code, order.id, plan_id)
        return order

    def update_order_status(self, order_id: int, status: PaymentStatus) -> Order:
        # Filtering on the pending status makes the transition one-way.
        rows = self._request(
            "PATCH",
            ORDERS_TABLE,
            params={"id": f"eq.{order_id}", "payment_status": f"eq.{PaymentStatus.PENDING.value}"},
            body={"payment_status": status.value},
            prefer="return=representation",
        ) or []
        if not rows:
            existing = self._request("GET", ORDERS_TABLE, params={"select": "*", "id": f"eq.{order_id}"}) or []
            if not existing:
                raise NotFoundError(f"Order {order_id} not found")
            raise InvalidTransitionError(
                f"Order {order_id} is already {existing[0].get('payment_status')}"
            )
        order = Order.from_row(rows[0])
        if status == PaymentStatus.COMPLETED:
            self._emit("order_completed", order.to_dict())
        logger.info("Order %s moved to %s", order_id, status.value)
        return order

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------
    def list_plans(self) -> List[Plan]:
        rows = self._request("GET", PLANS_TABLE, params={"select": "*", "order": "price.asc"}) or []
        return [Plan.from_row(row) for row in rows]

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        rows = self._request("GET", PLANS_TABLE, params={"select": "*", "id": f"eq.{plan_id}"}) or []
        return Plan.from_row(rows[0]) if rows else None

    def update_plan_on_reset(self, plan_id: int, new_end_date: datetime, new_last_reset: datetime) -> None:
        self._request(
            "PATCH",
            PLANS_TABLE,
            params={"id": f"eq.{plan_id}"},
            body={
                "end_date": format_timestamp(new_end_date),
                "last_reset_date": format_timestamp(new_last_reset),
                "current_amount": 0,
            },
        )

    def check_and_reset_expired_plans(self, now: Optional[datetime] = None) -> List[int]:
        # The procedure reads the database clock; `now` is only meaningful locally.
        data = self._request(
            "POST",
            f"rpc/{RESET_FUNCTION}",
            body={"cycle_days": self.cycle_length.days},
        )
        reset_ids = self._plan_ids(data)
        if reset_ids:
            logger.info("Reset expired plans: %s", reset_ids)
            self._emit("plans_reset", {"plan_ids": reset_ids})
        return reset_ids

    @staticmethod
    def _plan_ids(data: Any) -> List[int]:
        if not data:
            return []
        if not isinstance(data, list):
            data = [data]
        ids = []
        for item in data:
            if isinstance(item, dict):
                value = item.get("plan_id", item.get("id", item.get(RESET_FUNCTION)))
            else:
                value = item
            if value is not None:
                ids.append(int(value))
        return ids

    def list_milestones(self, plan_id: Optional[int] = None) -> List[Milestone]:
        params = {"select": "*", "order": "amount.desc"}
        if plan_id is not None:
            params["plan_id"] = f"eq.{plan_id}"
        rows = self._request("GET", MILESTONES_TABLE, params=params) or []
        return [Milestone.from_row(row) for row in rows]

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
        body = {
            "plan_id": plan.id,
            "order_id": order.id,
            "order_code": order.order_code,
            "name": order.name,
            "cycle_start_date": format_timestamp(plan.last_reset_date),
            "selected_at": format_timestamp(selected_at or utcnow()),
        }
        if overwrite:
            rows = self._request(
                "POST",
                WINNERS_TABLE,
                params={"on_conflict": "plan_id,cycle_start_date"},
                body=body,
                prefer="resolution=merge-duplicates,return=representation",
            ) or []
        else:
            try:
                rows = self._request("POST", WINNERS_TABLE, body=body, prefer="return=representation") or []
            except ConflictError:
                # Another draw for this cycle landed first.
                existing = self.get_winner(plan.id, plan.last_reset_date)
                if existing is None:
                    raise
                logger.info("Plan %s already has winner %s", plan.id, existing.order_code)
                return existing
        if not rows:
            raise StoreError("Winner insert returned no rows")
        return Winner.from_row(rows[0])

    def get_winner(self, plan_id: int, cycle_start_date: Optional[datetime]) -> Optional[Winner]:
        params = {
            "select": "*",
            "plan_id": f"eq.{plan_id}",
            "order": "selected_at.desc",
            "limit": "1",
        }
        if cycle_start_date is None:
            params["cycle_start_date"] = "is.null"
        else:
            params["cycle_start_date"] = f"eq.{format_timestamp(cycle_start_date)}"
        rows = self._request("GET", WINNERS_TABLE, params=params) or []
        return Winner.from_row(rows[0]) if rows else None

    def health_check(self) -> Dict[str, Any]:
        try:
            self._request("GET", PLANS_TABLE, params={"select": "id", "limit": "1"})
        except StoreError as exc:
            return {"status": "error", "backend": "supabase", "detail": str(exc)}
        return {"status": "ok", "backend": "supabase"}

    def close(self) -> None:
        self._session.close()
